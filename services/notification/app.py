import logging
import os
import threading

from fastapi import FastAPI

from consumer import start_consumer

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

app = FastAPI(title="Notification Service")


@app.on_event("startup")
def startup():
    threading.Thread(target=start_consumer, daemon=True).start()


@app.get("/health")
def health():
    return {"ok": True}
