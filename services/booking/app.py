# ============================================================
# app.py - Punto di ingresso del servizio Booking
# ------------------------------------------------------------
# Inizializza l'applicazione FastAPI:
#   - crea le tabelle nel database
#   - avvia il thread di manutenzione (pulizia prenotazioni e
#     codici scaduti) senza bloccare l'API
#   - CORS permissivo: l'app mobile chiama da qualsiasi origine
#   - monta le rotte dell'API
# ============================================================
import logging
import os
import threading

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import SQLModel

import models  # noqa: F401  (registra le tabelle)
from api import engine, router
from maintenance import start_maintenance

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(title="Booking Service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Eseguito da FastAPI all'avvio del container.
@app.on_event("startup")
def start():
    SQLModel.metadata.create_all(engine)
    threading.Thread(target=start_maintenance, args=(engine,), daemon=True).start()


app.include_router(router)
