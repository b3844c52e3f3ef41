# ============================================================
# Notification Service - RabbitMQ Consumer
# ------------------------------------------------------------
# Ascolta l'exchange "events" tramite la coda durevole
# EVENTS_QUEUE:
#   - TempCodeIssued   : invia via SMTP l'email con il codice
#   - BookingCreated / BookingCancelled : solo log
# L'ack è manuale: un TempCodeIssued viene confermato solo dopo
# l'invio; se l'SMTP fallisce del tutto il messaggio torna in
# coda (nack con requeue) e verrà ritentato.
# ============================================================
import json
import logging
import os
import smtplib
import ssl
import time
from email.mime.text import MIMEText

import pika

RABBIT = os.getenv("RABBITMQ_HOST", "rabbitmq")
EVENTS_QUEUE = os.getenv("EVENTS_QUEUE", "notification.events")
SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
SMTP_TIMEOUT = float(os.getenv("SMTP_TIMEOUT", "15"))
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "LIFT Pisa <noreply@liftpisa.it>")
SEND_ATTEMPTS = 3
REQUEUE_DELAY_SECONDS = float(os.getenv("REQUEUE_DELAY_SECONDS", "5"))

logger = logging.getLogger(__name__)


def build_code_email(payload: dict):
    name = f"{payload.get('firstName', '')} {payload.get('lastName', '')}".strip()
    hours = payload.get("validityHours", 24)
    code = payload["tempCode"]
    subject = "LIFT Pisa - Il tuo codice di accesso temporaneo"
    body = f"""Ciao {name},

Ecco il tuo codice di accesso TEMPORANEO per il sistema di prenotazione LIFT Pisa:

CODICE: {code}

VALIDITÀ: {hours} ore dalla ricezione di questa email

NOTA SICUREZZA:
- Questo codice è valido SOLO per {hours} ore
- Se non hai richiesto tu questo codice, contatta immediatamente la reception

Per accedere:
1. Apri l'app di prenotazione
2. Inserisci la tua email: {payload['email']}
3. Inserisci il codice: {code}

Buon allenamento!
Team LIFT Pisa
"""
    return subject, body


def send_email(to: str, subject: str, body: str):
    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = EMAIL_FROM_ADDRESS
    msg["To"] = to

    if SMTP_PORT == 465:
        server = smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT, context=ssl.create_default_context(), timeout=SMTP_TIMEOUT)
    else:
        server = smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=SMTP_TIMEOUT)
    try:
        if SMTP_PORT != 465 and SMTP_USE_TLS:
            server.starttls(context=ssl.create_default_context())
        if SMTP_USERNAME:
            server.login(SMTP_USERNAME, SMTP_PASSWORD or "")
        server.sendmail(EMAIL_FROM_ADDRESS.split("<")[-1].rstrip(">"), [to], msg.as_string())
    finally:
        try:
            server.quit()
        except smtplib.SMTPException:
            # connessione già caduta: QUIT non passa, si chiude il socket
            server.close()


def deliver_code(payload: dict) -> bool:
    subject, body = build_code_email(payload)
    for attempt in range(1, SEND_ATTEMPTS + 1):
        try:
            send_email(payload["email"], subject, body)
            logger.info("[notification] code email sent to %s", payload["email"])
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("[notification] send attempt %d to %s failed: %s", attempt, payload["email"], e)
            if attempt < SEND_ATTEMPTS:
                time.sleep(attempt)
    logger.error("[notification] all %d attempts to %s failed", SEND_ATTEMPTS, payload["email"])
    return False


def _handle(msg: dict) -> bool:
    # False = messaggio da rimettere in coda
    t = msg.get("type")
    p = msg.get("payload", {})
    if t == "TempCodeIssued":
        if not p.get("email") or not p.get("tempCode"):
            logger.warning("[notification] TempCodeIssued without email/code dropped")
            return True
        return deliver_code(p)
    if t in ("BookingCreated", "BookingCancelled"):
        logger.info("[notification] %s -> %s", t, {k: v for k, v in p.items() if k != "tempCode"})
    return True


def on_message(ch, method, properties, body):
    try:
        msg = json.loads(body)
    except ValueError:
        msg = None
    if not isinstance(msg, dict):
        logger.warning("[notification] bad payload dropped")
        ch.basic_ack(delivery_tag=method.delivery_tag)
        return
    if _handle(msg):
        ch.basic_ack(delivery_tag=method.delivery_tag)
    else:
        logger.error("[notification] %s requeued", msg.get("type"))
        time.sleep(REQUEUE_DELAY_SECONDS)
        ch.basic_nack(delivery_tag=method.delivery_tag, requeue=True)


def start_consumer():
    while True:
        try:
            logger.info("[notification] connecting to rabbitmq...")
            conn = pika.BlockingConnection(pika.ConnectionParameters(RABBIT, heartbeat=60))
            ch = conn.channel()
            ch.exchange_declare(exchange="events", exchange_type="fanout", durable=True)
            ch.queue_declare(queue=EVENTS_QUEUE, durable=True)
            ch.queue_bind(exchange="events", queue=EVENTS_QUEUE)
            # un messaggio alla volta: il prossimo arriva dopo ack/nack
            ch.basic_qos(prefetch_count=1)
            logger.info("[notification] bound to 'events' queue='%s'. waiting...", EVENTS_QUEUE)
            ch.basic_consume(queue=EVENTS_QUEUE, on_message_callback=on_message, auto_ack=False)
            ch.start_consuming()
        except Exception as e:
            logger.error("[notification] error: %s; retry 5s", e)
            time.sleep(5)
