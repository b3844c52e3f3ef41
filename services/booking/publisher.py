# ============================================================
# publisher.py - Emissione di eventi RabbitMQ
# ------------------------------------------------------------
# Il servizio Booking pubblica sull'exchange fanout "events":
#   - TempCodeIssued   : il servizio Notification invia l'email
#   - BookingCreated   : informativo
#   - BookingCancelled : informativo
# L'exchange è legato a una coda durevole (EVENTS_QUEUE), così
# un messaggio resta in attesa anche se Notification è giù.
# Con i publisher confirms un messaggio non instradato o
# rifiutato dal broker solleva un errore: dopo qualche retry
# diventa TransientError.
# ============================================================
import json
import logging

import pika
from pika.exceptions import AMQPError

from config import EVENTS_QUEUE, RABBITMQ_HOST, RABBITMQ_TIMEOUT_SECONDS
from retry import with_retries

logger = logging.getLogger(__name__)


def _connection_parameters():
    return pika.ConnectionParameters(
        host=RABBITMQ_HOST,
        heartbeat=60,
        socket_timeout=RABBITMQ_TIMEOUT_SECONDS,
        blocked_connection_timeout=RABBITMQ_TIMEOUT_SECONDS,
        connection_attempts=1,
    )


# Stessa topologia dichiarata dal consumer: le dichiarazioni sono idempotenti
def declare_topology(ch):
    # durable=True per sopravvivere ai riavvii di RabbitMQ
    ch.exchange_declare(exchange="events", exchange_type="fanout", durable=True)
    ch.queue_declare(queue=EVENTS_QUEUE, durable=True)
    ch.queue_bind(exchange="events", queue=EVENTS_QUEUE)


def _publish_once(event_type: str, payload: dict):
    conn = pika.BlockingConnection(_connection_parameters())
    try:
        ch = conn.channel()
        declare_topology(ch)
        ch.confirm_delivery()
        message = {"type": event_type, "payload": payload}
        # mandatory: senza una coda legata il broker lo restituisce (UnroutableError)
        ch.basic_publish(
            exchange="events",
            routing_key="",
            body=json.dumps(message),
            properties=pika.BasicProperties(content_type="application/json", delivery_mode=2),
            mandatory=True,
        )
    finally:
        conn.close()


# Tutti i consumer legati all'exchange ricevono il messaggio.
def publish_event(event_type: str, payload: dict, message: str = None):
    with_retries(
        lambda: _publish_once(event_type, payload),
        retry_on=(AMQPError, OSError),
        label=f"publish {event_type}",
        message=message,
    )
    logger.info("[event] %s %s", event_type, {k: v for k, v in payload.items() if k != "tempCode"})


# Eventi informativi: un fallimento non deve toccare la prenotazione.
def publish_quietly(event_type: str, payload: dict):
    try:
        publish_event(event_type, payload)
    except Exception:
        logger.warning("[event] %s not delivered", event_type, exc_info=True)
