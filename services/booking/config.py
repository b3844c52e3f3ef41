# ============================================================
# config.py - Configurazione del servizio Booking
# ------------------------------------------------------------
# Tutti i parametri arrivano da variabili d'ambiente, con un
# default pensato per lo sviluppo locale. I valori di business
# (capienza, cutoff, limiti) sono gli stessi della palestra.
# ============================================================
import os
from zoneinfo import ZoneInfo

# Database e broker
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./lift.db")
RABBITMQ_HOST = os.getenv("RABBITMQ_HOST", "localhost")
RABBITMQ_TIMEOUT_SECONDS = float(os.getenv("RABBITMQ_TIMEOUT_SECONDS", "5"))
# coda durevole del servizio Notification, legata a "events"
EVENTS_QUEUE = os.getenv("EVENTS_QUEUE", "notification.events")

# Fuso orario della palestra: tutte le date "di oggi" sono locali
LOCAL_TZ = ZoneInfo(os.getenv("LOCAL_TZ", "Europe/Rome"))

API_VERSION = os.getenv("API_VERSION", "3.0")

# Codici temporanei e protezione anti-spam
TEMP_CODE_VALIDITY_HOURS = int(os.getenv("TEMP_CODE_VALIDITY_HOURS", "24"))
TEMP_CODE_LENGTH = 8
MAX_CODE_REQUESTS = int(os.getenv("MAX_CODE_REQUESTS", "30"))
CODE_REQUEST_WINDOW_MINUTES = int(os.getenv("CODE_REQUEST_WINDOW_MINUTES", "60"))

# Regole di prenotazione
SLOT_CAPACITY = int(os.getenv("SLOT_CAPACITY", "8"))
BOOKING_CUTOFF_MINUTES = int(os.getenv("BOOKING_CUTOFF_MINUTES", "120"))
CANCEL_CUTOFF_HOURS = int(os.getenv("CANCEL_CUTOFF_HOURS", "5"))
FIRST_SLOT_HOUR = 6
LAST_SLOT_HOUR = 21
# dopo quest'ora non si prenotano gli slot del mattino presto del giorno dopo
EVENING_CUTOFF_HOUR = int(os.getenv("EVENING_CUTOFF_HOUR", "20"))
EARLY_SLOT_MIN_HOUR = 7

# Store: cache di lettura e retry
READ_CACHE_TTL_SECONDS = float(os.getenv("READ_CACHE_TTL_SECONDS", "5"))
STORE_RETRY_ATTEMPTS = int(os.getenv("STORE_RETRY_ATTEMPTS", "3"))
RETRY_BACKOFF_SECONDS = float(os.getenv("RETRY_BACKOFF_SECONDS", "0.2"))

# Manutenzione periodica
PURGE_RETENTION_WEEKS = int(os.getenv("PURGE_RETENTION_WEEKS", "2"))
MAINTENANCE_INTERVAL_SECONDS = int(os.getenv("MAINTENANCE_INTERVAL_SECONDS", str(6 * 3600)))
