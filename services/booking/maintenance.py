# ============================================================
# maintenance.py - Pulizia periodica in background
# ------------------------------------------------------------
# Thread avviato all'avvio del servizio, come il consumer:
#   - elimina le prenotazioni più vecchie della finestra tenuta
#   - elimina i codici temporanei scaduti
#   - libera i contatori anti-spam inattivi
# Un errore in un giro non ferma il loop: si riprova al giro dopo.
# ============================================================
import logging
import threading

from sqlmodel import Session

from access import AccessCodeService, code_request_limiter
from config import MAINTENANCE_INTERVAL_SECONDS
from dates import now_local
from orchestrator import BookingOrchestrator
from repository import RecordStore

logger = logging.getLogger(__name__)


def run_once(engine, now=None) -> dict:
    now = now or now_local()
    with Session(engine, expire_on_commit=False) as s:
        store = RecordStore(s)
        access = AccessCodeService(store)
        result = BookingOrchestrator(store, access).purge_stale(now)
        result["tempCodesDeleted"] = access.cleanup_expired_codes(now)
    code_request_limiter.prune(now)
    logger.info("[maintenance] %s", result)
    return result


def start_maintenance(engine, stop: threading.Event = None, interval: float = MAINTENANCE_INTERVAL_SECONDS):
    stop = stop or threading.Event()
    while not stop.is_set():
        try:
            run_once(engine)
        except Exception as e:
            logger.error("[maintenance] error: %s; next run in %ss", e, interval)
        stop.wait(interval)
