# ============================================================
# retry.py - Retry limitato per le chiamate esterne
# ------------------------------------------------------------
# Stessa logica del loop di riconnessione dei consumer: si
# riprova qualche volta con attesa crescente, poi si solleva
# TransientError (mai un falso successo).
# ============================================================
import logging
import time

from config import RETRY_BACKOFF_SECONDS, STORE_RETRY_ATTEMPTS
from errors import TransientError

logger = logging.getLogger(__name__)


def with_retries(fn, *, retry_on=(Exception,), attempts=STORE_RETRY_ATTEMPTS,
                 backoff=RETRY_BACKOFF_SECONDS, on_error=None, label="call", message=None):
    attempt = 0
    while True:
        try:
            return fn()
        except retry_on as e:
            attempt += 1
            if on_error is not None:
                on_error(e)
            if attempt >= attempts:
                logger.error("[retry] %s failed after %d attempts: %s", label, attempt, e)
                raise TransientError(message) from e
            wait = backoff * attempt
            logger.warning("[retry] %s error: %s; retrying in %.1fs", label, e, wait)
            time.sleep(wait)
