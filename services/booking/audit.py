# ============================================================
# audit.py - Traccia delle operazioni (tabella audit_log)
# ------------------------------------------------------------
# Ogni decisione importante (richiesta codice, login,
# prenotazione, cancellazione) lascia una riga nell'audit log.
# La scrittura non deve mai far fallire l'operazione principale:
# in caso di errore si logga e si va avanti.
# ============================================================
import logging
from datetime import datetime
from typing import Optional

from dates import to_utc, utc_now
from models import AuditLog

logger = logging.getLogger(__name__)

CODE_REQUEST = "RICHIESTA_CODICE"
LOGIN = "LOGIN"
TEMP_CODE_USED = "MARK_TEMP_CODE_USED"
BOOKING = "PRENOTAZIONE"
CANCEL = "CANCELLAZIONE"
MAINTENANCE = "PULIZIA"


def record(store, email: Optional[str], action: str, outcome: str, details: str = "",
           now: Optional[datetime] = None) -> None:
    email = (email or "").strip().lower()
    logger.info("[%s] %s - %s: %s", action, email, outcome, details)
    try:
        store.append_audit(AuditLog(
            timestamp=to_utc(now) if now else utc_now(),
            email=email,
            action=action,
            outcome=outcome,
            details=details,
        ))
    except Exception:
        logger.exception("[audit] could not write %s/%s for %s", action, outcome, email)
        try:
            store.session.rollback()
        except Exception:
            logger.exception("[audit] rollback failed")
