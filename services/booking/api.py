# ============================================================
# Booking API Router
# ------------------------------------------------------------
# Un solo endpoint GET: il parametro `action` sceglie
# l'operazione (sendClientCode, bookSlot, cancelBooking, ...).
# L'identità viaggia in email + clientId nella query string:
# va bene per uno strumento interno, non per un sistema esposto.
# Ogni errore diventa una risposta JSON {success:false, message};
# nessuna eccezione esce dalla richiesta.
# ============================================================
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session, create_engine

from access import AccessCodeService
from availability import available_slots
from config import API_VERSION, DATABASE_URL
from content import active_communications, app_update_info, payment_info
from dates import now_local
from eligibility import EligibilityEngine
from errors import GymError, InternalError, InvalidRequest
from orchestrator import BookingOrchestrator
from repository import RecordStore

logger = logging.getLogger(__name__)

# Motore SQLAlchemy/SQLModel + router FastAPI
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, pool_pre_ping=True, pool_timeout=10, connect_args=connect_args)
router = APIRouter()


# Dipendenza FastAPI: una Session per richiesta, chiusa alla fine
def get_session():
    with Session(engine, expire_on_commit=False) as s:
        yield s


# Uno store (e una cache) per richiesta
def get_store(s: Session = Depends(get_session)) -> RecordStore:
    return RecordStore(s)


def get_now() -> datetime:
    return now_local()


def _code(params: dict) -> Optional[str]:
    return params.get("clientId") or params.get("code")


def _require(params: dict, *names):
    missing = [n for n in names if not params.get(n)]
    if missing:
        raise InvalidRequest(f"Parametri mancanti: {', '.join(missing)}")


# ------------------------------------------------------------
# Azioni
# ------------------------------------------------------------
def send_client_code(store: RecordStore, params: dict, now: datetime):
    return AccessCodeService(store).request_temporary_code(params.get("email"), now)


# Login completo: stato cliente + prenotazioni future. Qui un
# eventuale codice temporaneo viene marcato come usato.
def client_data_with_bookings(store: RecordStore, params: dict, now: datetime):
    access = AccessCodeService(store)
    identity = access.resolve_login(params.get("email"), _code(params), now)
    rules = EligibilityEngine(store)
    status = rules.client_status(identity.client, now)
    access.mark_session_established(identity, now)

    if not status["isPaid"] or status["certificateExpired"]:
        return {**status, "weeklyBookings": 0, "bookings": [], "totalBookings": 0}

    bookings = BookingOrchestrator(store, access, rules).list_upcoming(identity.email, now)
    return {**status, "bookings": bookings, "totalBookings": len(bookings)}


def get_available_slots(store: RecordStore, params: dict, now: datetime):
    return available_slots(store, now, params.get("targetDate"))


def book_slot(store: RecordStore, params: dict, now: datetime):
    _require(params, "email", "slotId")
    return BookingOrchestrator(store).book(
        params["email"], _code(params), params["slotId"], params.get("targetDate"), now
    )


def cancel_booking(store: RecordStore, params: dict, now: datetime):
    _require(params, "email", "bookingId")
    return BookingOrchestrator(store).cancel(params["bookingId"], params["email"], now)


def get_communications(store: RecordStore, params: dict, now: datetime):
    return active_communications(store, now.date())


def get_app_update_info(store: RecordStore, params: dict, now: datetime):
    return app_update_info(store)


def get_payment_link(store: RecordStore, params: dict, now: datetime):
    _require(params, "email")
    return payment_info(store, params["email"])


ACTIONS = {
    "sendClientCode": send_client_code,
    "getClientDataWithBookings": client_data_with_bookings,
    "getAvailableSlots": get_available_slots,
    "bookSlot": book_slot,
    "cancelBooking": cancel_booking,
    "getCommunications": get_communications,
    "getAppUpdateInfo": get_app_update_info,
    "getPaymentLink": get_payment_link,
}


def error_body(action: str, message: str) -> dict:
    if action == "getClientDataWithBookings":
        return {"found": False, "error": message}
    if action == "getPaymentLink":
        return {"success": False, "hasPayment": False, "message": message}
    if action == "getAppUpdateInfo":
        return {"success": False, "updateAvailable": False, "message": message}
    return {"success": False, "message": message}


# ------------------------------------------------------------
# GET /v1/exec - punto di ingresso unico
# ------------------------------------------------------------
@router.get("/v1/exec")
def handle_request(
    action: Optional[str] = None,
    email: Optional[str] = None,
    clientId: Optional[str] = None,
    code: Optional[str] = None,
    slotId: Optional[str] = None,
    targetDate: Optional[str] = None,
    bookingId: Optional[str] = None,
    store: RecordStore = Depends(get_store),
    now: datetime = Depends(get_now),
):
    if not action:
        return {
            "status": "ok",
            "message": "API Sistema Prenotazione attiva",
            "version": API_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    handler = ACTIONS.get(action)
    if handler is None:
        return {"error": f"Azione non valida: {action}"}

    params = {
        "email": (email or "").strip() or None,
        "clientId": clientId,
        "code": code,
        "slotId": slotId,
        "targetDate": targetDate,
        "bookingId": bookingId,
    }
    try:
        return handler(store, params, now)
    except GymError as e:
        logger.info("[api] %s rejected for %s: %s", action, params["email"], e.message)
        return error_body(action, e.message)
    except Exception:
        logger.exception("[api] %s failed", action)
        return error_body(action, InternalError.message)


@router.get("/health")
def health():
    return {"ok": True}
