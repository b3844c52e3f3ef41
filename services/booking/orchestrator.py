# ============================================================
# orchestrator.py - Operazioni che cambiano lo stato
# ------------------------------------------------------------
# BookingOrchestrator mette insieme identità, regole e store:
#   - book           : prenota dopo l'ok dell'EligibilityEngine
#   - cancel         : cancella con almeno 5 ore di preavviso
#   - list_upcoming  : prenotazioni da oggi in poi
#   - purge_stale    : pulizia periodica delle prenotazioni vecchie
#
# Il controllo di capienza e l'inserimento avvengono sotto un
# lock per (slot, data): due richieste contemporanee nello stesso
# processo non possono superare la capienza. Tra processi diversi
# il rischio resta (lo store non ha lock).
# ============================================================
import logging
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from threading import Lock
from typing import Optional

import audit
from access import AccessCodeService
from config import CANCEL_CUTOFF_HOURS, PURGE_RETENTION_WEEKS
from dates import (
    format_iso,
    format_short,
    next_occurrence,
    now_local,
    parse_date,
    specific_occurrence,
    start_instant,
    to_utc,
    week_start,
)
from eligibility import EligibilityEngine
from errors import Ineligible, InvalidRequest, NotFound
from models import Booking
from publisher import publish_quietly
from repository import BOOKINGS

logger = logging.getLogger(__name__)


class SlotLocks:
    def __init__(self):
        self._locks: dict[tuple, Lock] = {}
        self._guard = Lock()

    def get(self, slot_id: int, occurrence_date: date) -> Lock:
        with self._guard:
            return self._locks.setdefault((slot_id, occurrence_date), Lock())

    @contextmanager
    def hold(self, slot_id: int, occurrence_date: date):
        lock = self.get(slot_id, occurrence_date)
        with lock:
            yield

    # i lock delle date passate non servono più
    def forget_before(self, cutoff: date) -> None:
        with self._guard:
            for key in [k for k in self._locks if k[1] < cutoff]:
                del self._locks[key]


slot_locks = SlotLocks()


def booking_view(b: Booking, now: datetime) -> dict:
    when = format_short(b.occurrence_date)
    return {
        "id": b.booking_id,
        "email": b.email,
        "nome": b.first_name,
        "cognome": b.last_name,
        "idSpazio": b.slot_id,
        "giorno": b.weekday,
        "oraInizio": b.start_time,
        "oraFine": b.end_time,
        "dataPrenotazione": format_iso(b.occurrence_date),
        "dataFormatted": when,
        "slotDescription": f"{b.weekday} {b.start_time}-{b.end_time} ({when})",
        "isStarted": start_instant(b.occurrence_date, b.start_time) <= now,
    }


class BookingOrchestrator:
    def __init__(self, store, access: AccessCodeService = None, engine: EligibilityEngine = None,
                 locks: SlotLocks = None, publish=publish_quietly):
        self.store = store
        self.access = access or AccessCodeService(store)
        self.engine = engine or EligibilityEngine(store)
        self.locks = locks or slot_locks
        self.publish = publish

    # ------------------------------------------------------------
    # Prenotazione
    # ------------------------------------------------------------
    # Con targetDate si prenota il giorno dello slot nella settimana
    # di quella data, altrimenti la prossima occorrenza utile.
    # ------------------------------------------------------------
    def book(self, email: str, code: str, slot_id, target_date=None, now: datetime = None) -> dict:
        now = now or now_local()
        audit.record(self.store, email, audit.BOOKING, "INIZIO", f"Slot: {slot_id}", now)

        identity = self.access.resolve_login(email, code, now)
        client = identity.client

        slot = self.store.find_slot(slot_id)
        if slot is None:
            audit.record(self.store, email, audit.BOOKING, "SLOT_NON_TROVATO", f"Slot: {slot_id}", now)
            raise NotFound("Slot non trovato")

        if target_date:
            reference = parse_date(target_date)
            if reference is None:
                raise InvalidRequest("Data non valida")
            occurrence = specific_occurrence(slot.weekday, reference)
        else:
            occurrence = next_occurrence(slot.weekday, slot.start_time, now)

        with self.locks.hold(slot.slot_id, occurrence):
            # lettura fresca: un'altra richiesta può aver appena scritto
            self.store.invalidate(BOOKINGS)
            result = self.engine.evaluate(client, slot, occurrence, now)
            if not result.eligible:
                audit.record(self.store, email, audit.BOOKING, result.reason.name, result.message, now)
                raise Ineligible(result.message, reason=result.reason.value)

            booking = Booking(
                email=client.email,
                first_name=client.first_name,
                last_name=client.last_name,
                slot_id=slot.slot_id,
                weekday=slot.weekday,
                start_time=slot.start_time,
                end_time=slot.end_time,
                occurrence_date=occurrence,
                created_at=to_utc(now),
            )
            self.store.append_booking(booking)

        when = format_short(occurrence)
        message = f"Prenotazione completata: {slot.weekday} {slot.start_time}-{slot.end_time} ({when})"
        if result.weekly_limit is not None:
            remaining = max(result.weekly_limit - result.weekly_count - 1, 0)
            message += f". Prenotazioni rimaste questa settimana: {remaining}/{result.weekly_limit}"

        audit.record(self.store, email, audit.BOOKING, "COMPLETATA", f"{booking.booking_id} {occurrence}", now)
        self.publish("BookingCreated", {
            "bookingId": booking.booking_id,
            "email": client.email,
            "slotId": slot.slot_id,
            "date": format_iso(occurrence),
        })
        return {
            "success": True,
            "message": message,
            "bookingId": booking.booking_id,
            "dataPrenotazione": format_iso(occurrence),
        }

    # ------------------------------------------------------------
    # Cancellazione
    # ------------------------------------------------------------
    # Solo il proprietario, solo prima dell'inizio e con almeno
    # CANCEL_CUTOFF_HOURS di anticipo.
    # ------------------------------------------------------------
    def cancel(self, booking_id: str, email: str, now: datetime = None) -> dict:
        now = now or now_local()
        booking = self.store.find_booking(booking_id, email) if booking_id and email else None
        if booking is None:
            raise NotFound("Prenotazione non trovata")

        left = start_instant(booking.occurrence_date, booking.start_time) - now
        if left < timedelta(0):
            raise Ineligible("Non puoi cancellare prenotazioni passate", reason="past_booking")

        if left < timedelta(hours=CANCEL_CUTOFF_HOURS):
            seconds = int(left.total_seconds())
            hours, minutes = seconds // 3600, (seconds % 3600) // 60
            raise Ineligible(
                f"Devi cancellare almeno {CANCEL_CUTOFF_HOURS} ore prima. Mancano {hours}h {minutes}min.",
                reason="too_late_to_cancel",
            )

        self.store.delete_booking(booking.booking_id, email)
        audit.record(self.store, email, audit.CANCEL, "SUCCESSO", f"Booking: {booking.booking_id}", now)
        self.publish("BookingCancelled", {"bookingId": booking.booking_id, "email": booking.email})

        when = format_short(booking.occurrence_date)
        return {
            "success": True,
            "message": f"Prenotazione cancellata: {booking.weekday} {booking.start_time}-{booking.end_time} ({when})",
        }

    def list_upcoming(self, email: str, now: datetime = None) -> list[dict]:
        now = now or now_local()
        today = now.date()
        mine = [b for b in self.store.list_bookings(email=email) if b.occurrence_date >= today]
        mine.sort(key=lambda b: start_instant(b.occurrence_date, b.start_time))
        return [booking_view(b, now) for b in mine]

    def weekly_count(self, email: str, reference_date: Optional[date] = None) -> int:
        return self.engine.weekly_count(email, reference_date or now_local().date())

    # ------------------------------------------------------------
    # Pulizia: si tengono la settimana corrente, il futuro e le
    # ultime PURGE_RETENTION_WEEKS settimane.
    # ------------------------------------------------------------
    def purge_stale(self, now: datetime = None) -> dict:
        now = now or now_local()
        cutoff = week_start(now.date()) - timedelta(weeks=PURGE_RETENTION_WEEKS)
        deleted = self.store.delete_bookings_before(cutoff)
        kept = self.store.count_bookings()
        self.locks.forget_before(now.date())
        audit.record(self.store, "", audit.MAINTENANCE, "SUCCESSO", f"Eliminate: {deleted}, tenute: {kept}", now)
        return {"success": True, "message": "Pulizia completata", "deleted": deleted, "kept": kept}
