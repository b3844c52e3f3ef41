# ============================================================
# repository.py - Accesso ai dati (RecordStore)
# ------------------------------------------------------------
# Design pattern "Repository" sulle tabelle del servizio.
# Le tabelle piccole (clienti, slot, prenotazioni, codici) si
# leggono per intero e si filtrano in memoria, con una cache di
# pochi secondi iniettata dall'esterno. Ogni scrittura fa commit
# e invalida subito la tabella toccata.
# Gli errori operativi del database vengono ritentati; dopo
# l'ultimo tentativo si solleva TransientError.
# ============================================================
import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from cache import TableCache
from dates import parse_date, stored_utc, to_local, to_utc
from models import (
    AppRelease,
    AuditLog,
    Booking,
    Client,
    ClientRecord,
    Communication,
    Slot,
    TempCode,
)
from retry import with_retries

logger = logging.getLogger(__name__)

CLIENTS = "clients"
SLOTS = "slots"
BOOKINGS = "bookings"
TEMP_CODES = "temp_codes"

_TABLES = {CLIENTS: Client, SLOTS: Slot, BOOKINGS: Booking, TEMP_CODES: TempCode}


def _same_email(a: Optional[str], b: Optional[str]) -> bool:
    return (a or "").strip().lower() == (b or "").strip().lower()


def _date_cell(raw: Optional[str]):
    # (data, illeggibile): una cella vuota non è "illeggibile"
    if raw is None or not str(raw).strip():
        return None, False
    parsed = parse_date(raw)
    return parsed, parsed is None


def to_client_record(row: Client) -> ClientRecord:
    cert, cert_invalid = _date_cell(row.certificate_expiry)
    sub, sub_invalid = _date_cell(row.subscription_expiry)
    asi, asi_invalid = _date_cell(row.asi_expiry)
    return ClientRecord(
        client_id=(row.client_id or "").strip(),
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        email=(row.email or "").strip(),
        certificate_expiry=cert,
        certificate_invalid=cert_invalid,
        subscription_expiry=sub,
        subscription_invalid=sub_invalid,
        asi_expiry=asi,
        asi_invalid=asi_invalid,
        payment_status=(row.payment_status or "").strip(),
        weekly_frequency_limit=(row.weekly_frequency_limit or "").strip() or "Open",
        fiscal_code=row.fiscal_code or "",
        payment_link=row.payment_link or None,
    )


class RecordStore:
    def __init__(self, session: Session, cache: Optional[TableCache] = None):
        self.session = session
        self.cache = cache or TableCache()

    # ------------------------------------------------------------
    # Primitive di lettura/scrittura con retry
    # ------------------------------------------------------------
    def _rollback(self, _error):
        self.session.rollback()

    def _read(self, statement, label: str):
        return with_retries(
            lambda: list(self.session.exec(statement).all()),
            retry_on=(OperationalError,),
            on_error=self._rollback,
            label=f"read {label}",
        )

    # apply() rifà le modifiche sulla sessione: dopo un rollback
    # le modifiche pendenti sono perse e vanno riapplicate.
    def _write(self, apply, label: str, table: Optional[str] = None):
        def attempt():
            apply()
            self.session.commit()

        with_retries(
            attempt,
            retry_on=(OperationalError,),
            on_error=self._rollback,
            label=f"write {label}",
        )
        if table:
            self.invalidate(table)

    def _table(self, table: str) -> list:
        rows = self.cache.get(table)
        if rows is None:
            rows = self._read(select(_TABLES[table]), table)
            self.cache.put(table, rows)
        return rows

    def invalidate(self, table: str) -> None:
        self.cache.invalidate(table)

    # ------------------------------------------------------------
    # Clienti e slot (sola lettura)
    # ------------------------------------------------------------
    def find_client_by_email(self, email: str) -> Optional[ClientRecord]:
        for row in self._table(CLIENTS):
            if row.email and _same_email(row.email, email):
                return to_client_record(row)
        return None

    def list_slots(self) -> list[Slot]:
        return sorted(self._table(SLOTS), key=lambda s: s.slot_id)

    def find_slot(self, slot_id) -> Optional[Slot]:
        try:
            wanted = int(str(slot_id).strip())
        except (TypeError, ValueError):
            return None
        for slot in self._table(SLOTS):
            if slot.slot_id == wanted:
                return slot
        return None

    # ------------------------------------------------------------
    # Prenotazioni
    # ------------------------------------------------------------
    def list_bookings(self, email: Optional[str] = None, slot_id: Optional[int] = None,
                      occurrence_date: Optional[date] = None) -> list[Booking]:
        rows = self._table(BOOKINGS)
        if email is not None:
            rows = [b for b in rows if _same_email(b.email, email)]
        if slot_id is not None:
            rows = [b for b in rows if b.slot_id == slot_id]
        if occurrence_date is not None:
            rows = [b for b in rows if b.occurrence_date == occurrence_date]
        return rows

    def find_booking(self, booking_id: str, email: Optional[str] = None) -> Optional[Booking]:
        for b in self._table(BOOKINGS):
            if b.booking_id == booking_id and (email is None or _same_email(b.email, email)):
                return b
        return None

    def append_booking(self, booking: Booking) -> Booking:
        self._write(lambda: self.session.add(booking), "booking", BOOKINGS)
        return booking

    def delete_booking(self, booking_id: str, email: Optional[str] = None) -> bool:
        booking = self.find_booking(booking_id, email)
        if booking is None:
            return False
        self._write(lambda: self.session.delete(booking), "booking delete", BOOKINGS)
        return True

    def _delete_all(self, rows: list, label: str, table: str) -> int:
        def apply():
            for row in rows:
                self.session.delete(row)

        if rows:
            self._write(apply, label, table)
        return len(rows)

    def delete_bookings_before(self, cutoff: date) -> int:
        stale = [b for b in self._table(BOOKINGS) if b.occurrence_date < cutoff]
        return self._delete_all(stale, "booking purge", BOOKINGS)

    def count_bookings(self) -> int:
        return len(self._table(BOOKINGS))

    # ------------------------------------------------------------
    # Codici temporanei
    # ------------------------------------------------------------
    def list_temp_codes(self, email: Optional[str] = None) -> list[TempCode]:
        rows = self._table(TEMP_CODES)
        if email is not None:
            rows = [t for t in rows if _same_email(t.email, email)]
        return rows

    def append_temp_code(self, temp: TempCode) -> TempCode:
        self._write(lambda: self.session.add(temp), "temp code", TEMP_CODES)
        return temp

    def mark_temp_code_used(self, email: str, temp_code: str) -> bool:
        wanted = temp_code.strip().upper()
        for t in self.list_temp_codes(email):
            if t.temp_code == wanted:
                def apply(row=t):
                    row.used = True
                    self.session.add(row)

                self._write(apply, "temp code used", TEMP_CODES)
                return True
        return False

    def delete_expired_temp_codes(self, now: datetime) -> int:
        cutoff = to_utc(now)
        expired = [t for t in self._table(TEMP_CODES) if stored_utc(t.expires_at) <= cutoff]
        return self._delete_all(expired, "temp code cleanup", TEMP_CODES)

    # ------------------------------------------------------------
    # Audit log (query indicizzate, mai scansione completa)
    # ------------------------------------------------------------
    def append_audit(self, entry: AuditLog) -> None:
        self._write(lambda: self.session.add(entry), "audit")

    def audit_timestamps(self, email: str, action: str, since: datetime) -> list[datetime]:
        statement = (
            select(AuditLog.timestamp)
            .where(AuditLog.email == email.strip().lower())
            .where(AuditLog.action == action)
            .where(AuditLog.timestamp > to_utc(since))
            .order_by(AuditLog.timestamp)
        )
        # gli istanti tornano in ora locale, come il "now" del chiamante
        return [to_local(t) for t in self._read(statement, "audit")]

    # ------------------------------------------------------------
    # Contenuti per l'app
    # ------------------------------------------------------------
    def list_communications(self) -> list[Communication]:
        return self._read(select(Communication).order_by(Communication.id), "communications")

    def latest_release(self) -> Optional[AppRelease]:
        statement = select(AppRelease).where(AppRelease.active == True).order_by(AppRelease.id.desc())  # noqa: E712
        rows = self._read(statement.limit(1), "releases")
        return rows[0] if rows else None
