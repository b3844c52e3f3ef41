# ============================================================
# models.py - Modelli SQLModel (servizio Booking)
# ------------------------------------------------------------
# Le tabelle ricalcano i fogli originali, con le colonne nello
# stesso ordine:
#   1. Client         : anagrafica iscritti (gestita dalla reception)
#   2. Slot           : fasce orarie settimanali
#   3. Booking        : prenotazioni di una fascia in una data
#   4. TempCode       : codici di accesso temporanei
#   5. AuditLog       : traccia delle operazioni (login, codici, ...)
#   6. Communication  : comunicazioni mostrate nell'app
#   7. AppRelease     : ultima versione pubblicata dell'app
# ClientRecord è la vista tipizzata di Client, costruita una
# sola volta al confine dello store.
# ============================================================
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from uuid import uuid4

from sqlmodel import Field, SQLModel

from dates import utc_now


# ------------------------------------------------------------
# Client
# ------------------------------------------------------------
# Le date di scadenza restano testo grezzo come nel foglio: una
# cella può essere vuota o illeggibile, e va distinta da una data.
# ------------------------------------------------------------
class Client(SQLModel, table=True):
    __tablename__ = "clients"

    id: Optional[int] = Field(default=None, primary_key=True)
    client_id: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = Field(default="", index=True)
    certificate_expiry: Optional[str] = None
    subscription_expiry: Optional[str] = None
    payment_status: str = ""
    weekly_frequency_limit: Optional[str] = None
    asi_expiry: Optional[str] = None
    fiscal_code: str = ""
    payment_link: Optional[str] = None


class Slot(SQLModel, table=True):
    __tablename__ = "slots"

    slot_id: int = Field(primary_key=True)
    weekday: str
    start_time: str
    end_time: str
    closure_date: Optional[date] = None


# ------------------------------------------------------------
# Booking
# ------------------------------------------------------------
# Una prenotazione lega un cliente a una occorrenza concreta di
# uno slot (slot_id + occurrence_date). Nome e orari sono copiati
# dallo slot al momento della prenotazione.
# ------------------------------------------------------------
class Booking(SQLModel, table=True):
    __tablename__ = "bookings"

    booking_id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    email: str = Field(index=True)
    first_name: str = ""
    last_name: str = ""
    slot_id: int = Field(index=True)
    weekday: str
    start_time: str
    end_time: str
    occurrence_date: date = Field(index=True)
    created_at: datetime = Field(default_factory=utc_now)


class TempCode(SQLModel, table=True):
    __tablename__ = "temp_codes"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True)
    original_code: str
    temp_code: str
    created_at: datetime
    expires_at: datetime
    used: bool = False


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=utc_now, index=True)
    email: str = Field(default="", index=True)
    action: str = Field(index=True)
    outcome: str = ""
    details: str = ""


class Communication(SQLModel, table=True):
    __tablename__ = "communications"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    message: str
    kind: str = "info"          # info | warning | important
    active: bool = True
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class AppRelease(SQLModel, table=True):
    __tablename__ = "app_releases"

    id: Optional[int] = Field(default=None, primary_key=True)
    version: str
    expo_link: Optional[str] = None
    message: Optional[str] = None
    mandatory: bool = False
    active: bool = True


# ------------------------------------------------------------
# ClientRecord
# ------------------------------------------------------------
# *_invalid è True quando la cella c'era ma non era una data.
# ------------------------------------------------------------
@dataclass
class ClientRecord:
    client_id: str
    first_name: str
    last_name: str
    email: str
    certificate_expiry: Optional[date]
    certificate_invalid: bool
    subscription_expiry: Optional[date]
    subscription_invalid: bool
    asi_expiry: Optional[date]
    asi_invalid: bool
    payment_status: str
    weekly_frequency_limit: str
    fiscal_code: str
    payment_link: Optional[str]

    @property
    def is_paid(self) -> bool:
        return self.payment_status.strip().lower() == "pagato"

    @property
    def weekly_limit(self) -> Optional[int]:
        # None = nessun limite ("Open", cella vuota o senza cifre iniziali).
        # Il foglio contiene anche "2.0" o "2 volte": conta l'intero iniziale.
        raw = self.weekly_frequency_limit.strip()
        if not raw or raw.lower() == "open":
            return None
        m = re.match(r"\s*(\d+)", raw)
        return int(m.group(1)) if m else None
