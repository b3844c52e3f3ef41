# ============================================================
# eligibility.py - Regole di prenotabilità (EligibilityEngine)
# ------------------------------------------------------------
# Decide se un cliente può prenotare uno slot in una data.
# I controlli sono in ordine e si ferma al primo che fallisce:
#   1. cliente inesistente          6. slot chiuso quella data
#   2. codice non valido            7. cutoff orario (DateRules)
#   3. abbonamento non pagato       8. limite settimanale
#   4. abbonamento scaduto          9. prenotazione doppia
#   5. certificato medico          10. slot completo
# Prima i controlli sul cliente, per ultimi quelli che scorrono
# la tabella delle prenotazioni.
# ============================================================
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional

from config import SLOT_CAPACITY
from dates import booking_cutoff_violation, format_date, format_short, iso_week, now_local
from models import ClientRecord, Slot


class Rejection(str, Enum):
    CLIENT_NOT_FOUND = "client_not_found"
    INVALID_CODE = "invalid_code"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    CERTIFICATE_EXPIRED = "certificate_expired"
    SLOT_CLOSED = "slot_closed"
    TOO_CLOSE_TO_START = "too_close_to_start"
    WEEKLY_LIMIT_REACHED = "weekly_limit_reached"
    ALREADY_BOOKED = "already_booked"
    SLOT_FULL = "slot_full"


@dataclass
class Eligibility:
    eligible: bool
    reason: Optional[Rejection] = None
    message: str = ""
    weekly_count: int = 0
    weekly_limit: Optional[int] = None

    @classmethod
    def reject(cls, reason: Rejection, message: str, **kwargs) -> "Eligibility":
        return cls(False, reason, message, **kwargs)


# (scaduto, testo da mostrare) per una data di scadenza
def expiry_status(expiry: Optional[date], invalid: bool, today: date, missing_is_expired: bool = True):
    if invalid:
        return True, "Data non valida"
    if expiry is None:
        return missing_is_expired, "Non presente"
    return expiry < today, format_date(expiry)


class EligibilityEngine:
    def __init__(self, store, capacity: int = SLOT_CAPACITY):
        self.store = store
        self.capacity = capacity

    def weekly_count(self, email: str, reference_date: date) -> int:
        week = iso_week(reference_date)
        return sum(1 for b in self.store.list_bookings(email=email) if iso_week(b.occurrence_date) == week)

    def occupancy(self, slot_id: int, occurrence_date: date) -> int:
        return len(self.store.list_bookings(slot_id=slot_id, occurrence_date=occurrence_date))

    def evaluate(self, client: Optional[ClientRecord], slot: Slot, occurrence_date: date,
                 now: Optional[datetime] = None, code_valid: bool = True) -> Eligibility:
        now = now or now_local()
        today = now.date()
        when = format_short(occurrence_date)

        if client is None:
            return Eligibility.reject(Rejection.CLIENT_NOT_FOUND, "Email non trovata nel sistema")

        if not code_valid:
            return Eligibility.reject(Rejection.INVALID_CODE, "Codice non corretto o scaduto")

        if not client.is_paid:
            return Eligibility.reject(
                Rejection.SUBSCRIPTION_INACTIVE,
                "Non puoi prenotare: abbonamento non pagato. Contatta la reception.",
            )

        if client.subscription_expiry and client.subscription_expiry < today:
            return Eligibility.reject(
                Rejection.SUBSCRIPTION_EXPIRED,
                f"Abbonamento scaduto il {format_date(client.subscription_expiry)}",
            )

        cert_expired, cert_text = expiry_status(client.certificate_expiry, client.certificate_invalid, today)
        if cert_expired:
            if client.certificate_expiry:
                message = f"Certificato medico scaduto il {cert_text}"
            else:
                message = f"Certificato medico scaduto o non valido ({cert_text})"
            return Eligibility.reject(Rejection.CERTIFICATE_EXPIRED, message)

        if slot.closure_date and slot.closure_date == occurrence_date:
            return Eligibility.reject(Rejection.SLOT_CLOSED, f"Slot chiuso per {when}")

        violation = booking_cutoff_violation(slot.start_time, occurrence_date, now)
        if violation:
            return Eligibility.reject(Rejection.TOO_CLOSE_TO_START, violation)

        limit = client.weekly_limit
        count = self.weekly_count(client.email, occurrence_date)
        if limit is not None and count >= limit:
            return Eligibility.reject(
                Rejection.WEEKLY_LIMIT_REACHED,
                f"Limite settimanale raggiunto: {count}/{limit} prenotazioni",
                weekly_count=count, weekly_limit=limit,
            )

        own = self.store.list_bookings(email=client.email, slot_id=slot.slot_id, occurrence_date=occurrence_date)
        if own:
            return Eligibility.reject(
                Rejection.ALREADY_BOOKED,
                f"Hai già prenotato questo slot per {when}. "
                "Non puoi prenotare lo stesso orario due volte nella stessa data.",
                weekly_count=count, weekly_limit=limit,
            )

        taken = self.occupancy(slot.slot_id, occurrence_date)
        if taken >= self.capacity:
            return Eligibility.reject(
                Rejection.SLOT_FULL,
                f"Slot completo per {when}. Riprova con un altro orario.",
                weekly_count=count, weekly_limit=limit,
            )

        return Eligibility(True, weekly_count=count, weekly_limit=limit)

    # ------------------------------------------------------------
    # Stato del cliente mostrato nella home dell'app
    # ------------------------------------------------------------
    def client_status(self, client: ClientRecord, now: Optional[datetime] = None) -> dict:
        now = now or now_local()
        today = now.date()
        cert_expired, cert_text = expiry_status(client.certificate_expiry, client.certificate_invalid, today)
        sub_expired, sub_text = expiry_status(
            client.subscription_expiry, client.subscription_invalid, today, missing_is_expired=False
        )
        asi_expired, asi_text = expiry_status(client.asi_expiry, client.asi_invalid, today)
        # l'abbonamento illeggibile non blocca la prenotazione
        sub_expired = bool(client.subscription_expiry and client.subscription_expiry < today)

        active = client.is_paid and not cert_expired
        return {
            "found": True,
            "clientId": client.client_id,
            "nome": client.first_name,
            "cognome": client.last_name,
            "email": client.email,
            "codiceFiscale": client.fiscal_code,
            "paymentStatus": client.payment_status,
            "isPaid": client.is_paid,
            "certificateExpired": cert_expired,
            "certificateExpiryString": cert_text,
            "abbonamentoExpired": sub_expired,
            "abbonamentoExpiryString": sub_text,
            "asiExpired": asi_expired,
            "asiExpiryString": asi_text,
            "frequenza": client.weekly_frequency_limit,
            "weeklyBookings": self.weekly_count(client.email, today) if active else 0,
        }
