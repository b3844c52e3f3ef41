# ============================================================
# availability.py - Slot disponibili con occupazione
# ------------------------------------------------------------
# Per ogni slot calcola l'occorrenza (prossima o nella settimana
# della data scelta), quanti posti sono presi e se si può ancora
# prenotare. La descrizione mostra l'occupazione "n/8".
# ============================================================
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from config import SLOT_CAPACITY
from dates import (
    booking_cutoff_violation,
    format_short,
    next_occurrence,
    now_local,
    parse_date,
    specific_occurrence,
)
from errors import InvalidRequest
from models import Slot

logger = logging.getLogger(__name__)

FULL = "COMPLETO"
CLOSED = "CHIUSO"
OPEN = "disponibile"


@dataclass
class SlotAvailability:
    slot: Slot
    occurrence_date: date
    count: int
    closed: bool
    blocked_reason: Optional[str]
    capacity: int = SLOT_CAPACITY

    @property
    def full(self) -> bool:
        return self.count >= self.capacity

    @property
    def bookable(self) -> bool:
        return not (self.full or self.closed or self.blocked_reason)

    @property
    def status(self) -> str:
        if self.full:
            return FULL
        if self.closed:
            return CLOSED
        return OPEN

    @property
    def description(self) -> str:
        s = self.slot
        return (
            f"{s.weekday} {s.start_time}-{s.end_time} "
            f"({self.count}/{self.capacity} - {self.status} - {format_short(self.occurrence_date)})"
        )

    def as_dict(self) -> dict:
        return {
            "ID_Spazio": self.slot.slot_id,
            "Giorno": self.slot.weekday,
            "Ora_Inizio": self.slot.start_time,
            "Ora_Fine": self.slot.end_time,
            "Descrizione": self.description,
        }


def describe_slots(store, now: datetime = None, target_date=None, capacity: int = SLOT_CAPACITY) -> list:
    now = now or now_local()
    reference = None
    if target_date:
        reference = parse_date(target_date)
        if reference is None:
            raise InvalidRequest("Data non valida")

    result = []
    for slot in store.list_slots():
        try:
            if reference:
                occurrence = specific_occurrence(slot.weekday, reference)
            else:
                occurrence = next_occurrence(slot.weekday, slot.start_time, now)
        except ValueError:
            logger.warning("[slots] slot %s has an invalid weekday %r", slot.slot_id, slot.weekday)
            continue

        count = len(store.list_bookings(slot_id=slot.slot_id, occurrence_date=occurrence))
        result.append(SlotAvailability(
            slot=slot,
            occurrence_date=occurrence,
            count=count,
            closed=slot.closure_date == occurrence,
            blocked_reason=booking_cutoff_violation(slot.start_time, occurrence, now),
            capacity=capacity,
        ))
    return result


def available_slots(store, now: datetime = None, target_date=None) -> list[dict]:
    return [a.as_dict() for a in describe_slots(store, now, target_date) if a.bookable]
