# ============================================================
# dates.py - Regole sulle date (DateRules)
# ------------------------------------------------------------
# Funzioni pure su date e nomi dei giorni (Domenica=0 … Sabato=6):
#   - prossima occorrenza / occorrenza in una settimana precisa
#   - numero di settimana ISO (bucket della quota settimanale)
#   - regole di cutoff per la prenotazione
#   - formattazione e parsing delle date in formato italiano
# "Adesso" è sempre l'ora locale della palestra, senza tzinfo;
# nel database invece si salvano istanti UTC con tzinfo.
# ============================================================
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from config import (
    BOOKING_CUTOFF_MINUTES,
    EARLY_SLOT_MIN_HOUR,
    EVENING_CUTOFF_HOUR,
    FIRST_SLOT_HOUR,
    LAST_SLOT_HOUR,
    LOCAL_TZ,
)

WEEKDAYS = ["Domenica", "Lunedì", "Martedì", "Mercoledì", "Giovedì", "Venerdì", "Sabato"]
SHORT_DAYS = ["Dom", "Lun", "Mar", "Mer", "Gio", "Ven", "Sab"]
SHORT_MONTHS = ["Gen", "Feb", "Mar", "Apr", "Mag", "Giu", "Lug", "Ago", "Set", "Ott", "Nov", "Dic"]

# accetta anche i nomi scritti senza accento ("Lunedi")
_DAY_INDEX = {name.lower(): i for i, name in enumerate(WEEKDAYS)}
_DAY_INDEX.update({name.lower().replace("ì", "i"): i for i, name in enumerate(WEEKDAYS)})

_DMY = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")


def now_local() -> datetime:
    return datetime.now(LOCAL_TZ).replace(tzinfo=None)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ------------------------------------------------------------
# Conversioni per lo storage
# ------------------------------------------------------------
# Un datetime senza tzinfo passato alle regole è ora locale;
# si normalizza in UTC prima di salvarlo o confrontarlo con il DB.
# ------------------------------------------------------------
def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=LOCAL_TZ)
    return value.astimezone(timezone.utc)


# Valore letto dal DB: se è naïf (SQLite) si suppone UTC
def stored_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_local(value: datetime) -> datetime:
    return stored_utc(value).astimezone(LOCAL_TZ).replace(tzinfo=None)


def weekday_index(name: str) -> int:
    try:
        return _DAY_INDEX[str(name).strip().lower()]
    except KeyError:
        raise ValueError(f"unknown weekday: {name!r}")


def day_of_week(d: date) -> int:
    # Python: lunedì=0; qui domenica=0
    return (d.weekday() + 1) % 7


def parse_time(value) -> time:
    if isinstance(value, datetime):
        return value.time().replace(second=0, microsecond=0)
    if isinstance(value, time):
        return value
    parts = str(value).strip().split(":")
    hour = int(parts[0])
    minute = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    return time(hour, minute)


def start_instant(occurrence_date: date, start_time) -> datetime:
    return datetime.combine(occurrence_date, parse_time(start_time))


def week_number(d: date) -> int:
    return d.isocalendar()[1]


def iso_week(d: date) -> tuple:
    iso = d.isocalendar()
    return iso[0], iso[1]


def week_start(d: date) -> date:
    # lunedì della settimana che contiene d
    return d - timedelta(days=d.weekday())


# ------------------------------------------------------------
# Occorrenze di uno slot settimanale
# ------------------------------------------------------------
# next_occurrence: la data più vicina (oggi compreso) con quel
# giorno; se è oggi ma mancano meno di BOOKING_CUTOFF_MINUTES
# all'inizio, si passa alla settimana successiva.
# ------------------------------------------------------------
def next_occurrence(weekday: str, start_time, now: Optional[datetime] = None) -> date:
    now = now or now_local()
    today = now.date()
    diff = (weekday_index(weekday) - day_of_week(today)) % 7
    if diff == 0:
        lead = start_instant(today, start_time) - now
        if lead < timedelta(minutes=BOOKING_CUTOFF_MINUTES):
            diff = 7
    return today + timedelta(days=diff)


# L'occorrenza del giorno richiesto dentro la settimana (lun-dom)
# che contiene reference_date: usata quando il cliente sceglie una data.
def specific_occurrence(weekday: str, reference_date: date) -> date:
    offset = (weekday_index(weekday) - 1) % 7
    return week_start(reference_date) + timedelta(days=offset)


def is_offerable(start_time) -> bool:
    return FIRST_SLOT_HOUR <= parse_time(start_time).hour < LAST_SLOT_HOUR


# ------------------------------------------------------------
# Cutoff di prenotazione
# ------------------------------------------------------------
# Restituisce il motivo del rifiuto, oppure None se lo slot
# è ancora prenotabile per quella data. Il confronto sul giorno
# è solo per data; quello sul preavviso è per istante.
# ------------------------------------------------------------
def booking_cutoff_violation(start_time, occurrence_date: date, now: Optional[datetime] = None) -> Optional[str]:
    now = now or now_local()
    start = parse_time(start_time)
    today = now.date()

    if not is_offerable(start):
        return "Slot non in orario prenotabile"

    if occurrence_date < today:
        return "Non puoi prenotare un giorno passato"

    if occurrence_date == today:
        lead = datetime.combine(occurrence_date, start) - now
        if lead < timedelta(minutes=BOOKING_CUTOFF_MINUTES):
            return f"Devi prenotare almeno {BOOKING_CUTOFF_MINUTES // 60} ore prima"

    # niente prenotazioni serali per i primi slot del mattino dopo
    if now.hour >= EVENING_CUTOFF_HOUR and occurrence_date == today + timedelta(days=1):
        if start.hour < EARLY_SLOT_MIN_HOUR:
            return (
                f"Dopo le {EVENING_CUTOFF_HOUR}:00 puoi prenotare solo "
                f"slot dalle {EARLY_SLOT_MIN_HOUR}:00 in poi"
            )

    return None


# ------------------------------------------------------------
# Formattazione e parsing
# ------------------------------------------------------------
def format_short(d: Optional[date]) -> str:
    if not d:
        return ""
    return f"{SHORT_DAYS[day_of_week(d)]} {d.day} {SHORT_MONTHS[d.month - 1]}"


def format_iso(d: Optional[date]) -> str:
    return d.strftime("%Y-%m-%d") if d else ""


def format_date(d: Optional[date]) -> str:
    return d.strftime("%d/%m/%Y") if d else ""


def parse_date(value) -> Optional[date]:
    """Accept DD/MM/YYYY, ISO dates/datetimes or date objects; None if unusable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None

    try:
        m = _DMY.match(text)
        if m:
            day, month, year = (int(g) for g in m.groups())
            return date(year, month, day)
        m = _ISO.match(text)
        if m:
            year, month, day = (int(g) for g in m.groups())
            return date(year, month, day)
    except ValueError:
        return None
    return None
