from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import models  # noqa: F401
from access import AccessCodeService
from models import Booking, Client, Slot
from orchestrator import BookingOrchestrator, SlotLocks
from ratelimit import SlidingWindowLimiter
from repository import RecordStore

# lunedì mattina
NOW = datetime(2025, 1, 6, 10, 0)

CLIENTS = [
    dict(client_id="ABC123", first_name="Mario", last_name="Rossi", email="mario.rossi@example.com",
         certificate_expiry="31/12/2025", subscription_expiry="2025-06-30", payment_status="Pagato",
         weekly_frequency_limit="2", asi_expiry="31/12/2025", fiscal_code="RSSMRA80A01G702X"),
    dict(client_id="OPEN01", first_name="Giulia", last_name="Bianchi", email="giulia@example.com",
         certificate_expiry="15/03/2025", subscription_expiry="", payment_status="pagato",
         weekly_frequency_limit="Open", payment_link="https://pay.example.com/giulia"),
    dict(client_id="CERT01", first_name="Luca", last_name="Verdi", email="luca@example.com",
         certificate_expiry="01/01/2025", payment_status="Pagato", weekly_frequency_limit="3"),
    dict(client_id="NOPAY1", first_name="Anna", last_name="Neri", email="anna@example.com",
         certificate_expiry="31/12/2025", payment_status="Da pagare", weekly_frequency_limit="2"),
    dict(client_id="SUB001", first_name="Sara", last_name="Blu", email="sara@example.com",
         certificate_expiry="31/12/2025", subscription_expiry="31/12/2024", payment_status="Pagato",
         weekly_frequency_limit="2"),
    dict(client_id="", first_name="Paolo", last_name="Gialli", email="paolo@example.com",
         certificate_expiry="31/12/2025", payment_status="Pagato"),
]

SLOTS = [
    dict(slot_id=1, weekday="Lunedì", start_time="18:00", end_time="19:00"),
    dict(slot_id=2, weekday="Martedì", start_time="07:00", end_time="08:00"),
    dict(slot_id=3, weekday="Mercoledì", start_time="06:00", end_time="07:00"),
    dict(slot_id=4, weekday="Lunedì", start_time="11:00", end_time="12:00"),
    dict(slot_id=5, weekday="Giovedì", start_time="09:00", end_time="10:00", closure_date=date(2025, 1, 9)),
    dict(slot_id=6, weekday="Venerdì", start_time="21:00", end_time="22:00"),
    dict(slot_id=7, weekday="Domenica", start_time="10:00", end_time="11:00"),
]


def seed(engine, extra=()):
    SQLModel.metadata.create_all(engine)
    with Session(engine) as s:
        s.add_all([Client(**c) for c in CLIENTS])
        s.add_all([Slot(**sl) for sl in SLOTS])
        s.add_all(list(extra))
        s.commit()


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    seed(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine, expire_on_commit=False) as s:
        yield s


@pytest.fixture
def store(session):
    return RecordStore(session)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def limiter():
    return SlidingWindowLimiter(30, timedelta(minutes=60))


@pytest.fixture
def sent():
    return []


@pytest.fixture
def access(store, limiter, sent):
    return AccessCodeService(store, limiter=limiter, send_code=lambda client, email, code: sent.append((email, code)))


@pytest.fixture
def events():
    return []


@pytest.fixture
def orchestrator(store, access, events):
    return BookingOrchestrator(store, access, locks=SlotLocks(), publish=lambda t, p: events.append((t, p)))


@pytest.fixture
def add_booking(store):
    def add(email, slot_id, day):
        slot = store.find_slot(slot_id)
        return store.append_booking(Booking(
            email=email,
            slot_id=slot.slot_id,
            weekday=slot.weekday,
            start_time=slot.start_time,
            end_time=slot.end_time,
            occurrence_date=day,
        ))

    return add


@pytest.fixture
def fill_slot(add_booking):
    def fill(slot_id, day, n=8):
        for i in range(n):
            add_booking(f"other{i}@example.com", slot_id, day)

    return fill
