from dataclasses import replace
from datetime import date

import pytest

from eligibility import EligibilityEngine, Rejection, expiry_status

MONDAY = date(2025, 1, 6)


@pytest.fixture
def engine(store):
    return EligibilityEngine(store)


@pytest.fixture
def client(store):
    def get(email="mario.rossi@example.com"):
        return store.find_client_by_email(email)

    return get


def test_eligible_client(engine, store, client, now):
    result = engine.evaluate(client(), store.find_slot(1), MONDAY, now)
    assert result.eligible
    assert result.reason is None
    assert result.weekly_count == 0
    assert result.weekly_limit == 2


def test_missing_client(engine, store, now):
    result = engine.evaluate(None, store.find_slot(1), MONDAY, now)
    assert result.reason is Rejection.CLIENT_NOT_FOUND


def test_invalid_code(engine, store, client, now):
    result = engine.evaluate(client(), store.find_slot(1), MONDAY, now, code_valid=False)
    assert result.reason is Rejection.INVALID_CODE


def test_unpaid_subscription(engine, store, client, now):
    result = engine.evaluate(client("anna@example.com"), store.find_slot(1), MONDAY, now)
    assert result.reason is Rejection.SUBSCRIPTION_INACTIVE


def test_expired_subscription(engine, store, client, now):
    result = engine.evaluate(client("sara@example.com"), store.find_slot(1), MONDAY, now)
    assert result.reason is Rejection.SUBSCRIPTION_EXPIRED
    assert "31/12/2024" in result.message


def test_unreadable_subscription_does_not_block(engine, store, client, now):
    c = replace(client(), subscription_expiry=None, subscription_invalid=True)
    assert engine.evaluate(c, store.find_slot(1), MONDAY, now).eligible


def test_expired_certificate(engine, store, client, now):
    result = engine.evaluate(client("luca@example.com"), store.find_slot(1), MONDAY, now)
    assert result.reason is Rejection.CERTIFICATE_EXPIRED
    assert "Certificato medico scaduto" in result.message
    assert "01/01/2025" in result.message


@pytest.mark.parametrize("changes,text", [
    ({"certificate_expiry": None}, "Non presente"),
    ({"certificate_expiry": None, "certificate_invalid": True}, "Data non valida"),
])
def test_missing_or_unreadable_certificate(engine, store, client, now, changes, text):
    result = engine.evaluate(replace(client(), **changes), store.find_slot(1), MONDAY, now)
    assert result.reason is Rejection.CERTIFICATE_EXPIRED
    assert "Certificato medico scaduto" in result.message
    assert text in result.message


def test_certificate_expiring_today_is_valid(engine, store, client, now):
    c = replace(client(), certificate_expiry=MONDAY)
    assert engine.evaluate(c, store.find_slot(1), MONDAY, now).eligible


def test_closed_slot(engine, store, client, now):
    result = engine.evaluate(client(), store.find_slot(5), date(2025, 1, 9), now)
    assert result.reason is Rejection.SLOT_CLOSED
    # la settimana dopo lo slot è aperto
    assert engine.evaluate(client(), store.find_slot(5), date(2025, 1, 16), now).eligible


def test_too_close_to_start(engine, store, client, now):
    result = engine.evaluate(client(), store.find_slot(4), MONDAY, now)
    assert result.reason is Rejection.TOO_CLOSE_TO_START
    assert result.message == "Devi prenotare almeno 2 ore prima"


def test_weekly_limit(engine, store, client, add_booking, now):
    add_booking("mario.rossi@example.com", 2, date(2025, 1, 7))
    add_booking("mario.rossi@example.com", 3, date(2025, 1, 8))

    result = engine.evaluate(client(), store.find_slot(1), MONDAY, now)
    assert result.reason is Rejection.WEEKLY_LIMIT_REACHED
    assert result.message == "Limite settimanale raggiunto: 2/2 prenotazioni"
    # settimana successiva: quota libera
    assert engine.evaluate(client(), store.find_slot(1), date(2025, 1, 13), now).eligible


def test_weekly_count_uses_monday_to_sunday(engine, add_booking):
    add_booking("mario.rossi@example.com", 7, date(2025, 1, 12))
    assert engine.weekly_count("mario.rossi@example.com", MONDAY) == 1
    assert engine.weekly_count("Mario.Rossi@example.com", date(2025, 1, 13)) == 0
    assert engine.weekly_count("mario.rossi@example.com", date(2025, 1, 5)) == 0


def test_open_frequency_is_unlimited(engine, store, client, add_booking, now):
    for day in (date(2025, 1, 7), date(2025, 1, 8), date(2025, 1, 9), date(2025, 1, 10)):
        add_booking("giulia@example.com", 2, day)
    result = engine.evaluate(client("giulia@example.com"), store.find_slot(1), MONDAY, now)
    assert result.eligible
    assert result.weekly_limit is None
    assert result.weekly_count == 4


def test_already_booked(engine, store, client, add_booking, now):
    add_booking("mario.rossi@example.com", 1, MONDAY)
    result = engine.evaluate(client(), store.find_slot(1), MONDAY, now)
    assert result.reason is Rejection.ALREADY_BOOKED


def test_full_slot(engine, store, client, fill_slot, now):
    fill_slot(1, MONDAY, n=7)
    assert engine.evaluate(client(), store.find_slot(1), MONDAY, now).eligible
    fill_slot(1, MONDAY, n=1)
    result = engine.evaluate(client(), store.find_slot(1), MONDAY, now)
    assert result.reason is Rejection.SLOT_FULL
    assert engine.occupancy(1, MONDAY) == 8


def test_client_checks_come_first(engine, store, client, fill_slot, now):
    fill_slot(5, date(2025, 1, 9))
    result = engine.evaluate(client("luca@example.com"), store.find_slot(5), date(2025, 1, 9), now)
    assert result.reason is Rejection.CERTIFICATE_EXPIRED


def test_expiry_status():
    today = date(2025, 1, 6)
    assert expiry_status(date(2025, 1, 5), False, today) == (True, "05/01/2025")
    assert expiry_status(date(2025, 1, 6), False, today) == (False, "06/01/2025")
    assert expiry_status(None, False, today) == (True, "Non presente")
    assert expiry_status(None, False, today, missing_is_expired=False) == (False, "Non presente")
    assert expiry_status(None, True, today) == (True, "Data non valida")


def test_client_status(engine, client, add_booking, now):
    add_booking("mario.rossi@example.com", 2, date(2025, 1, 7))
    status = engine.client_status(client(), now)

    assert status["found"] is True
    assert status["clientId"] == "ABC123"
    assert status["nome"] == "Mario"
    assert status["codiceFiscale"] == "RSSMRA80A01G702X"
    assert status["isPaid"] is True
    assert status["certificateExpired"] is False
    assert status["certificateExpiryString"] == "31/12/2025"
    assert status["abbonamentoExpired"] is False
    assert status["abbonamentoExpiryString"] == "30/06/2025"
    assert status["frequenza"] == "2"
    assert status["weeklyBookings"] == 1


def test_client_status_blocked_client(engine, client, now):
    status = engine.client_status(client("luca@example.com"), now)
    assert status["certificateExpired"] is True
    assert status["weeklyBookings"] == 0
    assert status["asiExpiryString"] == "Non presente"


def test_client_status_without_subscription_date(engine, client, now):
    status = engine.client_status(client("giulia@example.com"), now)
    assert status["abbonamentoExpired"] is False
    assert status["abbonamentoExpiryString"] == "Non presente"
    assert status["frequenza"] == "Open"
