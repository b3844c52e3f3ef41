import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

import access
import api
import publisher
from conftest import NOW


@pytest.fixture
def published(monkeypatch):
    messages = []
    monkeypatch.setattr(publisher, "_publish_once", lambda t, p: messages.append((t, json.loads(json.dumps(p)))))
    return messages


@pytest.fixture
def client(store, published):
    access.code_request_limiter.reset()
    app = FastAPI()
    app.include_router(api.router)
    app.dependency_overrides[api.get_store] = lambda: store
    app.dependency_overrides[api.get_now] = lambda: NOW
    with TestClient(app) as c:
        yield c
    access.code_request_limiter.reset()


def call(client, **params):
    response = client.get("/v1/exec", params=params)
    assert response.status_code == 200
    return response.json()


def test_status_without_action(client):
    body = call(client)
    assert body["status"] == "ok"
    assert body["version"]
    assert "timestamp" in body


def test_unknown_action(client):
    assert call(client, action="dropTables") == {"error": "Azione non valida: dropTables"}


def test_send_client_code(client, published):
    body = call(client, action="sendClientCode", email="mario.rossi@example.com")
    assert body["success"] is True
    event, payload = published[0]
    assert event == "TempCodeIssued"
    assert payload["email"] == "mario.rossi@example.com"
    assert len(payload["tempCode"]) == 8


def test_send_client_code_unknown_email(client, published):
    body = call(client, action="sendClientCode", email="nobody@example.com")
    assert body == {"success": False, "message": "Email non trovata nel sistema"}
    assert published == []


def test_login_and_bookings(client):
    booked = call(client, action="bookSlot", email="mario.rossi@example.com", clientId="ABC123", slotId="1")
    assert booked["success"] is True

    body = call(client, action="getClientDataWithBookings", email="mario.rossi@example.com", clientId="ABC123")
    assert body["found"] is True
    assert body["nome"] == "Mario"
    assert body["totalBookings"] == 1
    assert body["weeklyBookings"] == 1
    assert body["bookings"][0]["id"] == booked["bookingId"]


def test_login_with_temp_code(client, published):
    call(client, action="sendClientCode", email="mario.rossi@example.com")
    code = published[0][1]["tempCode"]
    body = call(client, action="getClientDataWithBookings", email="mario.rossi@example.com", code=code)
    assert body["found"] is True


def test_login_wrong_code(client):
    body = call(client, action="getClientDataWithBookings", email="mario.rossi@example.com", clientId="NOPE")
    assert body == {"found": False, "error": "Codice non corretto o scaduto"}


def test_login_blocked_client_has_no_bookings(client):
    body = call(client, action="getClientDataWithBookings", email="luca@example.com", clientId="CERT01")
    assert body["found"] is True
    assert body["certificateExpired"] is True
    assert body["bookings"] == []
    assert body["totalBookings"] == 0


def test_available_slots(client):
    body = call(client, action="getAvailableSlots")
    ids = [s["ID_Spazio"] for s in body]
    assert 1 in ids
    assert 6 not in ids


def test_available_slots_bad_date(client):
    body = call(client, action="getAvailableSlots", targetDate="ieri")
    assert body["success"] is False


def test_book_and_cancel(client, published):
    booked = call(client, action="bookSlot", email="mario.rossi@example.com", clientId="ABC123",
                  slotId="2", targetDate="2025-01-07")
    assert booked["dataPrenotazione"] == "2025-01-07"

    cancelled = call(client, action="cancelBooking", email="mario.rossi@example.com", bookingId=booked["bookingId"])
    assert cancelled["success"] is True
    assert [t for t, _ in published] == ["BookingCreated", "BookingCancelled"]


def test_book_rejection_message(client):
    body = call(client, action="bookSlot", email="luca@example.com", clientId="CERT01", slotId="1")
    assert body["success"] is False
    assert "Certificato medico scaduto" in body["message"]


def test_book_missing_params(client):
    body = call(client, action="bookSlot", email="mario.rossi@example.com", clientId="ABC123")
    assert body == {"success": False, "message": "Parametri mancanti: slotId"}


def test_unexpected_error_is_hidden(client, monkeypatch):
    def boom(store, params, now):
        raise RuntimeError("connection string leaked")

    monkeypatch.setitem(api.ACTIONS, "getCommunications", boom)
    body = call(client, action="getCommunications")
    assert body == {"success": False, "message": "Errore interno del server"}


def test_content_actions(client):
    assert call(client, action="getCommunications") == []
    assert call(client, action="getAppUpdateInfo")["updateAvailable"] is False
    body = call(client, action="getPaymentLink", email="giulia@example.com")
    assert body["hasPayment"] is True
    body = call(client, action="getPaymentLink", email="nobody@example.com")
    assert body["success"] is False
    assert body["hasPayment"] is False


def test_health(client):
    assert client.get("/health").json() == {"ok": True}
