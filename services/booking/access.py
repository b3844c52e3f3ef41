# ============================================================
# access.py - Codici di accesso (AccessCodeService)
# ------------------------------------------------------------
# Un cliente entra con email + codice. Il codice può essere:
#   - il codice permanente (client_id nell'anagrafica)
#   - un codice temporaneo di 8 caratteri ricevuto via email,
#     valido 24 ore
# Le richieste di codice temporaneo sono limitate per email;
# i login falliti invece vengono solo tracciati, mai bloccati.
#
# Politica "used": un codice temporaneo viene marcato come usato
# solo quando la sessione è stabilita (primo caricamento completo
# dei dati cliente) e resta comunque valido fino alla scadenza,
# così l'app può ripetere il login con lo stesso codice.
# ============================================================
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import audit
from config import (
    CODE_REQUEST_WINDOW_MINUTES,
    MAX_CODE_REQUESTS,
    TEMP_CODE_LENGTH,
    TEMP_CODE_VALIDITY_HOURS,
)
from dates import now_local, stored_utc, to_utc
from errors import InvalidRequest, NotFound, RateLimited, TransientError, Unauthorized
from models import ClientRecord, TempCode
from publisher import publish_event
from ratelimit import SlidingWindowLimiter

logger = logging.getLogger(__name__)

# niente 0/O, 1/I/L: si confondono quando si ricopia il codice
TEMP_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"

EMAIL_ERROR = "Errore nell'invio dell'email. Riprova più tardi."
NOT_FOUND_MESSAGE = "Email non trovata nel sistema"

code_request_limiter = SlidingWindowLimiter(
    MAX_CODE_REQUESTS, timedelta(minutes=CODE_REQUEST_WINDOW_MINUTES)
)


@dataclass
class ClientIdentity:
    client: ClientRecord
    temp_code: Optional[str] = None   # il codice temporaneo usato, se c'è

    @property
    def email(self) -> str:
        return self.client.email


def generate_temp_code(length: int = TEMP_CODE_LENGTH) -> str:
    return "".join(secrets.choice(TEMP_CODE_ALPHABET) for _ in range(length))


# Invio reale: lo fa il servizio Notification ricevendo l'evento
def send_code_email(client: ClientRecord, email: str, temp_code: str):
    publish_event("TempCodeIssued", {
        "email": email,
        "firstName": client.first_name,
        "lastName": client.last_name,
        "tempCode": temp_code,
        "validityHours": TEMP_CODE_VALIDITY_HOURS,
    }, message=EMAIL_ERROR)


class AccessCodeService:
    def __init__(self, store, limiter: SlidingWindowLimiter = None, send_code=None):
        self.store = store
        self.limiter = limiter or code_request_limiter
        self.send_code = send_code or send_code_email

    # ------------------------------------------------------------
    # Richiesta di un codice temporaneo
    # ------------------------------------------------------------
    # Ordine: formato email -> anti-spam -> cliente -> salvataggio
    # -> invio. "Email sconosciuta" e "invio fallito" sono due
    # errori diversi.
    # ------------------------------------------------------------
    def request_temporary_code(self, email: str, now: datetime = None) -> dict:
        now = now or now_local()
        email = (email or "").strip()
        if not email or "@" not in email:
            audit.record(self.store, email, audit.CODE_REQUEST, "ERRORE", "Email non valida", now)
            raise InvalidRequest("Email non valida")

        key = email.lower()
        seed = lambda since: self.store.audit_timestamps(key, audit.CODE_REQUEST, since)  # noqa: E731
        if not self.limiter.hit(key, now, seed=seed):
            audit.record(self.store, email, audit.CODE_REQUEST, "BLOCCATO_SPAM", "", now)
            raise RateLimited()

        client = self.store.find_client_by_email(email)
        if client is None:
            audit.record(self.store, email, audit.CODE_REQUEST, "NON_TROVATO", "Email non nel database", now)
            raise NotFound(NOT_FOUND_MESSAGE)
        if not client.client_id:
            audit.record(self.store, email, audit.CODE_REQUEST, "ERRORE", "ID non presente nel DB", now)
            raise NotFound("ID cliente non trovato")

        temp_code = generate_temp_code()
        self.store.append_temp_code(TempCode(
            email=key,
            original_code=client.client_id,
            temp_code=temp_code,
            created_at=to_utc(now),
            expires_at=to_utc(now + timedelta(hours=TEMP_CODE_VALIDITY_HOURS)),
        ))

        try:
            self.send_code(client, key, temp_code)
        except TransientError as e:
            audit.record(self.store, email, audit.CODE_REQUEST, "ERRORE_EMAIL", str(e.__cause__ or e), now)
            raise TransientError(EMAIL_ERROR) from e

        audit.record(self.store, email, audit.CODE_REQUEST, "SUCCESSO", "", now)
        return {
            "success": True,
            "message": f"Codice temporaneo inviato via email! Valido per {TEMP_CODE_VALIDITY_HOURS} ore.",
        }

    # ------------------------------------------------------------
    # Login: codice permanente oppure temporaneo non scaduto
    # ------------------------------------------------------------
    def resolve_login(self, email: str, code: str, now: datetime = None) -> ClientIdentity:
        now = now or now_local()
        client = self.store.find_client_by_email(email or "")
        if client is None:
            audit.record(self.store, email, audit.LOGIN, "NON_TROVATO", "Cliente non esiste", now)
            raise NotFound(NOT_FOUND_MESSAGE)

        if not client.client_id:
            audit.record(self.store, email, audit.LOGIN, "ERRORE", "ID non presente nel DB", now)
            raise Unauthorized("ID cliente non presente nel database")

        supplied = (code or "").strip().upper()
        if supplied and supplied == client.client_id.upper():
            audit.record(self.store, email, audit.LOGIN, "SUCCESSO_ORIGINALE", "", now)
            return ClientIdentity(client)

        if supplied and self._temp_code_valid(client, supplied, now):
            audit.record(self.store, email, audit.LOGIN, "SUCCESSO_TEMP", "", now)
            return ClientIdentity(client, temp_code=supplied)

        audit.record(self.store, email, audit.LOGIN, "CODICE_ERRATO", "", now)
        raise Unauthorized()

    # Il flag "used" non conta: conta solo la scadenza, e che il
    # codice sia stato emesso per il client_id attuale.
    def _temp_code_valid(self, client: ClientRecord, supplied: str, now: datetime) -> bool:
        for t in self.store.list_temp_codes(client.email):
            if t.temp_code != supplied:
                continue
            if t.original_code.strip() != client.client_id:
                continue
            if stored_utc(t.expires_at) > to_utc(now):
                return True
        return False

    def mark_session_established(self, identity: ClientIdentity, now: datetime = None):
        if not identity.temp_code:
            return
        if self.store.mark_temp_code_used(identity.email, identity.temp_code):
            audit.record(self.store, identity.email, audit.TEMP_CODE_USED, "SUCCESSO", "", now)

    def cleanup_expired_codes(self, now: datetime = None) -> int:
        now = now or now_local()
        deleted = self.store.delete_expired_temp_codes(now)
        logger.info("[access] expired temp codes removed: %d", deleted)
        return deleted
