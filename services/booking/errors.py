# ============================================================
# errors.py - Tassonomia degli errori del servizio
# ------------------------------------------------------------
# Ogni errore porta un messaggio già pronto per il cliente.
# NotFound / Unauthorized / Ineligible / RateLimited sono
# terminali; TransientError arriva solo dopo i retry; tutto il
# resto viene trasformato in InternalError al confine HTTP.
# ============================================================


class GymError(Exception):
    message = "Errore del server"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class InvalidRequest(GymError):
    message = "Richiesta non valida"


class NotFound(GymError):
    message = "Elemento non trovato"


class Unauthorized(GymError):
    message = "Codice non corretto o scaduto"


class Ineligible(GymError):
    message = "Prenotazione non consentita"

    def __init__(self, message: str = None, reason: str = None):
        super().__init__(message)
        self.reason = reason


class RateLimited(GymError):
    message = "Troppe richieste di codice. Riprova tra un'ora."


class TransientError(GymError):
    message = "Servizio momentaneamente non disponibile. Riprova."


class InternalError(GymError):
    message = "Errore interno del server"
