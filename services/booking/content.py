# ============================================================
# content.py - Contenuti per l'app
# ------------------------------------------------------------
#   - comunicazioni attive (avvisi in home)
#   - informazioni sull'ultima versione dell'app
#   - link di pagamento dell'abbonamento
# ============================================================
from datetime import date

from errors import NotFound


def active_communications(store, today: date) -> list[dict]:
    result = []
    for c in store.list_communications():
        if not c.active:
            continue
        if c.start_date and today < c.start_date:
            continue
        if c.end_date and today > c.end_date:
            continue
        result.append({"id": c.id, "titolo": c.title, "messaggio": c.message, "tipo": c.kind or "info"})
    return result


def app_update_info(store) -> dict:
    release = store.latest_release()
    if release is None:
        return {"success": True, "updateAvailable": False}
    return {
        "success": True,
        "updateAvailable": True,
        "latestVersion": release.version,
        "expoLink": release.expo_link,
        "message": release.message or f"È disponibile la versione {release.version}",
        "mandatory": release.mandatory,
    }


def payment_info(store, email: str) -> dict:
    client = store.find_client_by_email(email or "")
    if client is None:
        raise NotFound("Email non trovata nel sistema")
    if not client.payment_link:
        return {"success": True, "hasPayment": False, "message": "Nessun pagamento in sospeso"}
    return {
        "success": True,
        "hasPayment": True,
        "paymentLink": client.payment_link,
        "message": "È disponibile un pagamento in sospeso per il tuo abbonamento.",
    }
