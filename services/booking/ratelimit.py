# ============================================================
# ratelimit.py - Limite a finestra scorrevole per chiave
# ------------------------------------------------------------
# Conta le richieste di codice per email negli ultimi N minuti.
# Il contatore vive in memoria; la prima volta che una chiave
# viene vista lo si inizializza con una query indicizzata sull'
# audit log, così il limite sopravvive a un riavvio senza dover
# scorrere tutto il log a ogni richiesta.
# ============================================================
import logging
from collections import deque
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    def __init__(self, limit: int, window: timedelta):
        self.limit = limit
        self.window = window
        self._hits: dict[str, deque] = {}
        self._lock = Lock()

    # Registra un tentativo e dice se era ancora consentito.
    # Anche i tentativi rifiutati contano, come nell'audit log.
    def hit(self, key: str, now: datetime,
            seed: Optional[Callable[[datetime], Iterable[datetime]]] = None) -> bool:
        cutoff = now - self.window
        # la query di inizializzazione gira fuori dal lock
        seeded = None
        if seed is not None:
            with self._lock:
                known = key in self._hits
            if not known:
                seeded = sorted(seed(cutoff))

        with self._lock:
            hits = self._hits.get(key)
            if hits is None:
                # se un altro thread ha già inizializzato la chiave vince il suo
                hits = deque(seeded or ())
                self._hits[key] = hits
            while hits and hits[0] <= cutoff:
                hits.popleft()
            allowed = len(hits) < self.limit
            hits.append(now)

        if not allowed:
            logger.warning("[ratelimit] %s over limit (%d in %s)", key, len(hits) - 1, self.window)
        return allowed

    def count(self, key: str, now: datetime) -> int:
        cutoff = now - self.window
        with self._lock:
            return sum(1 for t in self._hits.get(key, ()) if t > cutoff)

    # Elimina le chiavi senza tentativi recenti
    def prune(self, now: datetime) -> int:
        cutoff = now - self.window
        with self._lock:
            idle = [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
            for k in idle:
                del self._hits[k]
        return len(idle)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
