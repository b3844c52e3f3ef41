# ============================================================
# cache.py - Cache di lettura per tabella
# ------------------------------------------------------------
# Tiene in memoria il risultato di una lettura completa di una
# tabella per pochi secondi, per non rileggere lo stesso foglio
# più volte nella stessa richiesta. Lo store chiama invalidate()
# subito dopo ogni scrittura sulla stessa tabella.
# ============================================================
import logging
import time
from threading import Lock
from typing import Any, Callable, Optional

from config import READ_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


class TableCache:
    def __init__(self, ttl: float = READ_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = Lock()

    def get(self, table: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(table)
            if entry is None:
                return None
            stored_at, value = entry
            if self.clock() - stored_at > self.ttl:
                del self._entries[table]
                logger.debug("[cache] expired %s", table)
                return None
            return value

    def put(self, table: str, value: Any) -> None:
        with self._lock:
            self._entries[table] = (self.clock(), value)

    def invalidate(self, table: str) -> None:
        with self._lock:
            self._entries.pop(table, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
