import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional


class PendingTokenStore:
    """
    Almacén en memoria de tokens pendientes del handshake, con TTL y capacidad.
    No sobrevive a reinicios: si el proceso cae a mitad de login, el usuario repite.
    """

    def __init__(self, ttl_seconds: float, max_entries: int, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0 or max_entries <= 0:
            raise ValueError("ttl_seconds y max_entries deben ser positivos")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._items: "OrderedDict[str, tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def _evict_expired(self, now: float) -> None:
        expired = [k for k, (stored_at, _) in self._items.items() if now - stored_at >= self.ttl_seconds]
        for k in expired:
            del self._items[k]

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            self._items.pop(key, None)
            while len(self._items) >= self.max_entries:
                self._items.popitem(last=False)  # el más antiguo
            self._items[key] = (now, value)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            self._evict_expired(self._clock())
            entry = self._items.get(key)
            return entry[1] if entry else None

    def pop(self, key: str) -> Optional[Any]:
        """Devuelve y elimina la entrada; None si no existe o caducó."""
        with self._lock:
            self._evict_expired(self._clock())
            entry = self._items.pop(key, None)
            return entry[1] if entry else None

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired(self._clock())
            return len(self._items)
