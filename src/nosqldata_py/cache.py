from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from .config import DEFAULT_QUERY_CACHE_CAPACITY, DEFAULT_QUERY_CACHE_LIFETIME_MS
from .store import PreparedHandle

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    handle: PreparedHandle
    last_access: float


class PreparedQueryCache:
    """Thread-safe LRU cache of prepared statement handles keyed by SQL text.

    ``capacity=0`` disables the size bound and ``lifetime_ms=0`` disables the
    age bound. Lookups never hand out the cached handle itself, only copies.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_QUERY_CACHE_CAPACITY,
        lifetime_ms: int = DEFAULT_QUERY_CACHE_LIFETIME_MS,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        if lifetime_ms < 0:
            raise ValueError("lifetime_ms must be >= 0")

        self._capacity = capacity
        self._lifetime = lifetime_ms / 1000.0
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, _Entry] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def lifetime_ms(self) -> int:
        return int(self._lifetime * 1000)

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._entries)

    def __contains__(self, sql: object) -> bool:
        if not isinstance(sql, str):
            return False
        with self._lock:
            entry = self._entries.get(sql)
            return entry is not None and not self._expired(entry, self._clock())

    def get(self, sql: str) -> PreparedHandle | None:
        with self._lock:
            now = self._clock()
            entry = self._entries.get(sql)
            if entry is None:
                return None
            if self._expired(entry, now):
                del self._entries[sql]
                return None
            entry.last_access = now
            self._entries.move_to_end(sql)
            return entry.handle.copy()

    def put(self, sql: str, handle: PreparedHandle) -> None:
        with self._lock:
            now = self._clock()
            self._entries[sql] = _Entry(handle=handle, last_access=now)
            self._entries.move_to_end(sql)
            self._purge_expired(now)
            if self._capacity > 0:
                while len(self._entries) > self._capacity:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug("prepared statement evicted: %s", evicted)

    def remove(self, sql: str) -> bool:
        with self._lock:
            return self._entries.pop(sql, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_or_prepare(self, sql: str, prepare: Callable[[str], PreparedHandle]) -> PreparedHandle:
        cached = self.get(sql)
        if cached is not None:
            return cached

        # Prepared outside the lock: it is a store round trip.
        handle = prepare(sql)
        self.put(sql, handle)
        return handle.copy()

    def _expired(self, entry: _Entry, now: float) -> bool:
        return self._lifetime > 0 and now - entry.last_access > self._lifetime

    def _purge_expired(self, now: float) -> None:
        if self._lifetime <= 0:
            return
        stale = [sql for sql, entry in self._entries.items() if self._expired(entry, now)]
        for sql in stale:
            del self._entries[sql]
