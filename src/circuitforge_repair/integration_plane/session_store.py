"""In-memory session cache with TTL expiry and bounded size."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable

from circuitforge_repair.integration_plane.collaborators import SessionRecord


class InMemorySessionStore:
    """Session records keyed by opaque id.

    Entries expire ``ttl_seconds`` after their last ``put``; when more than
    ``max_entries`` are held the least recently written are evicted. Pruning happens
    inside ``get`` and ``put``.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 3600.0,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("InMemorySessionStore.ttl_seconds: must be > 0")
        if max_entries < 1:
            raise ValueError("InMemorySessionStore.max_entries: must be >= 1")
        self._ttl_seconds = float(ttl_seconds)
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, SessionRecord]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, session_id: str) -> SessionRecord | None:
        with self._lock:
            self._prune(self._clock())
            entry = self._entries.get(session_id)
            return None if entry is None else entry[1]

    def put(self, session_id: str, record: SessionRecord) -> None:
        if not session_id:
            raise ValueError("InMemorySessionStore.put.session_id: must be non-empty")
        with self._lock:
            now = self._clock()
            self._entries.pop(session_id, None)
            self._entries[session_id] = (now + self._ttl_seconds, record)
            self._prune(now)

    def __len__(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._entries)

    def _prune(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)


__all__ = ["InMemorySessionStore"]
