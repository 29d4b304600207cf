from __future__ import annotations

import hashlib
import json
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from .models import Entity, MatchCandidate


def fingerprint(entity: Entity) -> str:
    """SHA-256 of the entity's canonical JSON (sorted keys)."""

    canonical = json.dumps(entity, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class _Entry:
    matches: tuple[MatchCandidate, ...]
    stored_at: float


class MatchCache:
    """Fingerprint -> match list, expiring after ``ttl`` seconds.

    Concurrent writers for the same key are last-write-wins; the value is
    derived from the same input either way.
    """

    def __init__(self, ttl: float = 3600.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def get(self, key: str) -> list[MatchCandidate] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at >= self.ttl:
                del self._entries[key]
                return None
            return list(entry.matches)

    def put(self, key: str, matches: list[MatchCandidate]) -> None:
        with self._lock:
            self._entries[key] = _Entry(tuple(matches), self._clock())

    def discard(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
