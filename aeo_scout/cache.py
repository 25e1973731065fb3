# File: aeo_scout/cache.py
"""aeo_scout.cache: in-process TTL cache shared by the robots engine and the AI scorer.

Entries are replaced wholesale; concurrent writers for the same key resolve
last-writer-wins. A lookup that finds nothing (or an expired entry) returns
``None``; a cache miss is never an error.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

__all__ = ["TTLCache"]

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(slots=True)
class _Entry(Generic[V]):
    value: V
    expires_at: Optional[float]


class TTLCache(Generic[K, V]):
    """Dictionary with per-entry expiry.

    Parameters
    ----------
    ttl
        Lifetime of an entry in seconds; *None* keeps entries until
        :meth:`invalidate` or :meth:`clear`.
    clock
        Monotonic time source, injectable for tests.
    """

    def __init__(self, ttl: Optional[float] = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be > 0 or None")
        self.ttl = ttl
        self._clock = clock
        self._data: Dict[K, _Entry[V]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.expires_at is not None and entry.expires_at <= self._clock():
                del self._data[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def set(self, key: K, value: V, ttl: Optional[float] = None) -> None:
        lifetime = self.ttl if ttl is None else ttl
        expires_at = None if lifetime is None else self._clock() + lifetime
        with self._lock:
            self._data[key] = _Entry(value, expires_at)

    def invalidate(self, key: K) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def invalidate_where(self, predicate: Callable[[K], bool]) -> int:
        """Drop every key for which *predicate* is true; returns the count."""
        with self._lock:
            doomed = [k for k in self._data if predicate(k)]
            for k in doomed:
                del self._data[k]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._data)
