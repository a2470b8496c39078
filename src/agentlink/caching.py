"""
agentlink.caching — Short-lived memory of recent identity verifications.

TTL-aware, capacity-bounded, thread-safe. Expiry is enforced on read and by
an explicit sweep; nothing relies on the sweep having run.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    expires_at: Optional[float]

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    sets: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "sets": self.sets,
            "hit_rate": round(self.hit_rate, 4),
        }


class TTLCache:
    """LRU cache with per-entry TTL."""

    def __init__(self, max_size: int = 1000, default_ttl: Optional[float] = 600.0, clock=time.time):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if default_ttl is not None and default_ttl <= 0:
            raise ValueError("default_ttl must be positive or None")

        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._stats = CacheStats()

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return default
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._stats.expirations += 1
                self._stats.misses += 1
                return default
            self._entries.move_to_end(key)
            self._stats.hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        effective_ttl = ttl if ttl is not None else self._default_ttl
        entry = CacheEntry(
            value=value,
            created_at=now,
            expires_at=now + effective_ttl if effective_ttl is not None else None,
        )
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            self._stats.sets += 1
            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)
                self._stats.evictions += 1

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, v in self._entries.items() if v.is_expired(now)]
            for k in expired:
                del self._entries[k]
            self._stats.expirations += len(expired)
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class VerificationCache:
    """Recent successful verifications, keyed by provider and nullifier."""

    def __init__(self, max_size: int = 1000, ttl: float = 600.0, clock=time.time):
        self._cache = TTLCache(max_size=max_size, default_ttl=ttl, clock=clock)

    @staticmethod
    def _key(provider: str, nullifier: str) -> str:
        return f"{provider}:{nullifier.lower()}"

    def remember(self, provider: str, nullifier: str, outcome: Any) -> None:
        self._cache.set(self._key(provider, nullifier), outcome)

    def recent(self, provider: str, nullifier: str) -> Optional[Any]:
        return self._cache.get(self._key(provider, nullifier))

    def forget(self, provider: str, nullifier: str) -> bool:
        return self._cache.delete(self._key(provider, nullifier))

    def sweep(self) -> int:
        return self._cache.cleanup_expired()

    @property
    def stats(self) -> dict:
        return self._cache.stats.to_dict()
