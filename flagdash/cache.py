"""
Value cache for flags, configs and AI config files.

One store covers both client-side snapshots (entries live until the next
refresh) and server-side TTL caching (entries expire independently).
"""

import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

logger = logging.getLogger("flagdash.cache")

MISSING: Any = object()
"""Sentinel returned by ``ValueCache.get`` on a miss."""


class CacheKind(str, Enum):
    """Kinds of values held by the cache."""

    FLAGS = "flags"
    CONFIGS = "configs"
    AI_CONFIGS = "ai_configs"
    FLAG_INFO = "flag_info"


PERSISTED_KINDS = (CacheKind.FLAGS, CacheKind.CONFIGS)


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    expired: int = 0
    size: int = 0


@dataclass
class CacheEntry:
    """Cached value with its expiry (monotonic seconds, None = never)."""

    value: Any
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class ValueCache:
    """
    In-memory cache keyed by ``(kind, key)``.

    - ``ttl_ms=None``: snapshot mode, entries never expire until replaced
    - ``ttl_ms > 0``: each entry expires ``ttl_ms`` after it was stored
    - ``ttl_ms == 0``: caching disabled, every ``get`` misses

    A bulk ``replace`` stores the full map for the kind and seeds every
    individual key with the same expiry.
    """

    def __init__(self, ttl_ms: Optional[int] = None, persist_path: Optional[str] = None):
        self._ttl_ms = ttl_ms
        self._persist_path = persist_path
        self._entries: Dict[Tuple[CacheKind, str], CacheEntry] = {}
        self._snapshots: Dict[CacheKind, CacheEntry] = {}
        self._stats = CacheStats()

    @property
    def enabled(self) -> bool:
        return self._ttl_ms != 0

    @property
    def expiring(self) -> bool:
        """True when entries expire on their own."""
        return self._ttl_ms is not None and self._ttl_ms > 0

    def _expiry(self) -> Optional[float]:
        if self._ttl_ms is None:
            return None
        return time.monotonic() + self._ttl_ms / 1000

    def get(self, kind: CacheKind, key: str, default: Any = MISSING) -> Any:
        """
        Get a cached value.

        Args:
            kind: Kind of value
            key: Flag key, config key or AI config file name
            default: Returned on a miss

        Returns:
            The cached value, or ``default`` if absent or expired
        """
        if not self.enabled:
            self._stats.misses += 1
            return default

        entry = self._entries.get((kind, key))
        if entry is None:
            self._stats.misses += 1
            return default

        if entry.is_expired(time.monotonic()):
            del self._entries[(kind, key)]
            self._stats.size = len(self._entries)
            self._stats.misses += 1
            self._stats.expired += 1
            return default

        self._stats.hits += 1
        return entry.value

    def set(self, kind: CacheKind, key: str, value: Any) -> None:
        """Store a single value."""
        if not self.enabled:
            return

        self._entries[(kind, key)] = CacheEntry(value=value, expires_at=self._expiry())
        self._stats.size = len(self._entries)

    def replace(self, kind: CacheKind, values: Mapping[str, Any]) -> None:
        """
        Replace everything cached for ``kind`` with a freshly fetched map.

        Args:
            kind: Kind of value
            values: Full key -> value mapping from the server
        """
        if not self.enabled:
            return

        expires_at = self._expiry()
        self._snapshots[kind] = CacheEntry(value=dict(values), expires_at=expires_at)

        stale = [k for k in self._entries if k[0] == kind and k[1] not in values]
        for cache_key in stale:
            del self._entries[cache_key]

        for key, value in values.items():
            self._entries[(kind, key)] = CacheEntry(value=value, expires_at=expires_at)
        self._stats.size = len(self._entries)

        if kind in PERSISTED_KINDS:
            self._persist()

    def snapshot(self, kind: CacheKind) -> Optional[Dict[str, Any]]:
        """
        Get the full map stored by the last ``replace``.

        Returns:
            A copy of the map, or None if never stored or expired
        """
        if not self.enabled:
            return None

        entry = self._snapshots.get(kind)
        if entry is None:
            return None

        if entry.is_expired(time.monotonic()):
            del self._snapshots[kind]
            self._stats.expired += 1
            return None

        return dict(entry.value)

    def invalidate(self, kind: CacheKind) -> None:
        """Drop every entry of one kind."""
        self._snapshots.pop(kind, None)
        for cache_key in [k for k in self._entries if k[0] == kind]:
            del self._entries[cache_key]
        self._stats.size = len(self._entries)

    def clear(self) -> None:
        """Clear all cached data regardless of expiry."""
        self._entries.clear()
        self._snapshots.clear()
        self._stats.size = 0

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            expired=self._stats.expired,
            size=self._stats.size,
        )

    def get_hit_rate(self) -> float:
        """Get hit rate (hits / (hits + misses))."""
        total = self._stats.hits + self._stats.misses
        if total == 0:
            return 0.0
        return self._stats.hits / total

    def load(self) -> bool:
        """
        Load the last persisted flags and configs.

        Returns:
            True if a snapshot was restored
        """
        if not self._persist_path:
            return False

        path = Path(self._persist_path)
        if not path.exists():
            return False

        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load persisted cache: {e}")
            return False

        restored = False
        for kind in PERSISTED_KINDS:
            values = data.get(kind.value)
            if isinstance(values, dict):
                self.replace(kind, values)
                restored = True
        return restored

    def _persist(self) -> bool:
        """
        Write the current flag and config snapshots to disk.

        Returns:
            True if the snapshot was written
        """
        if not self._persist_path:
            return False

        data: Dict[str, Any] = {"version": 1}
        for kind in PERSISTED_KINDS:
            entry = self._snapshots.get(kind)
            data[kind.value] = entry.value if entry else {}

        try:
            path = Path(self._persist_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(data))
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to persist cache: {e}")
            return False

    def close(self) -> None:
        """Final persist."""
        if self._persist_path:
            self._persist()
