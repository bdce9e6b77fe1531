"""Read-through cache for care-circle and preference lookups.

The permission and preference components take a cache as a constructor
argument instead of relying on module-level state. Production code injects
:class:`TTLCache`; tests can inject :class:`NullCache` or a ``TTLCache``
driven by a fake clock.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ReadThroughCache(Protocol):
    """Cache that loads missing keys through a caller-supplied loader."""

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        """Return the cached value for ``key``, calling ``loader`` on a miss."""
        ...

    def invalidate(self, key: str) -> None:
        """Drop ``key`` so the next read goes to the source."""
        ...

    def clear(self) -> None:
        ...


class NullCache:
    """Pass-through cache: every read calls the loader."""

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        return loader()

    def invalidate(self, key: str) -> None:
        pass

    def clear(self) -> None:
        pass


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """Bounded in-process cache with per-entry expiry and LRU eviction.

    ``None`` results are cached too: "no link" is a real answer and should
    not hammer the store.

    Usage::

        cache = TTLCache(ttl_seconds=60, max_entries=500)
        link = cache.get_or_load(f"link:{subject}:{caregiver}", lambda: store.get_link(...))
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._ttl = ttl_seconds
        self._max = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > now:
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.value

        self.misses += 1
        value = loader()
        self._entries[key] = _Entry(value=value, expires_at=now + self._ttl)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted cache entry %s", evicted)
        return value

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
