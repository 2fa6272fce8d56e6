"""Time-boxed cache for repeated reads keyed by world/account.

Instances are created by ``main`` and injected into the services that
need them; there is no module-level cache object.
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Hashable


class TTLCache:
    """A small key → value cache whose entries expire after ``ttl_seconds``.

    Args:
        ttl_seconds: Lifetime of an entry.
        clock: Callable returning the current time in seconds
            (defaults to :func:`time.monotonic`; tests pass a fake clock).
    """

    _MISSING = object()

    def __init__(self, ttl_seconds: float = 60.0,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Return the cached value, or *default* if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return default
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._entries[key] = (self._clock() + self._ttl, value)

    async def get_or_load(self, key: Hashable,
                          loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value or await *loader* and cache its result.

        ``None`` results are cached too, so a missing alliance is not
        re-read on every poll.
        """
        value = self.get(key, self._MISSING)
        if value is not self._MISSING:
            return value
        value = await loader()
        self.set(key, value)
        return value

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
