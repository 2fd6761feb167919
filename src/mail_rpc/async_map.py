# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Lock-guarded keyed store used for every ledger of the email controller.

Each ``AsyncMap`` serializes all of its operations through a single
``asyncio.Lock``. Waiters on an asyncio lock are woken in arrival order, so
operations on one map are served FIFO. Every entry remembers the time it was
inserted (or last ``set``), which drives ``expire``.

``scan`` is the only operation that runs caller code under the lock: the
predicate observes each entry and the matching entries are removed in the same
critical section, so no ``set``/``pop`` on this map can interleave between the
observation and the removal.

Example:
    Matching pending requests against stashed responses::

        found = await pending_requests.scan(
            lambda key, request: request.ready
        )
        expired = await pending_responses.expire(10)
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Tuple, Union

Predicate = Callable[[Hashable, Any], Union[bool, Awaitable[bool]]]


class AsyncMap:
    """Mutex-guarded associative store with insertion timestamps.

    Attributes:
        name: Label used in diagnostics.
        lock: The lock serializing every operation on this instance.
    """

    def __init__(self, name: str = "map", clock: Callable[[], float] | None = None):
        """Create an empty map.

        Args:
            name: Label used in diagnostics.
            clock: Monotonic time source in seconds. Defaults to
                ``time.monotonic``.
        """
        self.name = name
        self._clock = clock or time.monotonic
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}
        self.lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<AsyncMap {self.name}: {len(self._entries)} entries>"

    async def get(self, key: Hashable, default: Any = None) -> Any:
        async with self.lock:
            entry = self._entries.get(key)
            return default if entry is None else entry[0]

    async def set(self, key: Hashable, value: Any) -> None:
        """Store ``value`` under ``key``, restarting its age."""
        async with self.lock:
            self._entries[key] = (value, self._clock())

    async def add(self, key: Hashable, value: Any) -> bool:
        """Store ``value`` only when ``key`` is absent.

        Returns:
            True if the value was inserted, False if the key already existed.
        """
        async with self.lock:
            if key in self._entries:
                return False
            self._entries[key] = (value, self._clock())
            return True

    async def pop(self, key: Hashable, default: Any = None) -> Any:
        """Atomically fetch and remove ``key``."""
        async with self.lock:
            entry = self._entries.pop(key, None)
            return default if entry is None else entry[0]

    async def has(self, key: Hashable) -> bool:
        async with self.lock:
            return key in self._entries

    async def keys(self) -> List[Hashable]:
        async with self.lock:
            return list(self._entries)

    async def items(self) -> List[Tuple[Hashable, Any]]:
        async with self.lock:
            return [(key, value) for key, (value, _ts) in self._entries.items()]

    async def size(self) -> int:
        async with self.lock:
            return len(self._entries)

    async def clear(self) -> Dict[Hashable, Any]:
        """Remove every entry and return what was stored."""
        async with self.lock:
            removed = {key: value for key, (value, _ts) in self._entries.items()}
            self._entries.clear()
            return removed

    async def scan(self, predicate: Predicate) -> Dict[Hashable, Any]:
        """Remove and return every entry for which ``predicate`` is true.

        The predicate may be a plain function or a coroutine function; it is
        evaluated under this map's lock, so it must not touch this same map.
        If the predicate raises, the map is left unchanged.

        Args:
            predicate: Called as ``predicate(key, value)``.

        Returns:
            Mapping of the removed keys to their values, in insertion order.
        """
        found: Dict[Hashable, Any] = {}
        async with self.lock:
            for key, (value, _ts) in list(self._entries.items()):
                result = predicate(key, value)
                if inspect.isawaitable(result):
                    result = await result
                if result:
                    found[key] = value
            for key in found:
                del self._entries[key]
        return found

    async def expire(self, max_age_seconds: float) -> Dict[Hashable, Any]:
        """Remove and return entries older than ``max_age_seconds``."""
        expired: Dict[Hashable, Any] = {}
        async with self.lock:
            threshold = self._clock() - max_age_seconds
            for key, (value, ts) in list(self._entries.items()):
                if ts < threshold:
                    del self._entries[key]
                    expired[key] = value
        return expired


__all__ = ["AsyncMap", "Predicate"]
