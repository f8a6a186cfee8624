"""In-process TTL cache owned by each source handler.

Entries are never swept in the background: an expired entry stays in the map
until it is read again (and replaced) or explicitly cleared. Loads are
coalesced per key so that concurrent misses share a single fetch.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    """A cached value with its insertion time and lifetime, both in milliseconds."""

    value: V
    timestamp: float
    ttl_ms: float
    tag: Optional[str] = None


def _json_default(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    return str(obj)


def estimate_size(key: str, value: Any) -> int:
    """Rough byte estimate of an entry: characters of key and JSON value, two bytes each."""
    try:
        serialized = json.dumps(value, default=_json_default)
    except (TypeError, ValueError):
        serialized = str(value)
    return (len(key) + len(serialized)) * 2


@dataclass(slots=True)
class _Flight:
    """A load running for one key and the number of callers awaiting it."""

    task: asyncio.Task
    waiters: int = 0


class TTLCache(Generic[V]):
    """Map from cache key to value with a fixed time-to-live.

    Parameters
    ----------
    ttl_seconds: float
        Lifetime applied to entries stored from now on.
    clock: Callable[[], float] | None
        Returns the current time in seconds; defaults to `time.time`.
    """

    def __init__(self, ttl_seconds: float = 3600, *, clock: Optional[Callable[[], float]] = None) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.time
        self._entries: Dict[str, CacheEntry[V]] = {}
        self._inflight: Dict[str, _Flight] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> List[str]:
        return list(self._entries)

    def entry(self, key: str) -> Optional[CacheEntry[V]]:
        return self._entries.get(key)

    def is_valid(self, entry: CacheEntry[V]) -> bool:
        return self._now_ms() - entry.timestamp < entry.ttl_ms

    def get(self, key: str) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is not None and self.is_valid(entry):
            return entry.value
        return None

    def set(self, key: str, value: V, *, tag: Optional[str] = None) -> None:
        self._entries[key] = CacheEntry(
            value=value,
            timestamp=self._now_ms(),
            ttl_ms=self.ttl_seconds * 1000,
            tag=tag,
        )

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def purge_tag(self, tag: str) -> int:
        """Remove every entry stored under `tag`; returns the number removed."""
        stale = [k for k, e in self._entries.items() if e.tag == tag]
        for k in stale:
            del self._entries[k]
        return len(stale)

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[V]],
        *,
        tag: Optional[str] = None,
    ) -> V:
        """Return the cached value for `key`, loading and storing it on a miss.

        Only one load per key runs at a time, in its own task; callers arriving
        while it is in flight receive its result (or its exception). Cancelling
        one caller never cancels the others: the load itself is cancelled only
        when its last caller goes away. Failed loads are not cached.
        """
        entry = self._entries.get(key)
        if entry is not None and self.is_valid(entry):
            return entry.value

        flight = self._inflight.get(key)
        if flight is None:
            flight = self._start_load(key, loader, tag)
        else:
            logger.debug("TTLCache load joined in-flight fetch. key=%s", key)

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                logger.debug("TTLCache load abandoned by every caller. key=%s", key)
                self._forget(key, flight)
                flight.task.cancel()

    def _start_load(self, key: str, loader: Callable[[], Awaitable[V]], tag: Optional[str]) -> _Flight:
        async def load() -> V:
            value = await loader()
            self.set(key, value, tag=tag)
            return value

        flight = _Flight(asyncio.ensure_future(load()))
        self._inflight[key] = flight

        def done(task: asyncio.Task) -> None:
            self._forget(key, flight)
            if not task.cancelled():
                # mark retrieved so an exception nobody awaited is not logged
                task.exception()

        flight.task.add_done_callback(done)
        return flight

    def _forget(self, key: str, flight: _Flight) -> None:
        if self._inflight.get(key) is flight:
            del self._inflight[key]

    def stats(self) -> Dict[str, int]:
        """Diagnostic snapshot; `memoryUsage` is an estimate, not a measurement."""
        valid = 0
        memory = 0
        for key, entry in self._entries.items():
            if self.is_valid(entry):
                valid += 1
            memory += estimate_size(key, entry.value)
        total = len(self._entries)
        return {
            "totalEntries": total,
            "validEntries": valid,
            "expiredEntries": total - valid,
            "memoryUsage": memory,
        }
