"""Base source abstractions shared by every handler.

A `SourceHandler` fetches content for exactly one source type and normalizes
it into a `LoadResult`. Caching is not inherited state: each handler owns a
`TTLCache` and `get_cached_content()` is the single read-through path that
callers use.
"""
from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Literal, Mapping, Optional, Sequence, TypeVar

from aihub_sources.cache import CacheEntry, TTLCache
from aihub_sources.exceptions import ConfigurationError, FetchTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")
FailureMode = Literal["continue", "stop"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def timestamp_iso(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(slots=True)
class LoadResult:
    """Normalized content returned by every handler.

    `metadata` always carries `type`, `loadedAt` and `link`.
    """

    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "metadata": dict(self.metadata)}


class SourceHandler(ABC):
    """Abstract handler for one source type.

    Parameters
    ----------
    cache_ttl: float | None
        Entry lifetime in seconds; defaults to the class' `default_ttl`.
    timeout: float | None
        Upper bound in seconds for a single `load_content()` call made through
        `get_cached_content()`. None leaves timing to the underlying I/O.
    clock: Callable[[], float] | None
        Time source for the cache, mainly for tests.
    """

    source_type: str = ""
    default_ttl: float = 3600

    def __init__(
        self,
        *,
        cache_ttl: Optional[float] = None,
        timeout: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.cache: TTLCache[LoadResult] = TTLCache(
            cache_ttl if cache_ttl is not None else self.default_ttl, clock=clock
        )
        self.timeout = timeout

    def get_type(self) -> str:
        return self.source_type

    @abstractmethod
    async def load_content(self, source_config: Mapping[str, Any]) -> LoadResult:
        """Fetch content for `source_config` without consulting the cache."""
        raise NotImplementedError

    def validate_config(self, source_config: Mapping[str, Any]) -> bool:
        """Return True when `source_config` is usable by this handler."""
        return True

    async def get_cache_key(self, source_config: Mapping[str, Any]) -> str:
        return json.dumps(dict(source_config), sort_keys=True, default=str)

    def cache_tag(self, source_config: Mapping[str, Any]) -> Optional[str]:
        """Invalidation group for entries loaded from `source_config`."""
        return None

    async def get_cached_content(self, source_config: Mapping[str, Any]) -> LoadResult:
        """Return cached content when still valid, otherwise load and cache it."""
        cache_key = await self.get_cache_key(source_config)
        return await self.cache.get_or_load(
            cache_key,
            lambda: self._load_with_timeout(source_config),
            tag=self.cache_tag(source_config),
        )

    async def _load_with_timeout(self, source_config: Mapping[str, Any]) -> LoadResult:
        logger.debug("%s load: cache miss. type=%s", type(self).__name__, self.source_type)
        if self.timeout is None:
            return await self.load_content(source_config)
        try:
            return await asyncio.wait_for(self.load_content(source_config), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise FetchTimeoutError(
                f"Loading {self.source_type} source timed out after {self.timeout}s"
            ) from exc

    def is_cache_valid(self, entry: CacheEntry[LoadResult]) -> bool:
        return self.cache.is_valid(entry)

    async def clear_cache(self, source_config: Optional[Mapping[str, Any]] = None) -> None:
        """Remove the entry for `source_config`, or every entry when omitted."""
        if source_config is None:
            self.cache.clear()
            return
        self.cache.delete(await self.get_cache_key(source_config))

    def get_cache_stats(self) -> Dict[str, int]:
        return self.cache.stats()


async def run_batch(
    items: Sequence[T],
    load_one: Callable[[T], Awaitable[LoadResult]],
    *,
    concurrency: int,
    failure_mode: FailureMode = "continue",
    on_error: Callable[[T, Exception], LoadResult],
) -> List[LoadResult]:
    """Load `items` in fixed-size concurrent windows, preserving input order.

    With `failure_mode="continue"` a failing item is replaced by `on_error(item, exc)`;
    with `"stop"` the first failure is re-raised, the rest of its window is
    cancelled and later windows are skipped.
    """
    if failure_mode not in ("continue", "stop"):
        raise ConfigurationError(f"Unknown failure mode: {failure_mode}")
    window = max(1, int(concurrency))

    async def guarded(item: T) -> LoadResult:
        try:
            return await load_one(item)
        except Exception as exc:
            if failure_mode == "stop":
                raise
            logger.warning("Batch load: item failed; continuing. error=%s", exc)
            return on_error(item, exc)

    results: List[LoadResult] = []
    for start in range(0, len(items), window):
        tasks = [asyncio.ensure_future(guarded(item)) for item in items[start : start + window]]
        try:
            results.extend(await asyncio.gather(*tasks))
        except BaseException:
            # abandon the rest of the window before re-raising
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
    return results
