"""
Tagged in-process cache for statistics results.
Uses cachetools TLRUCache so every entry can carry its own TTL.
"""
import inspect
import time
from collections import defaultdict
from typing import Any, Awaitable, Callable, Iterable, NamedTuple, Optional, Union

import structlog
from cachetools import TLRUCache

logger = structlog.get_logger(__name__)

_MISSING = object()


class _Entry(NamedTuple):
    value: Any
    ttl: float


class StatisticsCache:
    """
    Key/value cache with tag-based invalidation.

    Keys are namespaced with ``statistics:``. Each entry may be attached to
    any of ``SUPPORTED_TAGS``; ``flush_by_tags`` drops every key attached to
    one of the given tags.
    """

    KEY_PREFIX = "statistics:"
    SUPPORTED_TAGS = frozenset({
        "statistics",
        "overview",
        "posts",
        "users",
        "popular",
        "trends",
        "sources",
    })

    def __init__(
        self,
        maxsize: int = 1024,
        default_ttl: float = 3600,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self._store: TLRUCache = TLRUCache(maxsize=maxsize, ttu=self._expires_at, timer=timer)
        self._tags: dict[str, set[str]] = defaultdict(set)
        self._stats = {"hits": 0, "misses": 0, "puts": 0, "deletes": 0, "flushes": 0}

    @staticmethod
    def _expires_at(_key: str, entry: _Entry, now: float) -> float:
        return now + entry.ttl

    def _key(self, key: str) -> str:
        return key if key.startswith(self.KEY_PREFIX) else f"{self.KEY_PREFIX}{key}"

    # =========================================================================
    # BASIC OPERATIONS
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._store.get(self._key(key), _MISSING)
        if entry is _MISSING:
            self._stats["misses"] += 1
            return default
        self._stats["hits"] += 1
        return entry.value

    def has(self, key: str) -> bool:
        return self._key(key) in self._store

    def put(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        tags: Iterable[str] = (),
    ) -> None:
        full_key = self._key(key)
        self._store[full_key] = _Entry(value, self.default_ttl if ttl is None else ttl)
        for tag in tags:
            if tag not in self.SUPPORTED_TAGS:
                logger.debug("Ignoring unsupported cache tag", tag=tag, key=full_key)
                continue
            self._tags[tag].add(full_key)
        self._stats["puts"] += 1

    async def remember(
        self,
        key: str,
        producer: Callable[[], Union[Any, Awaitable[Any]]],
        ttl: Optional[float] = None,
        tags: Iterable[str] = (),
    ) -> Any:
        """
        Return the cached value for ``key`` or compute, store and return it.

        ``producer`` may be a plain callable or a coroutine function. If it
        raises, nothing is cached.
        """
        full_key = self._key(key)
        entry = self._store.get(full_key, _MISSING)
        if entry is not _MISSING:
            self._stats["hits"] += 1
            return entry.value

        self._stats["misses"] += 1
        value = producer()
        if inspect.isawaitable(value):
            value = await value
        self.put(full_key, value, ttl=ttl, tags=tags)
        return value

    def forget(self, keys: Union[str, Iterable[str]]) -> int:
        """Remove one or more keys; returns how many were present."""
        if isinstance(keys, str):
            keys = [keys]
        removed = 0
        for key in keys:
            full_key = self._key(key)
            if self._store.pop(full_key, _MISSING) is not _MISSING:
                removed += 1
            for tagged in self._tags.values():
                tagged.discard(full_key)
        self._stats["deletes"] += removed
        return removed

    # =========================================================================
    # INVALIDATION
    # =========================================================================

    def flush_by_tags(self, tags: Iterable[str]) -> int:
        """Remove every key attached to any of ``tags``; unknown tags are ignored."""
        tags = list(tags)
        keys: set[str] = set()
        for tag in tags:
            if tag not in self.SUPPORTED_TAGS:
                logger.debug("Ignoring unsupported cache tag", tag=tag)
                continue
            keys |= self._tags.pop(tag, set())
        removed = self.forget(keys) if keys else 0
        logger.debug("Flushed cache tags", tags=list(tags), removed=removed)
        return removed

    def flush(self) -> None:
        self._store.clear()
        self._tags.clear()
        self._stats["flushes"] += 1

    def stats(self) -> dict[str, Any]:
        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "size": len(self._store),
            "maxsize": self._store.maxsize,
            "hit_rate": round(self._stats["hits"] / lookups * 100, 2) if lookups else 0.0,
            "tags": {tag: len(keys) for tag, keys in self._tags.items() if keys},
        }
