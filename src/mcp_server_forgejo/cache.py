"""Single-flight TTL cache shared by the context resolver and auth validator.

Each key moves through ``Unresolved -> Resolving -> Resolved | Failed``:

- a lookup that finds a fresh entry returns it without resolving;
- the first lookup that misses starts exactly one resolution task and records
  it as the key's in-flight marker; every other lookup for that key awaits the
  same task;
- a successful result is stored with its timestamp; a failure is propagated to
  all waiters and never stored.

All bookkeeping runs on the event loop thread, so the structure needs no lock:
state changes happen either before the first ``await`` of a lookup or inside
the task done-callback. Waiters await the shared task through
``asyncio.shield`` so cancelling one waiter never cancels the resolution the
others depend on.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    stored_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    coalesced: int = 0
    resolutions: int = 0
    failures: int = 0
    evictions: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "coalesced": self.coalesced,
            "resolutions": self.resolutions,
            "failures": self.failures,
            "evictions": self.evictions,
        }


class SingleFlightCache(Generic[V]):
    """TTL cache with at most one in-flight resolution per key."""

    def __init__(
        self,
        name: str,
        ttl: float,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.name = name
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry[V]] = {}
        self._inflight: Dict[Hashable, "asyncio.Task[V]"] = {}
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.peek(key) is not None

    def is_resolving(self, key: Hashable) -> bool:
        return key in self._inflight

    def _is_fresh(self, entry: CacheEntry[V]) -> bool:
        return self._clock() - entry.stored_at < self.ttl

    def peek(self, key: Hashable) -> Optional[V]:
        """Return a fresh cached value without resolving or counting stats."""
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            return entry.value
        return None

    async def get(self, key: Hashable, resolve: Callable[[], Awaitable[V]]) -> V:
        """Return the cached value for ``key`` or resolve it once for all callers."""
        entry = self._entries.get(key)
        if entry is not None:
            if self._is_fresh(entry):
                self.stats.hits += 1
                return entry.value
            # lazy expiry
            del self._entries[key]
            self.stats.evictions += 1

        task = self._inflight.get(key)
        if task is None:
            self.stats.misses += 1
            self.stats.resolutions += 1
            task = asyncio.ensure_future(resolve())
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._on_resolved(key, done))
            logger.debug(f"[{self.name}] resolving {key!r}")
        else:
            self.stats.coalesced += 1
            logger.debug(f"[{self.name}] joining in-flight resolution for {key!r}")

        return await asyncio.shield(task)

    def _on_resolved(self, key: Hashable, task: "asyncio.Task[V]") -> None:
        if self._inflight.get(key) is not task:
            # invalidated while resolving; result belongs to nobody
            self._consume(task)
            return
        del self._inflight[key]
        if task.cancelled():
            self.stats.failures += 1
            return
        error = task.exception()
        if error is not None:
            self.stats.failures += 1
            logger.debug(f"[{self.name}] resolution for {key!r} failed: {type(error).__name__}")
            return
        self._store(key, task.result())

    @staticmethod
    def _consume(task: "asyncio.Task[Any]") -> None:
        if not task.cancelled():
            task.exception()

    def _store(self, key: Hashable, value: V) -> None:
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._make_room()
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock())

    def _make_room(self) -> None:
        expired = [k for k, entry in self._entries.items() if not self._is_fresh(entry)]
        for k in expired:
            del self._entries[k]
        self.stats.evictions += len(expired)
        if len(self._entries) >= self.max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k].stored_at)
            del self._entries[oldest]
            self.stats.evictions += 1

    def put(self, key: Hashable, value: V) -> None:
        """Store a value directly, superseding any previous entry."""
        self._store(key, value)

    def invalidate(self, key: Hashable) -> bool:
        """Drop ``key``; an in-flight resolution for it will not be stored.

        Returns True if anything was dropped.
        """
        dropped = self._entries.pop(key, None) is not None
        if self._inflight.pop(key, None) is not None:
            dropped = True
        if dropped:
            logger.debug(f"[{self.name}] invalidated {key!r}")
        return dropped

    def clear(self) -> None:
        self._entries.clear()
        self._inflight.clear()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "entries": len(self._entries),
            "in_flight": len(self._inflight),
            "ttl": self.ttl,
            **self.stats.as_dict(),
        }

    async def close(self) -> None:
        """Cancel outstanding resolutions and drop all entries."""
        tasks = list(self._inflight.values())
        self.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
