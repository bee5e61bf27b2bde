"""
formula_services.result_cache -- Memoization with single-flight.

Responsibility:
    Maps ``(entity_id, fiscal_year, version, formula_key)`` to a computed
    ``EvaluationResult``.  Concurrent requests for the same key share one
    in-flight computation instead of recomputing.

Architecture position:
    Services -- shared, in-process state.  One cache instance serves every
    request handled by a ``FormulaCalculationService``.

Invariants enforced:
    - Single flight: at most one computation per key is in flight.  Later
      callers await the same task.
    - Waiters await the task through ``asyncio.shield``, so a caller that
      gives up (cancellation, superseded widget request) never cancels the
      computation other callers depend on.  The result is still stored.
    - Failed computations are not cached.  The exception reaches every
      waiter of that flight and the next request recomputes.
    - Entries are replaced, never patched.
    - Invalidation detaches matching in-flight computations: they still
      answer the callers that joined them, but their result is not stored
      and later callers start a fresh flight.
    - ``formula_key`` fingerprints the expanded formula and result kind, so
      two different formulas never share an entry.

Bounds:
    ``max_entries`` evicts the least recently used entry; ``ttl_seconds``
    expires entries by the injected clock.  Both are optional.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from formula_kernel.domain.clock import Clock, SystemClock
from formula_kernel.domain.results import EvaluationResult
from formula_kernel.logging_config import get_logger

logger = get_logger("services.result_cache")


@dataclass(frozen=True)
class CacheKey:
    """Identity of one single evaluation."""

    entity_id: str
    fiscal_year: int
    version: str | None
    formula_key: str


@dataclass(frozen=True)
class CacheEntry:
    key: CacheKey
    result: EvaluationResult
    computed_at: datetime


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time counters."""

    hits: int
    misses: int
    coalesced: int
    evictions: int
    size: int
    in_flight: int

    @property
    def hit_rate(self) -> float:
        requests = self.hits + self.misses + self.coalesced
        if requests == 0:
            return 0.0
        return (self.hits + self.coalesced) / requests


def _retrieve_exception(task: asyncio.Task) -> None:
    # A flight whose callers all went away must not log "never retrieved".
    if not task.cancelled():
        task.exception()


class ResultCache:
    """
    Async memoization of evaluation results.

    Contract:
        ``get_or_compute`` must be awaited on the event loop that owns the
        in-flight tasks.  ``compute_fn`` is a zero-argument coroutine
        function; it is only called on a miss with nothing in flight.
    """

    def __init__(
        self,
        max_entries: int | None = None,
        ttl_seconds: float | None = None,
        clock: Clock | None = None,
    ):
        if max_entries is not None and max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be > 0, got {ttl_seconds}")
        self._max_entries = max_entries
        self._ttl_seconds = ttl_seconds
        self._clock = clock or SystemClock()
        self._entries: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        self._in_flight: dict[CacheKey, asyncio.Task[EvaluationResult]] = {}
        self._hits = 0
        self._misses = 0
        self._coalesced = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, CacheKey) and self.get(key) is not None

    async def get_or_compute(
        self,
        key: CacheKey,
        compute_fn: Callable[[], Awaitable[EvaluationResult]],
    ) -> EvaluationResult:
        """Cached result for ``key``, computing it at most once at a time."""
        entry = self._lookup(key)
        if entry is not None:
            self._hits += 1
            return entry.result

        task = self._in_flight.get(key)
        if task is None:
            self._misses += 1
            task = asyncio.ensure_future(self._compute(key, compute_fn))
            task.add_done_callback(_retrieve_exception)
            self._in_flight[key] = task
        else:
            self._coalesced += 1
            logger.debug("cache_flight_joined", extra={"formula_key": key.formula_key})

        return await asyncio.shield(task)

    async def _compute(
        self,
        key: CacheKey,
        compute_fn: Callable[[], Awaitable[EvaluationResult]],
    ) -> EvaluationResult:
        """
        Body of one flight.

        Preconditions:
            Runs as the task registered in ``_in_flight[key]``.

        Postconditions:
            The result is stored only if this task is still the registered
            flight for ``key``; a flight detached by invalidation answers
            its own waiters and leaves the cache untouched.  The
            registration is removed either way.
        """
        me = asyncio.current_task()
        try:
            result = await compute_fn()
            if self._in_flight.get(key) is me:
                self._store(key, result)
            else:
                logger.debug("cache_stale_flight_discarded", extra={"formula_key": key.formula_key})
            return result
        finally:
            if self._in_flight.get(key) is me:
                del self._in_flight[key]

    def get(self, key: CacheKey) -> CacheEntry | None:
        """The live entry for ``key`` without touching statistics."""
        entry = self._entries.get(key)
        if entry is None or self._expired(entry):
            return None
        return entry

    def evict(self, key: CacheKey) -> bool:
        """Drop one entry and detach its in-flight computation, if any."""
        detached = self._in_flight.pop(key, None) is not None
        return self._entries.pop(key, None) is not None or detached

    def invalidate(
        self,
        entity_id: str | None = None,
        fiscal_year: int | None = None,
    ) -> int:
        """
        Drop entries for an entity and/or year after a ledger upload.

        Postconditions:
            No stored entry matches; matching in-flight computations are
            detached so the next request recomputes.  Returns the number
            of stored entries dropped.
        """

        def selected(key: CacheKey) -> bool:
            return (entity_id is None or key.entity_id == entity_id) and (
                fiscal_year is None or key.fiscal_year == fiscal_year
            )

        doomed = [key for key in self._entries if selected(key)]
        for key in doomed:
            del self._entries[key]
        # Running flights may have read the old ledger.
        for key in [key for key in self._in_flight if selected(key)]:
            del self._in_flight[key]
        if doomed:
            logger.info(
                "cache_invalidated",
                extra={"entity_id": entity_id, "fiscal_year": fiscal_year, "count": len(doomed)},
            )
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
        self._in_flight.clear()

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            coalesced=self._coalesced,
            evictions=self._evictions,
            size=len(self._entries),
            in_flight=len(self._in_flight),
        )

    def _lookup(self, key: CacheKey) -> CacheEntry | None:
        """
        Live entry for ``key``, refreshing its LRU position.

        Postconditions:
            An expired entry is deleted and counted as an eviction; a live
            one moves to the most-recently-used end.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[key]
            self._evictions += 1
            return None
        self._entries.move_to_end(key)
        return entry

    def _expired(self, entry: CacheEntry) -> bool:
        # Age is measured on the injected clock; ttl None never expires.
        if self._ttl_seconds is None:
            return False
        age = (self._clock.now() - entry.computed_at).total_seconds()
        return age >= self._ttl_seconds

    def _store(self, key: CacheKey, result: EvaluationResult) -> None:
        """
        Insert or replace the entry for ``key``.

        Postconditions:
            The entry is most recently used; with ``max_entries`` set the
            least recently used entries are evicted until the bound holds.
        """
        self._entries[key] = CacheEntry(key, result, self._clock.now())
        self._entries.move_to_end(key)
        if self._max_entries is None:
            return
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("cache_entry_evicted", extra={"formula_key": evicted.formula_key})
