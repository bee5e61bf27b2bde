"""
formula_services.calculation_service -- The evaluation entry point.

Responsibility:
    Accept an ``EvaluationRequest`` (entity set, fiscal year range, formula
    id or source, optional ledger version) and return either one
    ``EvaluationResult`` or a series of ``SeriesPoint``s:

        one entity,  one year    ->  EvaluationResult
        many entities, one year  ->  aggregate EvaluationResult
        any entities, year range ->  list[SeriesPoint] (of aggregates when
                                     there are several entities)

    The shape is fixed by the request constructor, so a series narrowed to
    one year still answers with a one-point list.

Architecture position:
    Services -- orchestrates the formula registry, a ledger source, the
    pure evaluator and the result cache.  Series and aggregate requests are
    thin wrappers over the single-evaluation path, so every individual
    (entity, year) evaluation goes through the cache.

Invariants enforced:
    - The formula is compiled (resolved, expanded) once per request.
    - Ledger fetches are bounded by one ``asyncio.Semaphore`` per service
      (``EngineSettings.concurrency_limit``).
    - Every single evaluation is keyed by ``(entity, year, version,
      formula_key)`` where formula_key fingerprints the expanded AST and
      result kind.
    - Missing ledger data is never cached and never raised to the caller;
      it surfaces as ``is_valid=False`` with ``MISSING_LEDGER_DATA``.

Failure modes:
    - Structural errors (ParseError, CircularReferenceError,
      FormulaNotFoundError) propagate before any ledger is fetched.

Audit relevance:
    Each evaluation logs under a ``request_id`` bound in ``LogContext``,
    together with entity_id, fiscal_year and formula_key.

Usage:
    service = FormulaCalculationService(registry, ledger_source)
    result = await service.evaluate(
        EvaluationRequest.single("acme", 2024, FormulaSource.of_id("equity_ratio"))
    )
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from uuid import uuid4

from formula_config.schema import EngineSettings
from formula_engines.evaluator import evaluate
from formula_engines.parser import FormulaTerm
from formula_kernel.domain.results import ErrorKind, EvaluationResult, ResultKind, SeriesPoint
from formula_kernel.domain.terms import Term
from formula_kernel.exceptions import MissingLedgerDataError
from formula_kernel.logging_config import LogContext, get_logger
from formula_kernel.utils.hashing import formula_fingerprint
from formula_services.aggregator import aggregate
from formula_services.formula_registry import FormulaRegistry
from formula_services.ledger_source import LedgerSource
from formula_services.result_cache import CacheKey, ResultCache
from formula_services.series import build_series

logger = get_logger("services.calculation")


@dataclass(frozen=True)
class FormulaSource:
    """
    What to evaluate: a stored formula id, or raw source text / term list.

    ``result_kind`` applies to raw sources only; a stored formula carries
    its own.
    """

    formula_id: str | None = None
    source: str | tuple[FormulaTerm | Mapping, ...] | None = None
    result_kind: ResultKind = ResultKind.AMOUNT

    def __post_init__(self) -> None:
        if (self.formula_id is None) == (self.source is None):
            raise ValueError("FormulaSource needs exactly one of formula_id or source")
        if self.source is not None and not isinstance(self.source, str):
            object.__setattr__(self, "source", tuple(self.source))

    @classmethod
    def of_id(cls, formula_id: str) -> FormulaSource:
        return cls(formula_id=formula_id)

    @classmethod
    def of_source(
        cls,
        source: str | Sequence[FormulaTerm | Mapping],
        result_kind: ResultKind = ResultKind.AMOUNT,
    ) -> FormulaSource:
        return cls(source=source, result_kind=result_kind)


class RequestShape(str, Enum):
    """Response shape a request asks for."""

    SINGLE = "single"  # one EvaluationResult
    AGGREGATE = "aggregate"  # one EvaluationResult summed over entities
    SERIES = "series"  # list[SeriesPoint], one per year


@dataclass(frozen=True)
class EvaluationRequest:
    """
    An entity set, an inclusive fiscal year range and a formula.

    ``shape`` decides the response type.  When omitted it is inferred: a
    multi-year range is a series, several entities for one year an
    aggregate.  A series over a single year is still a series and returns
    a one-point list.
    """

    entity_ids: tuple[str, ...]
    fiscal_years: tuple[int, int]
    formula: FormulaSource
    version: str | None = None
    shape: RequestShape | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "entity_ids", tuple(dict.fromkeys(self.entity_ids)))
        if not self.entity_ids:
            raise ValueError("EvaluationRequest needs at least one entity")
        start, end = self.fiscal_years
        if end < start:
            raise ValueError(f"fiscal year range {start}..{end} is empty")
        if self.shape is None:
            if start != end:
                inferred = RequestShape.SERIES
            elif len(self.entity_ids) > 1:
                inferred = RequestShape.AGGREGATE
            else:
                inferred = RequestShape.SINGLE
            object.__setattr__(self, "shape", inferred)
        elif self.shape is not RequestShape.SERIES and start != end:
            raise ValueError(f"a {self.shape.value} request covers one fiscal year, got {start}..{end}")
        elif self.shape is RequestShape.SINGLE and len(self.entity_ids) > 1:
            raise ValueError("a single request covers one entity")

    @classmethod
    def single(
        cls,
        entity_id: str,
        fiscal_year: int,
        formula: FormulaSource,
        version: str | None = None,
    ) -> EvaluationRequest:
        return cls((entity_id,), (fiscal_year, fiscal_year), formula, version, RequestShape.SINGLE)

    @classmethod
    def series(
        cls,
        entity_id: str | Sequence[str],
        start_year: int,
        end_year: int,
        formula: FormulaSource,
        version: str | None = None,
    ) -> EvaluationRequest:
        entity_ids = (entity_id,) if isinstance(entity_id, str) else tuple(entity_id)
        return cls(entity_ids, (start_year, end_year), formula, version, RequestShape.SERIES)

    @classmethod
    def aggregate(
        cls,
        entity_ids: Sequence[str],
        fiscal_year: int,
        formula: FormulaSource,
        version: str | None = None,
    ) -> EvaluationRequest:
        return cls(tuple(entity_ids), (fiscal_year, fiscal_year), formula, version, RequestShape.AGGREGATE)

    @property
    def is_series(self) -> bool:
        return self.shape is RequestShape.SERIES

    @property
    def is_aggregate(self) -> bool:
        return len(self.entity_ids) > 1


@dataclass(frozen=True)
class CompiledFormula:
    """An expanded formula ready for evaluation."""

    ast: Term
    result_kind: ResultKind
    formula_key: str


class FormulaCalculationService:
    """
    Evaluates formulas against ledger snapshots.

    Contract:
        Receives the registry, a ledger source and optionally a shared
        ``ResultCache`` and ``EngineSettings`` via the constructor.  Must be
        used from a single event loop.
    """

    def __init__(
        self,
        registry: FormulaRegistry,
        ledger_source: LedgerSource,
        cache: ResultCache | None = None,
        settings: EngineSettings | None = None,
    ):
        self._settings = settings or EngineSettings()
        self._registry = registry
        self._ledger_source = ledger_source
        self._cache = cache or ResultCache(
            max_entries=self._settings.cache_max_entries,
            ttl_seconds=self._settings.cache_ttl_seconds,
        )
        self._fetch_slots = asyncio.Semaphore(self._settings.concurrency_limit)

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def registry(self) -> FormulaRegistry:
        return self._registry

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    def compile(self, formula: FormulaSource) -> CompiledFormula:
        """Resolve and expand ``formula``; raises structural errors."""
        if formula.formula_id is not None:
            definition = self._registry.get_definition(formula.formula_id)
            ast = self._registry.resolve_by_id(formula.formula_id)
            result_kind = definition.result_kind
        else:
            ast = self._registry.resolve_by_expression(formula.source)
            result_kind = formula.result_kind
        return CompiledFormula(ast, result_kind, formula_fingerprint(ast, result_kind))

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def evaluate(self, request: EvaluationRequest) -> EvaluationResult | list[SeriesPoint]:
        """Dispatch a request to the single, aggregate or series path."""
        compiled = self.compile(request.formula)
        start, end = request.fiscal_years
        with LogContext.bind(request_id=uuid4().hex[:12]):
            logger.info(
                "evaluation_requested",
                extra={
                    "entity_ids": list(request.entity_ids),
                    "fiscal_years": [start, end],
                    "version": request.version,
                    "formula_key": compiled.formula_key,
                },
            )
            if request.is_series:
                return await self._series(compiled, request.entity_ids, start, end, request.version)
            return await self._evaluate_year(compiled, request.entity_ids, start, request.version)

    async def evaluate_single(
        self,
        entity_id: str,
        fiscal_year: int,
        formula: FormulaSource,
        version: str | None = None,
    ) -> EvaluationResult:
        compiled = self.compile(formula)
        with LogContext.bind(request_id=uuid4().hex[:12]):
            return await self._evaluate_year(compiled, (entity_id,), fiscal_year, version)

    async def evaluate_series(
        self,
        entity_id: str | Sequence[str],
        start_year: int,
        end_year: int,
        formula: FormulaSource,
        version: str | None = None,
    ) -> list[SeriesPoint]:
        compiled = self.compile(formula)
        entity_ids = (entity_id,) if isinstance(entity_id, str) else tuple(dict.fromkeys(entity_id))
        with LogContext.bind(request_id=uuid4().hex[:12]):
            return await self._series(compiled, entity_ids, start_year, end_year, version)

    async def evaluate_aggregate(
        self,
        entity_ids: Sequence[str],
        fiscal_year: int,
        formula: FormulaSource,
        version: str | None = None,
    ) -> EvaluationResult:
        compiled = self.compile(formula)
        with LogContext.bind(request_id=uuid4().hex[:12]):
            return await self._evaluate_year(compiled, tuple(entity_ids), fiscal_year, version)

    # ------------------------------------------------------------------
    # Single evaluation path
    # ------------------------------------------------------------------

    async def _series(
        self,
        compiled: CompiledFormula,
        entity_ids: Sequence[str],
        start_year: int,
        end_year: int,
        version: str | None,
    ) -> list[SeriesPoint]:
        """One point per year; each year goes through the single or aggregate path."""
        return await build_series(
            lambda year: self._evaluate_year(compiled, entity_ids, year, version),
            start_year,
            end_year,
            result_kind=compiled.result_kind,
        )

    async def _evaluate_year(
        self,
        compiled: CompiledFormula,
        entity_ids: Sequence[str],
        fiscal_year: int,
        version: str | None,
    ) -> EvaluationResult:
        """
        Result for one year over one entity or a summed entity set.

        Postconditions:
            Missing ledger data never raises; it comes back as an invalid
            ``MISSING_LEDGER_DATA`` result (or an excluded contributor).
        """
        if len(entity_ids) == 1:
            try:
                return await self._evaluate_cached(compiled, entity_ids[0], fiscal_year, version)
            except MissingLedgerDataError:
                return EvaluationResult.invalid(ErrorKind.MISSING_LEDGER_DATA, compiled.result_kind)

        return await aggregate(
            lambda entity_id: self._evaluate_cached(compiled, entity_id, fiscal_year, version),
            entity_ids,
            result_kind=compiled.result_kind,
        )

    async def _evaluate_cached(
        self,
        compiled: CompiledFormula,
        entity_id: str,
        fiscal_year: int,
        version: str | None,
    ) -> EvaluationResult:
        """
        One (entity, year) evaluation through the shared cache.

        Preconditions:
            ``compiled`` is fully expanded.

        Postconditions:
            The ledger is fetched under the service semaphore at most once
            per concurrent key; the result is cached under
            ``(entity, year, version, formula_key)``.

        Raises:
            MissingLedgerDataError: when the source has no snapshot.  It is
                not cached.
        """
        key = CacheKey(entity_id, fiscal_year, version, compiled.formula_key)

        async def compute() -> EvaluationResult:
            with LogContext.bind(
                entity_id=entity_id,
                fiscal_year=fiscal_year,
                formula_key=compiled.formula_key,
            ):
                async with self._fetch_slots:
                    snapshot = await self._ledger_source.fetch(entity_id, fiscal_year, version)
                result = evaluate(compiled.ast, snapshot, compiled.result_kind)
                logger.debug(
                    "evaluation_computed",
                    extra={"is_valid": result.is_valid, "warning_count": len(result.warnings)},
                )
                return result

        return await self._cache.get_or_compute(key, compute)
