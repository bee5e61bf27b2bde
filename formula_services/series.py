"""
formula_services.series -- One formula over a range of fiscal years.

Responsibility:
    ``build_series`` invokes a single-year evaluation once per year in
    ``[start_year, end_year]`` and returns one ``SeriesPoint`` per year in
    ascending order.

Invariants enforced:
    - The series length is always ``end_year - start_year + 1``.  A year
      with no ledger data becomes an invalid point (``MISSING_LEDGER_DATA``);
      it is never dropped, so charts render gaps without re-indexing.
    - Years are evaluated concurrently; points are placed by year, not by
      completion order.

Failure modes:
    - ValueError when ``end_year < start_year``.
    - Structural errors (ParseError, CircularReferenceError, ...) raised by
      ``eval_fn`` propagate and cancel the remaining years.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from formula_kernel.domain.results import ErrorKind, EvaluationResult, ResultKind, SeriesPoint
from formula_kernel.exceptions import MissingLedgerDataError
from formula_kernel.logging_config import get_logger
from formula_services.concurrency import gather_bounded

logger = get_logger("services.series")


async def build_series(
    eval_fn: Callable[[int], Awaitable[EvaluationResult]],
    start_year: int,
    end_year: int,
    concurrency_limit: int | None = None,
    result_kind: ResultKind = ResultKind.AMOUNT,
) -> list[SeriesPoint]:
    """
    Evaluate ``eval_fn(year)`` for every year of the range.

    Args:
        eval_fn: Single-year evaluation; may raise MissingLedgerDataError.
        start_year: First fiscal year (inclusive).
        end_year: Last fiscal year (inclusive).
        concurrency_limit: Maximum years evaluated at once (None: no bound).
        result_kind: Kind tagged onto points whose ledger is missing.
    """
    if end_year < start_year:
        raise ValueError(f"end_year {end_year} is before start_year {start_year}")

    async def point(year: int) -> SeriesPoint:
        try:
            result = await eval_fn(year)
        except MissingLedgerDataError as e:
            logger.info(
                "series_point_missing_ledger",
                extra={"entity_id": e.entity_id, "fiscal_year": year},
            )
            result = EvaluationResult.invalid(ErrorKind.MISSING_LEDGER_DATA, result_kind)
        return SeriesPoint(year, result)

    years = list(range(start_year, end_year + 1))
    return await gather_bounded(point, years, concurrency_limit)
