"""
formula_services.aggregator -- One formula summed over a set of entities.

Responsibility:
    ``aggregate`` evaluates a formula for each entity of a group (for
    example the companies of a consolidated group) and sums the valid
    per-entity results.

Invariants enforced:
    - Partial tolerance: an entity with an invalid result or no ledger data
      is excluded from the sum and logged.  It does not fail the aggregate.
    - The aggregate is valid iff at least one entity contributed; otherwise
      it is invalid with ``NO_VALID_CONTRIBUTIONS``.
    - Account warnings of all entities are merged (one per reference).
    - Each entity is evaluated once, even if listed twice.

Failure modes:
    - ValueError for an empty entity set.
    - Structural errors raised by ``eval_fn`` propagate.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from decimal import Decimal

from formula_kernel.domain.results import (
    AccountResolutionWarning,
    ErrorKind,
    EvaluationResult,
    ResultKind,
)
from formula_kernel.exceptions import MissingLedgerDataError
from formula_kernel.logging_config import get_logger
from formula_services.concurrency import gather_bounded

logger = get_logger("services.aggregator")


async def aggregate(
    eval_fn: Callable[[str], Awaitable[EvaluationResult]],
    entity_ids: Sequence[str],
    concurrency_limit: int | None = None,
    result_kind: ResultKind = ResultKind.AMOUNT,
) -> EvaluationResult:
    """Sum ``eval_fn(entity_id)`` over the valid entities."""
    entities = list(dict.fromkeys(entity_ids))
    if not entities:
        raise ValueError("aggregate needs at least one entity")

    async def contribution(entity_id: str) -> EvaluationResult:
        try:
            return await eval_fn(entity_id)
        except MissingLedgerDataError:
            return EvaluationResult.invalid(ErrorKind.MISSING_LEDGER_DATA, result_kind)

    results = await gather_bounded(contribution, entities, concurrency_limit)

    total = Decimal("0")
    contributors = 0
    excluded: dict[str, str] = {}
    warnings: dict[str, AccountResolutionWarning] = {}
    for entity_id, result in zip(entities, results):
        for warning in result.warnings:
            warnings.setdefault(warning.reference, warning)
        if result.is_valid and result.value is not None:
            total += result.value
            contributors += 1
        else:
            excluded[entity_id] = result.error.value if result.error else "unknown"

    if excluded:
        logger.info(
            "aggregate_entities_excluded",
            extra={"excluded": excluded, "contributors": contributors},
        )

    kind = next((r.result_kind for r in results if r.is_valid), result_kind)
    merged = tuple(warnings.values())
    if contributors == 0:
        return EvaluationResult.invalid(ErrorKind.NO_VALID_CONTRIBUTIONS, kind, merged)
    return EvaluationResult.ok(total, kind, merged)
