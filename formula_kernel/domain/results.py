"""
Results -- Tagged evaluation outcomes.

Responsibility:
    ``EvaluationResult`` is the single currency every entry point returns:
    a value, a validity flag, a result kind and an optional error kind.
    ``SeriesPoint`` tags a result with its fiscal year.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.

Invariants enforced:
    - Results are created fresh per evaluation and never mutated.  The
      cache replaces entries, it never patches them.
    - ``is_valid == False`` implies ``value is None`` and ``error`` is set.
    - ``result_kind`` affects display scaling only, never arithmetic.

Failure modes:
    - ``ValueError`` from ``EvaluationResult`` construction when validity,
      value and error disagree.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class ResultKind(str, Enum):
    """How a formula result is meant to be displayed."""

    AMOUNT = "amount"
    PERCENTAGE = "percentage"
    RATIO = "ratio"


class ErrorKind(str, Enum):
    """Non-fatal, data-shape reasons a result is invalid."""

    DIVISION_BY_ZERO = "division_by_zero"
    MISSING_LEDGER_DATA = "missing_ledger_data"
    NO_VALID_CONTRIBUTIONS = "no_valid_contributions"


@dataclass(frozen=True)
class AccountResolutionWarning:
    """
    A reference matched no ledger accounts.

    Non-fatal: the reference contributes 0.  Surfaced as a UI hint since an
    empty match on a non-trivial range usually means a configuration mistake.
    """

    reference: str
    code: str = "ACCOUNT_RESOLUTION_EMPTY"

    @property
    def message(self) -> str:
        return f"No ledger accounts match {self.reference}"


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of evaluating one formula against one ledger view."""

    value: Decimal | None
    is_valid: bool
    result_kind: ResultKind = ResultKind.AMOUNT
    error: ErrorKind | None = None
    warnings: tuple[AccountResolutionWarning, ...] = field(default=())

    def __post_init__(self) -> None:
        if self.is_valid and (self.value is None or self.error is not None):
            raise ValueError("A valid result needs a value and no error")
        if not self.is_valid and (self.value is not None or self.error is None):
            raise ValueError("An invalid result needs an error and no value")

    @classmethod
    def ok(
        cls,
        value: Decimal,
        result_kind: ResultKind = ResultKind.AMOUNT,
        warnings: tuple[AccountResolutionWarning, ...] = (),
    ) -> EvaluationResult:
        return cls(value=value, is_valid=True, result_kind=result_kind, warnings=warnings)

    @classmethod
    def invalid(
        cls,
        error: ErrorKind,
        result_kind: ResultKind = ResultKind.AMOUNT,
        warnings: tuple[AccountResolutionWarning, ...] = (),
    ) -> EvaluationResult:
        return cls(
            value=None,
            is_valid=False,
            result_kind=result_kind,
            error=error,
            warnings=warnings,
        )


@dataclass(frozen=True)
class SeriesPoint:
    """One fiscal year of a series."""

    year: int
    result: EvaluationResult
