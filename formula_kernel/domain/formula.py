"""
Formula definitions -- Named, stored formulas.

Responsibility:
    ``FormulaDefinition`` ties a formula id to its AST, result kind and
    descriptive metadata.  Definitions come from two places behind the same
    type: the standard library (preloaded, immutable) and user-saved
    formulas (external mutable store).

Architecture position:
    Kernel > Domain -- pure data.

Invariants enforced:
    - Definitions are never mutated in place.  An edit is stored as a new
      definition with a higher ``version``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum

from formula_kernel.domain.results import ResultKind
from formula_kernel.domain.terms import Term


class BenchmarkRating(str, Enum):
    """Benchmark band labels."""

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


@dataclass(frozen=True)
class Benchmarks:
    """
    Reference thresholds for a KPI.

    When ``excellent > poor`` higher values are better (margins, equity
    ratio); otherwise lower values are better (debt-to-equity).
    """

    excellent: Decimal
    good: Decimal
    poor: Decimal

    @property
    def higher_is_better(self) -> bool:
        return self.excellent >= self.poor


@dataclass(frozen=True)
class FormulaDefinition:
    """A named formula, resolvable by id."""

    id: str
    name: str
    category: str
    ast: Term
    result_kind: ResultKind = ResultKind.AMOUNT
    description: str = ""
    source_text: str | None = None
    version: int = 1
    interpretation: str | None = None
    benchmarks: Benchmarks | None = None

    def next_version(self, **changes) -> FormulaDefinition:
        """Return an edited copy with ``version`` incremented."""
        return replace(self, version=self.version + 1, **changes)
