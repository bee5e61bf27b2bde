"""
formula_engines.formatting -- Display strings and benchmark bands.

Responsibility:
    Render an ``EvaluationResult`` the way dashboard widgets show it, and
    place a KPI value in its benchmark band.

    amount      ->  "kr 1 234 567"  (absolute value, whole units, grouped
                    with no-break spaces)
    percentage  ->  "12.3%"         (one decimal, value already scaled)
    ratio       ->  "1.23"          (two decimals)
    invalid     ->  "N/A"

Architecture position:
    Engines -- pure, zero I/O.

Invariants enforced:
    - Formatting never rescales: a percentage-tagged value of 0.123 renders
      as "0.1%", not "12.3%".
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from formula_kernel.domain.formula import BenchmarkRating, Benchmarks
from formula_kernel.domain.results import EvaluationResult, ResultKind

NOT_AVAILABLE = "N/A"
_GROUP_SEPARATOR = " "


def format_value(
    value: Decimal,
    result_kind: ResultKind,
    currency_label: str = "kr",
) -> str:
    """Format a bare value for its result kind."""
    match result_kind:
        case ResultKind.PERCENTAGE:
            return f"{value.quantize(Decimal('0.1'), rounding=ROUND_HALF_UP)}%"
        case ResultKind.RATIO:
            return str(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
        case ResultKind.AMOUNT:
            whole = abs(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
            grouped = f"{whole:,}".replace(",", _GROUP_SEPARATOR)
            return f"{currency_label} {grouped}"
    return str(value)


def format_result(result: EvaluationResult, currency_label: str = "kr") -> str:
    """Format a result, or ``N/A`` if it is invalid."""
    if not result.is_valid or result.value is None:
        return NOT_AVAILABLE
    return format_value(result.value, result.result_kind, currency_label)


def assess_benchmark(value: Decimal, benchmarks: Benchmarks) -> BenchmarkRating:
    """
    Place ``value`` in a benchmark band.

    Higher-is-better when ``excellent >= poor``: at or above ``excellent``
    is EXCELLENT, at or above ``good`` is GOOD, above ``poor`` is FAIR, and
    anything else is POOR.  Lower-is-better mirrors the comparisons.
    """
    if benchmarks.higher_is_better:
        if value >= benchmarks.excellent:
            return BenchmarkRating.EXCELLENT
        if value >= benchmarks.good:
            return BenchmarkRating.GOOD
        if value > benchmarks.poor:
            return BenchmarkRating.FAIR
        return BenchmarkRating.POOR

    if value <= benchmarks.excellent:
        return BenchmarkRating.EXCELLENT
    if value <= benchmarks.good:
        return BenchmarkRating.GOOD
    if value < benchmarks.poor:
        return BenchmarkRating.FAIR
    return BenchmarkRating.POOR
