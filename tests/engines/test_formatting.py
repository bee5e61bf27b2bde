"""Tests for display formatting and benchmark assessment."""

from decimal import Decimal

import pytest

from formula_engines.formatting import NOT_AVAILABLE, assess_benchmark, format_result, format_value
from formula_kernel.domain.formula import BenchmarkRating, Benchmarks
from formula_kernel.domain.results import ErrorKind, EvaluationResult, ResultKind

NBSP = "\u00a0"


class TestFormatValue:
    """Per-kind display strings."""

    def test_amount_grouped(self):
        assert format_value(Decimal("1234567"), ResultKind.AMOUNT) == f"kr 1{NBSP}234{NBSP}567"

    def test_amount_rounds_to_whole_units(self):
        assert format_value(Decimal("999.5"), ResultKind.AMOUNT) == f"kr 1{NBSP}000"

    def test_amount_absolute_value(self):
        assert format_value(Decimal("-2500"), ResultKind.AMOUNT) == f"kr 2{NBSP}500"

    def test_amount_currency_label(self):
        assert format_value(Decimal("12"), ResultKind.AMOUNT, "NOK") == "NOK 12"

    def test_percentage_one_decimal(self):
        assert format_value(Decimal("12.345"), ResultKind.PERCENTAGE) == "12.3%"

    def test_percentage_not_rescaled(self):
        assert format_value(Decimal("0.123"), ResultKind.PERCENTAGE) == "0.1%"

    def test_ratio_two_decimals(self):
        assert format_value(Decimal("1.235"), ResultKind.RATIO) == "1.24"


class TestFormatResult:
    def test_invalid_is_not_available(self):
        result = EvaluationResult.invalid(ErrorKind.DIVISION_BY_ZERO, ResultKind.RATIO)

        assert format_result(result) == NOT_AVAILABLE == "N/A"

    def test_valid_uses_result_kind(self):
        result = EvaluationResult.ok(Decimal("1.5"), ResultKind.RATIO)

        assert format_result(result) == "1.50"


class TestAssessBenchmark:
    """Benchmark bands, direction inferred from thresholds."""

    HIGHER = Benchmarks(excellent=Decimal("40"), good=Decimal("25"), poor=Decimal("10"))
    LOWER = Benchmarks(excellent=Decimal("0.5"), good=Decimal("1.0"), poor=Decimal("2.0"))

    @pytest.mark.parametrize(
        "value, rating",
        [
            ("45", BenchmarkRating.EXCELLENT),
            ("40", BenchmarkRating.EXCELLENT),
            ("30", BenchmarkRating.GOOD),
            ("15", BenchmarkRating.FAIR),
            ("10", BenchmarkRating.POOR),
            ("-5", BenchmarkRating.POOR),
        ],
    )
    def test_higher_is_better(self, value, rating):
        assert assess_benchmark(Decimal(value), self.HIGHER) == rating

    @pytest.mark.parametrize(
        "value, rating",
        [
            ("0.3", BenchmarkRating.EXCELLENT),
            ("0.8", BenchmarkRating.GOOD),
            ("1.5", BenchmarkRating.FAIR),
            ("2.0", BenchmarkRating.POOR),
            ("3.1", BenchmarkRating.POOR),
        ],
    )
    def test_lower_is_better(self, value, rating):
        assert assess_benchmark(Decimal(value), self.LOWER) == rating

    def test_direction(self):
        assert self.HIGHER.higher_is_better
        assert not self.LOWER.higher_is_better
