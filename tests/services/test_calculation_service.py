"""
Tests for the calculation service.

Covers:
- Single, series, aggregate and series-of-aggregate requests
- Caching of every single evaluation
- Missing ledger data as invalid results
- Structural errors surfacing before any fetch
- Newest-request-wins with the cache still populated
"""

import asyncio
from decimal import Decimal

import pytest

from formula_config.schema import EngineSettings
from formula_engines.parser import parse
from formula_kernel.domain.formula import FormulaDefinition
from formula_kernel.domain.results import ErrorKind, EvaluationResult, ResultKind
from formula_kernel.exceptions import CircularReferenceError, FormulaNotFoundError, ParseError
from formula_services.calculation_service import (
    EvaluationRequest,
    FormulaCalculationService,
    FormulaSource,
    RequestShape,
)
from formula_services.formula_registry import FormulaRegistry, InMemoryFormulaStore
from formula_services.ledger_source import InMemoryLedgerSource
from formula_services.request_gate import WidgetSubscription


@pytest.fixture
def ledger_source(snapshot_factory) -> InMemoryLedgerSource:
    source = InMemoryLedgerSource()
    # Standard-chart style views: two-digit standard numbers
    source.add(snapshot_factory("A", 2022, {"10": 100, "20": -300, "1": 0}))
    source.add(snapshot_factory("A", 2023, {"10": 150, "20": -300}))
    source.add(snapshot_factory("A", 2024, {"10": 100, "20": 400, "21": 100, "22": 100}))
    source.add(snapshot_factory("C", 2024, {"10": 70, "20": 100}, version="v2"))
    # Unversioned requests get the most recently added snapshot
    source.add(snapshot_factory("C", 2024, {"10": 50, "20": 100}))
    return source


@pytest.fixture
def service(registry, ledger_source) -> FormulaCalculationService:
    return FormulaCalculationService(registry, ledger_source)


class TestSingle:
    def test_raw_source(self, service):
        result = asyncio.run(service.evaluate_single("A", 2024, FormulaSource.of_source("[10]")))

        assert result.is_valid
        assert result.value == Decimal("100")

    def test_stored_formula_carries_result_kind(self, service):
        result = asyncio.run(
            service.evaluate_single("A", 2024, FormulaSource.of_id("equity_share"))
        )

        # [20] / [1] * 100 with [1] matching 10 only
        assert result.result_kind == ResultKind.PERCENTAGE
        assert result.value == Decimal("400")

    def test_nested_formula(self, service):
        result = asyncio.run(
            service.evaluate_single("A", 2024, FormulaSource.of_id("liquidity_ratio"))
        )

        # ([1] - [10]) / ([21] + [22]) = (100 - 100) / 200
        assert result.value == Decimal("0")
        assert result.result_kind == ResultKind.RATIO

    def test_missing_ledger_is_invalid(self, service):
        result = asyncio.run(service.evaluate_single("B", 2024, FormulaSource.of_source("[10]")))

        assert not result.is_valid
        assert result.error == ErrorKind.MISSING_LEDGER_DATA

    def test_version_selects_snapshot(self, service):
        result = asyncio.run(
            service.evaluate_single("C", 2024, FormulaSource.of_source("[10]"), version="v2")
        )

        assert result.value == Decimal("70")

    def test_division_by_zero(self, service):
        result = asyncio.run(
            service.evaluate_single("A", 2024, FormulaSource.of_source("[10] / [99]"))
        )

        assert result.error == ErrorKind.DIVISION_BY_ZERO

    def test_term_list_source(self, service):
        source = FormulaSource.of_source(
            [
                {"type": "account", "account": "10"},
                {"type": "constant", "constant": 2, "operator": "*"},
            ]
        )

        result = asyncio.run(service.evaluate_single("A", 2024, source))

        assert result.value == Decimal("200")


class TestCaching:
    """Every single evaluation goes through the cache."""

    def test_repeat_request_fetches_once(self, service, ledger_source):
        formula = FormulaSource.of_source("[10] + [20]")

        async def run():
            first = await service.evaluate_single("A", 2024, formula)
            second = await service.evaluate_single("A", 2024, formula)
            return first, second

        first, second = asyncio.run(run())

        assert first is second
        assert ledger_source.fetch_count == 1

    def test_same_body_shares_entry_across_sources(self, service, ledger_source):
        async def run():
            await service.evaluate_single("A", 2024, FormulaSource.of_source("[10]+[20]"))
            await service.evaluate_single("A", 2024, FormulaSource.of_source("[10] + [20]"))

        asyncio.run(run())

        assert ledger_source.fetch_count == 1

    def test_result_kind_is_part_of_key(self, service, ledger_source):
        async def run():
            await service.evaluate_single("A", 2024, FormulaSource.of_source("[10]"))
            return await service.evaluate_single(
                "A", 2024, FormulaSource.of_source("[10]", ResultKind.RATIO)
            )

        result = asyncio.run(run())

        assert result.result_kind == ResultKind.RATIO
        assert ledger_source.fetch_count == 2

    def test_concurrent_identical_requests_single_flight(self, registry, snapshot_factory):
        source = InMemoryLedgerSource([snapshot_factory("A", 2024, {"10": 1})], latency=0.05)
        service = FormulaCalculationService(registry, source)
        formula = FormulaSource.of_source("[10]")

        async def run():
            return await asyncio.gather(
                service.evaluate_single("A", 2024, formula),
                service.evaluate_single("A", 2024, formula),
            )

        first, second = asyncio.run(run())

        assert first is second
        assert source.fetch_count == 1

    def test_missing_data_not_cached(self, service, ledger_source, snapshot_factory):
        formula = FormulaSource.of_source("[10]")

        async def run():
            before = await service.evaluate_single("B", 2024, formula)
            ledger_source.add(snapshot_factory("B", 2024, {"10": 5}))
            after = await service.evaluate_single("B", 2024, formula)
            return before, after

        before, after = asyncio.run(run())

        assert not before.is_valid
        assert after.value == Decimal("5")


class TestSeriesAndAggregate:
    def test_series(self, service):
        points = asyncio.run(
            service.evaluate_series("A", 2020, 2024, FormulaSource.of_source("[10]"))
        )

        assert [p.year for p in points] == [2020, 2021, 2022, 2023, 2024]
        assert [p.result.is_valid for p in points] == [False, False, True, True, True]
        assert points[3].result.value == Decimal("150")

    def test_aggregate(self, service):
        """A=100, B missing, C=50."""
        result = asyncio.run(
            service.evaluate_aggregate(["A", "B", "C"], 2024, FormulaSource.of_source("[10]"))
        )

        assert result.is_valid
        assert result.value == Decimal("150")

    def test_aggregate_with_version(self, service):
        result = asyncio.run(
            service.evaluate_aggregate(["A", "C"], 2024, FormulaSource.of_source("[10]"), "v2")
        )

        # Only C has a v2 snapshot
        assert result.value == Decimal("70")

    def test_aggregate_nothing_valid(self, service):
        result = asyncio.run(
            service.evaluate_aggregate(["B", "D"], 2024, FormulaSource.of_source("[10]"))
        )

        assert result.error == ErrorKind.NO_VALID_CONTRIBUTIONS

    def test_series_of_aggregates(self, service):
        request = EvaluationRequest.series(("A", "C"), 2023, 2024, FormulaSource.of_source("[10]"))

        points = asyncio.run(service.evaluate(request))

        assert [p.result.value for p in points] == [Decimal("150"), Decimal("150")]

    def test_one_year_series_is_still_a_series(self, service):
        request = EvaluationRequest.series("A", 2024, 2024, FormulaSource.of_source("[10]"))

        points = asyncio.run(service.evaluate(request))

        assert isinstance(points, list)
        assert [(p.year, p.result.value) for p in points] == [(2024, Decimal("100"))]

    def test_one_year_series_of_aggregates(self, service):
        request = EvaluationRequest.series(("A", "C"), 2024, 2024, FormulaSource.of_source("[10]"))

        points = asyncio.run(service.evaluate(request))

        assert [(p.year, p.result.value) for p in points] == [(2024, Decimal("150"))]

    def test_dispatch_single(self, service):
        request = EvaluationRequest.single("A", 2024, FormulaSource.of_source("[10]"))

        result = asyncio.run(service.evaluate(request))

        assert isinstance(result, EvaluationResult)
        assert result.value == Decimal("100")

    def test_aggregate_entries_cached_per_entity(self, service, ledger_source):
        formula = FormulaSource.of_source("[20]")

        async def run():
            await service.evaluate_aggregate(["A", "C"], 2024, formula)
            return await service.evaluate_single("C", 2024, formula)

        result = asyncio.run(run())

        assert result.value == Decimal("100")
        assert ledger_source.fetch_count == 2


class TestStructuralErrors:
    """Configuration errors propagate before any ledger fetch."""

    def test_parse_error(self, service, ledger_source):
        with pytest.raises(ParseError):
            asyncio.run(service.evaluate_single("A", 2024, FormulaSource.of_source("[10] +")))

        assert ledger_source.fetch_count == 0

    def test_unknown_formula(self, service):
        with pytest.raises(FormulaNotFoundError):
            asyncio.run(service.evaluate_single("A", 2024, FormulaSource.of_id("nope")))

    def test_cycle(self, standard_library, ledger_source):
        user = InMemoryFormulaStore([FormulaDefinition("loop", "Loop", "custom", parse("{loop}"))])
        service = FormulaCalculationService(
            FormulaRegistry.from_library(standard_library, user), ledger_source
        )

        with pytest.raises(CircularReferenceError):
            asyncio.run(service.evaluate_single("A", 2024, FormulaSource.of_id("loop")))


class TestRequests:
    def test_formula_source_needs_exactly_one(self):
        with pytest.raises(ValueError):
            FormulaSource()
        with pytest.raises(ValueError):
            FormulaSource(formula_id="x", source="[1]")

    def test_term_list_source_is_frozen(self):
        source = FormulaSource.of_source([{"type": "account", "account": "10"}])

        assert isinstance(source.source, tuple)

    def test_request_kinds(self):
        formula = FormulaSource.of_id("revenue")

        assert not EvaluationRequest.single("A", 2024, formula).is_series
        assert EvaluationRequest.series("A", 2020, 2024, formula).is_series
        assert EvaluationRequest.aggregate(["A", "B"], 2024, formula).is_aggregate

    def test_shape_from_constructor(self):
        formula = FormulaSource.of_id("revenue")

        assert EvaluationRequest.single("A", 2024, formula).shape is RequestShape.SINGLE
        assert EvaluationRequest.series("A", 2024, 2024, formula).shape is RequestShape.SERIES
        assert EvaluationRequest.aggregate(["A", "B"], 2024, formula).shape is RequestShape.AGGREGATE

    def test_shape_inferred_when_omitted(self):
        formula = FormulaSource.of_id("revenue")

        assert EvaluationRequest(("A",), (2020, 2024), formula).shape is RequestShape.SERIES
        assert EvaluationRequest(("A", "B"), (2024, 2024), formula).shape is RequestShape.AGGREGATE
        assert EvaluationRequest(("A",), (2024, 2024), formula).shape is RequestShape.SINGLE

    def test_single_shape_rejects_year_range(self):
        with pytest.raises(ValueError):
            EvaluationRequest(
                ("A",), (2020, 2024), FormulaSource.of_id("revenue"), shape=RequestShape.SINGLE
            )

    def test_empty_entities_rejected(self):
        with pytest.raises(ValueError):
            EvaluationRequest((), (2024, 2024), FormulaSource.of_id("revenue"))

    def test_reversed_years_rejected(self):
        with pytest.raises(ValueError):
            EvaluationRequest.series("A", 2024, 2020, FormulaSource.of_id("revenue"))


class TestConcurrencyBound:
    def test_fetches_bounded_by_settings(self, registry, snapshot_factory):
        in_flight = 0
        peak = 0

        class _Tracking(InMemoryLedgerSource):
            async def fetch(self, entity_id, fiscal_year, version=None):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                try:
                    await asyncio.sleep(0.01)
                    return await super().fetch(entity_id, fiscal_year, version)
                finally:
                    in_flight -= 1

        source = _Tracking([snapshot_factory("A", y, {"10": y}) for y in range(2010, 2025)])
        service = FormulaCalculationService(
            registry, source, settings=EngineSettings(concurrency_limit=3)
        )

        points = asyncio.run(service.evaluate_series("A", 2010, 2024, FormulaSource.of_source("[10]")))

        assert len(points) == 15
        assert peak <= 3


class TestNewestRequestWins:
    def test_superseded_result_discarded_but_cached(self, registry, snapshot_factory):
        source = InMemoryLedgerSource(
            [snapshot_factory("A", 2023, {"10": 1}), snapshot_factory("A", 2024, {"10": 2})]
        )
        service = FormulaCalculationService(registry, source)
        subscription = WidgetSubscription("kpi-widget")
        formula = FormulaSource.of_source("[10]")

        async def slow_2023():
            await asyncio.sleep(0.03)
            return await service.evaluate_single("A", 2023, formula)

        async def run():
            return await asyncio.gather(
                subscription.submit(slow_2023),
                subscription.submit(lambda: service.evaluate_single("A", 2024, formula)),
            )

        old, new = asyncio.run(run())

        assert old is None
        assert new.value == Decimal("2")
        assert subscription.latest is new
        assert service.cache.stats().size == 2
