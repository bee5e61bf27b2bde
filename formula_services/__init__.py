"""
Formula Services -- stateful orchestration over engines and kernel.

Services:
    formula_registry       FormulaRegistry, FormulaStore and its in-memory
                           and standard-library implementations
    sql_formula_store      SqlFormulaStore (user formulas in SQL)
    ledger_source          LedgerSource, InMemoryLedgerSource, SqlLedgerSource
    result_cache           ResultCache with single-flight, LRU and TTL
    series / aggregator    year-range and entity-set fan-out
    request_gate           newest-request-wins for dashboard widgets
    calculation_service    FormulaCalculationService, the entry point
"""

from formula_services.aggregator import aggregate
from formula_services.calculation_service import (
    CompiledFormula,
    EvaluationRequest,
    FormulaCalculationService,
    FormulaSource,
    RequestShape,
)
from formula_services.concurrency import gather_bounded
from formula_services.formula_registry import (
    FormulaRegistry,
    FormulaStore,
    InMemoryFormulaStore,
    StandardFormulaStore,
)
from formula_services.ledger_source import (
    InMemoryLedgerSource,
    LedgerSource,
    SqlLedgerSource,
)
from formula_services.request_gate import LatestRequestGate, WidgetSubscription
from formula_services.result_cache import CacheEntry, CacheKey, CacheStats, ResultCache
from formula_services.series import build_series
from formula_services.sql_formula_store import SqlFormulaStore

__all__ = [
    "CacheEntry",
    "CacheKey",
    "CacheStats",
    "CompiledFormula",
    "EvaluationRequest",
    "FormulaCalculationService",
    "FormulaRegistry",
    "FormulaSource",
    "FormulaStore",
    "InMemoryFormulaStore",
    "InMemoryLedgerSource",
    "LatestRequestGate",
    "LedgerSource",
    "RequestShape",
    "ResultCache",
    "SqlFormulaStore",
    "SqlLedgerSource",
    "StandardFormulaStore",
    "WidgetSubscription",
    "aggregate",
    "build_series",
    "gather_bounded",
]
