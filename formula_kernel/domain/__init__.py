"""Pure domain types for the formula engine."""

from formula_kernel.domain.formula import Benchmarks, BenchmarkRating, FormulaDefinition
from formula_kernel.domain.ledger import AccountBalance, LedgerSnapshot
from formula_kernel.domain.results import (
    AccountResolutionWarning,
    ErrorKind,
    EvaluationResult,
    ResultKind,
    SeriesPoint,
)
from formula_kernel.domain.terms import (
    AccountRange,
    AccountRef,
    BinaryOp,
    Constant,
    FormulaRef,
    Grouping,
    Operator,
    Term,
)

__all__ = [
    "AccountBalance",
    "AccountRange",
    "AccountRef",
    "AccountResolutionWarning",
    "BenchmarkRating",
    "Benchmarks",
    "BinaryOp",
    "Constant",
    "ErrorKind",
    "EvaluationResult",
    "FormulaDefinition",
    "FormulaRef",
    "Grouping",
    "LedgerSnapshot",
    "Operator",
    "ResultKind",
    "SeriesPoint",
    "Term",
]
