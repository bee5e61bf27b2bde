"""
Formula Engines -- pure calculation layer.

All engines are pure functions: no I/O, no clock, no shared state.  They
can run concurrently for any number of ledgers.

Engines:
    parser      Formula text / builder term list -> Term tree
    serializer  Term tree -> canonical formula text
    resolver    Account reference -> (total, match count) over a ledger view
    evaluator   Term tree + ledger view -> EvaluationResult
    formatting  EvaluationResult -> display string; benchmark bands
"""

from formula_engines.evaluator import evaluate
from formula_engines.formatting import (
    NOT_AVAILABLE,
    assess_benchmark,
    format_result,
    format_value,
)
from formula_engines.parser import FormulaTerm, TermType, parse, parse_account_reference
from formula_engines.resolver import Resolution, matches, resolve
from formula_engines.serializer import serialize
from formula_engines.tracer import traced_engine

__all__ = [
    "NOT_AVAILABLE",
    "FormulaTerm",
    "Resolution",
    "TermType",
    "assess_benchmark",
    "evaluate",
    "format_result",
    "format_value",
    "matches",
    "parse",
    "parse_account_reference",
    "resolve",
    "serialize",
    "traced_engine",
]
