"""
formula_engines.evaluator -- Evaluate a formula AST against a ledger view.

Responsibility:
    Post-order walk of a ``Term`` tree.  Account leaves resolve through
    ``formula_engines.resolver``; constants are literal; ``BinaryOp`` applies
    its operator to both evaluated children; ``Grouping`` is transparent.

Architecture position:
    Engines -- pure calculation layer, zero I/O, never blocks.
    Consumed by ``formula_services.calculation_service``.

Invariants enforced:
    - Purity: identical (AST, ledger) inputs produce identical results; no
      shared mutable state between evaluations.
    - Data-shape conditions never raise.  Division by zero yields
      ``is_valid=False`` with ``ErrorKind.DIVISION_BY_ZERO``; empty account
      matches contribute 0 and attach an ``AccountResolutionWarning``.
    - ``result_kind`` is a display tag only.  A percentage formula must
      contain its own ``* 100``.

Failure modes:
    - UnresolvedFormulaReferenceError if the tree still contains a
      ``FormulaRef``; the formula registry must expand references first.
    - TypeError for objects that are not formula terms.

Usage:
    from formula_engines.evaluator import evaluate
    from formula_engines.parser import parse

    result = evaluate(parse("[10] / [20] * 100"), snapshot, ResultKind.PERCENTAGE)
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from formula_engines.resolver import resolve
from formula_engines.tracer import traced_engine
from formula_kernel.domain.ledger import AccountBalance, LedgerSnapshot
from formula_kernel.domain.results import (
    AccountResolutionWarning,
    ErrorKind,
    EvaluationResult,
    ResultKind,
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
    describe_reference,
)
from formula_kernel.exceptions import UnresolvedFormulaReferenceError
from formula_kernel.logging_config import get_logger

logger = get_logger("engines.evaluator")

_ZERO = Decimal("0")


class _DivisionByZero(Exception):
    """Internal signal unwinding the walk; never escapes ``evaluate``."""


class _Walk:
    """State of one evaluation: the ledger and the warnings collected."""

    def __init__(self, balances: Sequence[AccountBalance]):
        self.balances = balances
        self.warnings: dict[str, AccountResolutionWarning] = {}

    def value(self, term: Term) -> Decimal:
        """
        Post-order value of ``term``.

        Postconditions:
            Every unmatched account reference has a warning recorded once,
            keyed by its bracket text.

        Raises:
            _DivisionByZero: unwinds to ``evaluate``, which turns it into
                an invalid result.
            UnresolvedFormulaReferenceError: on a ``FormulaRef`` leaf.
        """
        match term:
            case AccountRef() | AccountRange():
                resolution = resolve(term, self.balances)
                if resolution.is_empty:
                    text = describe_reference(term)
                    self.warnings.setdefault(text, AccountResolutionWarning(text))
                return resolution.total
            case Constant(value=value):
                return value
            case Grouping(inner=inner):
                return self.value(inner)
            case BinaryOp(left=left, op=op, right=right):
                lhs = self.value(left)
                rhs = self.value(right)
                return _apply(op, lhs, rhs)
            case FormulaRef(formula_id=formula_id):
                raise UnresolvedFormulaReferenceError(formula_id)
        raise TypeError(f"Not a formula term: {term!r}")


def _apply(op: Operator, lhs: Decimal, rhs: Decimal) -> Decimal:
    """
    Apply one arithmetic operator.

    Preconditions:
        Both operands are already evaluated Decimals.

    Postconditions:
        Exact Decimal arithmetic in the current context; no rounding beyond
        the context precision.

    Raises:
        _DivisionByZero: if ``op`` is DIV and ``rhs`` is zero.
    """
    match op:
        case Operator.ADD:
            return lhs + rhs
        case Operator.SUB:
            return lhs - rhs
        case Operator.MUL:
            return lhs * rhs
        case Operator.DIV:
            if rhs == _ZERO:
                raise _DivisionByZero()
            return lhs / rhs
    raise ValueError(f"Unsupported operator: {op!r}")


@traced_engine("formula_evaluator", "1.0", fingerprint_fields=("ast", "result_kind"))
def evaluate(
    ast: Term,
    ledger: LedgerSnapshot | Sequence[AccountBalance],
    result_kind: ResultKind = ResultKind.AMOUNT,
) -> EvaluationResult:
    """
    Evaluate ``ast`` against ``ledger``.

    Args:
        ast: Fully expanded formula tree (no ``FormulaRef`` leaves).
        ledger: A snapshot or a plain sequence of balances.
        result_kind: Display tag carried onto the result.

    Returns:
        EvaluationResult; invalid (value None) on division by zero.

    Raises:
        UnresolvedFormulaReferenceError: if a ``FormulaRef`` is reached.
    """
    balances = ledger.balances if isinstance(ledger, LedgerSnapshot) else ledger
    walk = _Walk(balances)
    try:
        value = walk.value(ast)
    except _DivisionByZero:
        logger.debug("evaluation_division_by_zero")
        return EvaluationResult.invalid(
            ErrorKind.DIVISION_BY_ZERO,
            result_kind,
            tuple(walk.warnings.values()),
        )

    warnings = tuple(walk.warnings.values())
    if warnings:
        logger.info(
            "account_references_unmatched",
            extra={"references": [w.reference for w in warnings]},
        )
    return EvaluationResult.ok(value, result_kind, warnings)
