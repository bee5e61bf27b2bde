"""
formula_engines.serializer -- AST back to bracket-annotated text.

Round-trip law: for any text ``s`` that parses,
``parse(serialize(parse(s))) == parse(s)``.  Output is canonical rather
than byte-identical (single spaces around operators, no redundant
whitespace).

``Grouping`` nodes always print their parentheses.  ASTs assembled in code
(without ``Grouping``) get parentheses only where precedence or left
associativity would otherwise change the tree; re-parsing such output
yields the same tree with ``Grouping`` nodes at those places.
"""

from __future__ import annotations

from decimal import Decimal

from formula_kernel.domain.terms import (
    AccountRange,
    AccountRef,
    BinaryOp,
    Constant,
    FormulaRef,
    Grouping,
    Term,
)


def serialize(term: Term) -> str:
    """Render a term tree as formula text."""
    match term:
        case AccountRef(code=code):
            return f"[{code}]"
        case AccountRange(start=start, end=end):
            return f"[{start}-{end}]"
        case Constant(value=value):
            return _format_constant(value)
        case FormulaRef(formula_id=formula_id):
            return f"{{{formula_id}}}"
        case Grouping(inner=inner):
            return f"({serialize(inner)})"
        case BinaryOp(left=left, op=op, right=right):
            left_text = serialize(left)
            if isinstance(left, BinaryOp) and left.op.precedence < op.precedence:
                left_text = f"({left_text})"
            right_text = serialize(right)
            if isinstance(right, BinaryOp) and right.op.precedence <= op.precedence:
                right_text = f"({right_text})"
            return f"{left_text} {op.value} {right_text}"
    raise TypeError(f"Not a formula term: {term!r}")


def _format_constant(value: Decimal) -> str:
    # The text grammar has no unary minus
    if value < 0:
        return f"(0 - {format(-value, 'f')})"
    return format(value, "f")
