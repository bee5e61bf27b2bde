"""
Terms -- Closed union of formula AST nodes.

Responsibility:
    Defines the node types produced by the parser and consumed by the
    evaluator, serializer and formula registry.  ``Term`` is a closed union
    of frozen dataclasses; consumers dispatch with ``match`` rather than
    virtual methods.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.

Invariants enforced:
    - Every node is immutable and hashable, so ASTs can be fingerprinted
      and shared across concurrent evaluations.
    - A well-formed tree has no unbound operators and no cycles.  This is
      structural (the parser only builds finished nodes), not checked at
      runtime.

Failure modes:
    - ``ValueError`` from ``AccountRef`` / ``AccountRange`` when a code is
      empty.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Union


class Operator(str, Enum):
    """Arithmetic operators supported by the formula language."""

    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"

    @property
    def precedence(self) -> int:
        """Binding strength: multiplicative operators bind tighter."""
        if self in (Operator.MUL, Operator.DIV):
            return 2
        return 1

    @classmethod
    def from_symbol(cls, symbol: str) -> Operator:
        """Look up an operator by its symbol."""
        return cls(symbol)


@dataclass(frozen=True)
class AccountRef:
    """All ledger accounts whose number starts with ``code``."""

    code: str

    def __post_init__(self) -> None:
        if not self.code:
            raise ValueError("Account reference code cannot be empty")


@dataclass(frozen=True)
class AccountRange:
    """All ledger accounts numerically within ``[start, end]`` inclusive."""

    start: str
    end: str

    def __post_init__(self) -> None:
        if not self.start or not self.end:
            raise ValueError("Account range bounds cannot be empty")


@dataclass(frozen=True)
class Constant:
    """A literal number."""

    value: Decimal


@dataclass(frozen=True)
class BinaryOp:
    """``left <op> right``."""

    left: Term
    op: Operator
    right: Term


@dataclass(frozen=True)
class Grouping:
    """Explicit parentheses, kept so serialization round-trips."""

    inner: Term


@dataclass(frozen=True)
class FormulaRef:
    """Reference to another stored formula by id (``{formula_id}``)."""

    formula_id: str


Term = Union[AccountRef, AccountRange, Constant, BinaryOp, Grouping, FormulaRef]

AccountReference = Union[AccountRef, AccountRange]

def iter_terms(term: Term) -> Iterator[Term]:
    """Yield every node of the tree, parents before children."""
    stack: list[Term] = [term]
    while stack:
        node = stack.pop()
        yield node
        match node:
            case BinaryOp(left=left, right=right):
                stack.append(right)
                stack.append(left)
            case Grouping(inner=inner):
                stack.append(inner)


def iter_account_references(term: Term) -> Iterator[AccountReference]:
    """Yield account references in source order."""
    for node in iter_terms(term):
        if isinstance(node, (AccountRef, AccountRange)):
            yield node


def iter_formula_references(term: Term) -> Iterator[str]:
    """Yield referenced formula ids in source order."""
    for node in iter_terms(term):
        if isinstance(node, FormulaRef):
            yield node.formula_id


def describe_reference(ref: AccountReference) -> str:
    """Bracketed text form of an account reference, e.g. ``[19-79]``."""
    match ref:
        case AccountRef(code=code):
            return f"[{code}]"
        case AccountRange(start=start, end=end):
            return f"[{start}-{end}]"
    raise TypeError(f"Not an account reference: {ref!r}")
