"""
formula_engines.parser -- Formula source to AST.

Responsibility:
    Turn a formula source into a ``Term`` tree.  Two source forms share one
    precedence parser:

    * bracket-annotated text, the form saved formulas and widget
      configurations persist verbatim::

          [10]            accounts starting with 10
          [19-79]         accounts numerically within 19..79
          {equity_ratio}  another stored formula
          ([10]-[20])/[10]*100

    * the formula-builder term list: a sequence of ``FormulaTerm`` (or
      equivalent mappings) where each term carries the operator joining it
      to the previous one.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Grammar (text):
    expr    := product (('+' | '-') product)*
    product := primary (('*' | '/') primary)*
    primary := '[' ref ']' | number | '{' formula_id '}' | '(' expr ')'
    ref     := code | digits '-' digits

    ``*`` and ``/`` bind tighter than ``+`` and ``-``; operators of equal
    precedence associate left to right.  Parentheses become ``Grouping``
    nodes so the serializer can reproduce them.

Failure modes:
    - ParseError for: empty input, unbalanced parentheses, empty bracket
      reference, malformed reference, unknown operator or character,
      leading/trailing operator, two operands without an operator, and
      (term lists) unknown term types or missing term fields, and
      parentheses nested deeper than MAX_NESTING_DEPTH.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

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
from formula_kernel.exceptions import ParseError
from formula_kernel.logging_config import get_logger

logger = get_logger("engines.parser")

_CODE_RE = re.compile(r"^[0-9A-Za-z_.]+$")
_RANGE_RE = re.compile(r"^(\d+)\s*-\s*(\d+)$")
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?|\.\d+")
_FORMULA_ID_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
_OPERATOR_SYMBOLS = frozenset(op.value for op in Operator)

# Each parenthesis level costs a handful of Python frames in the descent.
MAX_NESTING_DEPTH = 64


class TokenKind(str, Enum):
    NUMBER = "number"
    ACCOUNT = "account"
    FORMULA = "formula"
    OPERATOR = "operator"
    LPAREN = "("
    RPAREN = ")"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: Any
    position: int


# ---------------------------------------------------------------------------
# Formula-builder term list
# ---------------------------------------------------------------------------


class TermType(str, Enum):
    """Term types emitted by the formula-builder UI."""

    ACCOUNT = "account"
    CONSTANT = "constant"
    PARENTHESIS = "parenthesis"
    FORMULA = "formula"
    VARIABLE = "variable"  # builder alias for FORMULA


@dataclass(frozen=True)
class FormulaTerm:
    """
    One entry of a structured formula.

    ``operator`` joins this term to the previous one and is absent on the
    first term and on closing parentheses.
    """

    type: TermType
    operator: Operator | None = None
    account: str | None = None
    constant: Decimal | None = None
    parenthesis: str | None = None  # "open" | "close"
    formula_id: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> FormulaTerm:
        """Build from the builder's JSON shape (``{"type": "account", ...}``)."""
        try:
            term_type = TermType(data["type"])
        except (KeyError, ValueError) as e:
            raise ValueError(f"Unknown formula term type: {data.get('type')!r}") from e

        operator = data.get("operator")
        constant = data.get("constant")
        return cls(
            type=term_type,
            operator=Operator.from_symbol(operator) if operator else None,
            account=str(data["account"]) if data.get("account") is not None else None,
            constant=Decimal(str(constant)) if constant is not None else None,
            parenthesis=data.get("parenthesis"),
            formula_id=data.get("formula_id") or data.get("variable"),
        )

    def describe(self) -> str:
        """Text form of this term, used in error messages."""
        prefix = f"{self.operator.value} " if self.operator else ""
        match self.type:
            case TermType.ACCOUNT:
                body = f"[{self.account}]"
            case TermType.CONSTANT:
                body = str(self.constant)
            case TermType.PARENTHESIS:
                body = "(" if self.parenthesis == "open" else ")"
            case _:
                body = f"{{{self.formula_id}}}"
        return prefix + body


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse(source: str | Sequence[FormulaTerm | Mapping[str, Any]]) -> Term:
    """
    Parse a formula source into an AST.

    Args:
        source: Bracket-annotated text, or a formula-builder term list.

    Returns:
        The root ``Term``.

    Raises:
        ParseError: if the source is malformed.
    """
    if isinstance(source, str):
        text = source
        tokens = tokenize(source)
    else:
        text, tokens = _lower_term_list(source)
    return _Parser(text, tokens).parse()


def parse_account_reference(text: str, source: str = "", position: int = 0) -> AccountRef | AccountRange:
    """
    Parse the inside of a bracket reference: ``10`` or ``19-79``.

    Raises:
        ParseError: if the reference is empty or malformed.
    """
    body = text.strip()
    source = source or f"[{text}]"
    if not body:
        raise ParseError(source, "empty account reference", position)

    range_match = _RANGE_RE.match(body)
    if range_match:
        start, end = range_match.groups()
        if int(start) > int(end):
            raise ParseError(source, f"account range start {start} exceeds end {end}", position)
        return AccountRange(start, end)
    if "-" in body:
        raise ParseError(source, f"malformed account range [{body}]", position)
    if not _CODE_RE.match(body):
        raise ParseError(source, f"invalid account code [{body}]", position)
    return AccountRef(body)


def tokenize(source: str) -> list[Token]:
    """
    Split bracket-annotated text into tokens.

    Raises:
        ParseError: on unknown characters or malformed brackets.
    """
    tokens: list[Token] = []
    i = 0
    n = len(source)
    while i < n:
        ch = source[i]
        if ch.isspace():
            i += 1
        elif ch == "[":
            close = source.find("]", i + 1)
            if close == -1:
                raise ParseError(source, "unterminated account reference", i)
            inner = source[i + 1:close]
            if "[" in inner:
                raise ParseError(source, "nested '[' in account reference", i)
            tokens.append(Token(TokenKind.ACCOUNT, parse_account_reference(inner, source, i), i))
            i = close + 1
        elif ch == "{":
            close = source.find("}", i + 1)
            if close == -1:
                raise ParseError(source, "unterminated formula reference", i)
            formula_id = source[i + 1:close].strip()
            if not _FORMULA_ID_RE.match(formula_id):
                raise ParseError(source, f"invalid formula reference {{{formula_id}}}", i)
            tokens.append(Token(TokenKind.FORMULA, formula_id, i))
            i = close + 1
        elif ch.isdigit() or ch == ".":
            match = _NUMBER_RE.match(source, i)
            if match is None:
                raise ParseError(source, f"invalid number near {source[i:i + 8]!r}", i)
            tokens.append(Token(TokenKind.NUMBER, Decimal(match.group()), i))
            i = match.end()
        elif ch in _OPERATOR_SYMBOLS:
            tokens.append(Token(TokenKind.OPERATOR, Operator.from_symbol(ch), i))
            i += 1
        elif ch == "(":
            tokens.append(Token(TokenKind.LPAREN, ch, i))
            i += 1
        elif ch == ")":
            tokens.append(Token(TokenKind.RPAREN, ch, i))
            i += 1
        elif ch == "]":
            raise ParseError(source, "unmatched ']'", i)
        else:
            raise ParseError(source, f"unknown operator or character {ch!r}", i)
    return tokens


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _lower_term_list(
    terms: Sequence[FormulaTerm | Mapping[str, Any]],
) -> tuple[str, list[Token]]:
    """Convert a builder term list into the token stream the parser reads."""
    try:
        items = [t if isinstance(t, FormulaTerm) else FormulaTerm.from_mapping(t) for t in terms]
    except (ValueError, InvalidOperation) as e:
        raise ParseError(repr(list(terms)), str(e)) from e

    text = " ".join(item.describe() for item in items)
    tokens: list[Token] = []
    for index, item in enumerate(items):
        if item.operator is not None:
            tokens.append(Token(TokenKind.OPERATOR, item.operator, index))

        match item.type:
            case TermType.ACCOUNT:
                if item.account is None:
                    raise ParseError(text, "account term without account", index)
                tokens.append(
                    Token(TokenKind.ACCOUNT, parse_account_reference(item.account, text, index), index)
                )
            case TermType.CONSTANT:
                if item.constant is None:
                    raise ParseError(text, "constant term without value", index)
                tokens.append(Token(TokenKind.NUMBER, item.constant, index))
            case TermType.PARENTHESIS:
                if item.parenthesis == "open":
                    tokens.append(Token(TokenKind.LPAREN, "(", index))
                elif item.parenthesis == "close":
                    if item.operator is not None:
                        raise ParseError(text, "operator before ')'", index)
                    tokens.append(Token(TokenKind.RPAREN, ")", index))
                else:
                    raise ParseError(text, f"unknown parenthesis {item.parenthesis!r}", index)
            case TermType.FORMULA | TermType.VARIABLE:
                if not item.formula_id:
                    raise ParseError(text, "formula term without formula id", index)
                tokens.append(Token(TokenKind.FORMULA, item.formula_id, index))
    return text, tokens


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, source: str, tokens: list[Token]):
        self.source = source
        self.tokens = tokens
        self.pos = 0
        self.depth = 0

    def parse(self) -> Term:
        if not self.tokens:
            raise ParseError(self.source, "empty formula")
        term = self._expr()
        if self.pos < len(self.tokens):
            token = self.tokens[self.pos]
            if token.kind == TokenKind.RPAREN:
                raise ParseError(self.source, "unbalanced parentheses: unexpected ')'", token.position)
            raise ParseError(self.source, "missing operator between operands", token.position)
        return term

    def _peek(self) -> Token | None:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def _binary(self, operand, precedence: int) -> Term:
        """Left-associative run of operators at one precedence level."""
        left = operand()
        while True:
            token = self._peek()
            if (
                token is None
                or token.kind != TokenKind.OPERATOR
                or token.value.precedence != precedence
            ):
                return left
            self.pos += 1
            right = operand()
            left = BinaryOp(left, token.value, right)

    def _expr(self) -> Term:
        return self._binary(self._product, 1)

    def _product(self) -> Term:
        return self._binary(self._primary, 2)

    def _primary(self) -> Term:
        """
        One operand: a literal, a reference or a parenthesised expression.

        Raises:
            ParseError: on a missing operand, an unbalanced or empty
                parenthesis, or nesting beyond MAX_NESTING_DEPTH.
        """
        token = self._peek()
        if token is None:
            if self.pos > 0 and self.tokens[self.pos - 1].kind == TokenKind.OPERATOR:
                raise ParseError(self.source, "trailing operator", self.tokens[self.pos - 1].position)
            raise ParseError(self.source, "unbalanced parentheses: missing ')'", None)

        match token.kind:
            case TokenKind.NUMBER:
                self.pos += 1
                return Constant(token.value)
            case TokenKind.ACCOUNT:
                self.pos += 1
                return token.value
            case TokenKind.FORMULA:
                self.pos += 1
                return FormulaRef(token.value)
            case TokenKind.LPAREN:
                self.pos += 1
                following = self._peek()
                if following is not None and following.kind == TokenKind.RPAREN:
                    raise ParseError(self.source, "empty parentheses", following.position)
                if self.depth >= MAX_NESTING_DEPTH:
                    raise ParseError(
                        self.source,
                        f"parentheses nested deeper than {MAX_NESTING_DEPTH}",
                        token.position,
                    )
                self.depth += 1
                inner = self._expr()
                self.depth -= 1
                closing = self._peek()
                if closing is None or closing.kind != TokenKind.RPAREN:
                    if closing is None:
                        raise ParseError(
                            self.source, "unbalanced parentheses: missing ')'", token.position
                        )
                    raise ParseError(self.source, "missing operator between operands", closing.position)
                self.pos += 1
                return Grouping(inner)
            case TokenKind.OPERATOR:
                if self.pos == 0 or self.tokens[self.pos - 1].kind == TokenKind.LPAREN:
                    reason = f"leading operator {token.value.value!r}"
                else:
                    reason = f"unexpected operator {token.value.value!r}"
                raise ParseError(self.source, reason, token.position)
            case TokenKind.RPAREN:
                if self.pos > 0 and self.tokens[self.pos - 1].kind == TokenKind.OPERATOR:
                    raise ParseError(self.source, "trailing operator before ')'", token.position)
                raise ParseError(self.source, "unbalanced parentheses: unexpected ')'", token.position)
        raise ParseError(self.source, f"unexpected token {token.value!r}", token.position)
