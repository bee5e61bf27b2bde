"""
Typed Exception Hierarchy for the Formula Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Dashboard widgets must tell a broken formula apart from a transient data gap.
Catching by type (and reading structured attributes) keeps that distinction
out of message strings:

    try:
        result = await service.evaluate(request)
    except ParseError as e:
        widget.show_config_error(e.source, e.position)   # structured data
    except CircularReferenceError as e:
        widget.show_config_error(" -> ".join(e.chain))

Data-shape conditions (division by zero, empty account matches, missing
ledger snapshots inside a series or aggregate) are NOT exceptions at the
evaluation boundary. They surface as ``EvaluationResult.is_valid == False``.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FormulaEngineError (base)
    |
    +-- FormulaError
    |   +-- ParseError
    |   +-- CircularReferenceError
    |   +-- FormulaNotFoundError
    |   +-- UnresolvedFormulaReferenceError
    |   +-- DuplicateFormulaError
    |
    +-- LedgerError
        +-- MissingLedgerDataError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category | Code                           | When Raised
---------|--------------------------------|------------------------------------------
Formula  | PARSE_ERROR                    | Malformed formula text or term list
         | CIRCULAR_REFERENCE             | Formula references itself (directly or not)
         | FORMULA_NOT_FOUND              | Unknown formula id
         | UNRESOLVED_FORMULA_REFERENCE   | Evaluator reached a {formula_id} leaf
         | DUPLICATE_FORMULA              | User formula would shadow a standard one
---------|--------------------------------|------------------------------------------
Ledger   | MISSING_LEDGER_DATA            | No snapshot for entity/year/version

Structural errors (the Formula category) are never retried: they indicate a
configuration problem, not a transient condition.
"""


class FormulaEngineError(Exception):
    """
    Base exception for all formula engine errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "FORMULA_ENGINE_ERROR"


# Formula-related exceptions


class FormulaError(FormulaEngineError):
    """Base exception for structural formula errors."""

    code: str = "FORMULA_ERROR"


class ParseError(FormulaError):
    """Formula source could not be parsed."""

    code: str = "PARSE_ERROR"

    def __init__(self, source: str, reason: str, position: int | None = None):
        self.source = source
        self.reason = reason
        self.position = position
        where = f" at position {position}" if position is not None else ""
        super().__init__(f"Cannot parse formula {source!r}{where}: {reason}")


class CircularReferenceError(FormulaError):
    """
    A formula references itself, or nesting exceeds the depth bound.

    ``chain`` is the reference path walked before the repeat was detected.
    """

    code: str = "CIRCULAR_REFERENCE"

    def __init__(self, formula_id: str, chain: tuple[str, ...], max_depth: int | None = None):
        self.formula_id = formula_id
        self.chain = chain
        self.max_depth = max_depth
        path = " -> ".join(chain)
        if max_depth is not None:
            msg = f"Formula reference depth exceeds {max_depth} resolving {formula_id}: {path}"
        else:
            msg = f"Circular formula reference at {formula_id}: {path}"
        super().__init__(msg)


class FormulaNotFoundError(FormulaError):
    """No formula definition with the given id."""

    code: str = "FORMULA_NOT_FOUND"

    def __init__(self, formula_id: str):
        self.formula_id = formula_id
        super().__init__(f"Formula not found: {formula_id}")


class UnresolvedFormulaReferenceError(FormulaError):
    """The evaluator reached a formula reference that was never expanded."""

    code: str = "UNRESOLVED_FORMULA_REFERENCE"

    def __init__(self, formula_id: str):
        self.formula_id = formula_id
        super().__init__(
            f"Formula reference {{{formula_id}}} must be resolved by the "
            f"formula registry before evaluation"
        )


class DuplicateFormulaError(FormulaError):
    """A user formula id collides with a standard library formula."""

    code: str = "DUPLICATE_FORMULA"

    def __init__(self, formula_id: str):
        self.formula_id = formula_id
        super().__init__(f"Formula id is reserved by the standard library: {formula_id}")


# Ledger-related exceptions


class LedgerError(FormulaEngineError):
    """Base exception for ledger view errors."""

    code: str = "LEDGER_ERROR"


class MissingLedgerDataError(LedgerError):
    """No ledger snapshot exists for the requested entity/year/version."""

    code: str = "MISSING_LEDGER_DATA"

    def __init__(self, entity_id: str, fiscal_year: int, version: str | None = None):
        self.entity_id = entity_id
        self.fiscal_year = fiscal_year
        self.version = version
        suffix = f" (version {version})" if version is not None else ""
        super().__init__(
            f"No ledger data for entity {entity_id}, fiscal year {fiscal_year}{suffix}"
        )
