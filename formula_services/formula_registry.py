"""
formula_services.formula_registry -- Formula lookup, expansion and storage.

Responsibility:
    Turn a formula id or raw formula source into an evaluable ``Term`` tree.
    Two tiers sit behind one ``FormulaStore`` protocol:

      standard  -- the preloaded library from ``formula_config``; immutable,
                   shared by every request in the process.
      user      -- user-saved formulas in a mutable external store
                   (in memory, or SQLAlchemy via ``SqlFormulaStore``).

    ``{formula_id}`` references are expanded recursively.  Each expansion is
    wrapped in ``Grouping`` so the referenced formula keeps its own
    precedence: with ``a = [1] + [2]``, ``{a} * 2`` is ``([1] + [2]) * 2``.

Architecture position:
    Services -- composes the parser (engines) with the stores.  Holds no
    per-request state; safe to share across concurrent evaluations.

Invariants enforced:
    - Reference expansion walks with the chain of ids visited so far; a
      repeated id, or a chain longer than ``max_reference_depth``, raises
      ``CircularReferenceError`` instead of recursing without bound.
    - User formulas never shadow a standard id (``DuplicateFormulaError``).
    - ``save`` rejects a definition whose references would form a cycle or
      point at an unknown formula, so stored formulas always expand.
    - Definitions are never mutated; saving an existing id stores the next
      version.

Failure modes:
    - FormulaNotFoundError for an unknown id.
    - ParseError from ``resolve_by_expression`` for malformed source.
    - CircularReferenceError on cycles or excessive nesting.
    - DuplicateFormulaError when saving over a standard id.
    - TypeError when saving into a read-only store.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Protocol, runtime_checkable

from formula_config.schema import StandardFormulaLibrary
from formula_engines.parser import FormulaTerm, parse
from formula_kernel.domain.formula import FormulaDefinition
from formula_kernel.domain.terms import BinaryOp, FormulaRef, Grouping, Term
from formula_kernel.exceptions import (
    CircularReferenceError,
    DuplicateFormulaError,
    FormulaNotFoundError,
)
from formula_kernel.logging_config import get_logger

logger = get_logger("services.formula_registry")

DEFAULT_MAX_REFERENCE_DEPTH = 32


@runtime_checkable
class FormulaStore(Protocol):
    """
    Storage contract for formula definitions.

    ``get`` returns the latest version of a formula or None.  ``save``
    returns the definition as stored (the store assigns the version).
    """

    def get(self, formula_id: str) -> FormulaDefinition | None: ...

    def list_all(self) -> Sequence[FormulaDefinition]: ...

    def save(self, definition: FormulaDefinition) -> FormulaDefinition: ...


class StandardFormulaStore:
    """Read-only store over the standard formula library."""

    def __init__(self, library: StandardFormulaLibrary):
        self._library = library
        self._by_id = {d.id: d for d in library.formulas}

    @property
    def library(self) -> StandardFormulaLibrary:
        return self._library

    def get(self, formula_id: str) -> FormulaDefinition | None:
        return self._by_id.get(formula_id)

    def list_all(self) -> Sequence[FormulaDefinition]:
        return self._library.formulas

    def save(self, definition: FormulaDefinition) -> FormulaDefinition:
        raise TypeError("The standard formula library is read-only")


class InMemoryFormulaStore:
    """Mutable user store keeping every version in memory."""

    def __init__(self, definitions: Sequence[FormulaDefinition] = ()):
        self._versions: dict[str, list[FormulaDefinition]] = {}
        for definition in definitions:
            self.save(definition)

    def get(self, formula_id: str) -> FormulaDefinition | None:
        versions = self._versions.get(formula_id)
        return versions[-1] if versions else None

    def versions(self, formula_id: str) -> list[FormulaDefinition]:
        return list(self._versions.get(formula_id, ()))

    def list_all(self) -> Sequence[FormulaDefinition]:
        return [versions[-1] for _, versions in sorted(self._versions.items())]

    def save(self, definition: FormulaDefinition) -> FormulaDefinition:
        versions = self._versions.setdefault(definition.id, [])
        if versions:
            definition = replace(definition, version=versions[-1].version + 1)
        versions.append(definition)
        return definition


class FormulaRegistry:
    """
    Resolves formula ids and sources into fully expanded ``Term`` trees.

    Contract:
        Receives the standard store and an optional user store via the
        constructor.  Without a user store, ``save`` raises TypeError.
    """

    def __init__(
        self,
        standard: FormulaStore,
        user: FormulaStore | None = None,
        max_reference_depth: int = DEFAULT_MAX_REFERENCE_DEPTH,
    ):
        if max_reference_depth < 1:
            raise ValueError(f"max_reference_depth must be >= 1, got {max_reference_depth}")
        self._standard = standard
        self._user = user
        self._max_reference_depth = max_reference_depth

    @classmethod
    def from_library(
        cls,
        library: StandardFormulaLibrary,
        user: FormulaStore | None = None,
        max_reference_depth: int = DEFAULT_MAX_REFERENCE_DEPTH,
    ) -> FormulaRegistry:
        return cls(StandardFormulaStore(library), user, max_reference_depth)

    @property
    def max_reference_depth(self) -> int:
        return self._max_reference_depth

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_definition(self, formula_id: str) -> FormulaDefinition:
        """Latest definition for ``formula_id``; standard ids take precedence."""
        definition = self._standard.get(formula_id)
        if definition is None and self._user is not None:
            definition = self._user.get(formula_id)
        if definition is None:
            raise FormulaNotFoundError(formula_id)
        return definition

    def list_definitions(self, category: str | None = None) -> list[FormulaDefinition]:
        """Standard formulas in library order, then user formulas by id."""
        definitions = list(self._standard.list_all())
        if self._user is not None:
            definitions.extend(self._user.list_all())
        if category is not None:
            definitions = [d for d in definitions if d.category == category]
        return definitions

    def search(self, query: str) -> list[FormulaDefinition]:
        """Case-insensitive match on id, name and description."""
        needle = query.strip().lower()
        if not needle:
            return self.list_definitions()
        return [
            d
            for d in self.list_definitions()
            if needle in d.id.lower()
            or needle in d.name.lower()
            or needle in d.description.lower()
        ]

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_by_id(self, formula_id: str) -> Term:
        """Expanded tree for a stored formula."""
        definition = self.get_definition(formula_id)
        return self._expand(definition.ast, (formula_id,))

    def resolve_by_expression(
        self, source: str | Sequence[FormulaTerm | Mapping]
    ) -> Term:
        """Parse raw source and expand any ``{formula_id}`` it references."""
        return self._expand(parse(source), ())

    def _expand(
        self,
        term: Term,
        chain: tuple[str, ...],
        pending: FormulaDefinition | None = None,
    ) -> Term:
        """
        Replace every ``FormulaRef`` in ``term`` by its definition's tree.

        Preconditions:
            ``chain`` holds the ids already being expanded, outermost first.

        Postconditions:
            The result contains no ``FormulaRef``.  Each referenced id is
            expanded once per call and the subtree is shared between all
            its uses, so diamonds of shared building blocks stay linear.

        Raises:
            CircularReferenceError: on a cycle, or when references nest
                deeper than ``max_reference_depth``.
            FormulaNotFoundError: for an unknown id.
        """
        expanded, _ = self._expand_term(term, chain, pending, {})
        return expanded

    def _expand_term(
        self,
        term: Term,
        chain: tuple[str, ...],
        pending: FormulaDefinition | None,
        memo: dict[str, tuple[Term, int]],
    ) -> tuple[Term, int]:
        # Returns the expanded term and its reference height: the longest
        # run of nested {formula_id} references inside it.
        match term:
            case FormulaRef(formula_id=formula_id):
                if formula_id in chain:
                    raise CircularReferenceError(formula_id, chain + (formula_id,))
                if formula_id not in memo:
                    if len(chain) >= self._max_reference_depth:
                        raise CircularReferenceError(
                            formula_id, chain + (formula_id,), self._max_reference_depth
                        )
                    if pending is not None and pending.id == formula_id:
                        definition = pending
                    else:
                        definition = self.get_definition(formula_id)
                    body, height = self._expand_term(
                        definition.ast, chain + (formula_id,), pending, memo
                    )
                    memo[formula_id] = (Grouping(body), height + 1)
                expanded, height = memo[formula_id]
                # A subtree first reached from a shallower chain may be
                # too deep to hang below this one.
                if len(chain) + height > self._max_reference_depth:
                    raise CircularReferenceError(
                        formula_id, chain + (formula_id,), self._max_reference_depth
                    )
                return expanded, height
            case BinaryOp(left=left, op=op, right=right):
                lhs, left_height = self._expand_term(left, chain, pending, memo)
                rhs, right_height = self._expand_term(right, chain, pending, memo)
                return BinaryOp(lhs, op, rhs), max(left_height, right_height)
            case Grouping(inner=inner):
                expanded, height = self._expand_term(inner, chain, pending, memo)
                return Grouping(expanded), height
        return term, 0

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def save(self, definition: FormulaDefinition) -> FormulaDefinition:
        """
        Store a user formula (a new version if the id already exists).

        Raises:
            DuplicateFormulaError: if the id belongs to the standard library.
            CircularReferenceError: if the references would form a cycle.
            FormulaNotFoundError: if a referenced formula does not exist.
            TypeError: if the registry has no user store.
        """
        if self._user is None:
            raise TypeError("No user formula store configured")
        if self._standard.get(definition.id) is not None:
            raise DuplicateFormulaError(definition.id)

        # Expanding as if already saved catches cycles through this formula.
        self._expand(definition.ast, (definition.id,), pending=definition)

        stored = self._user.save(definition)
        logger.info(
            "formula_saved",
            extra={
                "formula_id": stored.id,
                "version": stored.version,
                "category": stored.category,
            },
        )
        return stored
