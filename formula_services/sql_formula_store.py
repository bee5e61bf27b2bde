"""
formula_services.sql_formula_store -- User formulas persisted with SQLAlchemy.

Responsibility:
    ``FormulaStore`` implementation over the ``stored_formulas`` table.
    Formulas are stored as canonical bracket text and re-parsed on load, so
    the persisted form is the same text a user would type.

Architecture position:
    Services -- persistence adapter.  Opens a short-lived session per call
    from the injected session factory.

Invariants enforced:
    - Append-only: ``save`` inserts ``(formula_id, latest + 1)``; earlier
      versions are never updated.
    - ``get`` and ``list_all`` return the latest version of each id.

Failure modes:
    - ParseError if a stored expression no longer parses.
    - sqlalchemy.exc.IntegrityError if two writers race for one version.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from formula_engines.parser import parse
from formula_engines.serializer import serialize
from formula_kernel.domain.formula import Benchmarks, FormulaDefinition
from formula_kernel.domain.results import ResultKind
from formula_kernel.logging_config import get_logger
from formula_kernel.models.formula import StoredFormula

logger = get_logger("services.sql_formula_store")


class SqlFormulaStore:
    """Mutable formula store backed by ``StoredFormula`` rows."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def get(self, formula_id: str) -> FormulaDefinition | None:
        stmt = (
            select(StoredFormula)
            .where(StoredFormula.formula_id == formula_id)
            .order_by(StoredFormula.version.desc())
            .limit(1)
        )
        with self._session_factory() as session:
            row = session.scalars(stmt).first()
            return _to_definition(row) if row is not None else None

    def versions(self, formula_id: str) -> list[FormulaDefinition]:
        stmt = (
            select(StoredFormula)
            .where(StoredFormula.formula_id == formula_id)
            .order_by(StoredFormula.version)
        )
        with self._session_factory() as session:
            return [_to_definition(row) for row in session.scalars(stmt)]

    def list_all(self) -> Sequence[FormulaDefinition]:
        stmt = select(StoredFormula).order_by(StoredFormula.formula_id, StoredFormula.version)
        latest: dict[str, StoredFormula] = {}
        with self._session_factory() as session:
            for row in session.scalars(stmt):
                latest[row.formula_id] = row
            return [_to_definition(row) for row in latest.values()]

    def save(self, definition: FormulaDefinition) -> FormulaDefinition:
        with self._session_factory() as session, session.begin():
            current = session.scalar(
                select(func.max(StoredFormula.version)).where(
                    StoredFormula.formula_id == definition.id
                )
            )
            version = (current or 0) + 1
            expression = serialize(definition.ast)
            session.add(
                StoredFormula(
                    formula_id=definition.id,
                    version=version,
                    name=definition.name,
                    category=definition.category,
                    expression=expression,
                    result_kind=definition.result_kind.value,
                    description=definition.description or None,
                    metadata_json=_metadata(definition),
                )
            )

        logger.debug(
            "stored_formula_inserted",
            extra={"formula_id": definition.id, "version": version},
        )
        return FormulaDefinition(
            id=definition.id,
            name=definition.name,
            category=definition.category,
            ast=definition.ast,
            result_kind=definition.result_kind,
            description=definition.description,
            source_text=expression,
            version=version,
            interpretation=definition.interpretation,
            benchmarks=definition.benchmarks,
        )


def _metadata(definition: FormulaDefinition) -> dict | None:
    metadata: dict = {}
    if definition.interpretation:
        metadata["interpretation"] = definition.interpretation
    if definition.benchmarks is not None:
        metadata["benchmarks"] = {
            "excellent": str(definition.benchmarks.excellent),
            "good": str(definition.benchmarks.good),
            "poor": str(definition.benchmarks.poor),
        }
    return metadata or None


def _to_definition(row: StoredFormula) -> FormulaDefinition:
    """
    Rebuild a definition from its stored row.

    Postconditions:
        ``ast`` is re-parsed from the canonical expression text, so a row
        written by an older serializer still loads.

    Raises:
        ParseError: if the stored expression no longer parses.
    """
    metadata = row.metadata_json or {}
    benchmarks = metadata.get("benchmarks")
    return FormulaDefinition(
        id=row.formula_id,
        name=row.name,
        category=row.category,
        ast=parse(row.expression),
        result_kind=ResultKind(row.result_kind),
        description=row.description or "",
        source_text=row.expression,
        version=row.version,
        interpretation=metadata.get("interpretation"),
        benchmarks=Benchmarks(
            excellent=Decimal(benchmarks["excellent"]),
            good=Decimal(benchmarks["good"]),
            poor=Decimal(benchmarks["poor"]),
        )
        if benchmarks
        else None,
    )
