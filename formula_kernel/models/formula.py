"""
Module: formula_kernel.models.formula
Responsibility: ORM persistence for user-saved formula definitions.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Rows are append-only: an edit inserts (formula_id, version + 1).
      uq_stored_formula_version prevents two writers claiming one version.
    - The expression is stored as bracket-annotated text, the persisted
      form widget configurations rely on.
"""

from sqlalchemy import JSON, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from formula_kernel.db.base import TimestampedBase


class StoredFormula(TimestampedBase):
    """One version of a user-saved formula."""

    __tablename__ = "stored_formulas"

    __table_args__ = (
        UniqueConstraint("formula_id", "version", name="uq_stored_formula_version"),
    )

    formula_id: Mapped[str] = mapped_column(String(100), nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    category: Mapped[str] = mapped_column(String(50), nullable=False, default="custom")

    expression: Mapped[str] = mapped_column(Text, nullable=False)

    result_kind: Mapped[str] = mapped_column(String(20), nullable=False, default="amount")

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # interpretation text and benchmark thresholds
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
