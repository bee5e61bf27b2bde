"""
Module: formula_kernel.models.trial_balance
Responsibility: ORM persistence for uploaded trial balance rows and the
    client's mapping from ledger account numbers to the standard chart.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per (client, fiscal year, version, account number).
    - A ledger account maps to at most one standard number per client.

Audit relevance:
    ``version`` distinguishes re-uploaded snapshots of the same period.  It
    is opaque: rows of different versions are never merged or ordered.
"""

from decimal import Decimal

from sqlalchemy import Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from formula_kernel.db.base import TimestampedBase


class TrialBalanceRow(TimestampedBase):
    """
    One account's closing balance in an uploaded trial balance.

    Contract:
        Produced by the ingestion pipeline (external).  Read-only from the
        engine's point of view.
    """

    __tablename__ = "trial_balance_rows"

    __table_args__ = (
        UniqueConstraint(
            "client_id", "fiscal_year", "version", "account_number",
            name="uq_trial_balance_row",
        ),
        Index("idx_trial_balance_period", "client_id", "fiscal_year"),
    )

    client_id: Mapped[str] = mapped_column(String(64), nullable=False)

    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)

    # Opaque upload version; NULL for single-version uploads
    version: Mapped[str | None] = mapped_column(String(64), nullable=True)

    account_number: Mapped[str] = mapped_column(String(32), nullable=False)

    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    closing_balance: Mapped[Decimal] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<TrialBalanceRow {self.client_id} {self.fiscal_year} "
            f"{self.account_number}={self.closing_balance}>"
        )


class AccountMapping(TimestampedBase):
    """Maps a client ledger account number onto a standard chart number."""

    __tablename__ = "account_mappings"

    __table_args__ = (
        UniqueConstraint("client_id", "account_number", name="uq_account_mapping"),
    )

    client_id: Mapped[str] = mapped_column(String(64), nullable=False)

    account_number: Mapped[str] = mapped_column(String(32), nullable=False)

    standard_number: Mapped[str] = mapped_column(String(32), nullable=False)
