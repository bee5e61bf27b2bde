"""
Ledger -- Immutable account balance snapshots.

Responsibility:
    The read-only ledger view the engine evaluates against: an ordered
    collection of ``(account_number, closing_balance)`` pairs for one
    ``(entity, fiscal_year, version)`` triple.

Architecture position:
    Kernel > Domain -- pure data.  Produced by ledger sources in
    ``formula_services.ledger_source``; the engine only reads it.

Invariants enforced:
    - Balances are ``Decimal`` (never float).
    - Snapshot order is the order supplied by the collaborator.
    - ``version`` is opaque: two snapshots are only ever compared for
      equality of their version, never ordered.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class AccountBalance:
    """Closing balance of one ledger account."""

    account_number: str
    closing_balance: Decimal

    @classmethod
    def of(cls, account_number: str | int, closing_balance: Decimal | int | str) -> AccountBalance:
        """Build from loosely-typed input (numbers become Decimal via str)."""
        return cls(str(account_number), Decimal(str(closing_balance)))


@dataclass(frozen=True)
class LedgerSnapshot:
    """Balances for a single entity, fiscal year and upload version."""

    entity_id: str
    fiscal_year: int
    version: str | None
    balances: tuple[AccountBalance, ...]

    def __len__(self) -> int:
        return len(self.balances)

    @classmethod
    def from_mapping(
        cls,
        entity_id: str,
        fiscal_year: int,
        balances: Mapping[str | int, Decimal | int | str],
        version: str | None = None,
    ) -> LedgerSnapshot:
        """Build a snapshot from ``{account_number: closing_balance}``."""
        return cls(
            entity_id=entity_id,
            fiscal_year=fiscal_year,
            version=version,
            balances=tuple(AccountBalance.of(k, v) for k, v in balances.items()),
        )

    @classmethod
    def from_rows(
        cls,
        entity_id: str,
        fiscal_year: int,
        rows: Iterable[AccountBalance],
        version: str | None = None,
    ) -> LedgerSnapshot:
        return cls(entity_id, fiscal_year, version, tuple(rows))
