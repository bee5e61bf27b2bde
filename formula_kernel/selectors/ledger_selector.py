"""
Module: formula_kernel.selectors.ledger_selector
Responsibility: Builds the ledger view (``LedgerSnapshot``) the engine
    evaluates against from stored trial balance rows, optionally grouped by
    the client's standard-chart mapping.
Architecture position: Kernel > Selectors.  May import from models/ and
    domain/.

Failure modes:
    - MissingLedgerDataError when no trial balance rows exist for the
      requested (client, fiscal year, version).
    - With standard mapping enabled, unmapped accounts are skipped; a
      snapshot can therefore be empty even though rows exist.  That is a
      valid (if unhelpful) ledger, not missing data.
"""

from collections import defaultdict
from decimal import Decimal

from sqlalchemy import select

from formula_kernel.domain.ledger import AccountBalance, LedgerSnapshot
from formula_kernel.exceptions import MissingLedgerDataError
from formula_kernel.logging_config import get_logger
from formula_kernel.models.trial_balance import AccountMapping, TrialBalanceRow
from formula_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.ledger")


class LedgerSelector(BaseSelector):
    """
    Selector for ledger views.

    Guarantees:
        - Raw view: one AccountBalance per row, ordered by account number.
        - Standard view: one AccountBalance per mapped standard number, the
          sum of its rows' closing balances, ordered by standard number.
        - ``version=None`` applies no version filter.
    """

    def snapshot(
        self,
        client_id: str,
        fiscal_year: int,
        version: str | None = None,
        use_standard_mapping: bool = False,
    ) -> LedgerSnapshot:
        rows = self._rows(client_id, fiscal_year, version)
        if not rows:
            raise MissingLedgerDataError(client_id, fiscal_year, version)

        if use_standard_mapping:
            balances = self._group_by_standard_number(client_id, rows)
        else:
            balances = tuple(
                AccountBalance(row.account_number, Decimal(row.closing_balance))
                for row in rows
            )

        logger.debug(
            "ledger_snapshot_built",
            extra={
                "client_id": client_id,
                "fiscal_year": fiscal_year,
                "version": version,
                "row_count": len(rows),
                "balance_count": len(balances),
                "standard_mapping": use_standard_mapping,
            },
        )
        return LedgerSnapshot(client_id, fiscal_year, version, balances)

    def available_years(self, client_id: str) -> list[int]:
        """Fiscal years with at least one trial balance row, ascending."""
        stmt = (
            select(TrialBalanceRow.fiscal_year)
            .where(TrialBalanceRow.client_id == client_id)
            .distinct()
            .order_by(TrialBalanceRow.fiscal_year)
        )
        return list(self.session.scalars(stmt))

    def _rows(
        self, client_id: str, fiscal_year: int, version: str | None
    ) -> list[TrialBalanceRow]:
        stmt = select(TrialBalanceRow).where(
            TrialBalanceRow.client_id == client_id,
            TrialBalanceRow.fiscal_year == fiscal_year,
        )
        if version is not None:
            stmt = stmt.where(TrialBalanceRow.version == version)
        stmt = stmt.order_by(TrialBalanceRow.account_number)
        return list(self.session.scalars(stmt))

    def _group_by_standard_number(
        self, client_id: str, rows: list[TrialBalanceRow]
    ) -> tuple[AccountBalance, ...]:
        """
        Sum rows per mapped standard number.

        Postconditions:
            Accounts without a mapping are skipped; output is ordered by
            standard number.
        """
        stmt = select(AccountMapping).where(AccountMapping.client_id == client_id)
        lookup = {m.account_number: m.standard_number for m in self.session.scalars(stmt)}

        grouped: dict[str, Decimal] = defaultdict(Decimal)
        skipped = 0
        for row in rows:
            standard_number = lookup.get(row.account_number)
            if standard_number is None:
                skipped += 1
                continue
            grouped[standard_number] += Decimal(row.closing_balance)

        if skipped:
            logger.info(
                "unmapped_accounts_skipped",
                extra={"client_id": client_id, "skipped": skipped},
            )
        return tuple(
            AccountBalance(number, total) for number, total in sorted(grouped.items())
        )
