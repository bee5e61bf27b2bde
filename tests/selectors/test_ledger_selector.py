"""
Tests for LedgerSelector against an in-memory SQLite database.

Covers:
- Raw ledger view ordering and version filtering
- Standard-chart mapping (grouping, unmapped accounts skipped)
- Missing data
"""

from decimal import Decimal

import pytest

from formula_kernel.domain.ledger import AccountBalance
from formula_kernel.exceptions import MissingLedgerDataError
from formula_kernel.models.trial_balance import AccountMapping, TrialBalanceRow
from formula_kernel.selectors.ledger_selector import LedgerSelector


@pytest.fixture
def session(session_factory):
    with session_factory() as session:
        session.add_all(
            [
                TrialBalanceRow(client_id="acme", fiscal_year=2024, version="v1", account_number="1920", closing_balance=Decimal("250")),
                TrialBalanceRow(client_id="acme", fiscal_year=2024, version="v1", account_number="1500", closing_balance=Decimal("100")),
                TrialBalanceRow(client_id="acme", fiscal_year=2024, version="v1", account_number="1510", closing_balance=Decimal("50")),
                TrialBalanceRow(client_id="acme", fiscal_year=2024, version="v1", account_number="2050", closing_balance=Decimal("-400")),
                TrialBalanceRow(client_id="acme", fiscal_year=2024, version="v2", account_number="1500", closing_balance=Decimal("120")),
                TrialBalanceRow(client_id="acme", fiscal_year=2023, version="v1", account_number="1500", closing_balance=Decimal("80")),
                AccountMapping(client_id="acme", account_number="1500", standard_number="15"),
                AccountMapping(client_id="acme", account_number="1510", standard_number="15"),
                AccountMapping(client_id="acme", account_number="2050", standard_number="20"),
            ]
        )
        session.commit()
        yield session


class TestRawView:
    def test_ordered_by_account_number(self, session):
        snapshot = LedgerSelector(session).snapshot("acme", 2024, "v1")

        assert [b.account_number for b in snapshot.balances] == ["1500", "1510", "1920", "2050"]
        assert snapshot.version == "v1"

    def test_version_filter(self, session):
        snapshot = LedgerSelector(session).snapshot("acme", 2024, "v2")

        assert snapshot.balances == (AccountBalance("1500", Decimal("120")),)

    def test_no_version_filter(self, session):
        snapshot = LedgerSelector(session).snapshot("acme", 2024)

        assert len(snapshot) == 5

    def test_missing_year(self, session):
        with pytest.raises(MissingLedgerDataError) as exc_info:
            LedgerSelector(session).snapshot("acme", 2020)

        assert exc_info.value.fiscal_year == 2020
        assert exc_info.value.code == "MISSING_LEDGER_DATA"

    def test_missing_client(self, session):
        with pytest.raises(MissingLedgerDataError):
            LedgerSelector(session).snapshot("globex", 2024)


class TestStandardMapping:
    def test_grouped_by_standard_number(self, session):
        snapshot = LedgerSelector(session).snapshot("acme", 2024, "v1", use_standard_mapping=True)

        assert snapshot.balances == (
            AccountBalance("15", Decimal("150")),
            AccountBalance("20", Decimal("-400")),
        )

    def test_unmapped_accounts_logged(self, session, captured_logs):
        LedgerSelector(session).snapshot("acme", 2024, "v1", use_standard_mapping=True)

        records = [r for r in captured_logs() if r["message"] == "unmapped_accounts_skipped"]
        assert records[0]["skipped"] == 1


class TestAvailableYears:
    def test_ascending(self, session):
        assert LedgerSelector(session).available_years("acme") == [2023, 2024]
