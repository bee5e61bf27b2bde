"""
Pytest fixtures for the formula engine test suite.

Provides:
- Structured logging configured for every test, plus log capture
- Ledger snapshot helpers and an in-memory ledger source
- The standard formula library and a registry with an in-memory user store
- An in-memory SQLite database for the persistence adapter
"""

import json
import logging
from io import StringIO

import pytest

from formula_config import get_standard_library
from formula_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from formula_kernel.domain.ledger import LedgerSnapshot
from formula_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from formula_services.formula_registry import FormulaRegistry, InMemoryFormulaStore
from formula_services.ledger_source import InMemoryLedgerSource


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture formula_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            ...
            logs = captured_logs()
            assert any(r["message"] == "formula_saved" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("formula_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Ledger fixtures
# =============================================================================


def make_snapshot(entity_id, fiscal_year, balances, version=None) -> LedgerSnapshot:
    """Snapshot from ``{account_number: closing_balance}``."""
    return LedgerSnapshot.from_mapping(entity_id, fiscal_year, balances, version)


@pytest.fixture
def snapshot_factory():
    return make_snapshot


@pytest.fixture
def sample_ledger() -> LedgerSnapshot:
    """A small standard-chart style ledger view."""
    return make_snapshot(
        "acme",
        2024,
        {
            "1000": 100,
            "1500": 200,
            "19": 50,
            "2000": -400,
            "10": 300,
            "500": 999,
            "800": 800,
        },
    )


@pytest.fixture
def ledger_source() -> InMemoryLedgerSource:
    return InMemoryLedgerSource()


# =============================================================================
# Formula library fixtures
# =============================================================================


@pytest.fixture(scope="session")
def standard_library():
    return get_standard_library()


@pytest.fixture
def user_store() -> InMemoryFormulaStore:
    return InMemoryFormulaStore()


@pytest.fixture
def registry(standard_library, user_store) -> FormulaRegistry:
    return FormulaRegistry.from_library(standard_library, user_store)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def session_factory():
    """In-memory SQLite database with all tables created."""
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()
