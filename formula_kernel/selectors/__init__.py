"""Read-only selectors over the reference persistence models."""

from formula_kernel.selectors.ledger_selector import LedgerSelector

__all__ = ["LedgerSelector"]
