"""ORM models for the reference persistence adapter."""

from formula_kernel.models.formula import StoredFormula
from formula_kernel.models.trial_balance import AccountMapping, TrialBalanceRow

__all__ = [
    "AccountMapping",
    "StoredFormula",
    "TrialBalanceRow",
]
