"""
Formula Kernel

Domain core of the financial formula calculation engine:
- Closed term union for the account-reference expression language
- Immutable ledger snapshots and evaluation results
- Typed exception hierarchy
- Structured logging
- Reference persistence for trial balances and saved formulas
"""

__version__ = "0.1.0"
