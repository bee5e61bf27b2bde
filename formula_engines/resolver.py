"""
formula_engines.resolver -- Account references onto a ledger view.

Responsibility:
    Sum the closing balances matched by one account reference.

Matching rules:
    - ``AccountRef(code)``: string prefix match on the account number
      (``[1]`` matches 1000, 1500 and 19; it is not numeric).
    - ``AccountRange(start, end)``: the full account number, read as an
      integer, lies in ``[int(start), int(end)]``.  ``[1000-1999]`` matches
      1020 but not 2000; ``[19-79]`` matches the two-digit numbers of a
      standard-chart view, not 4-digit ledger accounts such as 1905.
      Account numbers that are not plain digit strings never match a range.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - The ledger's native sign convention is kept; no inversion by account
      type.
    - Zero matches is not an error: the total is 0 and ``match_count`` is 0
      so the caller can raise a UI diagnostic.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from formula_kernel.domain.ledger import AccountBalance
from formula_kernel.domain.terms import AccountRange, AccountRef, AccountReference


@dataclass(frozen=True)
class Resolution:
    """Result of resolving one account reference."""

    total: Decimal
    match_count: int

    @property
    def is_empty(self) -> bool:
        return self.match_count == 0


def matches(ref: AccountReference, account_number: str) -> bool:
    """Whether ``account_number`` is selected by ``ref``."""
    match ref:
        case AccountRef(code=code):
            return account_number.startswith(code)
        case AccountRange(start=start, end=end):
            number = account_number.strip()
            if not number.isdigit():
                return False
            return int(start) <= int(number) <= int(end)
    raise TypeError(f"Not an account reference: {ref!r}")


def resolve(ref: AccountReference, balances: Iterable[AccountBalance]) -> Resolution:
    """Sum the balances selected by ``ref``."""
    total = Decimal("0")
    count = 0
    for balance in balances:
        if matches(ref, balance.account_number):
            total += balance.closing_balance
            count += 1
    return Resolution(total, count)
