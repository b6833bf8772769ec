"""
models/balance.py — Derived, non-persisted query results.

Balance and ExpenseSummary have no identity or lifecycle beyond the call that
produced them. Every amount is a signed int in minor units.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal

from tripsplit.engine.errors import DataIntegrityError
from tripsplit.engine.models.expense import Category


@dataclass(frozen=True, slots=True)
class Balance:
    user_id: str
    user_name: str
    balance: int       # positive: owed to the user; negative: the user owes
    currency: str


@dataclass(frozen=True, slots=True)
class BalanceReport:
    balances: tuple[Balance, ...]
    errors: tuple[DataIntegrityError, ...] = ()

    @property
    def currencies(self) -> list[str]:
        return sorted({b.currency for b in self.balances})

    def for_currency(self, currency: str) -> list[Balance]:
        return [b for b in self.balances if b.currency == currency]

    def for_user(self, user_id: str) -> list[Balance]:
        return [b for b in self.balances if b.user_id == user_id]

    def sum_by_currency(self) -> dict[str, int]:
        """Per-currency sum of balances. Zero for every currency by construction."""
        totals: dict[str, int] = defaultdict(int)
        for b in self.balances:
            totals[b.currency] += b.balance
        return dict(totals)

    @property
    def excluded_expense_ids(self) -> list[str | None]:
        return [e.expense_id for e in self.errors]


@dataclass(frozen=True, slots=True)
class CategoryBreakdown:
    category: Category
    amount: int
    percentage: Decimal   # display only


@dataclass(frozen=True, slots=True)
class MemberBreakdown:
    user_id: str
    username: str
    paid: int
    owes: int
    net_balance: int


@dataclass(frozen=True, slots=True)
class ExpenseSummary:
    group_id: str
    total_expenses: int
    currency: str
    by_category: tuple[CategoryBreakdown, ...] = ()
    by_member: tuple[MemberBreakdown, ...] = ()
    errors: tuple[DataIntegrityError, ...] = field(default=())


@dataclass(frozen=True, slots=True)
class UserBalanceSummary:
    """One user's position in one currency, as the client's balance card shows it."""

    user_id: str
    currency: str
    total_owed: int    # others owe the user
    total_owing: int   # the user owes others
    net: int
