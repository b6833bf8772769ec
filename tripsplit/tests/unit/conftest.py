"""
tests/unit/conftest.py — Shared fixtures for the unit suite.

Unit test constraints:
  - No database, no network. Storage is replaced by InMemoryExpenseRepository,
    a plain dict-backed stand-in for the ExpenseRepository protocol.
  - No environment dependence: engines are built from TestingConfig.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from tripsplit.engine.models import Category, Expense, ExpenseSplit

FIXED_NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


class InMemoryExpenseRepository:
    """Dict-backed ExpenseRepository. Returns snapshots as lists."""

    def __init__(self, expenses: list[Expense] | None = None) -> None:
        self.expenses: dict[str, Expense] = {e.id: e for e in expenses or []}
        self.calls: list[str] = []

    def list_expenses(self, group_id=None, user_id=None) -> list[Expense]:
        self.calls.append("list_expenses")
        result = list(self.expenses.values())
        if group_id is not None:
            result = [e for e in result if e.group_id == group_id]
        if user_id is not None:
            result = [
                e for e in result
                if e.paid_by == user_id or any(s.user_id == user_id for s in e.paid_for)
            ]
        return result

    def get_expense(self, expense_id):
        self.calls.append("get_expense")
        return self.expenses.get(expense_id)

    def create_expense(self, expense):
        self.calls.append("create_expense")
        self.expenses[expense.id] = expense
        return expense

    def update_expense(self, expense_id, expense):
        self.calls.append("update_expense")
        self.expenses[expense_id] = expense
        return expense

    def delete_expense(self, expense_id):
        self.calls.append("delete_expense")
        return self.expenses.pop(expense_id, None) is not None


def make_expense(
        expense_id: str,
        paid_by: str,
        amount: int,
        splits: list[tuple[str, int]],
        currency: str = "USD",
        group_id: str | None = "g1",
        category: Category = Category.OTHER,
) -> Expense:
    """Builds an Expense directly, bypassing the resolver (lets tests store bad data)."""
    return Expense(
        id=expense_id,
        group_id=group_id,
        description=f"expense {expense_id}",
        amount=amount,
        currency=currency,
        category=category,
        paid_by=paid_by,
        paid_for=tuple(
            ExpenseSplit(user_id=uid, amount=amt, is_paid=(uid == paid_by))
            for uid, amt in splits
        ),
        date=date(2026, 3, 14),
        created_at=FIXED_NOW,
        updated_at=FIXED_NOW,
    )


@pytest.fixture
def repository() -> InMemoryExpenseRepository:
    return InMemoryExpenseRepository()
