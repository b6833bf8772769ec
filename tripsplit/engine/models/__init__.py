from tripsplit.engine.models.balance import (
    Balance,
    BalanceReport,
    CategoryBreakdown,
    ExpenseSummary,
    MemberBreakdown,
    UserBalanceSummary,
)
from tripsplit.engine.models.expense import (
    DEFAULT_POLICY,
    Category,
    Expense,
    ExpenseSplit,
    SplitPolicy,
    SplitRequest,
    SplitType,
)

__all__ = [
    "Balance",
    "BalanceReport",
    "Category",
    "CategoryBreakdown",
    "DEFAULT_POLICY",
    "Expense",
    "ExpenseSplit",
    "ExpenseSummary",
    "MemberBreakdown",
    "SplitPolicy",
    "SplitRequest",
    "SplitType",
    "UserBalanceSummary",
]
