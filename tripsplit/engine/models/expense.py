"""
models/expense.py — Expense aggregate and split request records.

No business logic. No imports from services or schemas.

Key design points:
  - Every amount is an int in minor units (cents for USD). Never float.
  - Expense and its ExpenseSplit tuple form one aggregate; splits are never
    handled apart from their expense.
  - Records are frozen. An update builds a new Expense (see replace()).
  - SplitType and Category are str enums so they can be compared to the raw
    request values without repeating string literals elsewhere.
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal


# ── Enum Definitions ───────────────────────────────────────────────────────

class SplitType(str, enum.Enum):
    EQUAL      = "EQUAL"
    PERCENTAGE = "PERCENTAGE"
    FIXED      = "FIXED"


class Category(str, enum.Enum):
    ACCOMMODATION  = "ACCOMMODATION"
    FOOD           = "FOOD"
    TRANSPORTATION = "TRANSPORTATION"
    ACTIVITIES     = "ACTIVITIES"
    SHOPPING       = "SHOPPING"
    OTHER          = "OTHER"


# ── Records ────────────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class SplitRequest:
    """One participant of a creation/update request. Never persisted."""

    user_id: str
    split_type: SplitType = SplitType.EQUAL
    value: int | Decimal | None = None


@dataclass(frozen=True, slots=True)
class ExpenseSplit:
    user_id: str
    amount: int
    is_paid: bool = False
    username: str | None = None


@dataclass(frozen=True, slots=True)
class Expense:
    id: str
    group_id: str | None
    description: str
    amount: int
    currency: str
    category: Category
    paid_by: str
    paid_for: tuple[ExpenseSplit, ...]
    date: date
    created_at: datetime
    updated_at: datetime
    receipt: str | None = None

    @property
    def split_total(self) -> int:
        return sum(s.amount for s in self.paid_for)

    @property
    def participant_ids(self) -> list[str]:
        return [s.user_id for s in self.paid_for]

    def split_for(self, user_id: str) -> ExpenseSplit | None:
        return next((s for s in self.paid_for if s.user_id == user_id), None)

    def replace(self, **changes) -> Expense:
        """Returns a copy with `changes` applied (full-replacement update)."""
        if "paid_for" in changes:
            changes["paid_for"] = tuple(changes["paid_for"])
        return dataclasses.replace(self, **changes)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"group_id={self.group_id} "
            f"amount={self.amount} {self.currency} "
            f"splits={len(self.paid_for)}>"
        )


@dataclass(frozen=True, slots=True)
class SplitPolicy:
    """
    Business-rule flags for the split resolver, passed explicitly per call.

    require_payer_in_split: reject requests whose payer is not a participant
                            (PAID_BY_NOT_IN_SPLIT).
    """

    require_payer_in_split: bool = False

    @classmethod
    def from_config(cls, config) -> SplitPolicy:
        return cls(require_payer_in_split=bool(config.REQUIRE_PAYER_IN_SPLIT))


DEFAULT_POLICY = SplitPolicy()
