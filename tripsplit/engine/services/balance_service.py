"""
services/balance_service.py — Balance computation and group summaries.

This file is the SINGLE SOURCE OF TRUTH for how balances are computed.
The canonical fold must not be reimplemented elsewhere in the codebase.

Layer rules:
  - Receives already-fetched, immutable Expense snapshots. Never queries or
    mutates storage itself.
  - Returns frozen result records (models/balance.py).
  - Pure and order-independent: the same input always yields the same
    output, whatever the order of the expenses.

Integrity handling:
  - An expense that breaks the split-sum invariant (or carries a negative or
    duplicated split, a bad currency code or no payer) is EXCLUDED and
    reported as a DataIntegrityError next to the partial result. The rest of
    the group is still summarised.

Zero-sum guarantee:
  - For every currency, sum(balance) == 0. This follows from each included
    expense crediting exactly what it debits.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from decimal import ROUND_HALF_UP, Decimal

from tripsplit.engine.errors import DataIntegrityError, MixedCurrencyError
from tripsplit.engine.models.balance import (
    Balance,
    BalanceReport,
    CategoryBreakdown,
    ExpenseSummary,
    MemberBreakdown,
    UserBalanceSummary,
)
from tripsplit.engine.models.expense import Category, Expense
from tripsplit.engine.money import is_valid_currency, normalize_currency

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "USD"
DEFAULT_PERCENTAGE_PLACES = 1


# ── Integrity screening ────────────────────────────────────────────────────

def check_expense_integrity(expense: Expense) -> str | None:
    """Returns a description of the first broken invariant, or None if sound."""
    if isinstance(expense.amount, bool) or not isinstance(expense.amount, int):
        return f"amount {expense.amount!r} is not an integer number of minor units"
    if expense.amount <= 0:
        return f"amount {expense.amount} is not positive"
    if not is_valid_currency(expense.currency):
        return f"currency {expense.currency!r} is not a three-letter ISO 4217 code"
    if not isinstance(expense.paid_by, str) or not expense.paid_by.strip():
        return f"payer {expense.paid_by!r} is not a user id"

    seen: set[str] = set()
    for split in expense.paid_for:
        if isinstance(split.amount, bool) or not isinstance(split.amount, int):
            return f"split for {split.user_id} has non-integer amount {split.amount!r}"
        if split.amount < 0:
            return f"split for {split.user_id} is negative ({split.amount})"
        if not isinstance(split.user_id, str) or not split.user_id.strip():
            return f"split user id {split.user_id!r} is not a user id"
        if split.user_id in seen:
            return f"user {split.user_id} appears more than once in the split"
        seen.add(split.user_id)

    total = expense.split_total
    if total != expense.amount:
        return f"splits sum to {total} but the expense amount is {expense.amount}"
    return None


def _screen(
        expenses: Iterable[Expense],
        group_id: str | None = None,
) -> tuple[list[Expense], list[DataIntegrityError]]:
    """Splits the input into well-formed expenses and integrity errors."""
    sound: list[Expense] = []
    errors: list[DataIntegrityError] = []

    for expense in expenses:
        problem = check_expense_integrity(expense)
        if problem is None and group_id is not None and expense.group_id != group_id:
            problem = f"expense belongs to group {expense.group_id}, not {group_id}"

        if problem is None:
            sound.append(expense)
            continue

        logger.warning("Excluding expense %s from aggregation: %s", expense.id, problem)
        errors.append(DataIntegrityError(expense.id, f"Expense {expense.id}: {problem}."))

    return sound, errors


def _display_name(
        user_id: str,
        user_names: Mapping[str, str],
        recorded: Mapping[str, str],
) -> str:
    return user_names.get(user_id) or recorded.get(user_id) or f"user_{user_id}"


def _recorded_usernames(expenses: Iterable[Expense]) -> dict[str, str]:
    names: dict[str, str] = {}
    for expense in expenses:
        for split in expense.paid_for:
            if split.username:
                names.setdefault(split.user_id, split.username)
    return names


# ── Core algorithms ────────────────────────────────────────────────────────

def _fold(expenses: Iterable[Expense]) -> dict[str, dict[str, int]]:
    """
    Canonical balance fold. Returns {currency: {user_id: net}}.

      1. Credit the payer for the full expense amount they fronted.
      2. Debit each split participant for their split amount.

    A payer who is also a participant nets out without a special case.
    """
    ledger: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for expense in expenses:
        balances = ledger[expense.currency]
        balances[expense.paid_by] += expense.amount
        for split in expense.paid_for:
            balances[split.user_id] -= split.amount
    return ledger


def compute_balances(
        expenses: Iterable[Expense],
        members: Iterable[str] | None = None,
        user_names: Mapping[str, str] | None = None,
        default_currency: str | None = None,
) -> BalanceReport:
    """
    Computes signed net balances for every user in `expenses`.

    Args:
        expenses:         Expense snapshots (a group's, or a user's across groups).
        members:          Optional roster. Every member appears, with zero if
                          untouched, in each currency present (or in
                          default_currency when there is no valid expense).
        user_names:       Optional {user_id: display name}.
        default_currency: Currency for zero rows of an empty ledger.

    Returns:
        BalanceReport with one Balance per (user, currency), sorted by
        (currency, user_id), plus DataIntegrityErrors for excluded expenses.
        Currencies are never combined.
    """
    sound, errors = _screen(expenses)
    ledger = _fold(sound)

    roster = list(members or [])
    if roster:
        if not ledger:
            ledger[default_currency or DEFAULT_CURRENCY] = defaultdict(int)
        for balances in ledger.values():
            for member_id in roster:
                balances.setdefault(member_id, 0)

    names = user_names or {}
    recorded = _recorded_usernames(sound)
    report = BalanceReport(
        balances=tuple(
            Balance(
                user_id=uid,
                user_name=_display_name(uid, names, recorded),
                balance=net,
                currency=currency,
            )
            for currency in sorted(ledger)
            for uid, net in sorted(ledger[currency].items())
        ),
        errors=tuple(errors),
    )

    for currency, total in report.sum_by_currency().items():
        if total != 0:
            # Unreachable while _screen admits only split-sum-sound expenses.
            logger.error("Balance integrity check failed for %s: sum was %d", currency, total)

    return report


def _percentage(part: int, whole: int, places: int) -> Decimal:
    if whole == 0:
        return Decimal(0)
    quantum = Decimal(1).scaleb(-places)
    return (Decimal(part) * 100 / Decimal(whole)).quantize(quantum, rounding=ROUND_HALF_UP)


def _summarize(
        group_id: str,
        selected: Sequence[Expense],
        currency: str,
        errors: Sequence[DataIntegrityError],
        user_names: Mapping[str, str] | None,
        percentage_places: int,
) -> ExpenseSummary:
    """Builds one summary from screened expenses that all use `currency`."""
    total = sum(e.amount for e in selected)

    by_category_amounts: dict[Category, int] = defaultdict(int)
    paid: dict[str, int] = defaultdict(int)
    owes: dict[str, int] = defaultdict(int)
    member_ids: set[str] = set()
    for expense in selected:
        by_category_amounts[Category(expense.category)] += expense.amount
        paid[expense.paid_by] += expense.amount
        member_ids.add(expense.paid_by)
        for split in expense.paid_for:
            owes[split.user_id] += split.amount
            member_ids.add(split.user_id)

    by_category = tuple(
        CategoryBreakdown(
            category=category,
            amount=by_category_amounts[category],
            percentage=_percentage(by_category_amounts[category], total, percentage_places),
        )
        for category in Category
        if category in by_category_amounts
    )

    names = user_names or {}
    recorded = _recorded_usernames(selected)
    by_member = tuple(
        MemberBreakdown(
            user_id=uid,
            username=_display_name(uid, names, recorded),
            paid=paid[uid],
            owes=owes[uid],
            net_balance=paid[uid] - owes[uid],
        )
        for uid in sorted(member_ids)
    )

    return ExpenseSummary(
        group_id=group_id,
        total_expenses=total,
        currency=currency,
        by_category=by_category,
        by_member=by_member,
        errors=tuple(errors),
    )


def compute_group_summary(
        group_id: str,
        expenses: Iterable[Expense],
        currency: str | None = None,
        user_names: Mapping[str, str] | None = None,
        percentage_places: int = DEFAULT_PERCENTAGE_PLACES,
        default_currency: str | None = None,
) -> ExpenseSummary:
    """
    Builds the ExpenseSummary for one group in one currency.

    by_category: total per category, with a display-only percentage of the
                 grand total (ROUND_HALF_UP to `percentage_places`).
    by_member:   paid / owes / net_balance (= paid - owes) per member; the
                 same figures compute_balances() yields for the group.

    Currency selection:
      - currency given: normalised ("usd" -> "USD"); expenses in other
                        currencies are left out.
      - currency None:  the one currency the group uses. Several currencies
                        raise MixedCurrencyError (422); amounts are never
                        summed across currencies.

    Expenses from another group, and malformed expenses, are reported in
    ExpenseSummary.errors and left out.
    """
    if currency is not None:
        currency = normalize_currency(currency)

    sound, errors = _screen(expenses, group_id=group_id)

    present = sorted({e.currency for e in sound})
    if currency is None:
        if len(present) > 1:
            raise MixedCurrencyError(group_id, present)
        currency = present[0] if present else (default_currency or DEFAULT_CURRENCY)

    return _summarize(
        group_id,
        [e for e in sound if e.currency == currency],
        currency,
        errors,
        user_names,
        percentage_places,
    )


def compute_group_summaries(
        group_id: str,
        expenses: Iterable[Expense],
        user_names: Mapping[str, str] | None = None,
        percentage_places: int = DEFAULT_PERCENTAGE_PLACES,
        default_currency: str | None = None,
) -> list[ExpenseSummary]:
    """
    One ExpenseSummary per currency used by the group's sound expenses,
    sorted by currency.

    The input is screened once. Integrity errors are attached to the first
    summary only; when nothing survives screening a single empty summary in
    default_currency carries them.
    """
    sound, errors = _screen(expenses, group_id=group_id)

    by_currency: dict[str, list[Expense]] = defaultdict(list)
    for expense in sound:
        by_currency[expense.currency].append(expense)

    if not by_currency:
        if not errors:
            return []
        by_currency[default_currency or DEFAULT_CURRENCY] = []

    return [
        _summarize(
            group_id,
            by_currency[currency],
            currency,
            errors if position == 0 else (),
            user_names,
            percentage_places,
        )
        for position, currency in enumerate(sorted(by_currency))
    ]


# ── Per-user views ─────────────────────────────────────────────────────────

def is_user_involved(user_id: str, expense: Expense) -> bool:
    """A user is involved if they paid or hold a split."""
    return expense.paid_by == user_id or any(s.user_id == user_id for s in expense.paid_for)


def summarize_user_balance(
        user_id: str,
        expenses: Iterable[Expense],
) -> list[UserBalanceSummary]:
    """
    The user's position per currency across every expense given.

    total_owed:  what others still owe the user on expenses the user paid
                 (sum of the other participants' splits).
    total_owing: what the user owes on expenses somebody else paid.
    net:         total_owed - total_owing; equals the user's compute_balances()
                 figure for the same input.
    """
    sound, _ = _screen(e for e in expenses if is_user_involved(user_id, e))

    owed: dict[str, int] = defaultdict(int)
    owing: dict[str, int] = defaultdict(int)
    currencies: set[str] = set()
    for expense in sound:
        currencies.add(expense.currency)
        own_share = sum(s.amount for s in expense.paid_for if s.user_id == user_id)
        if expense.paid_by == user_id:
            owed[expense.currency] += expense.amount - own_share
        else:
            owing[expense.currency] += own_share

    return [
        UserBalanceSummary(
            user_id=user_id,
            currency=currency,
            total_owed=owed[currency],
            total_owing=owing[currency],
            net=owed[currency] - owing[currency],
        )
        for currency in sorted(currencies)
    ]
