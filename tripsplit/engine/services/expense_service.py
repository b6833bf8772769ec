"""
services/expense_service.py — Expense create / update / delete flows.

Persistence is an external collaborator: every function receives an object
satisfying ExpenseRepository and never touches storage any other way.

Rules enforced here:
  - Every request payload is loaded through a marshmallow schema first;
    schema errors surface as InvalidSplitData (400), first error only.
  - Create and any update touching amount, payer or splits re-run the split
    resolver (or the split-sum check) BEFORE the repository is called. A
    rejected request never reaches storage.
  - Updates are full replacements: the merged Expense is handed to the
    repository whole, with updated_at refreshed.
  - Balance reads take one repository snapshot and delegate to
    balance_service; nothing is cached.

Layer rules:
  - No HTTP knowledge. Errors carry http_status for the caller to use.
  - Authorization (who may edit) belongs to the request handler.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Protocol

from marshmallow import ValidationError

from tripsplit.engine.errors import (
    AppError,
    ErrorCode,
    expense_not_found,
    from_validation_error,
)
from tripsplit.engine.models.balance import BalanceReport, ExpenseSummary, UserBalanceSummary
from tripsplit.engine.models.expense import DEFAULT_POLICY, Expense, SplitPolicy
from tripsplit.engine.money import normalize_currency
from tripsplit.engine.schemas.expense_schema import CreateExpenseSchema, PatchExpenseSchema
from tripsplit.engine.services import balance_service
from tripsplit.engine.services.split_service import (
    check_payer_policy,
    resolve_splits,
    validate_split_sum,
)

logger = logging.getLogger(__name__)


class ExpenseRepository(Protocol):
    """
    Storage contract consumed by the engine.

    list_expenses must return fully validated expenses (splits already
    summing to amount) as one consistent snapshot.
    """

    def list_expenses(
            self,
            group_id: str | None = None,
            user_id: str | None = None,
    ) -> list[Expense]: ...

    def get_expense(self, expense_id: str) -> Expense | None: ...

    def create_expense(self, expense: Expense) -> Expense: ...

    def update_expense(self, expense_id: str, expense: Expense) -> Expense: ...

    def delete_expense(self, expense_id: str) -> bool: ...


# ── Private helpers ────────────────────────────────────────────────────────

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _load(schema, data: Mapping) -> dict:
    try:
        return schema.load(data)
    except ValidationError as err:
        raise from_validation_error(err) from err


def _get_expense_or_404(repository: ExpenseRepository, expense_id: str) -> Expense:
    expense = repository.get_expense(expense_id)
    if expense is None:
        raise expense_not_found(expense_id)
    return expense


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        repository: ExpenseRepository,
        data: Mapping,
        policy: SplitPolicy | None = None,
        usernames: Mapping[str, str] | None = None,
        now: datetime | None = None,
) -> Expense:
    """
    Validates a creation request, resolves its splits and persists it.

    Args:
        data:      Raw request payload (see CreateExpenseSchema).
        policy:    SplitPolicy for this call.
        usernames: Optional display names copied onto the splits.
        now:       Timestamp for created_at/updated_at (injected by tests).

    Returns:
        Whatever the repository returns for the created expense.
    """
    loaded = _load(CreateExpenseSchema(), data)
    now = now or _utcnow()

    splits = resolve_splits(
        loaded["amount"],
        loaded["paid_for"],
        paid_by=loaded["paid_by"],
        policy=policy or DEFAULT_POLICY,
        usernames=usernames,
    )

    expense = Expense(
        id=uuid.uuid4().hex,
        group_id=loaded["group_id"],
        description=loaded["description"].strip(),
        amount=loaded["amount"],
        currency=normalize_currency(loaded["currency"]),
        category=loaded["category"],
        paid_by=loaded["paid_by"],
        paid_for=splits,
        date=loaded["date"] or now.date(),
        created_at=now,
        updated_at=now,
        receipt=loaded["receipt"],
    )

    created = repository.create_expense(expense)
    logger.info(
        "Created expense %s (%d %s, %d split(s)) in group %s",
        created.id, created.amount, created.currency, len(created.paid_for), created.group_id,
    )
    return created


def get_expense(repository: ExpenseRepository, expense_id: str) -> Expense:
    """Returns the expense or raises EXPENSE_NOT_FOUND (404)."""
    return _get_expense_or_404(repository, expense_id)


def _newest_first(expenses: Iterable[Expense]) -> list[Expense]:
    return sorted(expenses, key=lambda e: (e.date, e.created_at, e.id), reverse=True)


def list_group_expenses(repository: ExpenseRepository, group_id: str) -> list[Expense]:
    """The group's expenses, newest first."""
    return _newest_first(repository.list_expenses(group_id=group_id))


def list_user_expenses(repository: ExpenseRepository, user_id: str) -> list[Expense]:
    """Every expense the user paid or holds a split on, across groups, newest first."""
    return _newest_first(repository.list_expenses(user_id=user_id))


def update_expense(
        repository: ExpenseRepository,
        expense_id: str,
        changes: Mapping,
        policy: SplitPolicy | None = None,
        usernames: Mapping[str, str] | None = None,
        now: datetime | None = None,
) -> Expense:
    """
    Applies a partial update as a full replacement.

      - amount + paid_for (always together): splits are re-resolved.
      - paid_by alone: the payer policy is re-checked against the stored
        splits; the new payer's own split is marked paid and the previous
        payer's is reopened.
      - Other fields are copied over as given.
      - updated_at is refreshed on every successful update.
    """
    existing = _get_expense_or_404(repository, expense_id)
    loaded = _load(PatchExpenseSchema(), changes)
    policy = policy or DEFAULT_POLICY

    updates: dict = {}
    for name in ("category", "date", "receipt"):
        if name in loaded:
            updates[name] = loaded[name]
    if "description" in loaded:
        updates["description"] = loaded["description"].strip()
    if "currency" in loaded:
        updates["currency"] = normalize_currency(loaded["currency"])

    paid_by = loaded.get("paid_by", existing.paid_by)
    if "paid_for" in loaded:
        updates["amount"] = loaded["amount"]
        updates["paid_for"] = resolve_splits(
            loaded["amount"],
            loaded["paid_for"],
            paid_by=paid_by,
            policy=policy,
            usernames=usernames,
        )
        updates["paid_by"] = paid_by
    elif "paid_by" in loaded:
        check_payer_policy(paid_by, existing.participant_ids, policy)
        # Only the payer's own share is settled by construction.
        splits = tuple(
            dataclasses.replace(s, is_paid=(s.user_id == paid_by))
            if s.user_id in (paid_by, existing.paid_by) else s
            for s in existing.paid_for
        )
        validate_split_sum(splits, existing.amount)
        updates["paid_by"] = paid_by
        updates["paid_for"] = splits

    updated = existing.replace(**updates, updated_at=now or _utcnow())
    result = repository.update_expense(expense_id, updated)
    logger.info("Updated expense %s (fields: %s)", expense_id, ", ".join(sorted(loaded)) or "none")
    return result


def delete_expense(repository: ExpenseRepository, expense_id: str) -> None:
    """
    Deletes an expense. Later balance queries no longer see it because they
    always re-read the repository.

    Raises:
        AppError(EXPENSE_NOT_FOUND, 404) — expense does not exist.
    """
    _get_expense_or_404(repository, expense_id)
    repository.delete_expense(expense_id)
    logger.info("Deleted expense %s", expense_id)


def mark_split_paid(
        repository: ExpenseRepository,
        expense_id: str,
        user_id: str,
        is_paid: bool = True,
        now: datetime | None = None,
) -> Expense:
    """
    Flips one split's settlement flag. The flag is bookkeeping only: it does
    not change amounts, so balances are unaffected.
    """
    existing = _get_expense_or_404(repository, expense_id)
    if existing.split_for(user_id) is None:
        raise AppError(
            ErrorCode.SPLIT_NOT_FOUND,
            f"User {user_id} has no split on expense {expense_id}.",
            404,
            field="user_id",
        )

    splits = tuple(
        dataclasses.replace(s, is_paid=is_paid) if s.user_id == user_id else s
        for s in existing.paid_for
    )
    updated = existing.replace(paid_for=splits, updated_at=now or _utcnow())
    return repository.update_expense(expense_id, updated)


# ── Balance reads ──────────────────────────────────────────────────────────

def get_group_balances(
        repository: ExpenseRepository,
        group_id: str,
        members: Iterable[str] | None = None,
        user_names: Mapping[str, str] | None = None,
        default_currency: str | None = None,
) -> BalanceReport:
    expenses = repository.list_expenses(group_id=group_id)
    return balance_service.compute_balances(
        expenses,
        members=members,
        user_names=user_names,
        default_currency=default_currency,
    )


def get_group_summary(
        repository: ExpenseRepository,
        group_id: str,
        currency: str | None = None,
        user_names: Mapping[str, str] | None = None,
        percentage_places: int = balance_service.DEFAULT_PERCENTAGE_PLACES,
        default_currency: str | None = None,
) -> ExpenseSummary:
    expenses = repository.list_expenses(group_id=group_id)
    return balance_service.compute_group_summary(
        group_id,
        expenses,
        currency=currency or None,
        user_names=user_names,
        percentage_places=percentage_places,
        default_currency=default_currency,
    )


def get_user_balances(repository: ExpenseRepository, user_id: str) -> list[UserBalanceSummary]:
    """The user's owed/owing position per currency across all their groups."""
    expenses = repository.list_expenses(user_id=user_id)
    return balance_service.summarize_user_balance(user_id, expenses)
