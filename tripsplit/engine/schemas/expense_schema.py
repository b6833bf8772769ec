"""
schemas/expense_schema.py — Marshmallow schemas for expense requests.

Validation responsibility:
  - This file:
      - Field types, lengths, enum values, currency code shape
      - DUPLICATE_SPLIT_USER (400) — request shape rule
      - PATCH co-presence rule: amount and paid_for travel together
      - Non-empty-after-trim enforcement for description
  - services/split_service.py:
      - Per-strategy value rules (FIXED integer, PERCENTAGE 0–100,
        EQUAL without value), over/under-allocation, payer policy

IMPORTANT: Inherits from marshmallow.Schema directly. Schemas are loaded by
the expense service; callers never need an application context.
"""

from __future__ import annotations

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    validate,
    validates_schema,
)

from tripsplit.engine.errors import ErrorCode
from tripsplit.engine.models.expense import Category, SplitType
from tripsplit.engine.money import is_valid_currency


# ── Shared validators ──────────────────────────────────────────────────────

def _validate_non_empty_after_trim(value: str) -> None:
    """
    Raises ValidationError if the string is blank or contains only whitespace.
    validate.Length(min=1) alone accepts "   ".
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _validate_currency(value: str) -> None:
    """Case-insensitive ISO 4217 shape check; the service upper-cases."""
    if not is_valid_currency(value.strip().upper()):
        raise ValidationError(ErrorCode.INVALID_CURRENCY)


def _reject_duplicate_users(paid_for: list[dict] | None) -> None:
    if paid_for is None:
        return
    user_ids = [s["user_id"] for s in paid_for]
    if len(user_ids) != len(set(user_ids)):
        raise ValidationError({"paid_for": [ErrorCode.DUPLICATE_SPLIT_USER]})


_USER_ID = dict(
    validate=[
        validate.Length(min=1, max=64, error="user ids must be between 1 and 64 characters."),
        _validate_non_empty_after_trim,
    ],
)

_DESCRIPTION = dict(
    validate=[
        validate.Length(
            min=1,
            max=255,
            error="Description must be between 1 and 255 characters.",
        ),
        _validate_non_empty_after_trim,
    ],
)


# ── Sub-schema: one entry in the `paid_for` array ─────────────────────────

class SplitRequestSchema(Schema):
    """
    One participant of a split request.

    `value` is loaded as Decimal: a percentage (0–100) for PERCENTAGE, a
    whole number of minor units for FIXED, absent for EQUAL. The split
    resolver enforces which is which.
    """

    user_id = fields.Str(required=True, **_USER_ID)

    split_type = fields.Enum(
        SplitType,
        load_default=SplitType.EQUAL,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_TYPE},
    )

    value = fields.Decimal(
        load_default=None,
        allow_none=True,
    )


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    Expense creation request.

    Checks in this schema:
      - amount is a strict positive integer (minor units)
      - currency looks like an ISO 4217 code
      - paid_for is non-empty and has no duplicate user_id

    Checks NOT in this schema (belong in the split resolver):
      - sum of resolved splits == amount
      - payer-must-participate policy
    """

    group_id = fields.Str(load_default=None, allow_none=True)

    description = fields.Str(required=True, **_DESCRIPTION)

    # Minor units. strict=True rejects 10.5 and "1050".
    amount = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="Amount must be greater than zero."),
    )

    currency = fields.Str(required=True, validate=_validate_currency)

    category = fields.Enum(
        Category,
        load_default=Category.OTHER,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_CATEGORY},
    )

    paid_by = fields.Str(required=True, **_USER_ID)

    paid_for = fields.List(
        fields.Nested(SplitRequestSchema),
        required=True,
        validate=validate.Length(min=1, error="At least one participant is required."),
    )

    # Defaults to the creation day in the expense service.
    date = fields.Date(load_default=None, allow_none=True)

    receipt = fields.Url(load_default=None, allow_none=True)

    @validates_schema
    def validate_paid_for(self, data: dict, **kwargs) -> None:
        """DUPLICATE_SPLIT_USER (400): same user_id listed twice in paid_for."""
        _reject_duplicate_users(data.get("paid_for"))


# ── Patch expense ──────────────────────────────────────────────────────────

class PatchExpenseSchema(Schema):
    """
    Partial update request. All fields are optional; the service replaces
    the stored expense with the merged result.

    Co-presence rule:
      Stored splits keep no strategy, so they cannot be re-resolved against a
      new amount. amount and paid_for must be provided together or not at all.
    """

    description = fields.Str(required=False, **_DESCRIPTION)

    amount = fields.Int(
        required=False,
        strict=True,
        validate=validate.Range(min=1, error="Amount must be greater than zero."),
    )

    currency = fields.Str(required=False, validate=_validate_currency)

    category = fields.Enum(
        Category,
        required=False,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_CATEGORY},
    )

    paid_by = fields.Str(required=False, **_USER_ID)

    paid_for = fields.List(
        fields.Nested(SplitRequestSchema),
        required=False,
        validate=validate.Length(min=1, error="At least one participant is required."),
    )

    date = fields.Date(required=False)

    receipt = fields.Url(required=False, allow_none=True)

    @validates_schema
    def validate_patch_coherence(self, data: dict, **kwargs) -> None:
        _reject_duplicate_users(data.get("paid_for"))

        amount_provided = "amount" in data
        splits_provided = "paid_for" in data

        if amount_provided and not splits_provided:
            raise ValidationError(
                {"paid_for": ["paid_for must be provided when amount is being updated."]}
            )
        if splits_provided and not amount_provided:
            raise ValidationError(
                {"amount": ["amount must be provided when paid_for is being updated."]}
            )
