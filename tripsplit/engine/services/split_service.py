"""
services/split_service.py — Split resolution for expense create/update.

Turns a total amount and a list of split requests into ExpenseSplit records
whose amounts sum EXACTLY to the total, in integer minor units.

Resolution order:
  1. FIXED participants take their value verbatim.
  2. The rest of the total (the pool) is shared by PERCENTAGE participants,
     value% of the pool each, rounded half-up. The rounding remainder is
     moved onto the largest share (input order breaks ties).
  3. Whatever the pool still holds goes to EQUAL participants, integer
     division, with the remainder handed out one unit at a time to the
     earliest-listed EQUAL participants.

Over-allocation (FIXED sum above the total, percentages above 100) is
INVALID_SPLIT_DATA. Under-allocation with nobody left to absorb it is
SPLIT_AMOUNT_MISMATCH.

Layer rules:
  - Pure functions. No repository access, no logging configuration.
  - Receives plain ints and SplitRequest/dicts; returns tuples of
    ExpenseSplit or raises AppError subclasses.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from tripsplit.engine.errors import (
    ErrorCode,
    InvalidSplitData,
    PaidByNotInSplit,
    SplitAmountMismatch,
)
from tripsplit.engine.models.expense import (
    DEFAULT_POLICY,
    ExpenseSplit,
    SplitPolicy,
    SplitRequest,
    SplitType,
)

logger = logging.getLogger(__name__)

_HUNDRED = Decimal(100)


# ── Input normalisation ────────────────────────────────────────────────────

def _validate_amount(amount) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidSplitData(
            f"Amount must be an integer number of minor units, got {amount!r}.",
            field="amount",
        )
    if amount <= 0:
        raise InvalidSplitData("Amount must be greater than zero.", field="amount")


def _coerce_request(raw) -> SplitRequest:
    """Accepts a SplitRequest or a schema-loaded dict."""
    if isinstance(raw, SplitRequest):
        request = raw
    elif isinstance(raw, Mapping):
        request = SplitRequest(
            user_id=raw.get("user_id"),
            split_type=raw.get("split_type", SplitType.EQUAL),
            value=raw.get("value"),
        )
    else:
        raise InvalidSplitData(f"{raw!r} is not a split request.")

    if not isinstance(request.user_id, str) or not request.user_id.strip():
        raise InvalidSplitData(f"user_id must be a non-empty string, got {request.user_id!r}.")

    try:
        split_type = SplitType(request.split_type)
    except ValueError:
        raise InvalidSplitData(
            f"Unknown split type {request.split_type!r} for user {request.user_id}. "
            f"Valid values: {', '.join(t.value for t in SplitType)}."
        )
    if split_type is not request.split_type:
        request = SplitRequest(request.user_id, split_type, request.value)
    return request


def _normalize_participants(participants: Sequence) -> list[SplitRequest]:
    if not participants:
        raise InvalidSplitData("At least one participant is required.")

    requests = [_coerce_request(p) for p in participants]

    seen: set[str] = set()
    for r in requests:
        if r.user_id in seen:
            raise InvalidSplitData(
                f"User {r.user_id} appears more than once in the split.",
                code=ErrorCode.DUPLICATE_SPLIT_USER,
            )
        seen.add(r.user_id)
    return requests


def _fixed_value(request: SplitRequest) -> int:
    """
    FIXED value must be a non-negative whole number of minor units.
    A Decimal with an integral value (what the request schema produces) is
    accepted; floats and fractional amounts are not.
    """
    value = request.value
    if value is None:
        raise InvalidSplitData(f"FIXED split for user {request.user_id} requires a value.")
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidSplitData(
            f"FIXED split for user {request.user_id} must be an integer amount, got {value!r}."
        )
    if isinstance(value, Decimal):
        if not value.is_finite() or value != value.to_integral_value():
            raise InvalidSplitData(
                f"FIXED split for user {request.user_id} must be an integer amount, got {value}."
            )
        value = int(value)
    if not isinstance(value, int):
        raise InvalidSplitData(
            f"FIXED split for user {request.user_id} must be an integer amount, got {value!r}."
        )
    if value < 0:
        raise InvalidSplitData(f"FIXED split for user {request.user_id} must not be negative.")
    return value


def _percentage_value(request: SplitRequest) -> Decimal:
    value = request.value
    if value is None:
        raise InvalidSplitData(f"PERCENTAGE split for user {request.user_id} requires a value.")
    if isinstance(value, bool):
        raise InvalidSplitData(
            f"PERCENTAGE split for user {request.user_id} must be a number, got {value!r}."
        )
    try:
        # float goes through str() so 33.3 stays 33.3 instead of its binary expansion
        pct = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidSplitData(
            f"PERCENTAGE split for user {request.user_id} must be a number, got {value!r}."
        )
    if not pct.is_finite() or pct < 0 or pct > _HUNDRED:
        raise InvalidSplitData(
            f"PERCENTAGE split for user {request.user_id} must be between 0 and 100, got {value}."
        )
    return pct


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


# ── Allocation ─────────────────────────────────────────────────────────────

def _allocate_equal(pool: int, count: int) -> list[int]:
    """
    Divides pool into `count` integer shares. The remainder goes one unit
    at a time to the first shares, so earlier participants absorb it.

        _allocate_equal(100, 3) == [34, 33, 33]
    """
    base, remainder = divmod(pool, count)
    return [base + 1 if position < remainder else base for position in range(count)]


def _allocate_percentages(pool: int, percentages: list[Decimal], target: int) -> list[int]:
    """
    Rounds each percentage of `pool` half-up, then forces the shares to sum
    to `target` by correcting the largest share (ties: input order).

    A downward correction larger than the largest share spills over to the
    next largest, so no share ever goes negative.
    """
    shares = [_round_half_up(Decimal(pool) * pct / _HUNDRED) for pct in percentages]
    correction = target - sum(shares)
    if correction == 0:
        return shares

    by_size = sorted(range(len(shares)), key=lambda k: (-shares[k], k))
    if correction > 0:
        shares[by_size[0]] += correction
    else:
        outstanding = -correction
        for k in by_size:
            taken = min(shares[k], outstanding)
            shares[k] -= taken
            outstanding -= taken
            if outstanding == 0:
                break

    logger.debug(
        "Percentage rounding corrected by %d unit(s) toward target %d", correction, target
    )
    return shares


# ── Sum check ──────────────────────────────────────────────────────────────

def validate_split_sum(splits: Sequence[ExpenseSplit], expected_amount: int) -> None:
    """
    Raises SPLIT_AMOUNT_MISMATCH if sum(splits.amount) != expected_amount.
    Tolerance is zero; amounts are ints.
    """
    total = sum(s.amount for s in splits)
    if total != expected_amount:
        raise SplitAmountMismatch(
            f"Split amounts ({total}) do not equal expense amount ({expected_amount})."
        )


def check_payer_policy(
        paid_by: str | None,
        participant_ids: Sequence[str],
        policy: SplitPolicy,
) -> None:
    """Raises PAID_BY_NOT_IN_SPLIT when the policy demands the payer take a share."""
    if policy.require_payer_in_split and paid_by not in participant_ids:
        raise PaidByNotInSplit(paid_by)


# ── Public entry point ─────────────────────────────────────────────────────

def resolve_splits(
        amount: int,
        participants: Sequence[SplitRequest | Mapping],
        paid_by: str | None = None,
        policy: SplitPolicy | None = None,
        usernames: Mapping[str, str] | None = None,
) -> tuple[ExpenseSplit, ...]:
    """
    Resolves split requests into ExpenseSplit records.

    Args:
        amount:       Expense total in minor units. Positive int.
        participants: SplitRequest objects (or dicts with user_id, split_type,
                      value) in the order the client listed them. That order
                      is the tie-break for every remainder.
        paid_by:      The payer. Their own split is marked is_paid=True.
        policy:       SplitPolicy for this call. Defaults to DEFAULT_POLICY.
        usernames:    Optional display names copied onto the splits.

    Returns:
        Tuple of ExpenseSplit in input order; sum(amount) == amount exactly.

    Raises:
        InvalidSplitData     — malformed request or over-allocation.
        SplitAmountMismatch  — request leaves part of the total unassigned.
        PaidByNotInSplit     — policy.require_payer_in_split and payer absent.
    """
    policy = policy or DEFAULT_POLICY
    _validate_amount(amount)
    requests = _normalize_participants(participants)
    check_payer_policy(paid_by, [r.user_id for r in requests], policy)

    shares: list[int] = [0] * len(requests)
    fixed_idx = [i for i, r in enumerate(requests) if r.split_type == SplitType.FIXED]
    pct_idx = [i for i, r in enumerate(requests) if r.split_type == SplitType.PERCENTAGE]
    equal_idx = [i for i, r in enumerate(requests) if r.split_type == SplitType.EQUAL]

    for i in equal_idx:
        if requests[i].value is not None:
            raise InvalidSplitData(
                f"EQUAL split for user {requests[i].user_id} must not carry a value."
            )

    # 1. FIXED
    for i in fixed_idx:
        shares[i] = _fixed_value(requests[i])
    fixed_total = sum(shares[i] for i in fixed_idx)
    if fixed_total > amount:
        raise InvalidSplitData(
            f"Fixed split amounts ({fixed_total}) exceed the expense amount ({amount})."
        )
    pool = amount - fixed_total

    # 2. PERCENTAGE
    percentages = [_percentage_value(requests[i]) for i in pct_idx]
    pct_total = sum(percentages, Decimal(0))
    if pct_total > _HUNDRED:
        raise InvalidSplitData(f"Percentages add up to {pct_total}, more than 100.")

    if not equal_idx:
        if pct_idx and pct_total != _HUNDRED:
            raise SplitAmountMismatch(
                f"Percentages add up to {pct_total}; they must add up to 100 "
                f"when no participant splits equally."
            )
        if not pct_idx and pool != 0:
            raise SplitAmountMismatch(
                f"Split amounts ({fixed_total}) do not equal expense amount ({amount})."
            )
        pct_target = pool
    else:
        pct_target = _round_half_up(Decimal(pool) * pct_total / _HUNDRED) if pct_idx else 0

    if pct_idx:
        for i, share in zip(pct_idx, _allocate_percentages(pool, percentages, pct_target)):
            shares[i] = share

    # 3. EQUAL
    if equal_idx:
        for i, share in zip(equal_idx, _allocate_equal(pool - pct_target, len(equal_idx))):
            shares[i] = share

    usernames = usernames or {}
    splits = tuple(
        ExpenseSplit(
            user_id=r.user_id,
            amount=shares[i],
            is_paid=(r.user_id == paid_by),
            username=usernames.get(r.user_id),
        )
        for i, r in enumerate(requests)
    )

    # Must always hold; a failure here is a programming error.
    computed_sum = sum(s.amount for s in splits)
    if computed_sum != amount or any(s.amount < 0 for s in splits):
        logger.error(
            "Split resolution invariant violated: amount=%d computed=%d shares=%r",
            amount, computed_sum, shares,
        )
        raise SplitAmountMismatch(
            f"Split computation produced sum {computed_sum} for amount {amount}. "
            f"This is a bug, please report it.",
            internal=True,
        )

    logger.debug(
        "Resolved %d split(s) for amount %d: %s",
        len(splits), amount, ", ".join(f"{s.user_id}={s.amount}" for s in splits),
    )
    return splits
