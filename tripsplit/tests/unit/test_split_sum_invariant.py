"""
tests/unit/test_split_sum_invariant.py — Split-sum enforcement and input checks.

What this file proves:
  - validate_split_sum raises SPLIT_AMOUNT_MISMATCH (400) when sum != amount
    and passes silently on an exact match; tolerance is zero
  - resolve_splits rejects malformed requests BEFORE any arithmetic:
    non-positive or non-integer amount, empty or duplicate participants,
    unknown split types, blank user ids
  - The internal guard (sum mismatch after resolution) is unreachable across
    a sweep of inputs, and when forced it raises a 500 INTERNAL_ERROR and
    logs at ERROR level
  - The payer's split is flagged is_paid; the payer policy is honoured
"""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest

from tripsplit.engine.errors import (
    ErrorCode,
    InvalidSplitData,
    PaidByNotInSplit,
    SplitAmountMismatch,
)
from tripsplit.engine.models import ExpenseSplit, SplitPolicy, SplitRequest, SplitType
from tripsplit.engine.services import split_service
from tripsplit.engine.services.split_service import (
    check_payer_policy,
    resolve_splits,
    validate_split_sum,
)

STRICT = SplitPolicy(require_payer_in_split=True)


def _split(user_id: str, amount: int) -> ExpenseSplit:
    return ExpenseSplit(user_id=user_id, amount=amount)


# ── validate_split_sum ─────────────────────────────────────────────────────

def test_exact_match_passes_silently():
    validate_split_sum([_split("a", 50), _split("b", 50)], expected_amount=100)


def test_single_unit_short_raises():
    with pytest.raises(SplitAmountMismatch) as exc_info:
        validate_split_sum([_split("a", 50), _split("b", 49)], expected_amount=100)

    err = exc_info.value
    assert err.code == ErrorCode.SPLIT_AMOUNT_MISMATCH
    assert err.http_status == 400
    assert "99" in err.message


def test_single_unit_over_raises():
    with pytest.raises(SplitAmountMismatch):
        validate_split_sum([_split("a", 51), _split("b", 50)], expected_amount=100)


def test_empty_splits_against_positive_amount_raise():
    with pytest.raises(SplitAmountMismatch):
        validate_split_sum([], expected_amount=1)


# ── Request validation ─────────────────────────────────────────────────────

@pytest.mark.parametrize("amount", [0, -100, 10.5, "100", True, None])
def test_invalid_amounts_rejected(amount):
    with pytest.raises(InvalidSplitData) as exc_info:
        resolve_splits(amount, [SplitRequest("a")])

    assert exc_info.value.field == "amount"


def test_empty_participant_list_rejected():
    with pytest.raises(InvalidSplitData) as exc_info:
        resolve_splits(100, [])

    assert exc_info.value.field == "paid_for"


def test_duplicate_participant_rejected_with_dedicated_code():
    with pytest.raises(InvalidSplitData) as exc_info:
        resolve_splits(100, [SplitRequest("a"), SplitRequest("b"), SplitRequest("a")])

    err = exc_info.value
    assert err.code == ErrorCode.DUPLICATE_SPLIT_USER
    assert err.http_status == 400


@pytest.mark.parametrize("split_type", ["HALF", "equal", "", 3])
def test_unknown_split_type_rejected(split_type):
    with pytest.raises(InvalidSplitData):
        resolve_splits(100, [{"user_id": "a", "split_type": split_type}])


@pytest.mark.parametrize("user_id", ["", "   ", None, 42])
def test_blank_or_non_string_user_id_rejected(user_id):
    with pytest.raises(InvalidSplitData):
        resolve_splits(100, [{"user_id": user_id}])


def test_non_request_participant_rejected():
    with pytest.raises(InvalidSplitData):
        resolve_splits(100, ["a"])


# ── Payer flag and policy ──────────────────────────────────────────────────

def test_payer_split_marked_paid_others_open():
    result = resolve_splits(90, [SplitRequest("a"), SplitRequest("b"), SplitRequest("c")], paid_by="b")

    assert {s.user_id: s.is_paid for s in result} == {"a": False, "b": True, "c": False}


def test_payer_outside_split_allowed_by_default_policy():
    result = resolve_splits(90, [SplitRequest("b"), SplitRequest("c")], paid_by="a")

    assert [s.amount for s in result] == [45, 45]
    assert not any(s.is_paid for s in result)


def test_strict_policy_rejects_payer_outside_split():
    with pytest.raises(PaidByNotInSplit) as exc_info:
        resolve_splits(90, [SplitRequest("b"), SplitRequest("c")], paid_by="a", policy=STRICT)

    err = exc_info.value
    assert err.code == ErrorCode.PAID_BY_NOT_IN_SPLIT
    assert err.http_status == 400
    assert err.field == "paid_by"


def test_strict_policy_accepts_payer_inside_split():
    result = resolve_splits(90, [SplitRequest("a"), SplitRequest("b")], paid_by="a", policy=STRICT)

    assert sum(s.amount for s in result) == 90


def test_check_payer_policy_is_noop_when_not_required():
    check_payer_policy("x", ["a", "b"], SplitPolicy())


def test_usernames_copied_onto_splits():
    result = resolve_splits(
        100, [SplitRequest("a"), SplitRequest("b")], usernames={"a": "Alice"}
    )

    assert [s.username for s in result] == ["Alice", None]


# ── Internal guard ─────────────────────────────────────────────────────────

_MIXES = [
    [SplitRequest("a"), SplitRequest("b"), SplitRequest("c")],
    [SplitRequest("a", SplitType.PERCENTAGE, "33.33"), SplitRequest("b"), SplitRequest("c")],
    [SplitRequest("a", SplitType.FIXED, 1), SplitRequest("b", SplitType.PERCENTAGE, "12.5"),
     SplitRequest("c"), SplitRequest("d")],
    [SplitRequest("a", SplitType.PERCENTAGE, "33.33"), SplitRequest("b", SplitType.PERCENTAGE, "33.33"),
     SplitRequest("c", SplitType.PERCENTAGE, "33.34")],
    [SplitRequest(u, SplitType.PERCENTAGE, "14.2857") for u in "abcdef"]
    + [SplitRequest("g", SplitType.PERCENTAGE, "14.2858")],
]


@pytest.mark.parametrize("mix", _MIXES)
def test_internal_guard_unreachable_across_sweep(mix):
    """No amount from 1 to 600 makes the resolver produce a bad sum or a negative share."""
    for amount in range(1, 601):
        result = resolve_splits(amount, mix)
        assert sum(s.amount for s in result) == amount
        assert all(s.amount >= 0 for s in result)


def test_internal_guard_raises_500_and_logs_when_forced(caplog):
    with patch.object(split_service, "_allocate_equal", return_value=[10, 10]):
        with caplog.at_level(logging.ERROR, logger="tripsplit.engine.services.split_service"):
            with pytest.raises(SplitAmountMismatch) as exc_info:
                resolve_splits(100, [SplitRequest("a"), SplitRequest("b")])

    err = exc_info.value
    assert err.code == ErrorCode.INTERNAL_ERROR
    assert err.http_status == 500
    assert any("invariant violated" in r.message for r in caplog.records)
