"""
tests/unit/test_group_summary.py — Group summaries and per-user balance views.

What this file proves:
  - total_expenses, by_category and by_member for a single-currency group
  - Category percentages are display-only Decimals, ROUND_HALF_UP to the
    configured places, listed in Category declaration order
  - by_member net_balance equals what compute_balances yields for the group
  - A group using several currencies raises MIXED_CURRENCY (422) unless a
    currency is chosen; compute_group_summaries gives one summary per currency
  - Expenses from another group are reported and left out; per-currency
    summaries only cover currencies that survive screening and report each
    excluded expense once
  - summarize_user_balance splits a user's position into owed / owing per
    currency, and its net agrees with compute_balances
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import make_expense
from tripsplit.engine.errors import ErrorCode, InvalidSplitData, MixedCurrencyError
from tripsplit.engine.models import Category, UserBalanceSummary
from tripsplit.engine.services.balance_service import (
    compute_balances,
    compute_group_summaries,
    compute_group_summary,
    is_user_involved,
    summarize_user_balance,
)


def _group() -> list:
    return [
        make_expense("e1", "a", 6000, [("a", 2000), ("b", 2000), ("c", 2000)], category=Category.FOOD),
        make_expense("e2", "b", 3000, [("b", 1500), ("c", 1500)], category=Category.ACCOMMODATION),
    ]


# ── Single currency ────────────────────────────────────────────────────────

def test_totals_and_category_breakdown():
    summary = compute_group_summary("g1", _group())

    assert summary.group_id == "g1"
    assert summary.currency == "USD"
    assert summary.total_expenses == 9000
    assert [(c.category, c.amount, c.percentage) for c in summary.by_category] == [
        (Category.ACCOMMODATION, 3000, Decimal("33.3")),
        (Category.FOOD, 6000, Decimal("66.7")),
    ]


def test_percentage_places_configurable():
    summary = compute_group_summary("g1", _group(), percentage_places=2)

    assert [c.percentage for c in summary.by_category] == [Decimal("33.33"), Decimal("66.67")]


def test_member_breakdown():
    summary = compute_group_summary("g1", _group(), user_names={"a": "Alice"})

    rows = {m.user_id: (m.username, m.paid, m.owes, m.net_balance) for m in summary.by_member}
    assert rows == {
        "a": ("Alice", 6000, 2000, 4000),
        "b": ("user_b", 3000, 3500, -500),
        "c": ("user_c", 0, 3500, -3500),
    }
    assert sum(m.net_balance for m in summary.by_member) == 0


def test_member_net_matches_compute_balances():
    expenses = _group()
    summary = compute_group_summary("g1", expenses)
    report = compute_balances(expenses)

    assert {m.user_id: m.net_balance for m in summary.by_member} == {
        b.user_id: b.balance for b in report.balances
    }


def test_empty_group_summary_uses_default_currency():
    summary = compute_group_summary("g1", [], default_currency="EUR")

    assert summary.total_expenses == 0
    assert summary.currency == "EUR"
    assert summary.by_category == ()
    assert summary.by_member == ()


# ── Currency handling ──────────────────────────────────────────────────────

def _mixed_group() -> list:
    return _group() + [
        make_expense("e3", "c", 4000, [("a", 2000), ("c", 2000)], currency="EUR"),
    ]


def test_mixed_currencies_without_choice_raise():
    with pytest.raises(MixedCurrencyError) as exc_info:
        compute_group_summary("g1", _mixed_group())

    err = exc_info.value
    assert err.code == ErrorCode.MIXED_CURRENCY
    assert err.http_status == 422
    assert err.currencies == ["EUR", "USD"]


def test_explicit_currency_selects_matching_expenses_only():
    summary = compute_group_summary("g1", _mixed_group(), currency="EUR")

    assert summary.total_expenses == 4000
    assert {m.user_id: m.net_balance for m in summary.by_member} == {"a": -2000, "c": 2000}


def test_summaries_one_per_currency():
    summaries = compute_group_summaries("g1", _mixed_group())

    assert [(s.currency, s.total_expenses) for s in summaries] == [("EUR", 4000), ("USD", 9000)]


# ── Integrity ──────────────────────────────────────────────────────────────

def test_foreign_group_expense_reported_and_left_out():
    expenses = _group() + [make_expense("x1", "a", 500, [("a", 500)], group_id="g2")]
    summary = compute_group_summary("g1", expenses)

    assert summary.total_expenses == 9000
    assert [e.expense_id for e in summary.errors] == ["x1"]
    assert summary.errors[0].code == ErrorCode.DATA_INTEGRITY_ERROR


def test_malformed_expense_left_out_of_summary():
    expenses = _group() + [make_expense("bad", "a", 500, [("a", 400)])]
    summary = compute_group_summary("g1", expenses)

    assert summary.total_expenses == 9000
    assert [e.expense_id for e in summary.errors] == ["bad"]


def test_summaries_skip_currencies_seen_only_on_excluded_expenses():
    expenses = [
        make_expense("ok", "a", 100, [("a", 50), ("b", 50)], currency="USD"),
        make_expense("x1", "a", 500, [("a", 500)], currency="EUR", group_id="g2"),
        make_expense("bad", "a", 300, [("a", 200)], currency="GBP"),
    ]
    summaries = compute_group_summaries("g1", expenses)

    assert [(s.currency, s.total_expenses) for s in summaries] == [("USD", 100)]
    assert sorted(e.expense_id for e in summaries[0].errors) == ["bad", "x1"]


def test_summaries_report_errors_once():
    expenses = _mixed_group() + [make_expense("bad", "a", 500, [("a", 400)])]
    summaries = compute_group_summaries("g1", expenses)

    assert [s.currency for s in summaries] == ["EUR", "USD"]
    assert [[e.expense_id for e in s.errors] for s in summaries] == [["bad"], []]


def test_summaries_when_nothing_survives_screening():
    expenses = [make_expense("x1", "a", 500, [("a", 500)], currency="EUR", group_id="g2")]
    summaries = compute_group_summaries("g1", expenses, default_currency="GBP")

    assert [(s.currency, s.total_expenses) for s in summaries] == [("GBP", 0)]
    assert [e.expense_id for e in summaries[0].errors] == ["x1"]
    assert compute_group_summaries("g1", []) == []


def test_requested_currency_is_normalised():
    summary = compute_group_summary("g1", _mixed_group(), currency=" eur ")

    assert summary.currency == "EUR"
    assert summary.total_expenses == 4000


def test_invalid_requested_currency_rejected():
    with pytest.raises(InvalidSplitData) as exc_info:
        compute_group_summary("g1", _group(), currency="euros")

    assert exc_info.value.code == ErrorCode.INVALID_CURRENCY


# ── Per-user view ──────────────────────────────────────────────────────────

def _user_expenses() -> list:
    return [
        make_expense("e1", "a", 100, [("a", 50), ("b", 50)]),
        make_expense("e2", "b", 60, [("a", 30), ("b", 30)]),
        make_expense("e3", "c", 40, [("a", 40)], currency="EUR"),
        make_expense("e4", "b", 70, [("b", 35), ("c", 35)]),
    ]


def test_is_user_involved():
    e1, _, e3, e4 = _user_expenses()

    assert is_user_involved("a", e1)
    assert is_user_involved("a", e3)
    assert is_user_involved("c", e3)
    assert not is_user_involved("a", e4)


def test_user_balance_split_by_currency():
    result = summarize_user_balance("a", _user_expenses())

    assert result == [
        UserBalanceSummary(user_id="a", currency="EUR", total_owed=0, total_owing=40, net=-40),
        UserBalanceSummary(user_id="a", currency="USD", total_owed=50, total_owing=30, net=20),
    ]


def test_user_net_agrees_with_compute_balances():
    expenses = _user_expenses()
    report = compute_balances(expenses)

    for user_id in ("a", "b", "c"):
        nets = {s.currency: s.net for s in summarize_user_balance(user_id, expenses)}
        assert nets == {b.currency: b.balance for b in report.for_user(user_id)}


def test_uninvolved_user_has_no_rows():
    assert summarize_user_balance("zoe", _user_expenses()) == []
