"""
schemas/balance_schema.py — Output schemas for expenses and balance views.

Amounts cross the boundary as integer minor units (the wire contract).
Each amount also gets a `display_*` string with the currency's precision,
e.g. 1050 USD → "10.50". Display strings are for rendering only; clients
must never parse them back into arithmetic.
"""

from __future__ import annotations

from marshmallow import Schema, fields

from tripsplit.engine.models.expense import Category
from tripsplit.engine.money import from_minor_units


def _display(amount: int, currency: str) -> str:
    return str(from_minor_units(amount, currency))


class ExpenseSplitSchema(Schema):
    user_id = fields.Str()
    username = fields.Str(allow_none=True)
    amount = fields.Int()
    is_paid = fields.Bool()


class ExpenseSchema(Schema):
    id = fields.Str()
    group_id = fields.Str(allow_none=True)
    description = fields.Str()
    amount = fields.Int()
    display_amount = fields.Method("get_display_amount")
    currency = fields.Str()
    category = fields.Enum(Category, by_value=True)
    paid_by = fields.Str()
    paid_for = fields.List(fields.Nested(ExpenseSplitSchema))
    date = fields.Date()
    receipt = fields.Str(allow_none=True)
    created_at = fields.DateTime()
    updated_at = fields.DateTime()

    def get_display_amount(self, expense) -> str:
        return _display(expense.amount, expense.currency)


class BalanceSchema(Schema):
    user_id = fields.Str()
    user_name = fields.Str()
    balance = fields.Int()
    display_balance = fields.Method("get_display_balance")
    currency = fields.Str()

    def get_display_balance(self, balance) -> str:
        return _display(balance.balance, balance.currency)


def _dump_errors(errors) -> list[dict]:
    return [e.to_dict()["error"] for e in errors]


class BalanceReportSchema(Schema):
    balances = fields.List(fields.Nested(BalanceSchema))
    errors = fields.Function(lambda report: _dump_errors(report.errors))


class CategoryBreakdownSchema(Schema):
    category = fields.Enum(Category, by_value=True)
    amount = fields.Int()
    percentage = fields.Decimal(as_string=True)


class MemberBreakdownSchema(Schema):
    user_id = fields.Str()
    username = fields.Str()
    paid = fields.Int()
    owes = fields.Int()
    net_balance = fields.Int()


class ExpenseSummarySchema(Schema):
    group_id = fields.Str()
    total_expenses = fields.Int()
    display_total = fields.Method("get_display_total")
    currency = fields.Str()
    by_category = fields.List(fields.Nested(CategoryBreakdownSchema))
    by_member = fields.List(fields.Nested(MemberBreakdownSchema))
    errors = fields.Function(lambda summary: _dump_errors(summary.errors))

    def get_display_total(self, summary) -> str:
        return _display(summary.total_expenses, summary.currency)


class UserBalanceSummarySchema(Schema):
    user_id = fields.Str()
    currency = fields.Str()
    total_owed = fields.Int()
    total_owing = fields.Int()
    net = fields.Int()
