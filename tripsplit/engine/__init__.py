"""
engine/__init__.py — Balance engine factory.

Pattern: create_engine(config_name) creates and returns a configured
BalanceEngine. Nothing is initialised at import time; several engines with
different configs can live side by side (one per test if needed).

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Fail fast on an invalid production configuration
  3. Configure the "tripsplit" logger
  4. Expose the engine operations with the configured default SplitPolicy

The engine holds configuration only. Every operation stays a pure function
of its arguments; a policy passed to a call overrides the configured one.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence

from tripsplit.config import BaseConfig, config_by_name, validate_production_config
from tripsplit.engine.models import (
    BalanceReport,
    Expense,
    ExpenseSplit,
    ExpenseSummary,
    SplitPolicy,
    SplitRequest,
    UserBalanceSummary,
)
from tripsplit.engine.services import balance_service, expense_service, split_service

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(config: type[BaseConfig]) -> logging.Logger:
    """
    Sets the level of the package logger and attaches one stream handler.
    Safe to call repeatedly: an existing handler is reused.
    """
    logger = logging.getLogger("tripsplit")
    logger.setLevel(config.LOG_LEVEL)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(handler)
    return logger


class BalanceEngine:
    """Configured entry point for the split resolver and balance aggregator."""

    def __init__(self, config: type[BaseConfig]) -> None:
        self.config = config
        self.policy = SplitPolicy.from_config(config)

    # ── Split resolution ───────────────────────────────────────────────────

    def resolve_splits(
            self,
            amount: int,
            participants: Sequence[SplitRequest | Mapping],
            paid_by: str | None = None,
            policy: SplitPolicy | None = None,
            usernames: Mapping[str, str] | None = None,
    ) -> tuple[ExpenseSplit, ...]:
        return split_service.resolve_splits(
            amount,
            participants,
            paid_by=paid_by,
            policy=policy or self.policy,
            usernames=usernames,
        )

    # ── Aggregation ────────────────────────────────────────────────────────

    def compute_balances(
            self,
            expenses: Iterable[Expense],
            members: Iterable[str] | None = None,
            user_names: Mapping[str, str] | None = None,
    ) -> BalanceReport:
        return balance_service.compute_balances(
            expenses,
            members=members,
            user_names=user_names,
            default_currency=self.config.DEFAULT_CURRENCY,
        )

    def compute_group_summary(
            self,
            group_id: str,
            expenses: Iterable[Expense],
            currency: str | None = None,
            user_names: Mapping[str, str] | None = None,
    ) -> ExpenseSummary:
        return balance_service.compute_group_summary(
            group_id,
            expenses,
            currency=currency,
            user_names=user_names,
            percentage_places=self.config.PERCENTAGE_DISPLAY_PLACES,
            default_currency=self.config.DEFAULT_CURRENCY,
        )

    def compute_group_summaries(
            self,
            group_id: str,
            expenses: Iterable[Expense],
            user_names: Mapping[str, str] | None = None,
    ) -> list[ExpenseSummary]:
        return balance_service.compute_group_summaries(
            group_id,
            expenses,
            user_names=user_names,
            percentage_places=self.config.PERCENTAGE_DISPLAY_PLACES,
            default_currency=self.config.DEFAULT_CURRENCY,
        )

    def summarize_user_balance(
            self,
            user_id: str,
            expenses: Iterable[Expense],
    ) -> list[UserBalanceSummary]:
        return balance_service.summarize_user_balance(user_id, expenses)

    # ── Repository-backed flows ────────────────────────────────────────────

    def create_expense(self, repository, data: Mapping, **kwargs) -> Expense:
        kwargs.setdefault("policy", self.policy)
        return expense_service.create_expense(repository, data, **kwargs)

    def update_expense(self, repository, expense_id: str, changes: Mapping, **kwargs) -> Expense:
        kwargs.setdefault("policy", self.policy)
        return expense_service.update_expense(repository, expense_id, changes, **kwargs)

    def delete_expense(self, repository, expense_id: str) -> None:
        expense_service.delete_expense(repository, expense_id)

    def list_group_expenses(self, repository, group_id: str) -> list[Expense]:
        return expense_service.list_group_expenses(repository, group_id)

    def list_user_expenses(self, repository, user_id: str) -> list[Expense]:
        return expense_service.list_user_expenses(repository, user_id)

    def get_group_balances(self, repository, group_id: str, **kwargs) -> BalanceReport:
        kwargs.setdefault("default_currency", self.config.DEFAULT_CURRENCY)
        return expense_service.get_group_balances(repository, group_id, **kwargs)

    def get_group_summary(self, repository, group_id: str, **kwargs) -> ExpenseSummary:
        kwargs.setdefault("percentage_places", self.config.PERCENTAGE_DISPLAY_PLACES)
        kwargs.setdefault("default_currency", self.config.DEFAULT_CURRENCY)
        return expense_service.get_group_summary(repository, group_id, **kwargs)


# ── Engine factory ─────────────────────────────────────────────────────────

def create_engine(config_name: str = "development") -> BalanceEngine:
    """
    Creates and returns a configured BalanceEngine.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".
    """
    config = config_by_name.get(config_name, config_by_name["development"])

    if config_name == "production":
        validate_production_config(config)  # raises ValueError if misconfigured

    logger = configure_logging(config)
    engine = BalanceEngine(config)
    logger.debug(
        "Balance engine ready (config=%s, require_payer_in_split=%s, default_currency=%s)",
        config.__name__, engine.policy.require_payer_in_split, config.DEFAULT_CURRENCY,
    )
    return engine


__all__ = ["BalanceEngine", "configure_logging", "create_engine"]
