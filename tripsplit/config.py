
import logging
import os
import re
from pathlib import Path

from dotenv import load_dotenv


_PACKAGE_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _PACKAGE_DIR.parent

# Root .env is canonical; tripsplit/.env is a local override fallback.
load_dotenv(_PROJECT_ROOT / ".env")
load_dotenv(_PACKAGE_DIR / ".env")

_CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")
_TRUTHY = {"1", "true", "yes", "on"}


def _first_non_empty_env(*names: str, default: str) -> str:
    """Returns the first non-empty env var value from `names`, else `default`."""
    for name in names:
        value = os.getenv(name)
        if value is not None and value != "":
            return value
    return default


def _parse_int_env(*names: str, default: int) -> int:
    """Parses the first non-empty env var in `names` as int, else returns `default`."""
    raw = _first_non_empty_env(*names, default=str(default))
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _parse_bool_env(*names: str, default: bool) -> bool:
    """Parses the first non-empty env var in `names` as a boolean flag."""
    raw = _first_non_empty_env(*names, default="true" if default else "false")
    return raw.strip().lower() in _TRUTHY


class BaseConfig:

    # Payer-must-participate policy. Off by default: an expense may be
    # "paid on behalf of" others without the payer taking a share.
    REQUIRE_PAYER_IN_SPLIT: bool = _parse_bool_env(
        "TRIPSPLIT_REQUIRE_PAYER_IN_SPLIT",
        default=False,
    )

    # Currency used for zero-balance member rows when no expense fixes one.
    DEFAULT_CURRENCY: str = _first_non_empty_env(
        "TRIPSPLIT_DEFAULT_CURRENCY",
        default="USD",
    ).upper()

    # Category percentages in summaries are display-only; the mobile
    # client shows one decimal place.
    PERCENTAGE_DISPLAY_PLACES: int = _parse_int_env(
        "TRIPSPLIT_PERCENTAGE_DISPLAY_PLACES",
        default=1,
    )

    LOG_LEVEL: str = _first_non_empty_env(
        "TRIPSPLIT_LOG_LEVEL",
        default="INFO",
    ).upper()


class DevelopmentConfig(BaseConfig):
    DEBUG:   bool = True
    TESTING: bool = False

    LOG_LEVEL: str = _first_non_empty_env("TRIPSPLIT_LOG_LEVEL", default="DEBUG").upper()


class TestingConfig(BaseConfig):

    DEBUG:   bool = True
    TESTING: bool = True

    # Tests pass explicit policies; never inherit a developer's .env choice.
    REQUIRE_PAYER_IN_SPLIT: bool = False
    DEFAULT_CURRENCY: str = "USD"
    PERCENTAGE_DISPLAY_PLACES: int = 1
    LOG_LEVEL: str = "WARNING"


class ProductionConfig(BaseConfig):

    DEBUG:   bool = False
    TESTING: bool = False


def validate_production_config(config: type[BaseConfig]) -> None:
    """
    Fail-fast guard for production configuration.

    Called by the engine factory when config_name == "production":

        config = config_by_name["production"]
        validate_production_config(config)   # raises ValueError if misconfigured

    Raises ValueError if a value would make the engine misbehave silently.
    """
    if not _CURRENCY_PATTERN.match(config.DEFAULT_CURRENCY or ""):
        raise ValueError(
            f"TRIPSPLIT_DEFAULT_CURRENCY must be a three-letter ISO 4217 code, "
            f"got {config.DEFAULT_CURRENCY!r}."
        )
    if not isinstance(logging.getLevelName(config.LOG_LEVEL), int):
        raise ValueError(
            f"TRIPSPLIT_LOG_LEVEL must be a standard logging level name, "
            f"got {config.LOG_LEVEL!r}."
        )
    if config.PERCENTAGE_DISPLAY_PLACES < 0:
        raise ValueError(
            "TRIPSPLIT_PERCENTAGE_DISPLAY_PLACES must not be negative."
        )


# ── Config selector ────────────────────────────────────────────────────────
#
# Used by the engine factory:
#   from tripsplit.config import config_by_name
#   config = config_by_name[env_name]
# ──────────────────────────────────────────────────────────────────────────

config_by_name: dict[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing":     TestingConfig,
    "production":  ProductionConfig,
}

# Active config class, resolved from TRIPSPLIT_ENV.
# Defaults to development if the variable is not set.
ActiveConfig: type[BaseConfig] = config_by_name.get(
    os.getenv("TRIPSPLIT_ENV", "development"),
    DevelopmentConfig,
)
