"""
money.py — Minor-unit conversion at the engine boundary.

Every amount inside the engine is an int in the currency's minor unit.
Callers holding decimal amounts convert with to_minor_units() before calling
and with from_minor_units() for display only.

Input with more decimal places than the currency allows is REJECTED with
INVALID_AMOUNT_PRECISION, never rounded or truncated. float input is refused
outright: convert through str() first if you must.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

from tripsplit.engine.errors import ErrorCode, InvalidSplitData

_CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")

# ISO 4217 minor-unit exponents that differ from the default of 2.
_EXPONENTS: dict[str, int] = {
    "BIF": 0, "CLP": 0, "DJF": 0, "GNF": 0, "ISK": 0, "JPY": 0, "KMF": 0,
    "KRW": 0, "PYG": 0, "RWF": 0, "UGX": 0, "UYI": 0, "VND": 0, "VUV": 0,
    "XAF": 0, "XOF": 0, "XPF": 0,
    "BHD": 3, "IQD": 3, "JOD": 3, "KWD": 3, "LYD": 3, "OMR": 3, "TND": 3,
}


def is_valid_currency(currency) -> bool:
    return isinstance(currency, str) and bool(_CURRENCY_PATTERN.match(currency))


def normalize_currency(currency: str) -> str:
    """Upper-cases and validates an ISO 4217 code."""
    code = currency.strip().upper() if isinstance(currency, str) else currency
    if not is_valid_currency(code):
        raise InvalidSplitData(
            f"{currency!r} is not a three-letter ISO 4217 currency code.",
            field="currency",
            code=ErrorCode.INVALID_CURRENCY,
        )
    return code


def minor_unit_exponent(currency: str) -> int:
    return _EXPONENTS.get(normalize_currency(currency), 2)


def to_minor_units(amount: Decimal | str | int, currency: str) -> int:
    """
    Converts a decimal amount to integer minor units.

        to_minor_units(Decimal("10.50"), "USD") == 1050
        to_minor_units("1500", "JPY")           == 1500
        to_minor_units("10.505", "USD")         -> InvalidSplitData
    """
    if isinstance(amount, float):
        raise InvalidSplitData(
            "Amounts must be given as Decimal or str, never float.",
            field="amount",
        )
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidSplitData(f"{amount!r} is not a valid amount.", field="amount")

    if not value.is_finite():
        raise InvalidSplitData(f"{amount!r} is not a valid amount.", field="amount")

    exponent = minor_unit_exponent(currency)
    scaled = value.scaleb(exponent)
    if scaled != scaled.to_integral_value():
        raise InvalidSplitData(
            f"{amount} has more than {exponent} decimal places for {currency}.",
            field="amount",
            code=ErrorCode.INVALID_AMOUNT_PRECISION,
        )
    return int(scaled)


def from_minor_units(amount: int, currency: str) -> Decimal:
    """Converts minor units back to a Decimal with the currency's precision."""
    exponent = minor_unit_exponent(currency)
    quantum = Decimal(1).scaleb(-exponent)
    return Decimal(amount).scaleb(-exponent).quantize(quantum)


def format_amount(amount: int, currency: str) -> str:
    """Display string, e.g. format_amount(-1050, "USD") == "-10.50 USD"."""
    return f"{from_minor_units(amount, currency)} {normalize_currency(currency)}"
