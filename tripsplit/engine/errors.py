"""
errors.py — AppError base class and error code registry.

Every error raised by the balance engine uses a code defined here.
Do not raise strings or generic exceptions from service code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - http_status is the status a request handler should answer with; the engine
    itself has no HTTP surface.
"""

from __future__ import annotations

from marshmallow import ValidationError


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# IMPORTANT: these are the string values callers put in their responses.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Input Errors (400) ─────────────────────────────────────────────────
    INVALID_SPLIT_DATA         = "INVALID_SPLIT_DATA"
    DUPLICATE_SPLIT_USER       = "DUPLICATE_SPLIT_USER"
    INVALID_CURRENCY           = "INVALID_CURRENCY"
    INVALID_CATEGORY           = "INVALID_CATEGORY"
    INVALID_SPLIT_TYPE         = "INVALID_SPLIT_TYPE"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"

    # ── Split Rule Violations (400) ────────────────────────────────────────
    SPLIT_AMOUNT_MISMATCH      = "SPLIT_AMOUNT_MISMATCH"
    PAID_BY_NOT_IN_SPLIT       = "PAID_BY_NOT_IN_SPLIT"

    # ── Aggregation (422) ──────────────────────────────────────────────────
    MIXED_CURRENCY             = "MIXED_CURRENCY"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    SPLIT_NOT_FOUND            = "SPLIT_NOT_FOUND"

    # ── System Errors (500) ────────────────────────────────────────────────
    DATA_INTEGRITY_ERROR       = "DATA_INTEGRITY_ERROR"
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Named error types ──────────────────────────────────────────────────────

class InvalidSplitData(AppError):
    """Malformed split request. User-correctable."""

    def __init__(
            self,
            message: str,
            field: str | None = "paid_for",
            code: str = ErrorCode.INVALID_SPLIT_DATA,
    ) -> None:
        super().__init__(code, message, 400, field=field)


class SplitAmountMismatch(AppError):
    """
    Resolved split amounts do not add up to the expense total.

    internal=False: the request itself under-allocates the total (400).
    internal=True:  the resolver produced an inconsistent result (500).
    """

    def __init__(self, message: str, internal: bool = False) -> None:
        super().__init__(
            ErrorCode.SPLIT_AMOUNT_MISMATCH if not internal else ErrorCode.INTERNAL_ERROR,
            message,
            500 if internal else 400,
            field=None if internal else "paid_for",
        )
        self.internal = internal


class PaidByNotInSplit(AppError):

    def __init__(self, paid_by: str) -> None:
        super().__init__(
            ErrorCode.PAID_BY_NOT_IN_SPLIT,
            f"The payer {paid_by} must be included in the split.",
            400,
            field="paid_by",
        )
        self.paid_by = paid_by


class MixedCurrencyError(AppError):

    def __init__(self, group_id: str | None, currencies: list[str]) -> None:
        super().__init__(
            ErrorCode.MIXED_CURRENCY,
            f"Group {group_id} has expenses in {', '.join(currencies)}; "
            f"request a summary for one currency.",
            422,
            field="currency",
        )
        self.currencies = currencies


class DataIntegrityError(AppError):
    """
    A persisted expense failed an invariant during aggregation.

    Never raised by the aggregator: instances are collected next to the
    partial result so the caller can flag the record for repair.
    """

    def __init__(self, expense_id: str | None, message: str) -> None:
        super().__init__(ErrorCode.DATA_INTEGRITY_ERROR, message, 500)
        self.expense_id = expense_id

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["error"]["expense_id"] = self.expense_id
        return payload


def expense_not_found(expense_id: str) -> AppError:
    return AppError(
        ErrorCode.EXPENSE_NOT_FOUND,
        f"Expense {expense_id} does not exist.",
        404,
    )


# ── marshmallow bridge ─────────────────────────────────────────────────────

def from_validation_error(error: ValidationError) -> InvalidSplitData:
    """
    Converts a marshmallow ValidationError into InvalidSplitData.

    Only the FIRST field/message pair is reported ("one error, not many").
    If the message is itself a registered ErrorCode constant it becomes the
    error code; nested list errors ({"paid_for": {0: {...}}}) are flattened
    to the outer field name.
    """
    messages = error.messages
    field = None
    raw_message = "Invalid input."

    if isinstance(messages, dict):
        for field_name, field_errors in messages.items():
            field = field_name if field_name != "_schema" else None
            raw_message = _first_message(field_errors)
            break
    elif isinstance(messages, list) and messages:
        raw_message = str(messages[0])

    if raw_message in vars(ErrorCode).values():
        return InvalidSplitData(_code_to_message(raw_message), field=field, code=raw_message)
    return InvalidSplitData(raw_message, field=field)


def _first_message(field_errors) -> str:
    if isinstance(field_errors, list):
        return str(field_errors[0]) if field_errors else "Invalid value."
    if isinstance(field_errors, dict):
        for nested in field_errors.values():
            return _first_message(nested)
        return "Invalid value."
    return str(field_errors)


def _code_to_message(code: str) -> str:
    """Returns a human-readable default message for a known error code."""
    _messages = {
        ErrorCode.DUPLICATE_SPLIT_USER: "The same user_id appears more than once in paid_for.",
        ErrorCode.INVALID_CURRENCY: "currency must be a three-letter ISO 4217 code.",
        ErrorCode.INVALID_CATEGORY: "The category value is not valid.",
        ErrorCode.INVALID_SPLIT_TYPE: "split_type must be EQUAL, PERCENTAGE or FIXED.",
        ErrorCode.INVALID_AMOUNT_PRECISION: "Amount has more decimal places than the currency allows.",
    }
    return _messages.get(code, "Invalid input.")
