"""
Amount and date normalization (SSOT).

Up Banking reports amounts in cents (`valueInBaseUnits`, 100 per unit).
YNAB stores amounts in milliunits (1000 per unit). Every amount that crosses
from one ledger to the other goes through this module.

Rules:
- Integer arithmetic only. Floats never touch an amount.
- Conversion is exact and reversible: to_source_amount(to_destination_amount(x)) == x.
- Results outside the signed 64-bit range YNAB can store are rejected.

Dates are the settlement date when present, else the creation date, rendered
as YYYY-MM-DD in the offset the bank reported.
"""

from __future__ import annotations

import re
from datetime import date, datetime

# Minor units per currency unit on each side
SOURCE_UNITS_PER_MAJOR = 100
DESTINATION_UNITS_PER_MAJOR = 1000

# Exact integer factor between the two minor units
AMOUNT_SCALE = DESTINATION_UNITS_PER_MAJOR // SOURCE_UNITS_PER_MAJOR

# YNAB amounts are int64 milliunits
DESTINATION_AMOUNT_MIN = -(2**63)
DESTINATION_AMOUNT_MAX = 2**63 - 1

DATE_FORMAT = "%Y-%m-%d"

# Payee fallback when nothing usable is present
UNKNOWN_PAYEE = "Unknown Payee"

# YNAB field limits
PAYEE_NAME_MAX_LENGTH = 50
MEMO_MAX_LENGTH = 500

MEMO_NOTE_SEPARATOR = " | Note: "

_WHITESPACE_RE = re.compile(r"\s+")


class AmountConversionError(ValueError):
    """Amount cannot be represented exactly in the target unit."""

    pass


def _require_int(value: object, label: str) -> int:
    # bool is an int subclass but never a valid amount
    if isinstance(value, bool) or not isinstance(value, int):
        raise AmountConversionError(
            f"{label} must be an integer minor-unit amount, got {type(value).__name__}: {value!r}"
        )
    return value


def to_destination_amount(source_amount: int) -> int:
    """
    Convert an Up amount (cents) to a YNAB amount (milliunits).

    Args:
        source_amount: Signed amount in cents

    Returns:
        Signed amount in milliunits

    Raises:
        AmountConversionError: If the input is not an integer or the result
            overflows the destination range
    """
    cents = _require_int(source_amount, "Source amount")
    milliunits = cents * AMOUNT_SCALE

    if not DESTINATION_AMOUNT_MIN <= milliunits <= DESTINATION_AMOUNT_MAX:
        raise AmountConversionError(
            f"Amount {cents} cents overflows destination range ({milliunits} milliunits)"
        )

    return milliunits


def to_source_amount(destination_amount: int) -> int:
    """
    Convert a YNAB amount (milliunits) back to cents.

    Raises:
        AmountConversionError: If the amount has sub-cent precision
    """
    milliunits = _require_int(destination_amount, "Destination amount")
    cents, remainder = divmod(milliunits, AMOUNT_SCALE)
    if remainder:
        raise AmountConversionError(
            f"Amount {milliunits} milliunits is not a whole number of cents"
        )
    return cents


def validate_amount_conversion(source_amount: int, destination_amount: int) -> bool:
    """Check that a destination amount is the exact conversion of a source amount."""
    try:
        return to_destination_amount(source_amount) == destination_amount
    except AmountConversionError:
        return False


def _parse_timestamp(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            return date.fromisoformat(text[:10])
    raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")


def to_destination_date(
    settled_at: date | datetime | str | None,
    created_at: date | datetime | str | None,
) -> str:
    """
    Pick the transaction date for YNAB.

    Prefers the settlement date and falls back to the creation date. The date
    is taken in the timestamp's own offset, so a purchase at 23:30 +10:00 is
    dated that day, not the UTC day.

    Returns:
        Date formatted YYYY-MM-DD

    Raises:
        ValueError: If both timestamps are missing or unparseable
    """
    chosen = settled_at if settled_at is not None else created_at
    if chosen is None:
        raise ValueError("Transaction has neither a settlement nor a creation date")
    return _parse_timestamp(chosen).strftime(DATE_FORMAT)


def normalize_text(value: str | None) -> str:
    """Collapse whitespace and trim. None becomes an empty string."""
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", value).strip()


def resolve_payee_name(*candidates: str | None) -> str:
    """
    Resolve the payee using an ordered fallback.

    Callers pass candidates in precedence order: matched rule payee,
    transaction description, raw bank text. The first non-blank candidate
    wins; if none is usable the payee is "Unknown Payee".
    """
    for candidate in candidates:
        text = normalize_text(candidate)
        if text:
            return text[:PAYEE_NAME_MAX_LENGTH]
    return UNKNOWN_PAYEE


def build_memo(description: str | None, message: str | None) -> str | None:
    """Build the YNAB memo: "<description> | Note: <message>"."""
    description = normalize_text(description)
    message = normalize_text(message)

    if description and message:
        memo = f"{description}{MEMO_NOTE_SEPARATOR}{message}"
    elif message:
        memo = f"Note: {message}"
    elif description:
        memo = description
    else:
        return None

    return memo[:MEMO_MAX_LENGTH]
