"""Pure normalizers shared by the duplicate heuristic and the identity maps.

Each function is idempotent: feeding its output back in returns the same value,
so normalized tuples can be used directly as grouping keys.
"""
import re
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

DESCRIPTION_KEY_LENGTH = 120

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_CENT = Decimal("0.01")


def normalize_description(value: str | None) -> str:
    if not value:
        return ""
    return _NON_ALNUM.sub("", value.lower())[:DESCRIPTION_KEY_LENGTH]


def normalize_amount(value: float | int | str | Decimal) -> float:
    try:
        numeric = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    return float(numeric.quantize(_CENT, rounding=ROUND_HALF_UP))


def normalize_date(value: str | date | datetime) -> str:
    """Return the UTC calendar day of ``value`` as ``YYYY-MM-DD``."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        return normalize_date(parsed)
    raise ValueError(f"Unsupported date value: {value!r}")
