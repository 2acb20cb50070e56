from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation


def parse_date(value):
    """Accept "2024-03-10" or a full ISO timestamp; only the UTC calendar date is kept."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError("date required")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def parse_amount(value, field):
    """Non-negative money amount, or ValueError naming the field."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError):
        raise ValueError(f"{field} must be a number")
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"{field} must be a non-negative number")
    return amount
