"""
Validators — rule-based checks for payment requests.
"""
import re
from datetime import date, datetime, timezone


def validate_phone(phone: str | None) -> bool:
    """Indian mobile number: exactly 10 digits once formatting is stripped."""
    if not phone:
        return False
    return len(re.sub(r"\D", "", phone)) == 10


def clean_phone(phone: str | None) -> str:
    return re.sub(r"\D", "", phone or "")


def validate_email(email: str | None) -> bool:
    if not email:
        return False
    return bool(re.match(r"^[^\s@]+@[^\s@]+\.[^\s@]+$", email.strip()))


def validate_ifsc(ifsc: str | None) -> bool:
    """IFSC: 4 letters, a zero, then 6 alphanumerics (e.g. ICIC0001008)."""
    if not ifsc:
        return False
    return bool(re.match(r"^[A-Z]{4}0[A-Z0-9]{6}$", ifsc.strip().upper()))


def sanitize_description(text: str) -> str:
    """Gateway notes accept only letters, digits, underscore and hyphen."""
    return re.sub(r"[^a-zA-Z0-9_-]", "", text)


def parse_date(value) -> date | None:
    """Parse a YYYY-MM-DD (or ISO datetime) value; None for empty input.

    Raises:
        ValueError: if the value is not a valid date.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        raise ValueError(f"Invalid date '{value}'. Use YYYY-MM-DD")


def parse_timestamp(value) -> datetime | None:
    """Parse a gateway timestamp into a naive UTC datetime.

    Accepts ISO-8601 strings (with or without offset) and epoch seconds or
    milliseconds. Returns None for anything unparseable.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) or str(value).strip().isdigit():
        number = float(value)
        if number > 1e11:  # milliseconds
            number /= 1000.0
        return datetime.fromtimestamp(number, tz=timezone.utc).replace(tzinfo=None)
    else:
        text = str(value).strip().replace("Z", "+00:00")
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
