# ridernotify/core/phone.py
import re
from typing import Optional

from ridernotify.core.errors import ValidationError

_NON_DIGITS = re.compile(r"\D")
COUNTRY_CODE = "1"


def normalize_phone(raw: Optional[str]) -> str:
    """
    Canonical 10-digit form of a North American number.

    "(555) 123-4567", "555.123.4567", "+1 555 123 4567" -> "5551234567".
    Anything that is not 10 digits after stripping a leading "1" raises
    ValidationError.
    """
    if not raw:
        raise ValidationError("No phone number provided")
    digits = _NON_DIGITS.sub("", raw)
    if len(digits) == 11 and digits.startswith(COUNTRY_CODE):
        digits = digits[1:]
    if len(digits) != 10:
        raise ValidationError("Invalid phone number format")
    return digits


def try_normalize_phone(raw: Optional[str]) -> Optional[str]:
    """normalize_phone, but None instead of raising."""
    try:
        return normalize_phone(raw)
    except ValidationError:
        return None


def to_e164(raw: str) -> str:
    return f"+{COUNTRY_CODE}{normalize_phone(raw)}"


def validate_email(raw: Optional[str]) -> str:
    if not raw or "@" not in raw:
        raise ValidationError("Invalid email address")
    return raw.strip()
