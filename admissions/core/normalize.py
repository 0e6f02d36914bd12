import re
from typing import Optional

_PHONE_SEPARATORS = re.compile(r"[\s\-()]")
_PHONE_PATTERN = re.compile(r"^\+?\d+$")


def normalize_email(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized or None


def normalize_phone(value: Optional[str]) -> Optional[str]:
    """Strip spaces, dashes and parentheses; anything else non-numeric is rejected"""
    if not isinstance(value, str):
        return None
    normalized = _PHONE_SEPARATORS.sub("", value.strip())
    if not normalized or not _PHONE_PATTERN.match(normalized):
        return None
    return normalized


def normalize_text(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None
