"""
Input validation utilities for form submissions and API inputs.
"""

import re
from typing import Dict, Optional

from utils.constants import MAX_FORM_VALUE_LENGTH


def validate_email(email: str) -> bool:
    """
    Validate email address format.

    Args:
        email: Email address string

    Returns:
        True if valid format, False otherwise
    """
    if not email or not isinstance(email, str):
        return False

    # Basic email regex (RFC 5322 simplified)
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email.strip()))


def normalize_phone(phone: str) -> str:
    """Strip spaces, dashes and parentheses from a phone number."""
    if not phone:
        return ""
    return re.sub(r'[\s\-\(\)]', '', str(phone))


def validate_phone(phone: str) -> bool:
    """
    Validate phone number format.
    Accepts international format with optional + prefix and local numbers
    with a leading zero.
    """
    if not phone or not isinstance(phone, str):
        return False

    pattern = r'^\+?\d{7,15}$'
    return bool(re.match(pattern, normalize_phone(phone)))


def validate_slot_time(time: str) -> bool:
    """Check that a slot time is formatted as HH:MM (24 hour clock)."""
    if not time or not isinstance(time, str):
        return False
    return bool(re.match(r'^([01]\d|2[0-3]):[0-5]\d$', time.strip()))


def sanitize_text(text: str, max_length: Optional[int] = None) -> str:
    """
    Sanitize user input text.

    Args:
        text: Input text
        max_length: Optional maximum length

    Returns:
        Sanitized text
    """
    if not text:
        return ""

    # Remove control characters except newlines and tabs
    sanitized = re.sub(r'[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]', '', str(text))
    sanitized = sanitized.strip()

    if max_length and len(sanitized) > max_length:
        sanitized = sanitized[:max_length]

    return sanitized


def sanitize_form_data(data: Dict[str, object]) -> Dict[str, str]:
    """Sanitize every submitted form field, dropping empty keys."""
    cleaned: Dict[str, str] = {}
    for key, value in (data or {}).items():
        clean_key = sanitize_text(str(key), max_length=200)
        if not clean_key:
            continue
        cleaned[clean_key] = sanitize_text(
            "" if value is None else str(value), max_length=MAX_FORM_VALUE_LENGTH
        )
    return cleaned


def has_meaningful_values(data: Dict[str, str]) -> bool:
    """True when at least one form value is non-blank."""
    return any(str(value).strip() for value in (data or {}).values())
