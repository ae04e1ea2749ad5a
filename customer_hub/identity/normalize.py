"""
Normalization helpers for the identifying signals providers send us.

Emails are compared case-insensitively after trimming. Plus-addressing is
kept intact: ``jane+shop@example.com`` and ``jane@example.com`` may be two
people sharing a domain account, and a missed link is cheaper to repair
than a wrong one.
"""

from __future__ import annotations

import re

from email_validator import EmailNotValidError, validate_email

_E164_REGEX = re.compile(r"^\+[1-9]\d{7,14}$")
_EXTENSION_REGEX = re.compile(r"\s*(x|ext\.?|extension|#)\s*\d+.*$", re.IGNORECASE)
_NON_DIGIT_REGEX = re.compile(r"\D+")


def normalize_email(value: object | None) -> str | None:
    """Trim and lower-case an email; blank values become ``None``."""

    if value is None:
        return None
    token = str(value).strip().lower()
    return token or None


def is_valid_email(value: str | None) -> bool:
    """
    Syntax-only email check (no DNS lookups).

    Placeholders such as ``n/a`` or ``none@`` are common in marketplace
    exports; treating them as identity signals would chain unrelated
    customers together.
    """

    if not value:
        return False
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def phone_digits(value: object | None) -> str:
    """Return only the digits from a phone-like value."""

    if value is None:
        return ""
    return _NON_DIGIT_REGEX.sub("", str(value))


def normalize_phone(value: object | None) -> str | None:
    """
    Normalize a phone number to E.164.

    Ten-digit numbers are assumed to be North American (+1), eleven-digit
    numbers starting with 1 gain a leading ``+`` and numbers already written
    with ``+`` (or the ``00`` international prefix) keep their country code.
    Extensions are discarded. Anything else returns ``None``.
    """

    if value is None:
        return None
    token = _EXTENSION_REGEX.sub("", str(value).strip()).strip()
    if not token:
        return None

    international = token.startswith("+") or token.startswith("00")
    digits = phone_digits(token)
    if token.startswith("00"):
        digits = digits[2:]

    if international:
        candidate = f"+{digits}"
    elif len(digits) == 10:
        candidate = f"+1{digits}"
    elif len(digits) == 11 and digits.startswith("1"):
        candidate = f"+{digits}"
    else:
        return None

    return candidate if _E164_REGEX.match(candidate) else None


def clean_optional(value: object | None) -> str | None:
    """Strip a free-text field, collapsing blanks to ``None``."""

    if value is None:
        return None
    token = " ".join(str(value).split())
    return token or None


__all__ = [
    "clean_optional",
    "is_valid_email",
    "normalize_email",
    "normalize_phone",
    "phone_digits",
]
