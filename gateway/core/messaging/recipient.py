"""Recipient phone number normalization."""

import re

from gateway.core.errors import InvalidRecipient

MIN_DIGITS = 10
MAX_DIGITS = 15

# Suffix the network uses for individual (non-group) accounts
USER_SERVER = "s.whatsapp.net"

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str | None) -> str:
    """
    Strip everything but digits and check the length.

    Args:
        phone: Raw phone as typed by the user, e.g. "+51 987 654 321"

    Returns:
        Digits only, e.g. "51987654321"

    Raises:
        InvalidRecipient: empty input or digit count outside [10, 15]
    """
    if not phone or not phone.strip():
        raise InvalidRecipient("phone number is required")

    digits = _NON_DIGITS.sub("", phone)
    if not MIN_DIGITS <= len(digits) <= MAX_DIGITS:
        raise InvalidRecipient(f"{len(digits)} digits in {phone!r}")
    return digits


def to_user_id(digits: str) -> str:
    """Network identifier for a phone number, e.g. 51987654321@s.whatsapp.net."""
    return f"{digits}@{USER_SERVER}"
