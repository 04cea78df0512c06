"""Phone number helpers.

Clinic phone numbers are mobile numbers: 10 digits starting with ``5``
(national format without trunk prefix). Input may carry formatting,
a leading ``0`` trunk prefix or the ``90`` country code.
"""

from __future__ import annotations

import re

_NON_DIGITS = re.compile(r'\D')


def sanitize_phone_number(value: str | None) -> str:
    digits = _NON_DIGITS.sub('', value or '')
    if len(digits) == 12 and digits.startswith('90'):
        digits = digits[2:]
    elif len(digits) == 11 and digits.startswith('0'):
        digits = digits[1:]
    return digits


def is_valid_phone_number(value: str | None) -> bool:
    digits = sanitize_phone_number(value)
    return len(digits) == 10 and digits.startswith('5')


def normalize_phone_number(value: str | None) -> str | None:
    """Return the canonical 10-digit form, or None if the number is invalid."""
    digits = sanitize_phone_number(value)
    if len(digits) == 10 and digits.startswith('5'):
        return digits
    return None


def format_phone_number(value: str | None) -> str:
    """(5xx) xxx xx xx, for display only."""
    digits = sanitize_phone_number(value)[:10]
    if len(digits) != 10:
        return digits
    return f'({digits[:3]}) {digits[3:6]} {digits[6:8]} {digits[8:]}'
