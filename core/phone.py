"""
core/phone.py -- Phone number helpers for verification-code identifiers.

normalize_phone_number() turns user input into the E.164 string used as the
credential_requests identifier, so "09876543210" and "+91 98765 43210" map to
the same row. mask_phone_number() is applied to every identifier before it is
logged -- phone numbers are personal data and logs outlive the requests.
"""

import re

_NON_DIGIT_RE = re.compile(r"\D")
_E164_RE = re.compile(r"^\+[1-9]\d{1,14}$")


def normalize_phone_number(phone: str, default_country_code: str = "91") -> str:
    """Normalize a phone number to E.164.

    Input starting with "+" is taken as already carrying a country code.
    Otherwise a single trunk-prefix 0 is dropped and default_country_code is
    prepended unless the digits already start with it.

    Examples (default country code 91):
        "9876543210"      -> "+919876543210"
        "09876543210"     -> "+919876543210"
        "+1 555 123 4567" -> "+15551234567"

    Raises ValueError if the result is not a valid E.164 number.
    """
    cleaned = _NON_DIGIT_RE.sub("", phone)
    if not phone.strip().startswith("+"):
        if cleaned.startswith("0"):
            cleaned = cleaned[1:]
        if not cleaned.startswith(default_country_code):
            cleaned = default_country_code + cleaned
    normalized = "+" + cleaned
    if not is_valid_e164(normalized):
        raise ValueError(f"not a valid phone number: {mask_phone_number(normalized)}")
    return normalized


def is_valid_e164(phone: str) -> bool:
    return bool(_E164_RE.match(phone))


def mask_phone_number(phone: str) -> str:
    """Mask all but the country prefix and last four digits.

    "+919876543210" -> "+91******3210". Short values are fully masked rather
    than returned as-is, since they may not be phone numbers at all.
    """
    if len(phone) < 8:
        return "*" * len(phone)
    return phone[:3] + "*" * (len(phone) - 7) + phone[-4:]
