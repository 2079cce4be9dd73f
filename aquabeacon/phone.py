"""
Kenyan mobile number handling.

Daraja wants 2547XXXXXXXX / 2541XXXXXXXX; customers type 07XX.., 01XX..,
+254.. or the bare nine digits. Anything else is rejected rather than guessed.
"""

import re

from aquabeacon.exceptions import InvalidPhoneNumber

COUNTRY_CODE = "254"

_SEPARATORS = re.compile(r"[\s\-().]")
_MOBILE = re.compile(r"^(?:\+?254|0)?([17]\d{8})$")
_INTERNATIONAL = re.compile(r"^254[17]\d{8}$")


def normalize_phone_number(raw: str) -> str:
    """
    Convert user input to international format without the leading '+'.

    >>> normalize_phone_number("0712 345 678")
    '254712345678'
    """
    if not raw or not raw.strip():
        raise InvalidPhoneNumber("Phone number is required")

    cleaned = _SEPARATORS.sub("", raw.strip())
    match = _MOBILE.match(cleaned)
    if not match:
        raise InvalidPhoneNumber(
            f"Invalid phone number '{raw}'. Use 07XXXXXXXX or 01XXXXXXXX"
        )
    return f"{COUNTRY_CODE}{match.group(1)}"


def is_international_format(phone: str) -> bool:
    return bool(phone and _INTERNATIONAL.match(phone))


def format_phone_display(phone: str) -> str:
    """254712345678 -> 0712345678; other input is returned unchanged."""
    if phone and phone.startswith("+"):
        phone = phone[1:]
    if is_international_format(phone):
        return f"0{phone[len(COUNTRY_CODE):]}"
    return phone or ""


def mask_phone(phone: str) -> str:
    """Hide the middle digits for logs: 254712***678."""
    if not phone or len(phone) < 9:
        return "***"
    return f"{phone[:6]}***{phone[-3:]}"
