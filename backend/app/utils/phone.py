# utils/phone.py
import re
from typing import Optional

from app.core.config import settings
from app.core.errors import InvalidPhoneNumber


def normalize_phone(phone, country_code: Optional[str] = None) -> str:
    """
    Canonical <country-code><subscriber> form used by M-Pesa and the SMS API.

    0712345678, +254712345678, 712345678 and "0712 345 678" all become
    254712345678. Anything that does not end up as the country code followed by
    nine digits raises InvalidPhoneNumber.
    """
    country_code = country_code or settings.DEFAULT_COUNTRY_CODE
    if phone is None:
        raise InvalidPhoneNumber("", "Phone number is required")

    raw = str(phone)
    cleaned = re.sub(r"\s+", "", raw).lstrip("+").lstrip("0")
    if not cleaned.startswith(country_code):
        cleaned = country_code + cleaned

    if not re.fullmatch(rf"{country_code}[0-9]{{9}}", cleaned):
        raise InvalidPhoneNumber(raw)
    return cleaned


def try_normalize_phone(phone) -> Optional[str]:
    """Best-effort variant for payer data coming back from gateways."""
    if not phone:
        return None
    try:
        return normalize_phone(phone)
    except InvalidPhoneNumber:
        return str(phone)
