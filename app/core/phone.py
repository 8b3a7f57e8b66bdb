"""
app/core/phone.py

Phone numbers are stored in E.164 form. `normalize_phone` runs once when a
number enters the system (lead intake, provider records, inbound SMS), so
every lookup afterwards is a plain equality match.
"""

import logging
import re

import phonenumbers

logger = logging.getLogger(__name__)

# Numbers without a country code are read as US/Canada
DEFAULT_REGION = "US"

_HAS_DIGIT = re.compile(r"\d")


def normalize_phone(raw: str | None) -> str | None:
    """
    '+1 (512) 555-0100', '15125550100', '5125550100' -> '+15125550100'.
    Returns None for anything that cannot be a phone number.
    """
    if not raw or not _HAS_DIGIT.search(raw):
        return None

    try:
        parsed = phonenumbers.parse(raw, DEFAULT_REGION)
    except phonenumbers.NumberParseException as e:
        logger.warning(f"📵 Unparseable phone number {raw!r}: {e}")
        return None

    if not phonenumbers.is_possible_number(parsed):
        logger.warning(f"📵 Rejected phone number {raw!r}: wrong length for its country")
        return None

    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
