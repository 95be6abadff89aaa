"""Recipient validation for email and SMS delivery."""
import re

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
EMAIL_MAX_LENGTH = 254
PHONE_MIN_DIGITS = 10


def digits_only(value: str) -> str:
    return re.sub(r'\D', '', value or '')


def is_valid_email(value: str) -> bool:
    if not value:
        return False
    value = value.strip()
    return len(value) <= EMAIL_MAX_LENGTH and bool(EMAIL_PATTERN.match(value))


def is_valid_phone(value: str) -> bool:
    """A phone number is valid when it carries at least 10 digits, whatever the punctuation."""
    return len(digits_only(value)) >= PHONE_MIN_DIGITS


def normalize_phone_e164(value: str) -> str:
    """
    Format a North American or international number as E.164.

    Examples:
        normalize_phone_e164("(416) 555-0199") -> "+14165550199"
        normalize_phone_e164("1-416-555-0199") -> "+14165550199"
        normalize_phone_e164("+44 20 7946 0958") -> "+442079460958"
    """
    digits = digits_only(value)
    if not digits:
        return ''
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"
