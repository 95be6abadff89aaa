"""
Display formatters for money, percentages and dates.
Used by PDF rendering, outbound messages and the portal payloads.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import date, datetime
from typing import Union, Optional


def format_money(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Format an amount as dollars with thousands separators and 2 decimals.

    Examples:
        format_money(1234.5) -> "$1,234.50"
        format_money(Decimal('203.4')) -> "$203.40"
        format_money(-5) -> "-$5.00"
        format_money(None) -> "$0.00"
    """
    if value is None or value == "":
        return "$0.00"

    try:
        num = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return "$0.00"

    if not num.is_finite():
        return "$0.00"

    num = num.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    sign = "-" if num < 0 else ""
    return f"{sign}${abs(num):,.2f}"


def format_amount(value: Union[int, float, Decimal, str, None]) -> str:
    """Same as format_money without the currency symbol ("203.40")."""
    return format_money(value).replace("$", "")


def format_percent(value: Union[int, float, Decimal, str, None], decimals: int = 2) -> str:
    """
    Format a percentage, dropping insignificant decimals.

    Examples:
        format_percent(13) -> "13%"
        format_percent(Decimal('12.50')) -> "12.5%"
    """
    if value is None or value == "":
        return "0%"
    try:
        num = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return "0%"
    if not num.is_finite():
        return "0%"

    num = num.quantize(Decimal(10) ** -decimals, rounding=ROUND_HALF_UP)
    text = f"{num:f}"
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return f"{text}%"


def format_date(value: Optional[Union[date, datetime]]) -> str:
    """Format a date as 'Oct 18, 2026'. Returns '-' for empty values."""
    if value is None:
        return "-"
    if isinstance(value, datetime):
        value = value.date()
    return f"{value.strftime('%b')} {value.day}, {value.year}"


def format_datetime(value: Optional[datetime]) -> str:
    """Format a datetime as 'Oct 18, 2026 14:05'."""
    if value is None:
        return "-"
    return f"{format_date(value)} {value.strftime('%H:%M')}"
