"""Number coercion for values arriving from forms and JSON payloads."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

ZERO = Decimal('0')
ONE = Decimal('1')
HUNDRED = Decimal('100')
CENT = Decimal('0.01')
# Inputs are kept to four decimal places, the scale of the stored columns
INPUT_PRECISION = Decimal('0.0001')


def coerce_amount(value) -> Decimal:
    """
    Coerce a user-entered amount to a non-negative Decimal.

    Accepts numbers and strings such as "1,234.50" or "$89". NaN, infinities,
    negative numbers and anything unparsable become 0; callers never see an
    exception from here. The result is rounded half-up to four decimal places.
    """
    if value is None or isinstance(value, bool):
        return ZERO

    if isinstance(value, Decimal):
        number = value
    else:
        cleaned = str(value).strip().replace('$', '').replace(',', '')
        if not cleaned:
            return ZERO
        try:
            number = Decimal(cleaned)
        except (InvalidOperation, ValueError):
            return ZERO

    if not number.is_finite() or number < 0:
        return ZERO
    return number.quantize(INPUT_PRECISION, rounding=ROUND_HALF_UP)


def coerce_quantity(value) -> Decimal:
    """Like coerce_amount, but a missing quantity means one unit."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return ONE
    return coerce_amount(value)


def coerce_discount(value) -> Decimal:
    """Discount percentage clamped to 0-100."""
    return min(coerce_amount(value), HUNDRED)


def coerce_tax_rate(value) -> Decimal:
    """Tax rate percentage, e.g. 13 for 13%."""
    return min(coerce_amount(value), HUNDRED)


def round_money(value: Decimal) -> Decimal:
    """Round half-up to cents."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value) -> Decimal:
    """Round to cents for display and snapshots."""
    return round_money(coerce_amount(value))
