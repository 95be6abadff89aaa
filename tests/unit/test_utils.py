"""
Unit tests for formatting and contact validation helpers.
"""

from datetime import date
from decimal import Decimal

from fieldservice.utils.contact import (
    is_valid_email, is_valid_phone, normalize_phone_e164, digits_only
)
from fieldservice.utils.formatters import format_money, format_amount, format_percent, format_date


class TestFormatters:
    """Tests for display formatters."""

    def test_format_money(self):
        """Test formatting money with symbol and separators."""
        assert format_money(Decimal('1234.5')) == '$1,234.50'
        assert format_money(None) == '$0.00'
        assert format_money(-5) == '-$5.00'

    def test_format_amount(self):
        """Test formatting a bare two-decimal amount."""
        assert format_amount(Decimal('203.4')) == '203.40'

    def test_format_percent(self):
        """Test formatting percentages without trailing zeros."""
        assert format_percent(13) == '13%'
        assert format_percent(Decimal('12.50')) == '12.5%'

    def test_format_date(self):
        """Test formatting dates, with a dash for missing ones."""
        assert format_date(date(2026, 10, 18)) == 'Oct 18, 2026'
        assert format_date(None) == '-'


class TestContact:
    """Tests for contact validation helpers."""

    def test_email(self):
        """Test email address validation."""
        assert is_valid_email('dana@example.com')
        assert not is_valid_email('dana@example')
        assert not is_valid_email('')
        assert not is_valid_email(None)

    def test_phone_needs_ten_digits(self):
        """Test that a phone number needs at least ten digits."""
        assert is_valid_phone('(416) 555-0199')
        assert not is_valid_phone('555-0199')
        assert digits_only('+1 (416) 555-0199') == '14165550199'

    def test_normalize_phone(self):
        """Test normalising phone numbers to E.164."""
        assert normalize_phone_e164('(416) 555-0199') == '+14165550199'
        assert normalize_phone_e164('1-416-555-0199') == '+14165550199'
        assert normalize_phone_e164('') == ''
