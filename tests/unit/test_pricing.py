"""
Unit tests for line item coercion and the pricing calculator.
"""

from decimal import Decimal

from fieldservice.pricing import (
    LineItem,
    calculate_subtotal,
    calculate_total_tax,
    calculate_grand_total,
    calculate_total_margin,
    calculate_margin_percentage,
    calculate_totals,
)
from fieldservice.utils.number_format import coerce_amount, coerce_quantity, coerce_discount


def _item(**fields):
    return LineItem.create(**fields)


class TestCalculator:
    """Tests for the pure pricing functions."""

    def test_discounted_taxable_line(self):
        """2 x 100 at 10% off, 13% tax -> 180.00 / 23.40 / 203.40."""
        items = [_item(quantity=2, unit_price=100, discount=10, taxable=True)]
        totals = calculate_totals(items, 13).rounded()

        assert totals.subtotal == Decimal('180.00')
        assert totals.tax == Decimal('23.40')
        assert totals.total == Decimal('203.40')

    def test_untaxed_warranty_only_adds_its_price(self):
        """Adding an untaxed 89.00 line leaves tax alone and raises the total by 89."""
        items = [_item(quantity=2, unit_price=100, discount=10)]
        before = calculate_totals(items, 13)
        items.append(_item(description='Warranty', unit_price=89, taxable=False))
        after = calculate_totals(items, 13)

        assert after.tax == before.tax
        assert after.total - before.total == Decimal('89')

    def test_subtotal_is_sum_of_line_totals(self):
        """Test that the subtotal is the sum of discounted line totals."""
        items = [
            _item(quantity='3', unit_price='19.99', discount='5'),
            _item(quantity=1.5, unit_price=40),
            _item(quantity=0, unit_price=1000),
        ]
        expected = sum(
            (i.quantity * i.unit_price * (1 - i.discount / 100) for i in items),
            Decimal('0')
        )
        assert calculate_subtotal(items) == expected

    def test_tax_rate_does_not_change_untaxed_total(self):
        """Test that the tax rate never moves the total of untaxed lines."""
        items = [_item(unit_price=250, taxable=False), _item(unit_price=10, quantity=4, taxable=False)]
        totals = {calculate_grand_total(items, rate) for rate in (0, 5, 13, 100)}
        assert totals == {Decimal('290')}

    def test_tax_only_on_taxable_lines(self):
        """Test that tax applies to taxable lines only."""
        items = [_item(unit_price=100), _item(unit_price=100, taxable=False)]
        assert calculate_total_tax(items, 10) == Decimal('10')

    def test_margin_equals_subtotal_without_cost(self):
        """Test that margin equals the subtotal when nothing has a cost."""
        items = [_item(quantity=2, unit_price=75, discount=20), _item(unit_price=12)]
        assert calculate_total_margin(items) == calculate_subtotal(items)

    def test_margin_ignores_discount_on_cost(self):
        """Cost is quantity * our_price, even when the line is discounted."""
        items = [_item(quantity=2, unit_price=100, our_price=40, discount=50)]
        # revenue 100, cost 80
        assert calculate_total_margin(items) == Decimal('20')
        assert calculate_margin_percentage(items) == Decimal('20')

    def test_margin_percentage_zero_subtotal(self):
        """Test that a zero subtotal gives a zero margin percentage."""
        assert calculate_margin_percentage([]) == Decimal('0')
        assert calculate_margin_percentage([_item(unit_price=0, our_price=10)]) == Decimal('0')

    def test_rounding_is_half_up(self):
        """Test that cents are rounded half-up."""
        totals = calculate_totals([_item(unit_price='1.25')], 10).rounded()

        assert totals.tax == Decimal('0.13')
        assert totals.total == Decimal('1.38')

    def test_totals_to_dict_hides_margin_for_clients(self):
        """Test that client-facing totals leave out the margin."""
        totals = calculate_totals([_item(unit_price=10, our_price=4)], 13)
        assert 'margin' in totals.to_dict()
        assert set(totals.to_dict(include_margin=False)) == {'subtotal', 'tax', 'total'}


class TestLineItem:
    """Tests for LineItem creation and updates."""

    def test_invalid_numbers_become_zero(self):
        """Test that unparsable or negative numbers become zero."""
        item = _item(quantity='abc', unit_price=float('nan'), discount=-5, our_price='-3')
        assert item.quantity == Decimal('0')
        assert item.unit_price == Decimal('0')
        assert item.discount == Decimal('0')
        assert item.our_price == Decimal('0')
        assert item.total == Decimal('0')

    def test_missing_quantity_defaults_to_one(self):
        """Test that a missing quantity means one unit."""
        assert _item(unit_price=5).quantity == Decimal('1')
        assert coerce_quantity('  ') == Decimal('1')

    def test_amount_strings_with_currency_symbols(self):
        """Test parsing amounts typed with currency symbols and separators."""
        assert coerce_amount('$1,234.50') == Decimal('1234.50')
        assert coerce_amount(True) == Decimal('0')
        assert coerce_discount('150') == Decimal('100')

    def test_inputs_keep_four_decimals(self):
        """Test that entered numbers keep four decimal places, rounded half-up."""
        assert coerce_amount('12.345') == Decimal('12.345')
        assert coerce_amount('8.87549') == Decimal('8.8755')
        assert _item(discount='12.34567').discount == Decimal('12.3457')

    def test_update_recomputes_total_and_keeps_id(self):
        """Test that an update recomputes the total and keeps the id."""
        item = _item(quantity=1, unit_price=50)
        updated = item.updated({'qty': 3, 'unitPrice': '20', 'id': 'other', 'total': 999})

        assert updated.id == item.id
        assert updated.total == Decimal('60')
        assert item.total == Decimal('50')

    def test_update_with_unknown_keys_returns_same_item(self):
        """Test that a patch of unknown keys changes nothing."""
        item = _item(unit_price=50)
        assert item.updated({'colour': 'red'}) is item

    def test_taxable_strings(self):
        """Test reading the taxable flag from form strings."""
        assert _item(taxable='false').taxable is False
        assert _item(taxable='yes').taxable is True

    def test_from_product_copies_price_cost_and_tax_flag(self, warranty_product):
        """Test building a line from a catalog product."""
        item = LineItem.from_product(warranty_product)

        assert item.quantity == Decimal('1')
        assert item.unit_price == Decimal('89.00')
        assert item.our_price == Decimal('20.00')
        assert item.taxable is False
        assert item.product_id == warranty_product.id
        assert item.id

    def test_to_dict_without_cost(self):
        """Test that client-facing line output has no cost."""
        data = _item(unit_price=10, our_price=3).to_dict(include_cost=False)
        assert 'our_price' not in data
        assert data['total'] == 10.0

    def test_with_new_id(self):
        """Test copying a line under a new id."""
        item = _item(unit_price=10)
        copy = item.with_new_id()
        assert copy.id != item.id
        assert copy.total == item.total
