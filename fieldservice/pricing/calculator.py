"""
Pricing calculator.

Pure functions over a list of line items and a tax rate (percent). Values are
kept unrounded; rounding to cents happens when amounts are displayed or
snapshotted onto a saved document.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Dict

from fieldservice.pricing.line_item import LineItem
from fieldservice.utils.number_format import ZERO, HUNDRED, coerce_tax_rate, round_money


def line_total(item: LineItem) -> Decimal:
    return item.total


def calculate_subtotal(items: Iterable[LineItem]) -> Decimal:
    return sum((item.total for item in items), ZERO)


def calculate_total_tax(items: Iterable[LineItem], tax_rate) -> Decimal:
    """Tax applies to taxable lines only."""
    rate = coerce_tax_rate(tax_rate)
    taxable_base = sum((item.total for item in items if item.taxable), ZERO)
    return taxable_base * rate / HUNDRED


def calculate_grand_total(items: Iterable[LineItem], tax_rate) -> Decimal:
    items = list(items)
    return calculate_subtotal(items) + calculate_total_tax(items, tax_rate)


def calculate_total_margin(items: Iterable[LineItem]) -> Decimal:
    """Revenue minus cost, where cost is quantity * our_price (not discounted)."""
    items = list(items)
    cost = sum((item.cost for item in items), ZERO)
    return calculate_subtotal(items) - cost


def calculate_margin_percentage(items: Iterable[LineItem]) -> Decimal:
    items = list(items)
    subtotal = calculate_subtotal(items)
    if subtotal == 0:
        return ZERO
    return calculate_total_margin(items) / subtotal * HUNDRED


@dataclass(frozen=True)
class DocumentTotals:
    """Calculator results for one document."""
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    margin: Decimal
    margin_percentage: Decimal

    def rounded(self) -> 'DocumentTotals':
        return DocumentTotals(
            subtotal=round_money(self.subtotal),
            tax=round_money(self.tax),
            total=round_money(self.total),
            margin=round_money(self.margin),
            margin_percentage=round_money(self.margin_percentage),
        )

    def to_dict(self, include_margin: bool = True) -> Dict[str, float]:
        r = self.rounded()
        data = {
            'subtotal': float(r.subtotal),
            'tax': float(r.tax),
            'total': float(r.total),
        }
        if include_margin:
            data['margin'] = float(r.margin)
            data['margin_percentage'] = float(r.margin_percentage)
        return data


def calculate_totals(items: Iterable[LineItem], tax_rate) -> DocumentTotals:
    items = list(items)
    subtotal = calculate_subtotal(items)
    tax = calculate_total_tax(items, tax_rate)
    margin = calculate_total_margin(items)
    margin_percentage = margin / subtotal * HUNDRED if subtotal != 0 else ZERO
    return DocumentTotals(
        subtotal=subtotal,
        tax=tax,
        total=subtotal + tax,
        margin=margin,
        margin_percentage=margin_percentage,
    )
