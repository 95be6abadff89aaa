"""Line items and the pricing calculator."""
from fieldservice.pricing.line_item import LineItem, new_item_id
from fieldservice.pricing.calculator import (
    DocumentTotals,
    line_total,
    calculate_subtotal,
    calculate_total_tax,
    calculate_grand_total,
    calculate_total_margin,
    calculate_margin_percentage,
    calculate_totals,
)

__all__ = [
    'LineItem', 'new_item_id', 'DocumentTotals', 'line_total',
    'calculate_subtotal', 'calculate_total_tax', 'calculate_grand_total',
    'calculate_total_margin', 'calculate_margin_percentage', 'calculate_totals',
]
