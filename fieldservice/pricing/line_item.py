"""Line item value type shared by the estimate and invoice builders."""
import uuid
from dataclasses import dataclass, replace, field
from decimal import Decimal
from typing import Any, Dict, Optional

from fieldservice.utils.number_format import (
    ZERO, ONE, HUNDRED, coerce_amount, coerce_quantity, coerce_discount, round_money,
)

# Patch keys accepted from JSON payloads, normalised to attribute names.
# `id` and `total` are deliberately absent: neither can be set by a patch.
FIELD_ALIASES = {
    'description': 'description',
    'quantity': 'quantity',
    'qty': 'quantity',
    'unit_price': 'unit_price',
    'unitPrice': 'unit_price',
    'price': 'unit_price',
    'our_price': 'our_price',
    'ourPrice': 'our_price',
    'cost': 'our_price',
    'discount': 'discount',
    'taxable': 'taxable',
    'product_id': 'product_id',
    'productId': 'product_id',
}


def new_item_id() -> str:
    return uuid.uuid4().hex


def compute_line_total(quantity: Decimal, unit_price: Decimal, discount: Decimal) -> Decimal:
    """quantity * unit_price * (1 - discount/100), unrounded."""
    return quantity * unit_price * (ONE - discount / HUNDRED)


def _coerce_taxable(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ('', '0', 'false', 'no', 'off')
    return bool(value)


def _coerce_field(name: str, value):
    if name == 'quantity':
        return coerce_quantity(value)
    if name in ('unit_price', 'our_price'):
        return coerce_amount(value)
    if name == 'discount':
        return coerce_discount(value)
    if name == 'taxable':
        return _coerce_taxable(value)
    if name == 'description':
        return '' if value is None else str(value)
    if name == 'product_id':
        return str(value) if value not in (None, '') else None
    return value


@dataclass(frozen=True)
class LineItem:
    """
    One billable row of an estimate or invoice.

    Immutable: edits produce a new instance through `updated()`. The total is
    always derived from quantity, unit price and discount, so it can never
    drift out of sync.
    """
    id: str = field(default_factory=new_item_id)
    description: str = ''
    quantity: Decimal = ONE
    unit_price: Decimal = ZERO
    our_price: Decimal = ZERO
    discount: Decimal = ZERO
    taxable: bool = True
    product_id: Optional[str] = None

    @property
    def total(self) -> Decimal:
        return compute_line_total(self.quantity, self.unit_price, self.discount)

    @property
    def cost(self) -> Decimal:
        """Internal cost of the line (discount does not apply to cost)."""
        return self.quantity * self.our_price

    @classmethod
    def create(cls, item_id: Optional[str] = None, **fields) -> 'LineItem':
        """Build an item from loosely-typed input, coercing every field."""
        values = {}
        for key, value in fields.items():
            name = FIELD_ALIASES.get(key)
            if name is None:
                continue
            values[name] = _coerce_field(name, value)
        return cls(id=item_id or new_item_id(), **values)

    @classmethod
    def from_product(cls, product) -> 'LineItem':
        """Line for a catalog product: quantity 1, price, cost and taxability copied."""
        description = product.name
        if getattr(product, 'description', None):
            description = f"{product.name} - {product.description}"
        return cls(
            description=description,
            quantity=ONE,
            unit_price=coerce_amount(product.price),
            our_price=coerce_amount(getattr(product, 'cost', None)),
            discount=ZERO,
            taxable=bool(product.taxable),
            product_id=product.id,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any], keep_id: bool = True) -> 'LineItem':
        item_id = data.get('id') if keep_id else None
        return cls.create(item_id=item_id, **data)

    def updated(self, patch: Dict[str, Any]) -> 'LineItem':
        """Return a copy with the patch merged in (unknown keys, `id` and `total` ignored)."""
        changes = {}
        for key, value in (patch or {}).items():
            name = FIELD_ALIASES.get(key)
            if name is None:
                continue
            changes[name] = _coerce_field(name, value)
        if not changes:
            return self
        return replace(self, **changes)

    def with_new_id(self) -> 'LineItem':
        return replace(self, id=new_item_id())

    def to_dict(self, include_cost: bool = True) -> Dict[str, Any]:
        """Serialize for JSON; `include_cost=False` for anything a client sees."""
        data = {
            'id': self.id,
            'description': self.description,
            'quantity': float(self.quantity),
            'unit_price': float(self.unit_price),
            'discount': float(self.discount),
            'taxable': self.taxable,
            'product_id': self.product_id,
            'total': float(round_money(self.total)),
        }
        if include_cost:
            data['our_price'] = float(self.our_price)
        return data
