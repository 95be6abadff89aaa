"""Product catalog lookups and the default catalog used by `flask seed-catalog`."""
import logging
from decimal import Decimal
from typing import List, Optional, Iterable

from sqlalchemy.orm import Session

from fieldservice.exceptions import NotFoundError, ValidationError
from fieldservice.models import Product

logger = logging.getLogger(__name__)

DEFAULT_CATALOG = [
    # name, category, price, cost, taxable, description
    ('Service Call', 'service', '89.00', '25.00', True, 'Diagnostic visit, first hour'),
    ('Labour (per hour)', 'service', '95.00', '40.00', True, None),
    ('Furnace Tune-Up', 'service', '149.00', '45.00', True, 'Annual furnace inspection and cleaning'),
    ('AC Tune-Up', 'service', '149.00', '45.00', True, 'Annual air conditioner inspection'),
    ('Water Heater Flush', 'service', '120.00', '30.00', True, None),
    ('Thermostat (programmable)', 'parts', '185.00', '90.00', True, None),
    ('Furnace Filter', 'parts', '29.00', '8.00', True, None),
    ('Extended Warranty - 1 Year', 'warranty', '89.00', '0.00', False, 'Parts and labour coverage for 12 months'),
    ('Extended Warranty - 3 Years', 'warranty', '229.00', '0.00', False, 'Parts and labour coverage for 36 months'),
    ('Maintenance Plan', 'warranty', '199.00', '60.00', False, 'Two tune-ups per year with priority booking'),
]


def list_products(session: Session, category: Optional[str] = None, active_only: bool = True) -> List[Product]:
    query = session.query(Product)
    if active_only:
        query = query.filter(Product.active.is_(True))
    if category:
        query = query.filter(Product.category == category)
    return query.order_by(Product.name).all()


def list_upsell_products(session: Session) -> List[Product]:
    return list_products(session, category='warranty')


def get_product(session: Session, product_id: str) -> Product:
    product = session.get(Product, product_id)
    if not product or not product.active:
        raise NotFoundError(f"Product {product_id} not found.")
    return product


def get_products(session: Session, product_ids: Iterable[str]) -> List[Product]:
    """Fetch products in the order requested; every id must exist."""
    product_ids = list(product_ids or [])
    if not product_ids:
        return []
    found = {
        p.id: p for p in session.query(Product).filter(
            Product.id.in_(product_ids), Product.active.is_(True)
        ).all()
    }
    missing = [pid for pid in product_ids if pid not in found]
    if missing:
        raise ValidationError(f"Unknown products: {', '.join(missing)}")
    return [found[pid] for pid in product_ids]


def seed_catalog(session: Session) -> int:
    """Insert default products that are not present yet (matched by name). Returns the number added."""
    existing = {name for (name,) in session.query(Product.name).all()}
    added = 0
    try:
        for name, category, price, cost, taxable, description in DEFAULT_CATALOG:
            if name in existing:
                continue
            session.add(Product(
                name=name,
                category=category,
                price=Decimal(price),
                cost=Decimal(cost),
                taxable=taxable,
                description=description,
            ))
            added += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(f"[CATALOG] Seeded {added} products")
    return added
