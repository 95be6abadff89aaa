"""Persisted line item rows shared by estimates and invoices."""
from sqlalchemy import Column, String, Text, Boolean, Numeric, Integer, DateTime
from sqlalchemy.sql import func
from fieldservice.database import Base, new_uuid


class DocumentLine(Base):
    """
    Line item row, polymorphic over its parent via (parent_type, parent_id).

    Rows are a snapshot of the builder's items at save time: `item_id` is the
    builder's id for the line and `position` keeps the display order.
    """

    __tablename__ = 'line_items'

    id = Column(String(36), primary_key=True, default=new_uuid)
    parent_type = Column(String(20), nullable=False)  # estimate, invoice
    parent_id = Column(String(36), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    item_id = Column(String(64), nullable=False)  # builder-side LineItem id
    product_id = Column(String(36), nullable=True)
    description = Column(Text, nullable=False, default='')
    quantity = Column(Numeric(14, 4), nullable=False, default=1)
    unit_price = Column(Numeric(16, 4), nullable=False, default=0)
    our_price = Column(Numeric(16, 4), nullable=False, default=0)
    discount = Column(Numeric(8, 4), nullable=False, default=0)
    taxable = Column(Boolean, nullable=False, default=True)
    line_total = Column(Numeric(14, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return (
            f"<DocumentLine(id={self.id}, parent={self.parent_type}:{self.parent_id}, "
            f"description='{self.description}', total={self.line_total})>"
        )
