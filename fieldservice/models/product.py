"""Product (catalog item) model."""
from sqlalchemy import Column, String, Text, Boolean, Numeric, DateTime
from sqlalchemy.sql import func
from fieldservice.database import Base, new_uuid


class Product(Base):
    """
    Catalog product or service.

    `cost` is the internal (our) price used only for margin; it never appears
    on customer-facing output. Products in the 'warranty' category are offered
    as upsells and are not taxable.
    """

    __tablename__ = 'products'

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default='service', index=True)
    price = Column(Numeric(14, 2), nullable=False, default=0)
    cost = Column(Numeric(14, 2), nullable=False, default=0, server_default='0.00')
    taxable = Column(Boolean, nullable=False, default=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def is_upsell(self):
        return self.category == 'warranty'

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', price={self.price})>"
