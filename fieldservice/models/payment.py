"""Payment model."""
from sqlalchemy import Column, String, Numeric, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from fieldservice.database import Base, new_uuid


class Payment(Base):
    """Payment recorded against an invoice."""

    __tablename__ = 'payments'

    id = Column(String(36), primary_key=True, default=new_uuid)
    invoice_id = Column(String(36), ForeignKey('invoices.id'), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    method = Column(String(30), nullable=False, default='cash')  # cash, card, e-transfer, cheque
    reference = Column(String(120), nullable=True)
    notes = Column(Text, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    invoice = relationship('Invoice', back_populates='payments')

    def __repr__(self):
        return f"<Payment(id={self.id}, invoice_id={self.invoice_id}, amount={self.amount}, method='{self.method}')>"
