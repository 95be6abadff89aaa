"""Invoice model."""
import enum
from sqlalchemy import Column, String, Numeric, Integer, DateTime, Date, Text, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from fieldservice.database import Base, new_uuid


class InvoiceStatus(enum.Enum):
    """Invoice status enum."""
    DRAFT = "draft"
    SENT = "sent"
    PARTIAL = "partial"
    PAID = "paid"
    CONVERTED = "converted"
    CANCELLED = "cancelled"


class Invoice(Base):
    """
    Invoice issued to a client.

    An invoice created from an estimate keeps `estimate_id` for reference
    only; its line items are an independent copy.
    """

    __tablename__ = 'invoices'

    document_type = 'invoice'
    TERMINAL_STATUSES = ('paid', 'converted', 'cancelled')

    id = Column(String(36), primary_key=True, default=new_uuid)
    job_id = Column(String(36), ForeignKey('jobs.id'), nullable=False, index=True)
    estimate_id = Column(String(36), ForeignKey('estimates.id'), nullable=True)
    invoice_number = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default='draft')
    tax_rate = Column(Numeric(8, 4), nullable=False, default=0)
    subtotal = Column(Numeric(14, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(14, 2), nullable=False, default=0)
    total = Column(Numeric(14, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(14, 2), nullable=False, default=0)
    balance = Column(Numeric(14, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)
    issue_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    job = relationship('Job', back_populates='invoices')
    estimate = relationship('Estimate', foreign_keys=[estimate_id])
    payments = relationship('Payment', back_populates='invoice', order_by='Payment.paid_at')
    lines = relationship(
        'DocumentLine',
        primaryjoin="and_(Invoice.id == foreign(DocumentLine.parent_id), "
                    "DocumentLine.parent_type == 'invoice')",
        order_by='DocumentLine.position',
        viewonly=True
    )

    @property
    def number(self):
        return self.invoice_number

    def __repr__(self):
        return f"<Invoice(id={self.id}, number='{self.invoice_number}', status='{self.status}', total={self.total})>"
