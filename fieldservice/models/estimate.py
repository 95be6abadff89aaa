"""Estimate model."""
import enum
from sqlalchemy import Column, String, Numeric, Integer, DateTime, Date, Text, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from fieldservice.database import Base, new_uuid


class EstimateStatus(enum.Enum):
    """Estimate status enum."""
    DRAFT = "draft"
    SENT = "sent"
    APPROVED = "approved"
    REJECTED = "rejected"
    CONVERTED = "converted"
    CANCELLED = "cancelled"


class Estimate(Base):
    """
    Estimate (quote sent to a client before the work).

    subtotal/tax_amount/total are the pricing snapshot taken when the builder
    saved; the line items are the source of truth. `version` is bumped on
    every update and checked by the builder to detect concurrent edits.
    """

    __tablename__ = 'estimates'

    document_type = 'estimate'
    TERMINAL_STATUSES = ('converted', 'rejected', 'cancelled')

    id = Column(String(36), primary_key=True, default=new_uuid)
    job_id = Column(String(36), ForeignKey('jobs.id'), nullable=False, index=True)
    estimate_number = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default='draft')
    tax_rate = Column(Numeric(8, 4), nullable=False, default=0)
    subtotal = Column(Numeric(14, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(14, 2), nullable=False, default=0)
    total = Column(Numeric(14, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)
    valid_until = Column(Date, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    job = relationship('Job', back_populates='estimates')
    lines = relationship(
        'DocumentLine',
        primaryjoin="and_(Estimate.id == foreign(DocumentLine.parent_id), "
                    "DocumentLine.parent_type == 'estimate')",
        order_by='DocumentLine.position',
        viewonly=True
    )

    @property
    def number(self):
        return self.estimate_number

    @property
    def is_convertible(self):
        """Check if estimate can still be turned into an invoice."""
        return self.status not in self.TERMINAL_STATUSES

    def __repr__(self):
        return f"<Estimate(id={self.id}, number='{self.estimate_number}', status='{self.status}', total={self.total})>"
