"""Job model."""
from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from fieldservice.database import Base, new_uuid


class Job(Base):
    """A unit of field work for a client; estimates and invoices hang off it."""

    __tablename__ = 'jobs'

    id = Column(String(36), primary_key=True, default=new_uuid)
    client_id = Column(String(36), ForeignKey('clients.id'), nullable=False, index=True)
    title = Column(String(200), nullable=False, default='Service Request')
    description = Column(Text, nullable=True)
    status = Column(String(30), nullable=False, default='scheduled')
    address = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    client = relationship('Client', back_populates='jobs')
    estimates = relationship('Estimate', back_populates='job', order_by='Estimate.created_at')
    invoices = relationship('Invoice', back_populates='job', order_by='Invoice.created_at')

    def __repr__(self):
        return f"<Job(id={self.id}, title='{self.title}', status='{self.status}')>"
