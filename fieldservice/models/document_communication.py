"""Delivery log for estimates and invoices sent to clients."""
from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.sql import func
from fieldservice.database import Base, new_uuid


class DocumentCommunication(Base):
    """
    One delivery attempt (email or SMS) of a document.

    `idempotency_key` identifies the logical send intent: a retried send
    carrying a key that already succeeded is not delivered again.
    """

    __tablename__ = 'document_communications'

    id = Column(String(36), primary_key=True, default=new_uuid)
    document_type = Column(String(20), nullable=False)
    document_id = Column(String(36), nullable=False, index=True)
    channel = Column(String(10), nullable=False)  # email, sms
    recipient = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=True)
    content = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default='pending')  # pending, sent, failed
    error_message = Column(Text, nullable=True)
    provider_message_id = Column(String(120), nullable=True)
    idempotency_key = Column(String(64), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    sent_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return (
            f"<DocumentCommunication(id={self.id}, {self.document_type}:{self.document_id}, "
            f"channel='{self.channel}', status='{self.status}')>"
        )
