"""Conversation model (client messaging threads)."""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from fieldservice.database import Base, new_uuid


class Conversation(Base):
    """Messaging thread with a client over one channel."""

    __tablename__ = 'conversations'

    id = Column(String(36), primary_key=True, default=new_uuid)
    client_id = Column(String(36), ForeignKey('clients.id'), nullable=False, index=True)
    channel = Column(String(10), nullable=False, default='sms')  # sms, email
    subject = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default='active')
    unread_count = Column(Integer, nullable=False, default=0)
    last_message_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    client = relationship('Client')
    messages = relationship('Message', back_populates='conversation', order_by='Message.created_at')

    def __repr__(self):
        return f"<Conversation(id={self.id}, client_id={self.client_id}, channel='{self.channel}')>"
