"""Message model."""
from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from fieldservice.database import Base, new_uuid


class Message(Base):
    """Single inbound or outbound message within a conversation."""

    __tablename__ = 'messages'

    id = Column(String(36), primary_key=True, default=new_uuid)
    conversation_id = Column(String(36), ForeignKey('conversations.id'), nullable=False, index=True)
    direction = Column(String(10), nullable=False)  # inbound, outbound
    body = Column(Text, nullable=False)
    sender = Column(String(255), nullable=True)
    recipient = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default='delivered')  # delivered, sent, failed
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    conversation = relationship('Conversation', back_populates='messages')

    def __repr__(self):
        return f"<Message(id={self.id}, conversation_id={self.conversation_id}, direction='{self.direction}')>"
