"""Client model."""
from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from fieldservice.database import Base, new_uuid


class Client(Base):
    """Client (the customer a job is done for)."""

    __tablename__ = 'clients'

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True, index=True)
    address = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    jobs = relationship('Job', back_populates='client')

    def __repr__(self):
        return f"<Client(id={self.id}, name='{self.name}')>"
