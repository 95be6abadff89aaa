"""Portal access token model."""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from fieldservice.database import Base, new_uuid


class PortalAccessToken(Base):
    """
    Issued client-portal link.

    The link itself is a signed JWT; this row holds its `jti` so links can be
    revoked and their use tracked.
    """

    __tablename__ = 'portal_access_tokens'

    id = Column(String(36), primary_key=True, default=new_uuid)
    client_id = Column(String(36), ForeignKey('clients.id'), nullable=False, index=True)
    jti = Column(String(64), nullable=False, unique=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked = Column(Boolean, nullable=False, default=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    client = relationship('Client')

    def __repr__(self):
        return f"<PortalAccessToken(id={self.id}, client_id={self.client_id}, revoked={self.revoked})>"
