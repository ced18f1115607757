"""Credential model - OAuth token material for a connection."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Credential(Base):
    """OAuth tokens issued by a provider for one connection.

    Several rows may exist per connection (older ones are superseded on
    reconnection or refresh, never deleted). The most recently updated row
    with ``status == "active"`` is authoritative.
    """

    __tablename__ = "credentials"
    __table_args__ = (
        Index("ix_credentials_connection_status", "connection_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)  # None = does not expire
    token_type = Column(String, nullable=False, default="bearer")
    scope = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active")  # "active" | "expired" | "revoked"
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    connection = relationship("Connection", back_populates="credentials")
