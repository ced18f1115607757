"""ConnectionEvent model - audit trail of connection lifecycle changes."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow

EVENT_TYPES = (
    "created",
    "reconnected",
    "token_refreshed",
    "token_expired",
    "status_changed",
    "disabled",
    "enabled",
    "account_closed",
)


class ConnectionEvent(Base):
    """A single lifecycle event for a connection."""

    __tablename__ = "connection_events"
    __table_args__ = (
        Index("ix_connection_events_connection_created", "connection_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=False)
    event_type = Column(String, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    connection = relationship("Connection", back_populates="events")
