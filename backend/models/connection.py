"""Connection model - one authorized link between a tenant and a provider."""

from sqlalchemy import Column, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow

CONNECTION_STATUSES = ("pending", "active", "error", "disabled")

# Interval between scheduled syncs, in hours. "manual" connections are never
# picked up by the scheduled sweep.
SYNC_SCHEDULE_HOURS: dict[str, int | None] = {
    "manual": None,
    "hourly": 1,
    "4hours": 4,
    "12hours": 12,
    "daily": 24,
    "weekly": 24 * 7,
}


class Connection(Base):
    """An OAuth link to a banking aggregator for one tenant.

    Status moves ``pending -> active`` on the first successful sync,
    ``active -> error`` on credential problems or a failure streak, and
    ``error -> active`` again on recovery. ``disabled`` is only entered and
    left on explicit request. Connections are never hard-deleted while
    transactions reference them.
    """

    __tablename__ = "connections"
    __table_args__ = (
        Index("ix_connections_tenant", "tenant_id"),
        Index("ix_connections_due", "status", "next_sync_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False)
    provider_id = Column(String, nullable=False)  # "tink", "plaid"
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")
    market = Column(String, nullable=True)  # Country hint given at authorization
    external_reference = Column(String, nullable=True)  # Plaid item id, Tink user id

    health_score = Column(Float, nullable=False, default=1.0)
    consecutive_failures = Column(Integer, nullable=False, default=0)
    last_sync_at = Column(DateTime, nullable=True)
    last_success_at = Column(DateTime, nullable=True)
    next_sync_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    last_error_at = Column(DateTime, nullable=True)
    sync_schedule = Column(String, nullable=False, default="daily")

    # Single-flight lease; see SyncService._acquire_lease
    sync_lock_token = Column(String(36), nullable=True)
    sync_lock_expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    credentials = relationship(
        "Credential", back_populates="connection", order_by="Credential.updated_at"
    )
    accounts = relationship("Account", back_populates="connection")
    sync_jobs = relationship("SyncJob", back_populates="connection")
    events = relationship("ConnectionEvent", back_populates="connection")
