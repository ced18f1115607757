"""SyncJob model - one orchestrated sync attempt for a connection."""

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow

SYNC_OUTCOMES = ("success", "partial", "failure")


class SyncJobFinalizedError(RuntimeError):
    """Raised when code tries to change a SyncJob that is already finalized."""


class SyncJob(Base):
    """Execution record of one sync attempt.

    ``outcome`` is None while the attempt is running. Once :meth:`finalize`
    has been called the record is treated as immutable.
    """

    __tablename__ = "sync_jobs"
    __table_args__ = (
        Index("ix_sync_jobs_connection_started", "connection_id", "started_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=False)
    tenant_id = Column(String(36), nullable=False)
    trigger = Column(String, nullable=False, default="manual")  # "manual" | "scheduled"
    started_at = Column(DateTime, nullable=False, default=utcnow)
    finished_at = Column(DateTime, nullable=True)
    outcome = Column(String, nullable=True)

    is_noop = Column(Boolean, nullable=False, default=False)  # Throttled, nothing fetched
    plan_reason = Column(String, nullable=True)
    window_start = Column(Date, nullable=True)
    window_end = Column(Date, nullable=True)

    accounts_created = Column(Integer, nullable=False, default=0)
    accounts_updated = Column(Integer, nullable=False, default=0)
    accounts_closed = Column(Integer, nullable=False, default=0)
    accounts_failed = Column(Integer, nullable=False, default=0)
    transactions_imported = Column(Integer, nullable=False, default=0)
    transactions_updated = Column(Integer, nullable=False, default=0)
    transactions_skipped = Column(Integer, nullable=False, default=0)
    transactions_failed = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=True)  # list[str]

    connection = relationship("Connection", back_populates="sync_jobs")

    @property
    def is_finalized(self) -> bool:
        return self.outcome is not None

    def add_error(self, message: str) -> None:
        """Append an error message to the job's error list."""
        if self.is_finalized:
            raise SyncJobFinalizedError(f"SyncJob {self.id} is already finalized")
        # Reassign so SQLAlchemy notices the JSON change
        self.errors = [*(self.errors or []), message]

    def finalize(self, outcome: str, finished_at=None) -> None:
        """Set the outcome and end time. Can only be called once."""
        if self.is_finalized:
            raise SyncJobFinalizedError(f"SyncJob {self.id} is already finalized")
        if outcome not in SYNC_OUTCOMES:
            raise ValueError(f"Unknown sync outcome: {outcome!r}")
        self.outcome = outcome
        self.finished_at = finished_at or utcnow()
