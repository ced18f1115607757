"""Transaction model - canonical, deduplicated account transaction."""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Transaction(Base):
    """A financial transaction on a canonical account.

    ``amount`` is signed: positive is an inflow, negative an outflow.
    (tenant_id, connection_id, external_transaction_id) is the idempotence
    key used by the import service.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "connection_id",
            "external_transaction_id",
            name="uix_transaction_tenant_connection_external",
        ),
        Index("ix_transactions_account_date", "account_id", "transaction_date"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=True)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    external_transaction_id = Column(String, nullable=True)

    transaction_date = Column(Date, nullable=False)
    amount = Column(Numeric(18, 4), nullable=False)
    currency = Column(String(3), nullable=False)
    description = Column(Text, nullable=True)
    counterparty_name = Column(String, nullable=True)
    category = Column(String, nullable=True)
    reference = Column(String, nullable=True)
    booking_status = Column(String, nullable=False, default="booked")  # "pending" | "booked"
    is_removed = Column(Boolean, nullable=False, default=False)  # Retracted by the provider

    raw_data = Column(Text, nullable=True)  # Opaque provider payload (JSON)
    sync_job_id = Column(String(36), ForeignKey("sync_jobs.id"), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    account = relationship("Account", back_populates="transactions")
