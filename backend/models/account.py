"""Account model - a canonical bank account owned by a tenant."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Account(Base):
    """A provider-agnostic bank account.

    Accounts are either linked to a connection (synced) or entered
    manually (``connection_id`` is None). Uniqueness per IBAN and per
    (provider, external id) inside a tenant is enforced by the
    reconciliation service rather than a constraint, because matching is
    tiered. Accounts the provider stops reporting are marked ``closed``,
    never deleted.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        Index("ix_accounts_tenant_iban", "tenant_id", "iban"),
        Index(
            "ix_accounts_tenant_provider_external",
            "tenant_id", "provider_id", "external_account_id",
        ),
        Index("ix_accounts_connection", "connection_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=True)
    provider_id = Column(String, nullable=True)
    external_account_id = Column(String, nullable=True)

    name = Column(String, nullable=False)
    name_user_edited = Column(Boolean, default=False)  # True if user has customized the name
    account_number = Column(String, nullable=True)  # Full number or mask
    iban = Column(String(34), nullable=True)  # Stored normalized (upper-case, no spaces)
    bic = Column(String(11), nullable=True)
    bank_name = Column(String, nullable=True)
    account_type = Column(String, nullable=True)  # "checking", "savings", ...
    currency = Column(String(3), nullable=False, default="EUR")
    current_balance = Column(Numeric(18, 4), nullable=True)

    status = Column(String, nullable=False, default="active")  # "active" | "inactive" | "closed"
    sync_enabled = Column(Boolean, nullable=False, default=True)
    last_synced_at = Column(DateTime, nullable=True)  # Last account-level refresh
    last_transactions_synced_at = Column(DateTime, nullable=True)  # Planner input
    closed_at = Column(DateTime, nullable=True)

    provider_metadata = Column(JSON, nullable=True)
    raw_data = Column(Text, nullable=True)  # Opaque provider payload (JSON)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    connection = relationship("Connection", back_populates="accounts")
    transactions = relationship(
        "Transaction",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
