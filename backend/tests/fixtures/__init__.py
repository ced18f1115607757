"""Test fixtures and sample data."""
import pytest
from datetime import datetime, timedelta, timezone

from models import Connection, Credential, SyncJob
from sqlalchemy.orm import Session

TENANT_ID = "tenant-0001"


def create_connection(
    db: Session,
    provider_id: str = "tink",
    status: str = "active",
    tenant_id: str = TENANT_ID,
    with_credential: bool = True,
    expires_at: datetime | None = None,
    refresh_token: str | None = "refresh-token",
    **fields,
) -> Connection:
    """Create a connection, optionally with an active credential.

    Args:
        db: Database session
        provider_id: Provider the connection belongs to
        status: Initial connection status
        tenant_id: Owning tenant
        with_credential: Also store an active credential
        expires_at: Credential expiry (defaults to two hours from now)
        refresh_token: Credential refresh token (None = not refreshable)
        **fields: Extra Connection column values

    Returns:
        The committed Connection
    """
    connection = Connection(
        tenant_id=tenant_id,
        provider_id=provider_id,
        name=f"{provider_id.capitalize()} connection",
        status=status,
        **fields,
    )
    db.add(connection)
    db.flush()
    if with_credential:
        db.add(Credential(
            connection_id=connection.id,
            access_token="access-token",
            refresh_token=refresh_token,
            expires_at=expires_at or datetime.now(timezone.utc) + timedelta(hours=2),
            status="active",
        ))
    db.commit()
    return connection


def create_job(
    db: Session,
    connection: Connection,
    outcome: str,
    days_ago: float = 0,
    is_noop: bool = False,
) -> SyncJob:
    """Create a finalized SyncJob that started ``days_ago`` days in the past."""
    started = datetime.now(timezone.utc) - timedelta(days=days_ago)
    job = SyncJob(
        connection_id=connection.id,
        tenant_id=connection.tenant_id,
        started_at=started,
        finished_at=started + timedelta(minutes=1),
        outcome=outcome,
        is_noop=is_noop,
    )
    db.add(job)
    db.commit()
    return job


@pytest.fixture
def connection(db: Session) -> Connection:
    """An active Tink connection with a valid credential."""
    return create_connection(db)


@pytest.fixture
def pending_connection(db: Session) -> Connection:
    """A freshly authorized connection that has never synced."""
    return create_connection(db, status="pending")
