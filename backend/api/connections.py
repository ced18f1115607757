"""Connection API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.helpers import get_or_404
from database import get_db
from models import Connection
from schemas import (
    ConnectionEventResponse,
    ConnectionHealthResponse,
    ConnectionResponse,
    ConnectionUpdate,
    SyncJobResponse,
)
from services.connection_service import ConnectionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/connections", tags=["connections"])


@router.get("", response_model=list[ConnectionResponse])
def list_connections(tenant_id: str, db: Session = Depends(get_db)):
    """List a tenant's connections."""
    return ConnectionService.list_connections(db, tenant_id)


@router.get("/{connection_id}", response_model=ConnectionResponse)
def get_connection(connection_id: str, db: Session = Depends(get_db)):
    """Get a specific connection."""
    return get_or_404(db, Connection, connection_id, "Connection not found")


@router.patch("/{connection_id}", response_model=ConnectionResponse)
def update_connection(
    connection_id: str,
    body: ConnectionUpdate,
    db: Session = Depends(get_db),
):
    """Rename a connection or change its sync schedule."""
    connection = get_or_404(db, Connection, connection_id, "Connection not found")
    try:
        ConnectionService.update(
            db,
            connection,
            name=body.name,
            sync_schedule=body.sync_schedule.value if body.sync_schedule else None,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    db.commit()
    db.refresh(connection)
    return connection


@router.get("/{connection_id}/health", response_model=ConnectionHealthResponse)
def get_connection_health(connection_id: str, db: Session = Depends(get_db)):
    """Health score, band, failure streak and diagnostic hints."""
    health = ConnectionService.get_connection_health(db, connection_id)
    if health is None:
        raise HTTPException(status_code=404, detail="Connection not found")
    return health


@router.get("/{connection_id}/jobs", response_model=list[SyncJobResponse])
def list_jobs(connection_id: str, limit: int = 50, db: Session = Depends(get_db)):
    """Recent sync jobs, newest first."""
    get_or_404(db, Connection, connection_id, "Connection not found")
    return ConnectionService.list_jobs(db, connection_id, limit=limit)


@router.get("/{connection_id}/events", response_model=list[ConnectionEventResponse])
def list_events(connection_id: str, limit: int = 100, db: Session = Depends(get_db)):
    """Lifecycle events, newest first."""
    get_or_404(db, Connection, connection_id, "Connection not found")
    return ConnectionService.list_events(db, connection_id, limit=limit)


@router.post("/{connection_id}/disable", response_model=ConnectionResponse)
def disable_connection(connection_id: str, db: Session = Depends(get_db)):
    """Stop syncing a connection."""
    connection = get_or_404(db, Connection, connection_id, "Connection not found")
    ConnectionService.disable(db, connection)
    db.commit()
    db.refresh(connection)
    logger.info("Connection disabled: %s", connection_id)
    return connection


@router.post("/{connection_id}/enable", response_model=ConnectionResponse)
def enable_connection(connection_id: str, db: Session = Depends(get_db)):
    """Resume syncing a disabled connection."""
    connection = get_or_404(db, Connection, connection_id, "Connection not found")
    ConnectionService.enable(db, connection)
    db.commit()
    db.refresh(connection)
    logger.info("Connection enabled: %s", connection_id)
    return connection
