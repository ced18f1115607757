"""Sync API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.helpers import get_or_404
from database import get_db
from models import Connection
from schemas import SyncJobResponse
from services.sync_service import ConnectionNotSyncableError, SyncInProgressError, SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sync"])


def get_sync_service() -> SyncService:
    """Get SyncService instance (dependency for injection in tests)."""
    return SyncService()


@router.post("/connections/{connection_id}/sync", response_model=SyncJobResponse)
def trigger_sync(
    connection_id: str,
    force: bool = False,
    db: Session = Depends(get_db),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Run a sync for one connection.

    Always returns 200 with the finalized sync job when the sync ran;
    success or failure is communicated via its ``outcome`` and ``errors``.

    Args:
        connection_id: Connection to sync.
        force: Bypass throttling and re-fetch the full backfill window.

    Raises:
        HTTPException:
            - 404 Not Found: Unknown connection
            - 409 Conflict: Sync already in progress, or connection disabled
            - 500 Internal Server Error: Unexpected sync error
    """
    get_or_404(db, Connection, connection_id, "Connection not found")

    if sync_service.is_sync_in_progress(db, connection_id):
        raise HTTPException(
            status_code=409,
            detail="Sync already in progress. Please wait for the current sync to complete.",
        )

    try:
        return sync_service.run_sync(db, connection_id, force=force)
    except SyncInProgressError:
        raise HTTPException(
            status_code=409,
            detail="Sync already in progress. Please wait for the current sync to complete.",
        )
    except ConnectionNotSyncableError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception:
        # Safety catch for truly unexpected errors; never expose str(e)
        logger.error("Unexpected error during sync", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="An unexpected error occurred during sync.",
        )


@router.post("/sync/due", response_model=list[SyncJobResponse])
def run_due_syncs(
    db: Session = Depends(get_db),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Run the scheduled sweep over every connection that is due."""
    return sync_service.run_due_syncs(db)
