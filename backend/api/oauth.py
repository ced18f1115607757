"""OAuth API endpoints - start and complete provider authorization."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.helpers import get_adapter_or_404
from api.providers import get_registry
from database import get_db
from integrations.exceptions import AuthExchangeError, ProviderError
from integrations.provider_registry import ProviderRegistry
from schemas import AuthorizationCallbackRequest, AuthorizationResponse, ConnectionResponse
from services.connection_service import ConnectionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/oauth", tags=["oauth"])


@router.get("/{provider_id}/authorize", response_model=AuthorizationResponse)
def authorize(
    provider_id: str,
    tenant_id: str,
    market: Optional[str] = None,
    registry: ProviderRegistry = Depends(get_registry),
):
    """Return the URL the user visits to grant access to their bank."""
    adapter = get_adapter_or_404(registry, provider_id)
    try:
        url, state = ConnectionService.start_authorization(adapter, tenant_id, market)
    except ProviderError as e:
        logger.warning("Authorization start failed for %s: %s", provider_id, e)
        raise HTTPException(status_code=502, detail=f"Provider error: {e}")
    return AuthorizationResponse(url=url, state=state)


@router.post("/{provider_id}/callback", response_model=ConnectionResponse)
def callback(
    provider_id: str,
    body: AuthorizationCallbackRequest,
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
):
    """Exchange the authorization code and create (or re-activate) a connection.

    Raises:
        HTTPException:
            - 400 Bad Request: The provider rejected the code
            - 404 Not Found: Unknown provider or connection
            - 502 Bad Gateway: Provider unavailable
    """
    adapter = get_adapter_or_404(registry, provider_id)
    try:
        return ConnectionService.complete_authorization(
            db,
            adapter,
            body.tenant_id,
            body.code,
            name=body.name,
            connection_id=body.connection_id,
            market=body.market,
        )
    except AuthExchangeError as e:
        logger.warning("Code exchange rejected by %s: %s", provider_id, e)
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ProviderError as e:
        logger.warning("Code exchange failed for %s: %s", provider_id, e)
        raise HTTPException(status_code=502, detail=f"Provider error: {e}")
