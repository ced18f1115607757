"""Provider API endpoints."""

import logging

from fastapi import APIRouter, Depends

from integrations.provider_registry import ALL_PROVIDER_IDS, ProviderRegistry, get_provider_registry
from schemas import ProviderResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/providers", tags=["providers"])


def get_registry() -> ProviderRegistry:
    """Get the provider registry (dependency for injection in tests)."""
    return get_provider_registry()


@router.get("", response_model=list[ProviderResponse])
def list_providers(registry: ProviderRegistry = Depends(get_registry)):
    """List every known provider and whether it is configured."""
    provider_ids = list(ALL_PROVIDER_IDS)
    provider_ids += [p for p in registry.list_providers() if p not in provider_ids]

    result = []
    for provider_id in provider_ids:
        if registry.is_configured(provider_id):
            adapter = registry.get_provider(provider_id)
            result.append(ProviderResponse(
                provider_id=provider_id,
                display_name=adapter.display_name,
                is_configured=True,
                marker_type=adapter.marker_type,
            ))
        else:
            result.append(ProviderResponse(
                provider_id=provider_id,
                display_name=provider_id.capitalize(),
                is_configured=False,
            ))
    return result
