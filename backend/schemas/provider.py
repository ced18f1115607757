"""Pydantic schemas for providers."""

from typing import Optional

from pydantic import BaseModel


class ProviderResponse(BaseModel):
    """Response schema for a single provider."""

    provider_id: str
    display_name: str
    is_configured: bool
    marker_type: Optional[str] = None

    model_config = {"from_attributes": True}
