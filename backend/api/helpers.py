"""Shared API helpers for route handlers."""

from typing import TypeVar

from fastapi import HTTPException
from sqlalchemy.orm import Session

from database import Base
from integrations.provider_protocol import ProviderAdapter
from integrations.provider_registry import ProviderRegistry

T = TypeVar("T", bound=Base)


def get_or_404(db: Session, model: type[T], entity_id: str, detail: str = "Not found") -> T:
    """Fetch a single entity by primary key or raise 404.

    Args:
        db: Database session.
        model: SQLAlchemy model class.
        entity_id: Primary key value.
        detail: Error message for the 404 response.

    Returns:
        The entity instance.

    Raises:
        HTTPException: 404 if the entity doesn't exist.
    """
    entity = db.query(model).filter(model.id == entity_id).first()
    if not entity:
        raise HTTPException(status_code=404, detail=detail)
    return entity


def get_adapter_or_404(registry: ProviderRegistry, provider_id: str) -> ProviderAdapter:
    """Look up a configured adapter or raise 404."""
    try:
        return registry.get_provider(provider_id)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Provider not configured: {provider_id}")
