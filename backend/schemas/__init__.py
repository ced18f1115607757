"""Pydantic schemas for API request/response validation."""

from .account import (
    AccountResponse,
    AccountType,
    AccountUpdate,
    ManualAccountCreate,
    TransactionResponse,
)
from .connection import (
    AuthorizationCallbackRequest,
    AuthorizationResponse,
    ConnectionEventResponse,
    ConnectionHealthResponse,
    ConnectionResponse,
    ConnectionUpdate,
    SyncJobResponse,
    SyncSchedule,
)
from .provider import ProviderResponse

__all__ = [
    "AccountResponse",
    "AccountType",
    "AccountUpdate",
    "AuthorizationCallbackRequest",
    "AuthorizationResponse",
    "ConnectionEventResponse",
    "ConnectionHealthResponse",
    "ConnectionResponse",
    "ConnectionUpdate",
    "ManualAccountCreate",
    "ProviderResponse",
    "SyncJobResponse",
    "SyncSchedule",
    "TransactionResponse",
]
