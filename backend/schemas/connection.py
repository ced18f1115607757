"""Pydantic schemas for connections, authorization and sync jobs."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SyncSchedule(str, Enum):
    """How often the scheduled sweep picks a connection up."""

    manual = "manual"
    hourly = "hourly"
    four_hours = "4hours"
    twelve_hours = "12hours"
    daily = "daily"
    weekly = "weekly"


class ConnectionResponse(BaseModel):
    """Schema for a provider connection."""

    id: str
    tenant_id: str
    provider_id: str
    name: str
    status: str
    market: Optional[str] = None
    health_score: float
    consecutive_failures: int
    last_sync_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    sync_schedule: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConnectionUpdate(BaseModel):
    """Schema for updating a connection."""

    name: Optional[str] = Field(default=None, min_length=1)
    sync_schedule: Optional[SyncSchedule] = None


class ConnectionHealthResponse(BaseModel):
    """Health read model for one connection."""

    connection_id: str
    score: float
    band: str
    status: str
    consecutive_failures: int
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    short_window_rate: float
    long_window_rate: float
    short_window_jobs: int
    long_window_jobs: int
    hints: list[str] = []

    model_config = ConfigDict(from_attributes=True)


class ConnectionEventResponse(BaseModel):
    """Schema for a connection lifecycle event."""

    id: str
    connection_id: str
    event_type: str
    details: Optional[dict] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuthorizationResponse(BaseModel):
    """URL the user visits to authorize, plus the state to echo back."""

    url: str
    state: str


class AuthorizationCallbackRequest(BaseModel):
    """OAuth callback payload (Plaid: the Link public token as ``code``)."""

    tenant_id: str
    code: str = Field(min_length=1)
    name: Optional[str] = None
    connection_id: Optional[str] = None
    market: Optional[str] = None


class SyncJobResponse(BaseModel):
    """Schema for one sync attempt."""

    id: str
    connection_id: str
    tenant_id: str
    trigger: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    outcome: Optional[str] = None
    is_noop: bool
    plan_reason: Optional[str] = None
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    accounts_created: int
    accounts_updated: int
    accounts_closed: int
    accounts_failed: int
    transactions_imported: int
    transactions_updated: int
    transactions_skipped: int
    transactions_failed: int
    errors: Optional[list[str]] = None

    model_config = ConfigDict(from_attributes=True)
