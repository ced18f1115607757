"""SQLAlchemy ORM models."""

from .account import Account
from .connection import Connection
from .connection_event import ConnectionEvent
from .credential import Credential
from .pagination_marker import PaginationMarker
from .sync_job import SyncJob
from .transaction import Transaction
from .utils import generate_uuid, utcnow

__all__ = ["Account", "Connection", "ConnectionEvent", "Credential", "PaginationMarker", "SyncJob", "Transaction", "generate_uuid", "utcnow"]
