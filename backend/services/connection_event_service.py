"""Connection event service - lifecycle audit trail for connections."""

import logging

from sqlalchemy.orm import Session

from models import Connection, ConnectionEvent
from models.connection_event import EVENT_TYPES

logger = logging.getLogger(__name__)


class ConnectionEventService:
    """Record and list ConnectionEvent rows."""

    @staticmethod
    def record(
        db: Session,
        connection_id: str,
        event_type: str,
        details: dict | None = None,
    ) -> ConnectionEvent:
        """Add an event for a connection (flushed by the caller's transaction).

        Raises:
            ValueError: If ``event_type`` is not a known event type.
        """
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown connection event type: {event_type!r}")
        event = ConnectionEvent(
            connection_id=connection_id,
            event_type=event_type,
            details=details or None,
        )
        db.add(event)
        logger.debug("Connection %s: event %s %s", connection_id, event_type, details or "")
        return event

    @classmethod
    def set_status(
        cls,
        db: Session,
        connection: Connection,
        new_status: str,
        reason: str | None = None,
    ) -> bool:
        """Change a connection's status, recording the transition.

        Returns:
            True if the status actually changed.
        """
        old_status = connection.status
        if old_status == new_status:
            return False
        connection.status = new_status
        cls.record(
            db,
            connection.id,
            "status_changed",
            {"from": old_status, "to": new_status, "reason": reason},
        )
        logger.info(
            "Connection %s: %s -> %s%s",
            connection.id, old_status, new_status, f" ({reason})" if reason else "",
        )
        return True

    @staticmethod
    def list_events(db: Session, connection_id: str, limit: int = 100) -> list[ConnectionEvent]:
        """Most recent events first."""
        return (
            db.query(ConnectionEvent)
            .filter(ConnectionEvent.connection_id == connection_id)
            .order_by(ConnectionEvent.created_at.desc())
            .limit(limit)
            .all()
        )
