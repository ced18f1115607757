"""PaginationMarker model - persisted provider cursors and page tokens."""

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint

from database import Base
from models.utils import generate_uuid, utcnow


class PaginationMarker(Base):
    """Opaque continuation marker returned by a provider adapter.

    ``scope`` is the provider's external account id the marker belongs to,
    so one connection can hold one marker per account.
    """

    __tablename__ = "pagination_markers"
    __table_args__ = (
        UniqueConstraint("connection_id", "scope", name="uix_marker_connection_scope"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    connection_id = Column(String(36), ForeignKey("connections.id"), nullable=False)
    scope = Column(String, nullable=False, default="")
    marker = Column(Text, nullable=False)
    marker_type = Column(String, nullable=False)  # "cursor" | "page_token"
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
