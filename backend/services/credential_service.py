"""Credential service - per-connection OAuth token storage.

Tokens live in the ``credentials`` table. A connection may accumulate
several rows over time; the most recently updated ``active`` row is the
authoritative one and older rows are marked ``revoked`` when superseded.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from config import settings
from integrations.exceptions import ProviderAuthError, TokenRefreshUnavailable
from integrations.parsing_utils import ensure_utc
from integrations.provider_protocol import OAuthToken, ProviderAdapter
from models import Connection, Credential
from services.connection_event_service import ConnectionEventService

logger = logging.getLogger(__name__)


class CredentialService:
    """Get/put/refresh for connection credentials."""

    @staticmethod
    def get_active(db: Session, connection_id: str) -> Credential | None:
        """Return the authoritative credential for a connection, if any."""
        return (
            db.query(Credential)
            .filter(
                Credential.connection_id == connection_id,
                Credential.status == "active",
            )
            .order_by(Credential.updated_at.desc(), Credential.created_at.desc())
            .first()
        )

    @staticmethod
    def put(db: Session, connection_id: str, token: OAuthToken) -> Credential:
        """Store a new token and supersede every previously active one.

        Args:
            db: Database session.
            connection_id: Owning connection.
            token: Token material from an exchange or refresh.

        Returns:
            The new, now authoritative, Credential (flushed, not committed).
        """
        superseded = (
            db.query(Credential)
            .filter(
                Credential.connection_id == connection_id,
                Credential.status == "active",
            )
            .all()
        )
        for old in superseded:
            old.status = "revoked"

        credential = Credential(
            connection_id=connection_id,
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            expires_at=token.expires_at,
            token_type=token.token_type or "bearer",
            scope=token.scope,
            status="active",
        )
        db.add(credential)
        db.flush()
        if superseded:
            logger.debug(
                "Connection %s: %d credential(s) superseded", connection_id, len(superseded)
            )
        return credential

    @staticmethod
    def is_expired(credential: Credential, now: datetime | None = None) -> bool:
        """True if the access token is expired or expires within the skew margin."""
        if credential.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        skew = timedelta(seconds=settings.TOKEN_EXPIRY_SKEW_SECONDS)
        return ensure_utc(credential.expires_at) <= now + skew

    @staticmethod
    def to_token(credential: Credential) -> OAuthToken:
        """Convert a stored credential back into adapter-facing token material."""
        return OAuthToken(
            access_token=credential.access_token,
            refresh_token=credential.refresh_token,
            expires_at=ensure_utc(credential.expires_at) if credential.expires_at else None,
            token_type=credential.token_type,
            scope=credential.scope,
        )

    @staticmethod
    def mark_expired(db: Session, credential: Credential, reason: str) -> None:
        """Flag a credential as expired and record the event on its connection."""
        credential.status = "expired"
        ConnectionEventService.record(
            db, credential.connection_id, "token_expired", {"reason": reason}
        )
        db.flush()

    @classmethod
    def ensure_fresh(
        cls,
        db: Session,
        connection: Connection,
        adapter: ProviderAdapter,
        now: datetime | None = None,
    ) -> Credential:
        """Return a usable credential, refreshing it first when it has expired.

        Args:
            db: Database session.
            connection: Connection whose credential is needed.
            adapter: Provider adapter used to refresh.
            now: Reference time (defaults to now).

        Returns:
            The authoritative, non-expired Credential.

        Raises:
            TokenRefreshUnavailable: No credential, or expired with no
                refresh token. The credential is marked ``expired``.
            ProviderAuthError: The provider rejected the refresh; the
                credential is marked ``expired``.
            ProviderError: Any other failure raised by ``adapter.refresh``.
        """
        credential = cls.get_active(db, connection.id)
        if credential is None:
            raise TokenRefreshUnavailable(
                "Connection has no active credential; re-authorization required",
                provider_name=connection.provider_id,
            )

        if not cls.is_expired(credential, now):
            return credential

        if not credential.refresh_token:
            cls.mark_expired(db, credential, "expired without refresh token")
            raise TokenRefreshUnavailable(
                "Access token expired and the provider issued no refresh token",
                provider_name=connection.provider_id,
            )

        logger.info("Connection %s: access token expired, refreshing", connection.id)
        try:
            refreshed = adapter.refresh(cls.to_token(credential))
        except ProviderAuthError as e:
            cls.mark_expired(db, credential, f"refresh rejected: {e}")
            raise

        new_credential = cls.put(db, connection.id, refreshed)
        ConnectionEventService.record(
            db,
            connection.id,
            "token_refreshed",
            {
                "expires_at": new_credential.expires_at.isoformat()
                if new_credential.expires_at else None,
            },
        )
        db.flush()
        return new_credential
