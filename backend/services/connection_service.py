"""Connection service - authorization lifecycle and the read interface.

Covers everything around a sync that is not the sync itself: creating and
re-authorizing connections from an OAuth callback, enabling/disabling them,
manual accounts, and the read-only queries the API exposes.
"""

import logging
import secrets
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from integrations.parsing_utils import ensure_utc, normalize_iban
from integrations.provider_protocol import ProviderAdapter
from models import Account, Connection, ConnectionEvent, SyncJob, Transaction
from models.connection import SYNC_SCHEDULE_HOURS
from services.connection_event_service import ConnectionEventService
from services.connection_health_service import ConnectionHealth, ConnectionHealthService
from services.credential_service import CredentialService
from services.sync_planner import normalize_account_type

logger = logging.getLogger(__name__)

MANUAL_PROVIDER_ID = "manual"


class ConnectionService:
    """Service for connection and account management."""

    # -- authorization -----------------------------------------------------

    @staticmethod
    def start_authorization(
        adapter: ProviderAdapter, tenant_id: str, market: str | None = None
    ) -> tuple[str, str]:
        """Build the provider authorization URL for a tenant.

        Returns:
            ``(url, state)``; the caller must echo ``state`` back on callback.
        """
        state = secrets.token_urlsafe(24)
        url = adapter.authorization_url(state, market)
        logger.info("Authorization started: tenant %s, provider %s", tenant_id, adapter.provider_id)
        return url, state

    @staticmethod
    def complete_authorization(
        db: Session,
        adapter: ProviderAdapter,
        tenant_id: str,
        code: str,
        name: str | None = None,
        connection_id: str | None = None,
        market: str | None = None,
    ) -> Connection:
        """Exchange an authorization code and create or re-activate a connection.

        An existing connection is reused when ``connection_id`` is given, or
        when the provider reports an external reference (Plaid item id) the
        tenant already has a connection for.

        Args:
            db: Database session. Committed by this method.
            adapter: Adapter for the provider that issued the code.
            tenant_id: Owning tenant.
            code: Authorization code (Plaid: public token).
            name: Display name for a new connection.
            connection_id: Connection being re-authorized, if any.
            market: Country hint stored on new connections.

        Returns:
            The connection holding the new credential.

        Raises:
            AuthExchangeError: If the provider rejects the code.
            ValueError: If ``connection_id`` does not belong to the tenant
                and provider.
        """
        token = adapter.exchange_code(code)

        connection = None
        if connection_id:
            connection = db.get(Connection, connection_id)
            if (
                connection is None
                or connection.tenant_id != tenant_id
                or connection.provider_id != adapter.provider_id
            ):
                raise ValueError(f"Connection {connection_id} not found for this tenant")
        elif token.external_reference:
            connection = (
                db.query(Connection)
                .filter(
                    Connection.tenant_id == tenant_id,
                    Connection.provider_id == adapter.provider_id,
                    Connection.external_reference == token.external_reference,
                )
                .first()
            )

        if connection is None:
            connection = Connection(
                tenant_id=tenant_id,
                provider_id=adapter.provider_id,
                name=name or adapter.display_name,
                status="pending",
                market=market.upper() if market else None,
                external_reference=token.external_reference,
            )
            db.add(connection)
            db.flush()
            ConnectionEventService.record(
                db, connection.id, "created", {"provider_id": adapter.provider_id}
            )
            logger.info(
                "Connection created: %s (%s) for tenant %s",
                connection.id, adapter.provider_id, tenant_id,
            )
        else:
            if token.external_reference:
                connection.external_reference = token.external_reference
            connection.consecutive_failures = 0
            if connection.status == "error":
                ConnectionEventService.set_status(db, connection, "active", "re-authorized")
            ConnectionEventService.record(db, connection.id, "reconnected")
            logger.info("Connection re-authorized: %s", connection.id)

        CredentialService.put(db, connection.id, token)
        connection.next_sync_at = None  # due on the next sweep
        db.commit()
        db.refresh(connection)
        return connection

    # -- connections -------------------------------------------------------

    @staticmethod
    def list_connections(db: Session, tenant_id: str) -> list[Connection]:
        """List a tenant's connections, oldest first."""
        return (
            db.query(Connection)
            .filter(Connection.tenant_id == tenant_id)
            .order_by(Connection.created_at)
            .all()
        )

    @staticmethod
    def get_connection_health(db: Session, connection_id: str) -> ConnectionHealth | None:
        """Health read model for a connection, or None if it does not exist."""
        return ConnectionHealthService.get_health(db, connection_id)

    @staticmethod
    def list_jobs(db: Session, connection_id: str, limit: int = 50) -> list[SyncJob]:
        """Most recent sync jobs first."""
        return (
            db.query(SyncJob)
            .filter(SyncJob.connection_id == connection_id)
            .order_by(SyncJob.started_at.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def list_events(db: Session, connection_id: str, limit: int = 100) -> list[ConnectionEvent]:
        return ConnectionEventService.list_events(db, connection_id, limit)

    @staticmethod
    def disable(db: Session, connection: Connection, reason: str | None = None) -> Connection:
        """Stop syncing a connection until it is explicitly enabled again."""
        if ConnectionEventService.set_status(db, connection, "disabled", reason or "disabled by user"):
            ConnectionEventService.record(db, connection.id, "disabled", {"reason": reason})
        connection.next_sync_at = None
        db.flush()
        return connection

    @staticmethod
    def enable(db: Session, connection: Connection) -> Connection:
        """Re-enable a disabled connection.

        It returns to ``active`` if it has synced successfully before,
        otherwise to ``pending``. No-op for connections that are not disabled.
        """
        if connection.status != "disabled":
            return connection
        new_status = "active" if connection.last_success_at else "pending"
        ConnectionEventService.set_status(db, connection, new_status, "enabled by user")
        ConnectionEventService.record(db, connection.id, "enabled")
        connection.consecutive_failures = 0
        connection.next_sync_at = None
        db.flush()
        return connection

    @staticmethod
    def update(
        db: Session,
        connection: Connection,
        *,
        name: str | None = None,
        sync_schedule: str | None = None,
    ) -> Connection:
        """Rename a connection or change its sync schedule.

        Raises:
            ValueError: If ``sync_schedule`` is not a known schedule.
        """
        if name is not None:
            connection.name = name
        if sync_schedule is not None:
            if sync_schedule not in SYNC_SCHEDULE_HOURS:
                raise ValueError(
                    f"Unknown sync schedule {sync_schedule!r}; "
                    f"expected one of {', '.join(SYNC_SCHEDULE_HOURS)}"
                )
            connection.sync_schedule = sync_schedule
            hours = SYNC_SCHEDULE_HOURS[sync_schedule]
            if hours is None or connection.last_sync_at is None:
                connection.next_sync_at = None
            else:
                connection.next_sync_at = ensure_utc(connection.last_sync_at) + timedelta(hours=hours)
        db.flush()
        logger.info("Connection updated: %s (id=%s)", connection.name, connection.id)
        return connection

    # -- accounts ----------------------------------------------------------

    @staticmethod
    def list_accounts(db: Session, tenant_id: str, include_closed: bool = True) -> list[Account]:
        """List a tenant's canonical accounts."""
        query = db.query(Account).filter(Account.tenant_id == tenant_id)
        if not include_closed:
            query = query.filter(Account.status != "closed")
        return query.order_by(Account.bank_name, Account.name).all()

    @staticmethod
    def create_manual_account(
        db: Session,
        tenant_id: str,
        name: str,
        *,
        account_type: str | None = None,
        currency: str = "EUR",
        bank_name: str | None = None,
        iban: str | None = None,
        account_number: str | None = None,
        balance: Decimal | None = None,
    ) -> Account:
        """Create an account that is not backed by any connection.

        A provider account with the same IBAN (or bank name and number) is
        later merged into it by reconciliation; its name is never overwritten.

        Raises:
            ValueError: If the tenant already has an account with this IBAN.
        """
        iban = normalize_iban(iban)
        if iban and db.query(Account).filter(
            Account.tenant_id == tenant_id, Account.iban == iban
        ).first():
            raise ValueError(f"An account with IBAN {iban} already exists")

        account = Account(
            tenant_id=tenant_id,
            connection_id=None,
            provider_id=MANUAL_PROVIDER_ID,
            name=name,
            name_user_edited=True,
            account_type=normalize_account_type(account_type),
            currency=currency.upper(),
            bank_name=bank_name,
            iban=iban,
            account_number=account_number,
            current_balance=balance,
            status="active",
            sync_enabled=False,
        )
        db.add(account)
        db.flush()
        logger.info("Manual account created: %s (id=%s)", account.name, account.id)
        return account

    @staticmethod
    def rename_account(db: Session, account: Account, name: str) -> Account:
        """Rename an account; the name is then protected from provider updates."""
        account.name = name
        account.name_user_edited = True
        db.flush()
        return account

    @staticmethod
    def list_transactions(
        db: Session,
        account_id: str,
        start_date: date | None = None,
        end_date: date | None = None,
        include_removed: bool = False,
    ) -> list[Transaction]:
        """List an account's transactions, newest first.

        Args:
            db: Database session.
            account_id: Canonical account id.
            start_date: Inclusive lower bound on transaction date.
            end_date: Inclusive upper bound on transaction date.
            include_removed: Include rows the provider has retracted.
        """
        query = db.query(Transaction).filter(Transaction.account_id == account_id)
        if start_date is not None:
            query = query.filter(Transaction.transaction_date >= start_date)
        if end_date is not None:
            query = query.filter(Transaction.transaction_date <= end_date)
        if not include_removed:
            query = query.filter(Transaction.is_removed.is_(False))
        return query.order_by(
            Transaction.transaction_date.desc(), Transaction.external_transaction_id
        ).all()
