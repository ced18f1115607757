"""Sync service - orchestrates one sync attempt per connection.

A sync runs these steps in order, under a per-connection lease:

1. make sure the stored credential is usable (refreshing it if needed)
2. plan the date window, or record a no-op when throttled
3. fetch and reconcile accounts
4. fetch and import transactions per account, persisting pagination markers
5. finalize the SyncJob, update health and schedule the next run

Failures inside an attempt never escape :meth:`SyncService.run_sync`; they
end as a finalized ``failure`` or ``partial`` SyncJob.
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from config import settings
from integrations.exceptions import ProviderDataError, ProviderError, is_credential_error
from integrations.parsing_utils import ensure_utc
from integrations.provider_protocol import FetchWindow, OAuthToken, ProviderAdapter
from integrations.provider_registry import ProviderRegistry, get_provider_registry
from models import Account, Connection, PaginationMarker, SyncJob, generate_uuid
from models.connection import SYNC_SCHEDULE_HOURS
from services.account_reconciliation_service import AccountReconciliationService
from services.connection_health_service import ConnectionHealthService
from services.credential_service import CredentialService
from services.sync_planner import SyncPlan, plan_sync
from services.transaction_import_service import TransactionImportService

logger = logging.getLogger(__name__)


class SyncInProgressError(ValueError):
    """Another sync holds the connection's lease."""


class ConnectionNotSyncableError(ValueError):
    """The connection is disabled and cannot be synced."""


class SyncTimeout(Exception):
    """The attempt ran past its wall-clock budget."""


class SyncService:
    """Service for syncing connections through their provider adapters."""

    def __init__(
        self,
        provider_registry: Optional[ProviderRegistry] = None,
        clock: Callable[[], float] = time.monotonic,
        timeout_seconds: float | None = None,
    ):
        """Initialize with injectable collaborators.

        Args:
            provider_registry: Registry of configured adapters. If None,
                a default registry is created on first use.
            clock: Monotonic clock used for the wall-clock budget.
            timeout_seconds: Budget for one attempt; defaults to
                ``settings.SYNC_TIMEOUT_SECONDS``.
        """
        self._registry = provider_registry
        self._clock = clock
        self._timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.SYNC_TIMEOUT_SECONDS
        )

    @property
    def registry(self) -> ProviderRegistry:
        """Get the provider registry, creating default if not provided."""
        if self._registry is None:
            self._registry = get_provider_registry()
        return self._registry

    # -- lease -------------------------------------------------------------

    @staticmethod
    def is_sync_in_progress(db: Session, connection_id: str) -> bool:
        """True if a live (unexpired) lease is held on the connection."""
        connection = db.get(Connection, connection_id)
        if connection is None or connection.sync_lock_token is None:
            return False
        expires_at = connection.sync_lock_expires_at
        return expires_at is not None and ensure_utc(expires_at) > datetime.now(timezone.utc)

    @staticmethod
    def _acquire_lease(db: Session, connection_id: str, now: datetime) -> str | None:
        """Take the connection lease with a single conditional UPDATE.

        The UPDATE only matches when no lease is held or the held one has
        expired, so two workers can never both win. Committed immediately
        so other sessions see it.

        Returns:
            The lease token, or None if someone else holds a live lease.
        """
        token = generate_uuid()
        result = db.execute(
            update(Connection)
            .where(
                Connection.id == connection_id,
                or_(
                    Connection.sync_lock_token.is_(None),
                    Connection.sync_lock_expires_at.is_(None),
                    Connection.sync_lock_expires_at < now,
                ),
            )
            .values(
                sync_lock_token=token,
                sync_lock_expires_at=now + timedelta(seconds=settings.SYNC_LOCK_TTL_SECONDS),
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount != 1:
            return None
        logger.info("Sync lease acquired for connection %s", connection_id)
        return token

    @staticmethod
    def _release_lease(db: Session, connection_id: str, token: str) -> None:
        """Release the lease, but only if we still own it."""
        db.execute(
            update(Connection)
            .where(Connection.id == connection_id, Connection.sync_lock_token == token)
            .values(sync_lock_token=None, sync_lock_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.info("Sync lease released for connection %s", connection_id)

    @staticmethod
    def _abandon_running_jobs(db: Session, connection_id: str) -> None:
        """Finalize jobs left running by a worker whose lease expired."""
        stale = (
            db.query(SyncJob)
            .filter(SyncJob.connection_id == connection_id, SyncJob.outcome.is_(None))
            .all()
        )
        for job in stale:
            logger.warning(
                "Connection %s: job %s was left running, marking abandoned",
                connection_id, job.id,
            )
            job.add_error("abandoned: lease expired before the job finished")
            job.finalize("failure")

    # -- markers -----------------------------------------------------------

    @staticmethod
    def _load_marker(db: Session, connection_id: str, scope: str) -> str | None:
        row = (
            db.query(PaginationMarker)
            .filter_by(connection_id=connection_id, scope=scope)
            .first()
        )
        return row.marker if row else None

    @staticmethod
    def _save_marker(
        db: Session, connection_id: str, scope: str, marker: str, marker_type: str
    ) -> None:
        row = (
            db.query(PaginationMarker)
            .filter_by(connection_id=connection_id, scope=scope)
            .first()
        )
        if row is None:
            db.add(PaginationMarker(
                connection_id=connection_id,
                scope=scope,
                marker=marker,
                marker_type=marker_type,
            ))
        else:
            row.marker = marker
            row.marker_type = marker_type

    @staticmethod
    def _drop_marker(db: Session, connection_id: str, scope: str) -> None:
        db.query(PaginationMarker).filter_by(
            connection_id=connection_id, scope=scope
        ).delete(synchronize_session=False)

    # -- orchestration -----------------------------------------------------

    def _check_deadline(self, deadline: float, step: str) -> None:
        if self._clock() > deadline:
            raise SyncTimeout(
                f"timed out after {self._timeout_seconds:g}s (before {step})"
            )

    @staticmethod
    def _next_sync_at(connection: Connection, finished_at: datetime) -> datetime | None:
        hours = SYNC_SCHEDULE_HOURS.get(connection.sync_schedule)
        if hours is None:
            return None
        return finished_at + timedelta(hours=hours)

    def run_sync(
        self,
        db: Session,
        connection_id: str,
        force: bool = False,
        trigger: str = "manual",
    ) -> SyncJob:
        """Run one sync attempt for a connection.

        Args:
            db: Database session. Committed by this method.
            connection_id: Connection to sync.
            force: Bypass throttling, drop stored markers and backfill.
            trigger: ``"manual"`` or ``"scheduled"``, stored on the job.

        Returns:
            The finalized SyncJob.

        Raises:
            ValueError: If the connection does not exist.
            ConnectionNotSyncableError: If the connection is disabled.
            SyncInProgressError: If another sync holds the lease.
        """
        connection = db.get(Connection, connection_id)
        if connection is None:
            raise ValueError(f"Connection {connection_id} not found")
        if connection.status == "disabled":
            raise ConnectionNotSyncableError(f"Connection {connection_id} is disabled")

        started_at = datetime.now(timezone.utc)
        lease = self._acquire_lease(db, connection_id, started_at)
        if lease is None:
            logger.warning("Sync blocked: connection %s already syncing", connection_id)
            raise SyncInProgressError(f"Sync already in progress for connection {connection_id}")

        try:
            self._abandon_running_jobs(db, connection_id)
            connection = db.get(Connection, connection_id)
            job = SyncJob(
                connection_id=connection.id,
                tenant_id=connection.tenant_id,
                trigger=trigger,
                started_at=started_at,
            )
            db.add(job)
            db.commit()
            job_id = job.id
            logger.info(
                "Sync started: connection %s (%s), job %s%s",
                connection.id, connection.provider_id, job_id[:8],
                " [forced]" if force else "",
            )

            deadline = self._clock() + self._timeout_seconds
            credential_failure = False
            try:
                outcome, credential_failure = self._execute(
                    db, connection, job, force, started_at, deadline
                )
            except SyncTimeout as e:
                logger.warning("Connection %s: %s", connection_id, e)
                job.add_error(str(e))
                outcome = "failure"
            except Exception as e:
                # Safety net: start from a clean transaction and record the failure
                logger.error("Sync failed for connection %s: %s", connection_id, e, exc_info=True)
                db.rollback()
                job = db.get(SyncJob, job_id)
                connection = db.get(Connection, connection_id)
                job.add_error(f"unexpected error: {e}")
                outcome = "failure"

            return self._finish(db, connection, job, outcome, credential_failure)
        finally:
            self._release_lease(db, connection_id, lease)

    def _finish(
        self,
        db: Session,
        connection: Connection,
        job: SyncJob,
        outcome: str,
        credential_failure: bool,
    ) -> SyncJob:
        finished_at = datetime.now(timezone.utc)
        job.finalize(outcome, finished_at=finished_at)
        if not job.is_noop:
            connection.last_sync_at = finished_at
            if outcome in ("success", "partial"):
                connection.last_success_at = finished_at
        connection.next_sync_at = self._next_sync_at(connection, finished_at)
        ConnectionHealthService.record_outcome(
            db, connection, job, credential_failure=credential_failure, now=finished_at
        )
        db.commit()
        logger.info(
            "Sync finished: connection %s, job %s -> %s (%d accounts, %d transactions imported)",
            connection.id, job.id[:8], outcome,
            (job.accounts_created or 0) + (job.accounts_updated or 0),
            job.transactions_imported or 0,
        )
        return job

    def _execute(
        self,
        db: Session,
        connection: Connection,
        job: SyncJob,
        force: bool,
        now: datetime,
        deadline: float,
    ) -> tuple[str, bool]:
        """Run the sync steps and fill in the job counters.

        Returns:
            ``(outcome, credential_failure)``.
        """
        try:
            adapter = self.registry.get_provider(connection.provider_id)
        except ValueError as e:
            job.add_error(str(e))
            return "failure", False

        # 1. token
        try:
            credential = CredentialService.ensure_fresh(db, connection, adapter, now)
        except ProviderError as e:
            logger.warning("Connection %s: token unusable: %s", connection.id, e)
            job.add_error(f"token: {e}")
            return "failure", True
        token = CredentialService.to_token(credential)
        credential.last_used_at = now
        db.commit()

        # 2. plan
        plan = plan_sync(
            connection.id, None, connection.last_success_at,
            force_full_backfill=force, now=now,
        )
        job.plan_reason = plan.reason
        job.window_start = plan.start_date
        job.window_end = plan.end_date
        if plan.skip:
            logger.info("Connection %s: synced recently, nothing to do", connection.id)
            job.is_noop = True
            return "success", False

        # 3. accounts
        self._check_deadline(deadline, "fetching accounts")
        try:
            remote_accounts = adapter.fetch_accounts(token)
        except ProviderError as e:
            return self._fetch_failed(db, connection, job, credential, e, "accounts")

        recon = AccountReconciliationService.reconcile(
            db, connection.tenant_id, connection.id, connection.provider_id,
            remote_accounts, now=now,
        )
        job.accounts_created = len(recon.created)
        job.accounts_updated = len(recon.updated)
        job.accounts_closed = len(recon.closed)
        job.accounts_failed = len(recon.failed)
        for failure in recon.failed:
            job.add_error(f"account {failure.external_account_id}: {failure.error}")
        if remote_accounts and len(recon.failed) >= len(remote_accounts):
            return "failure", False

        # 4. transactions
        accounts = sorted(
            (a for a in recon.accounts_by_external_id.values() if a.sync_enabled),
            key=lambda a: (a.name or "", a.id),
        )
        attempted = 0
        fetch_failures = 0
        for account in accounts:
            self._check_deadline(deadline, f"account {account.id}")
            account_plan = plan_sync(
                account.id, account.account_type, account.last_transactions_synced_at,
                force_full_backfill=force, now=now,
            )
            if account_plan.skip:
                continue
            attempted += 1
            try:
                self._sync_account_transactions(
                    db, connection, job, adapter, token, account, account_plan, force, now
                )
            except ProviderError as e:
                fetch_failures += 1
                job.accounts_failed = (job.accounts_failed or 0) + 1
                self._log_provider_error(connection, e, f"transactions for account {account.id}")
                job.add_error(f"transactions {account.external_account_id}: {e}")
                if is_credential_error(e):
                    CredentialService.mark_expired(db, credential, str(e))
                    return "failure", True

        # 5. outcome
        if attempted and fetch_failures == attempted:
            return "failure", False
        if recon.failed or fetch_failures or job.transactions_failed:
            return "partial", False
        return "success", False

    def _sync_account_transactions(
        self,
        db: Session,
        connection: Connection,
        job: SyncJob,
        adapter: ProviderAdapter,
        token: OAuthToken,
        account: Account,
        plan: SyncPlan,
        force: bool,
        now: datetime,
    ) -> None:
        scope = account.external_account_id
        if force:
            self._drop_marker(db, connection.id, scope)
            marker = None
        else:
            marker = self._load_marker(db, connection.id, scope)

        batch = adapter.fetch_transactions(
            token,
            scope,
            FetchWindow(
                start_date=plan.start_date,
                end_date=plan.end_date,
                limit=settings.SYNC_TRANSACTION_PAGE_LIMIT,
            ),
            marker=marker,
        )
        result = TransactionImportService.import_transactions(
            db,
            connection.tenant_id,
            connection.id,
            account,
            batch.transactions,
            removed_ids=batch.removed_ids,
            sync_job_id=job.id,
        )
        job.transactions_imported = (job.transactions_imported or 0) + result.imported
        job.transactions_updated = (job.transactions_updated or 0) + result.updated
        job.transactions_skipped = (job.transactions_skipped or 0) + result.skipped
        job.transactions_failed = (job.transactions_failed or 0) + result.failed
        for error in result.errors:
            job.add_error(f"transaction {error}")

        # A page token is only good for the walk that issued it; a cursor
        # carries forward to the next sync.
        walk_pending = bool(batch.next_marker) and adapter.marker_type == "page_token"
        if batch.next_marker:
            self._save_marker(db, connection.id, scope, batch.next_marker, adapter.marker_type)
        elif adapter.marker_type == "page_token":
            self._drop_marker(db, connection.id, scope)
        if not result.failed and not walk_pending:
            account.last_transactions_synced_at = now
        db.flush()

    def _fetch_failed(
        self,
        db: Session,
        connection: Connection,
        job: SyncJob,
        credential,
        error: ProviderError,
        step: str,
    ) -> tuple[str, bool]:
        self._log_provider_error(connection, error, step)
        job.add_error(f"{step}: {error}")
        credential_failure = is_credential_error(error)
        if credential_failure:
            CredentialService.mark_expired(db, credential, str(error))
        return "failure", credential_failure

    @staticmethod
    def _log_provider_error(connection: Connection, error: ProviderError, step: str) -> None:
        if isinstance(error, ProviderDataError):
            logger.warning(
                "Connection %s: malformed %s response: %s; payload: %r",
                connection.id, step, error, error.raw_payload,
            )
        else:
            logger.warning(
                "Connection %s: fetching %s failed (%s): %s",
                connection.id, step, type(error).__name__, error,
            )

    def run_due_syncs(self, db: Session, now: datetime | None = None) -> list[SyncJob]:
        """Run every connection whose scheduled sync is due.

        Connections that are disabled, on a ``manual`` schedule, or not yet
        due are ignored. A locked or failing connection never stops the
        sweep.

        Returns:
            The SyncJobs produced, in run order.
        """
        now = now or datetime.now(timezone.utc)
        due_ids = [
            connection_id
            for (connection_id,) in db.query(Connection.id)
            .filter(
                Connection.status != "disabled",
                Connection.sync_schedule != "manual",
                or_(Connection.next_sync_at.is_(None), Connection.next_sync_at <= now),
            )
            .order_by(Connection.next_sync_at)
            .all()
        ]
        logger.info("Scheduled sweep: %d connection(s) due", len(due_ids))

        jobs: list[SyncJob] = []
        for connection_id in due_ids:
            try:
                jobs.append(self.run_sync(db, connection_id, trigger="scheduled"))
            except (SyncInProgressError, ConnectionNotSyncableError) as e:
                logger.info("Scheduled sweep skipped %s: %s", connection_id, e)
        return jobs
