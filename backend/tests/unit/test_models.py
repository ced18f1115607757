"""Tests for database models."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from models import Account, Connection, ConnectionEvent, PaginationMarker, SyncJob, Transaction
from models.sync_job import SyncJobFinalizedError
from tests.fixtures import TENANT_ID


def test_connection_defaults(db):
    connection = Connection(tenant_id=TENANT_ID, provider_id="tink", name="ING")
    db.add(connection)
    db.commit()

    assert connection.id is not None
    assert connection.status == "pending"
    assert connection.sync_schedule == "daily"
    assert connection.consecutive_failures == 0
    assert connection.sync_lock_token is None


def test_connection_relationships(db, connection):
    job = SyncJob(connection_id=connection.id, tenant_id=TENANT_ID)
    db.add(job)
    db.add(ConnectionEvent(connection_id=connection.id, event_type="created"))
    db.commit()
    db.refresh(connection)

    assert [j.id for j in connection.sync_jobs] == [job.id]
    assert len(connection.events) == 1


def test_account_defaults(db):
    account = Account(tenant_id=TENANT_ID, name="Checking")
    db.add(account)
    db.commit()

    assert account.currency == "EUR"
    assert account.status == "active"
    assert account.sync_enabled is True
    assert account.name_user_edited is False


def test_transaction_unique_per_connection(db, connection):
    account = Account(tenant_id=TENANT_ID, connection_id=connection.id, name="Checking")
    db.add(account)
    db.flush()
    for _ in range(2):
        db.add(Transaction(
            tenant_id=TENANT_ID, connection_id=connection.id, account_id=account.id,
            external_transaction_id="tx-1", transaction_date=date(2026, 1, 1),
            amount=Decimal("-1.00"), currency="EUR",
        ))
    with pytest.raises(IntegrityError):
        db.commit()


def test_marker_unique_per_scope(db, connection):
    for marker in ("a", "b"):
        db.add(PaginationMarker(
            connection_id=connection.id, scope="acc-1", marker=marker, marker_type="cursor",
        ))
    with pytest.raises(IntegrityError):
        db.commit()


class TestSyncJob:
    def _job(self, db, connection):
        job = SyncJob(connection_id=connection.id, tenant_id=TENANT_ID)
        db.add(job)
        db.flush()
        return job

    def test_running_job_is_not_finalized(self, db, connection):
        job = self._job(db, connection)
        assert job.is_finalized is False
        assert job.started_at is not None

    def test_add_error_appends(self, db, connection):
        job = self._job(db, connection)
        job.add_error("first")
        job.add_error("second")
        db.commit()
        db.refresh(job)
        assert job.errors == ["first", "second"]

    def test_finalize_sets_outcome_once(self, db, connection):
        job = self._job(db, connection)
        job.finalize("partial")

        assert job.outcome == "partial"
        assert job.finished_at is not None
        with pytest.raises(SyncJobFinalizedError):
            job.finalize("success")
        with pytest.raises(SyncJobFinalizedError):
            job.add_error("late")

    def test_unknown_outcome(self, db, connection):
        with pytest.raises(ValueError):
            self._job(db, connection).finalize("maybe")
