"""Transaction import service - idempotent upsert of provider transactions.

Transactions are keyed by (tenant_id, connection_id, external_transaction_id).
Importing the same batch twice leaves the table unchanged: re-delivered rows
either update mutable fields or are counted as skipped.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from integrations.provider_protocol import ProviderTransaction
from models import Account, Transaction

logger = logging.getLogger(__name__)

# Fields a provider may legitimately change on re-delivery
MUTABLE_FIELDS = (
    "transaction_date",
    "amount",
    "currency",
    "description",
    "counterparty_name",
    "category",
    "reference",
    "booking_status",
)


@dataclass
class ImportResult:
    """Counters for one import_transactions() call."""

    imported: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    removed: int = 0
    errors: list[str] = field(default_factory=list)


def _sort_key(txn: ProviderTransaction) -> tuple[date, str]:
    return (txn.transaction_date or date.min, txn.external_id or "")


def _values(txn: ProviderTransaction, account: Account) -> dict:
    return {
        "transaction_date": txn.transaction_date,
        "amount": Decimal(str(txn.amount)),
        "currency": (txn.currency or account.currency or "EUR").upper(),
        "description": txn.description,
        "counterparty_name": txn.counterparty_name,
        "category": txn.category,
        "reference": txn.reference,
        "booking_status": txn.booking_status or "booked",
    }


def _validate(txn: ProviderTransaction) -> None:
    if not txn.external_id:
        raise ValueError("missing external transaction id")
    if txn.transaction_date is None:
        raise ValueError(f"transaction {txn.external_id} has no date")
    if txn.amount is None:
        raise ValueError(f"transaction {txn.external_id} has no amount")


class TransactionImportService:
    """Upsert normalized transactions for one canonical account."""

    @staticmethod
    def _find(
        db: Session, tenant_id: str, connection_id: str, external_id: str
    ) -> Transaction | None:
        return (
            db.query(Transaction)
            .filter(
                Transaction.tenant_id == tenant_id,
                Transaction.connection_id == connection_id,
                Transaction.external_transaction_id == external_id,
            )
            .first()
        )

    @classmethod
    def import_transactions(
        cls,
        db: Session,
        tenant_id: str,
        connection_id: str,
        account: Account,
        transactions: list[ProviderTransaction],
        removed_ids: list[str] | tuple[str, ...] = (),
        sync_job_id: str | None = None,
    ) -> ImportResult:
        """Import a batch of transactions for ``account``.

        Rows are processed in (date, external id) order, each inside its own
        savepoint. A bad row is counted in ``failed`` and never aborts the
        rest of the batch.

        Args:
            db: Database session.
            tenant_id: Owning tenant.
            connection_id: Connection the batch was fetched through.
            account: Canonical account the transactions belong to.
            transactions: Normalized provider transactions.
            removed_ids: External ids the provider has retracted.
            sync_job_id: SyncJob that produced the batch, stored on new rows.

        Returns:
            ImportResult with imported/updated/skipped/failed counts.
        """
        result = ImportResult()

        for txn in sorted(transactions, key=_sort_key):
            try:
                with db.begin_nested():
                    _validate(txn)
                    outcome = cls._upsert(db, tenant_id, connection_id, account, txn, sync_job_id)
                    db.flush()
                setattr(result, outcome, getattr(result, outcome) + 1)
            except Exception as e:
                result.failed += 1
                result.errors.append(f"{txn.external_id or '<no id>'}: {e}")
                logger.warning(
                    "Account %s: failed to import transaction %s: %s",
                    account.id, txn.external_id, e,
                )

        for external_id in removed_ids:
            row = cls._find(db, tenant_id, connection_id, external_id)
            if row is not None and not row.is_removed:
                row.is_removed = True
                result.removed += 1
        db.flush()

        logger.info(
            "Account %s: %d imported, %d updated, %d skipped, %d failed, %d removed",
            account.id, result.imported, result.updated, result.skipped,
            result.failed, result.removed,
        )
        return result

    @classmethod
    def _upsert(
        cls,
        db: Session,
        tenant_id: str,
        connection_id: str,
        account: Account,
        txn: ProviderTransaction,
        sync_job_id: str | None,
    ) -> str:
        """Insert or update one row. Returns the ImportResult counter to bump."""
        values = _values(txn, account)
        raw = json.dumps(txn.raw_data, default=str) if txn.raw_data is not None else None

        existing = cls._find(db, tenant_id, connection_id, txn.external_id)
        if existing is None and txn.pending_external_id:
            existing = cls._find(db, tenant_id, connection_id, txn.pending_external_id)
            if existing is not None:
                logger.debug(
                    "Pending transaction %s settled as %s",
                    txn.pending_external_id, txn.external_id,
                )
                existing.external_transaction_id = txn.external_id
                cls._assign(existing, values, raw)
                existing.account_id = account.id
                return "updated"

        if existing is None:
            db.add(Transaction(
                tenant_id=tenant_id,
                connection_id=connection_id,
                account_id=account.id,
                external_transaction_id=txn.external_id,
                raw_data=raw,
                sync_job_id=sync_job_id,
                **values,
            ))
            return "imported"

        changed = any(getattr(existing, name) != value for name, value in values.items())
        if not changed and not existing.is_removed:
            return "skipped"
        cls._assign(existing, values, raw)
        return "updated"

    @staticmethod
    def _assign(row: Transaction, values: dict, raw: str | None) -> None:
        for name, value in values.items():
            setattr(row, name, value)
        row.is_removed = False
        if raw is not None:
            row.raw_data = raw
