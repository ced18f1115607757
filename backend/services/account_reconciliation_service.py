"""Account reconciliation service - matches provider accounts to canonical accounts.

Incoming accounts are matched against the tenant's existing accounts in
strict priority order, first match wins:

1. IBAN (upper-cased, whitespace removed)
2. (provider id, external account id)
3. (bank name, account number)

Anything unmatched becomes a new canonical account. Linked accounts that
the provider no longer reports are marked closed, never deleted.
An account already linked to another live connection keeps that link.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from integrations.parsing_utils import normalize_iban
from integrations.provider_protocol import ProviderAccount
from models import Account, Connection
from services.connection_event_service import ConnectionEventService
from services.sync_planner import normalize_account_type

logger = logging.getLogger(__name__)


class ReconciliationConflict(ValueError):
    """An incoming account matched more than one candidate, or a claimed one."""

    def __init__(self, message: str, external_account_id: str, candidate_ids: list[str]):
        self.external_account_id = external_account_id
        self.candidate_ids = candidate_ids
        super().__init__(message)


@dataclass
class ReconciliationFailure:
    """One provider account that could not be reconciled."""

    external_account_id: str
    name: str
    error: str
    is_conflict: bool = False


@dataclass
class ReconciliationResult:
    """Outcome of one reconcile() call."""

    created: list[Account] = field(default_factory=list)
    updated: list[Account] = field(default_factory=list)
    closed: list[Account] = field(default_factory=list)
    failed: list[ReconciliationFailure] = field(default_factory=list)
    # matched accounts that stay with another live connection of the tenant
    linked_elsewhere: list[Account] = field(default_factory=list)
    # external account id -> canonical account, for the transaction import step
    accounts_by_external_id: dict[str, Account] = field(default_factory=dict)


def _serialize_raw(raw: dict | None) -> str | None:
    if raw is None:
        return None
    try:
        return json.dumps(raw, default=str)
    except (TypeError, ValueError):
        return str(raw)


class AccountReconciliationService:
    """Tiered matching and upsert of provider accounts."""

    @staticmethod
    def _single(candidates: list[Account], tier: str, remote: ProviderAccount) -> Account | None:
        if len(candidates) > 1:
            raise ReconciliationConflict(
                f"Account {remote.id!r} matches {len(candidates)} accounts by {tier}",
                external_account_id=remote.id,
                candidate_ids=[c.id for c in candidates],
            )
        return candidates[0] if candidates else None

    @classmethod
    def find_match(
        cls,
        db: Session,
        tenant_id: str,
        provider_id: str,
        remote: ProviderAccount,
    ) -> tuple[Account | None, str | None]:
        """Find the canonical account a provider account corresponds to.

        Args:
            db: Database session.
            tenant_id: Tenant the account belongs to.
            provider_id: Provider the account came from.
            remote: Normalized provider account.

        Returns:
            ``(account, tier)`` where tier is ``"iban"``, ``"external_id"`` or
            ``"bank_number"``; ``(None, None)`` if nothing matches.

        Raises:
            ReconciliationConflict: If a tier yields more than one candidate.
        """
        iban = normalize_iban(remote.iban)
        if iban:
            candidates = (
                db.query(Account)
                .filter(Account.tenant_id == tenant_id, Account.iban == iban)
                .all()
            )
            match = cls._single(candidates, "IBAN", remote)
            if match is not None:
                return match, "iban"

        if remote.id:
            candidates = (
                db.query(Account)
                .filter(
                    Account.tenant_id == tenant_id,
                    Account.provider_id == provider_id,
                    Account.external_account_id == remote.id,
                )
                .all()
            )
            match = cls._single(candidates, "external id", remote)
            if match is not None:
                return match, "external_id"

        if remote.institution and remote.account_number:
            candidates = (
                db.query(Account)
                .filter(
                    Account.tenant_id == tenant_id,
                    func.lower(Account.bank_name) == remote.institution.lower(),
                    Account.account_number == remote.account_number,
                )
                .all()
            )
            match = cls._single(candidates, "bank name and account number", remote)
            if match is not None:
                return match, "bank_number"

        return None, None

    @classmethod
    def reconcile(
        cls,
        db: Session,
        tenant_id: str,
        connection_id: str,
        provider_id: str,
        provider_accounts: list[ProviderAccount],
        now: datetime | None = None,
    ) -> ReconciliationResult:
        """Upsert provider accounts and close the ones that disappeared.

        Each account is handled in its own savepoint so one failure never
        rolls back the others.

        Args:
            db: Database session.
            tenant_id: Owning tenant.
            connection_id: Connection the accounts were fetched through.
            provider_id: Provider id stored on created accounts.
            provider_accounts: The provider's full current account list.
            now: Timestamp written to ``last_synced_at`` (defaults to now).

        Returns:
            ReconciliationResult with created/updated/closed/failed lists.
        """
        now = now or datetime.now(timezone.utc)
        result = ReconciliationResult()
        claimed: dict[str, str] = {}  # account id -> external id that claimed it
        failed_external_ids: set[str] = set()

        for remote in provider_accounts:
            created = False
            closed_now = False
            linked_elsewhere = False
            try:
                with db.begin_nested():
                    account, tier = cls.find_match(db, tenant_id, provider_id, remote)
                    if account is not None and claimed.get(account.id, remote.id) != remote.id:
                        raise ReconciliationConflict(
                            f"Account {remote.id!r} matched account {account.id} by {tier}, "
                            f"already claimed by {claimed[account.id]!r}",
                            external_account_id=remote.id,
                            candidate_ids=[account.id],
                        )

                    if account is None:
                        account = cls._create(db, tenant_id, connection_id, provider_id, remote, now)
                        created = True
                    elif cls._linked_elsewhere(db, account, connection_id):
                        linked_elsewhere = True
                        logger.info(
                            "Account %s matched account %s by %s, which stays linked to "
                            "connection %s",
                            remote.id, account.id, tier, account.connection_id,
                        )
                    else:
                        closed_now = cls._apply(account, connection_id, provider_id, remote, now)
                        if closed_now:
                            ConnectionEventService.record(
                                db, connection_id, "account_closed",
                                {"account_id": account.id, "reason": "reported closed"},
                            )
                        logger.debug("Account %s matched by %s", remote.id, tier)
                    db.flush()

                claimed[account.id] = remote.id
                if linked_elsewhere:
                    result.linked_elsewhere.append(account)
                    continue
                if created:
                    result.created.append(account)
                elif account not in result.updated:
                    result.updated.append(account)
                if closed_now:
                    result.closed.append(account)
                result.accounts_by_external_id[remote.id] = account
            except ReconciliationConflict as e:
                logger.warning("Reconciliation conflict for %s: %s", remote.id, e)
                failed_external_ids.add(remote.id)
                result.failed.append(ReconciliationFailure(
                    external_account_id=remote.id,
                    name=remote.name,
                    error=str(e),
                    is_conflict=True,
                ))
            except Exception as e:
                logger.error(
                    "Failed to reconcile account %s (%s): %s",
                    remote.id, remote.name, e, exc_info=True,
                )
                failed_external_ids.add(remote.id)
                result.failed.append(ReconciliationFailure(
                    external_account_id=remote.id,
                    name=remote.name,
                    error=str(e),
                ))

        result.closed.extend(
            cls._close_missing(db, connection_id, claimed, failed_external_ids, now)
        )
        db.flush()

        logger.info(
            "Connection %s: accounts reconciled (%d created, %d updated, %d closed, %d failed)",
            connection_id, len(result.created), len(result.updated),
            len(result.closed), len(result.failed),
        )
        return result

    @staticmethod
    def _linked_elsewhere(db: Session, account: Account, connection_id: str) -> bool:
        """True if ``account`` belongs to another connection that is still in use.

        Manual accounts and accounts whose connection is gone or disabled can
        be taken over by ``connection_id``.
        """
        if account.connection_id is None or account.connection_id == connection_id:
            return False
        owner = db.get(Connection, account.connection_id)
        return owner is not None and owner.status != "disabled"

    @staticmethod
    def _create(
        db: Session,
        tenant_id: str,
        connection_id: str,
        provider_id: str,
        remote: ProviderAccount,
        now: datetime,
    ) -> Account:
        closed = remote.status == "closed"
        account = Account(
            tenant_id=tenant_id,
            connection_id=connection_id,
            provider_id=provider_id,
            external_account_id=remote.id,
            name=remote.name,
            name_user_edited=False,
            account_number=remote.account_number,
            iban=normalize_iban(remote.iban),
            bic=remote.bic,
            bank_name=remote.institution,
            account_type=normalize_account_type(remote.account_type),
            currency=remote.currency,
            current_balance=remote.balance,
            status=remote.status,
            sync_enabled=not closed,
            closed_at=now if closed else None,
            last_synced_at=now,
            provider_metadata={k: v for k, v in remote.metadata.items() if v is not None} or None,
            raw_data=_serialize_raw(remote.raw_data),
        )
        db.add(account)
        return account

    @staticmethod
    def _apply(
        account: Account,
        connection_id: str,
        provider_id: str,
        remote: ProviderAccount,
        now: datetime,
    ) -> bool:
        """Update a matched account in place.

        Returns:
            True if this update closed the account.
        """
        if not account.name_user_edited and remote.name:
            account.name = remote.name

        account.connection_id = connection_id
        account.provider_id = provider_id
        account.external_account_id = remote.id

        iban = normalize_iban(remote.iban)
        if iban:
            account.iban = iban
        if remote.bic:
            account.bic = remote.bic
        if remote.account_number:
            account.account_number = remote.account_number
        if remote.institution:
            account.bank_name = remote.institution
        if remote.account_type:
            account.account_type = normalize_account_type(remote.account_type)
        if remote.currency:
            account.currency = remote.currency
        if remote.balance is not None:
            account.current_balance = remote.balance

        closed_now = False
        if remote.status == "closed":
            if account.status != "closed":
                account.closed_at = now
                closed_now = True
            account.status = "closed"
            account.sync_enabled = False
        elif account.status == "closed":
            logger.info("Account %s reported open again, reopening", account.id)
            account.status = remote.status
            account.sync_enabled = True
            account.closed_at = None
        else:
            account.status = remote.status

        merged = dict(account.provider_metadata or {})
        merged.update({k: v for k, v in remote.metadata.items() if v is not None})
        account.provider_metadata = merged or None
        if remote.raw_data is not None:
            account.raw_data = _serialize_raw(remote.raw_data)
        account.last_synced_at = now
        return closed_now

    @staticmethod
    def _close_missing(
        db: Session,
        connection_id: str,
        claimed: dict[str, str],
        failed_external_ids: set[str],
        now: datetime,
    ) -> list[Account]:
        """Close linked accounts the provider no longer reports.

        Accounts whose external id failed to reconcile in this batch are left
        alone: they were reported, just not processed.
        """
        linked = (
            db.query(Account)
            .filter(
                Account.connection_id == connection_id,
                Account.status != "closed",
            )
            .all()
        )
        closed: list[Account] = []
        for account in linked:
            if account.id in claimed:
                continue
            if account.external_account_id in failed_external_ids:
                continue
            account.status = "closed"
            account.sync_enabled = False
            account.closed_at = now
            closed.append(account)
            ConnectionEventService.record(
                db, connection_id, "account_closed",
                {"account_id": account.id, "reason": "no longer reported"},
            )
            logger.info(
                "Account %s (%s) no longer reported by provider, marked closed",
                account.id, account.name,
            )
        return closed
