"""Sync date-range planner.

Decides, without any I/O, which transaction date window a sync should
request and whether the sync should be skipped because the connection was
synced too recently.

Bands, measured from the last sync:
- never synced / forced        -> full backfill (length depends on account type)
- under the throttle threshold -> skip
- up to the incremental bound  -> short window
- up to the catch-up bound     -> one-week window
- beyond                       -> full backfill again

Every non-backfill window starts at least ``SYNC_OVERLAP_DAYS`` before the
previous sync date, so consecutive windows always overlap.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from config import settings
from integrations.parsing_utils import ensure_utc

logger = logging.getLogger(__name__)

REASON_INITIAL = "initial"
REASON_FORCED = "forced"
REASON_THROTTLED = "throttled"
REASON_INCREMENTAL = "incremental"
REASON_CATCH_UP = "catch-up"
REASON_BACKFILL = "backfill"

_ACCOUNT_TYPE_ALIASES: dict[str, str] = {
    "current": "checking",
    "checking_account": "checking",
    "transactional": "checking",
    "payment": "checking",
    "credit": "credit_card",
    "creditcard": "credit_card",
    "card": "credit_card",
    "saving": "savings",
    "savings_account": "savings",
    "deposit": "savings",
    "mortgage": "loan",
    "pension": "investment",
    "brokerage": "investment",
    "investments": "investment",
}


@dataclass(frozen=True)
class SyncPlan:
    """Outcome of :func:`plan_sync`. Dates are inclusive UTC calendar dates."""

    start_date: date | None
    end_date: date | None
    skip: bool
    reason: str

    @property
    def days(self) -> int:
        """Length of the window in days (end minus start)."""
        if self.start_date is None or self.end_date is None:
            return 0
        return (self.end_date - self.start_date).days


def normalize_account_type(account_type: str | None) -> str:
    """Fold provider account type spellings into the canonical set.

    ``"Credit Card"``, ``"credit-card"`` and ``"CREDIT_CARD"`` all become
    ``"credit_card"``; known aliases (``"current"``, ``"mortgage"``, ...)
    map to their canonical type. Unknown values are returned folded.
    """
    if not account_type:
        return "checking"
    folded = account_type.strip().lower().replace("-", "_").replace(" ", "_")
    return _ACCOUNT_TYPE_ALIASES.get(folded, folded)


def backfill_days(account_type: str | None) -> int:
    """Number of days a full backfill covers for ``account_type``."""
    return settings.SYNC_BACKFILL_DAYS.get(
        normalize_account_type(account_type), settings.SYNC_DEFAULT_BACKFILL_DAYS
    )


def plan_sync(
    connection_id: str,
    account_type: str | None,
    last_synced_at: datetime | None,
    force_full_backfill: bool = False,
    now: datetime | None = None,
) -> SyncPlan:
    """Compute the transaction window for a sync.

    Args:
        connection_id: Connection being planned (used for logging only).
        account_type: Account type driving the backfill length.
        last_synced_at: When the previous successful sync happened, or None.
        force_full_backfill: Bypass throttling and request a full backfill.
        now: Reference time; defaults to the current UTC time.

    Returns:
        A SyncPlan. When ``skip`` is True the dates are None and the caller
        must not contact the provider.
    """
    now = ensure_utc(now) if now else datetime.now(timezone.utc)
    today = now.date()

    if force_full_backfill or last_synced_at is None:
        reason = REASON_FORCED if force_full_backfill else REASON_INITIAL
        plan = _backfill(today, account_type, reason)
        logger.debug("Plan for %s: %s (%d days)", connection_id, reason, plan.days)
        return plan

    last_synced_at = ensure_utc(last_synced_at)
    elapsed = now - last_synced_at
    last_date = last_synced_at.date()
    overlap = timedelta(days=settings.SYNC_OVERLAP_DAYS)

    if elapsed < timedelta(hours=settings.SYNC_THROTTLE_HOURS):
        logger.debug(
            "Plan for %s: throttled (last sync %s ago)", connection_id, elapsed
        )
        return SyncPlan(start_date=None, end_date=None, skip=True, reason=REASON_THROTTLED)

    if elapsed <= timedelta(hours=settings.SYNC_INCREMENTAL_MAX_HOURS):
        start = min(
            today - timedelta(days=settings.SYNC_INCREMENTAL_WINDOW_DAYS),
            last_date - overlap,
        )
        return SyncPlan(start_date=start, end_date=today, skip=False, reason=REASON_INCREMENTAL)

    if elapsed <= timedelta(days=settings.SYNC_CATCHUP_MAX_DAYS):
        start = min(
            today - timedelta(days=settings.SYNC_CATCHUP_WINDOW_DAYS),
            last_date - overlap,
        )
        return SyncPlan(start_date=start, end_date=today, skip=False, reason=REASON_CATCH_UP)

    logger.info(
        "Plan for %s: last sync %s ago, falling back to a full backfill",
        connection_id, elapsed,
    )
    return _backfill(today, account_type, REASON_BACKFILL)


def _backfill(today: date, account_type: str | None, reason: str) -> SyncPlan:
    return SyncPlan(
        start_date=today - timedelta(days=backfill_days(account_type)),
        end_date=today,
        skip=False,
        reason=reason,
    )
