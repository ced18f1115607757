"""Connection health service - scoring, status transitions and diagnostics.

The health score blends the success rate over a short and a long window and
subtracts a penalty for the current failure streak::

    score = 0.7 * rate(7d) + 0.3 * rate(30d) - min(0.1 * streak, 0.3)

clamped to [0, 1]. ``success`` counts 1, ``partial`` 0.5 and ``failure`` 0;
throttled no-op jobs are ignored. The band is for display only and never
drives behaviour.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from config import settings
from integrations.parsing_utils import ensure_utc
from models import Connection, SyncJob
from models.connection import SYNC_SCHEDULE_HOURS
from services.connection_event_service import ConnectionEventService
from services.credential_service import CredentialService

logger = logging.getLogger(__name__)

OUTCOME_WEIGHTS: dict[str, float] = {
    "success": 1.0,
    "partial": 0.5,
    "failure": 0.0,
}

# (lower bound, band), checked top to bottom
HEALTH_BANDS: list[tuple[float, str]] = [
    (0.90, "excellent"),
    (0.75, "good"),
    (0.50, "fair"),
    (0.25, "poor"),
]

# Throttled syncs in the short window before diagnose() suggests a slower schedule
THROTTLED_BACKLOG_THRESHOLD = 5


def success_rate(outcomes: list[str]) -> float:
    """Weighted success rate of a list of job outcomes; 1.0 when empty."""
    if not outcomes:
        return 1.0
    return sum(OUTCOME_WEIGHTS.get(o, 0.0) for o in outcomes) / len(outcomes)


def compute_health_score(
    short_window_outcomes: list[str],
    long_window_outcomes: list[str],
    consecutive_failures: int,
) -> float:
    """Compute a health score from job outcomes and the current failure streak.

    Args:
        short_window_outcomes: Outcomes of real (non no-op) jobs in the short window.
        long_window_outcomes: Outcomes of real jobs in the long window.
        consecutive_failures: Current run of failed jobs.

    Returns:
        Score in [0.0, 1.0].
    """
    score = (
        settings.HEALTH_SHORT_WEIGHT * success_rate(short_window_outcomes)
        + settings.HEALTH_LONG_WEIGHT * success_rate(long_window_outcomes)
        - min(
            settings.HEALTH_STREAK_PENALTY * consecutive_failures,
            settings.HEALTH_MAX_STREAK_PENALTY,
        )
    )
    return max(0.0, min(1.0, round(score, 4)))


def health_band(score: float) -> str:
    """Map a score to its display band."""
    for lower, band in HEALTH_BANDS:
        if score >= lower:
            return band
    return "critical"


@dataclass
class ConnectionHealth:
    """Read model returned by get_health()."""

    connection_id: str
    score: float
    band: str
    status: str
    consecutive_failures: int
    last_error: str | None
    last_error_at: datetime | None
    last_sync_at: datetime | None
    last_success_at: datetime | None
    next_sync_at: datetime | None
    short_window_rate: float
    long_window_rate: float
    short_window_jobs: int
    long_window_jobs: int
    hints: list[str] = field(default_factory=list)


class ConnectionHealthService:
    """Keeps ``Connection.health_score``, streak and status up to date."""

    @staticmethod
    def _window_outcomes(
        db: Session, connection_id: str, since: datetime
    ) -> list[str]:
        rows = (
            db.query(SyncJob.outcome)
            .filter(
                SyncJob.connection_id == connection_id,
                SyncJob.outcome.isnot(None),
                SyncJob.is_noop.is_(False),
                SyncJob.started_at >= since,
            )
            .all()
        )
        return [outcome for (outcome,) in rows]

    @classmethod
    def _outcomes(
        cls, db: Session, connection_id: str, now: datetime
    ) -> tuple[list[str], list[str]]:
        short = cls._window_outcomes(
            db, connection_id, now - timedelta(days=settings.HEALTH_SHORT_WINDOW_DAYS)
        )
        long = cls._window_outcomes(
            db, connection_id, now - timedelta(days=settings.HEALTH_LONG_WINDOW_DAYS)
        )
        return short, long

    @classmethod
    def compute_score(
        cls, db: Session, connection: Connection, now: datetime | None = None
    ) -> float:
        """Recompute the score for ``connection`` from its stored jobs."""
        now = now or datetime.now(timezone.utc)
        short, long = cls._outcomes(db, connection.id, now)
        return compute_health_score(short, long, connection.consecutive_failures or 0)

    @classmethod
    def record_outcome(
        cls,
        db: Session,
        connection: Connection,
        job: SyncJob,
        credential_failure: bool = False,
        now: datetime | None = None,
    ) -> float:
        """Fold a finalized job into the connection's health and status.

        Args:
            db: Database session.
            connection: Connection the job ran for.
            job: Finalized SyncJob.
            credential_failure: True when the job failed because the token
                could not be used or refreshed; moves the connection to
                ``error`` immediately.
            now: Reference time (defaults to now).

        Returns:
            The new health score.
        """
        now = now or datetime.now(timezone.utc)
        if job.is_noop:
            return connection.health_score

        last_message = (job.errors or [None])[-1]

        if job.outcome == "failure":
            connection.consecutive_failures = (connection.consecutive_failures or 0) + 1
            connection.last_error = last_message
            connection.last_error_at = now
            if connection.status != "disabled":
                if credential_failure:
                    ConnectionEventService.set_status(
                        db, connection, "error", "credential unusable"
                    )
                elif connection.consecutive_failures >= settings.HEALTH_FAILURE_THRESHOLD:
                    ConnectionEventService.set_status(
                        db, connection, "error",
                        f"{connection.consecutive_failures} consecutive failures",
                    )
        else:
            connection.consecutive_failures = 0
            if job.outcome == "partial":
                connection.last_error = last_message
                connection.last_error_at = now
            else:
                connection.last_error = None
            if connection.status in ("pending", "error"):
                ConnectionEventService.set_status(
                    db, connection, "active", f"sync {job.outcome}"
                )

        db.flush()
        connection.health_score = cls.compute_score(db, connection, now)
        logger.info(
            "Connection %s: health %.2f (%s), streak %d",
            connection.id, connection.health_score,
            health_band(connection.health_score), connection.consecutive_failures,
        )
        return connection.health_score

    @classmethod
    def get_health(
        cls, db: Session, connection_id: str, now: datetime | None = None
    ) -> ConnectionHealth | None:
        """Return the health read model for a connection, or None if unknown."""
        connection = db.query(Connection).filter(Connection.id == connection_id).first()
        if connection is None:
            return None
        now = now or datetime.now(timezone.utc)
        short, long = cls._outcomes(db, connection.id, now)
        score = compute_health_score(short, long, connection.consecutive_failures or 0)
        return ConnectionHealth(
            connection_id=connection.id,
            score=score,
            band=health_band(score),
            status=connection.status,
            consecutive_failures=connection.consecutive_failures or 0,
            last_error=connection.last_error,
            last_error_at=connection.last_error_at,
            last_sync_at=connection.last_sync_at,
            last_success_at=connection.last_success_at,
            next_sync_at=connection.next_sync_at,
            short_window_rate=success_rate(short),
            long_window_rate=success_rate(long),
            short_window_jobs=len(short),
            long_window_jobs=len(long),
            hints=cls.diagnose(db, connection.id, now),
        )

    @staticmethod
    def diagnose(
        db: Session, connection_id: str, now: datetime | None = None
    ) -> list[str]:
        """Return operator-facing hints about what is wrong with a connection.

        Looks for a disabled or errored connection, an unusable credential,
        a failure streak, a stale last success and a pile of throttled syncs.
        An empty list means nothing looks wrong.
        """
        connection = db.query(Connection).filter(Connection.id == connection_id).first()
        if connection is None:
            return []
        now = now or datetime.now(timezone.utc)
        hints: list[str] = []

        if connection.status == "disabled":
            hints.append("Connection is disabled; enable it to resume syncing")

        credential = CredentialService.get_active(db, connection.id)
        if credential is None:
            hints.append("No usable credential; the user must re-authorize")
        elif CredentialService.is_expired(credential, now) and not credential.refresh_token:
            hints.append("Access token expired and cannot be refreshed; re-authorize")

        streak = connection.consecutive_failures or 0
        if streak:
            hints.append(
                f"{streak} consecutive failed sync(s); last error: "
                f"{connection.last_error or 'unknown'}"
            )

        interval = SYNC_SCHEDULE_HOURS.get(connection.sync_schedule) or 24
        stale_after = timedelta(hours=2 * interval)
        if connection.last_success_at is None:
            if connection.last_sync_at is not None:
                hints.append("Connection has never synced successfully")
        elif now - ensure_utc(connection.last_success_at) > stale_after:
            hours = int((now - ensure_utc(connection.last_success_at)).total_seconds() // 3600)
            hints.append(f"Last successful sync was {hours} hours ago")

        throttled = (
            db.query(SyncJob)
            .filter(
                SyncJob.connection_id == connection.id,
                SyncJob.is_noop.is_(True),
                SyncJob.started_at >= now - timedelta(days=settings.HEALTH_SHORT_WINDOW_DAYS),
            )
            .count()
        )
        if throttled >= THROTTLED_BACKLOG_THRESHOLD:
            hints.append(
                f"{throttled} syncs were throttled in the last "
                f"{settings.HEALTH_SHORT_WINDOW_DAYS} days; consider a less frequent schedule"
            )

        return hints
