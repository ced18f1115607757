"""Unit tests for the sync date-range planner."""

from datetime import date, datetime, timedelta, timezone

import pytest

from services.sync_planner import (
    REASON_BACKFILL,
    REASON_CATCH_UP,
    REASON_FORCED,
    REASON_INCREMENTAL,
    REASON_INITIAL,
    REASON_THROTTLED,
    backfill_days,
    normalize_account_type,
    plan_sync,
)

T0 = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestExampleScenario:
    """Never synced -> throttled -> incremental, for a checking account."""

    def test_first_sync_is_ninety_day_initial_backfill(self):
        plan = plan_sync("conn-1", "checking", None, now=T0)

        assert plan.skip is False
        assert plan.reason == REASON_INITIAL
        assert plan.end_date == date(2026, 3, 10)
        assert plan.days == 90

    def test_three_hours_later_is_throttled(self):
        plan = plan_sync("conn-1", "checking", T0, now=T0 + timedelta(hours=3))

        assert plan.skip is True
        assert plan.reason == REASON_THROTTLED
        assert plan.start_date is None
        assert plan.end_date is None

    def test_thirty_hours_later_is_two_day_incremental_overlapping_previous_end(self):
        first = plan_sync("conn-1", "checking", None, now=T0)
        plan = plan_sync("conn-1", "checking", T0, now=T0 + timedelta(hours=30))

        assert plan.skip is False
        assert plan.reason == REASON_INCREMENTAL
        assert plan.days == 2
        assert plan.start_date <= first.end_date - timedelta(days=1)


class TestBands:
    def test_forced_never_skips(self):
        plan = plan_sync(
            "conn-1", "savings", T0 - timedelta(minutes=5),
            force_full_backfill=True, now=T0,
        )

        assert plan.skip is False
        assert plan.reason == REASON_FORCED
        assert plan.days == 365

    def test_catch_up_window_is_at_least_a_week(self):
        last = T0 - timedelta(days=4)
        plan = plan_sync("conn-1", "checking", last, now=T0)

        assert plan.reason == REASON_CATCH_UP
        assert plan.start_date == date(2026, 3, 3)
        assert plan.end_date == date(2026, 3, 10)

    def test_catch_up_extends_back_to_overlap_the_last_sync(self):
        last = T0 - timedelta(days=7)
        plan = plan_sync("conn-1", "checking", last, now=T0)

        assert plan.reason == REASON_CATCH_UP
        assert plan.start_date == last.date() - timedelta(days=1)

    def test_long_gap_falls_back_to_backfill(self):
        plan = plan_sync("conn-1", "credit card", T0 - timedelta(days=30), now=T0)

        assert plan.reason == REASON_BACKFILL
        assert plan.days == 90

    def test_exactly_at_throttle_threshold_is_not_throttled(self):
        plan = plan_sync("conn-1", "checking", T0 - timedelta(hours=20), now=T0)

        assert plan.skip is False
        assert plan.reason == REASON_INCREMENTAL

    def test_naive_last_synced_at_is_treated_as_utc(self):
        naive = (T0 - timedelta(hours=1)).replace(tzinfo=None)
        plan = plan_sync("conn-1", "checking", naive, now=T0)

        assert plan.skip is True


@pytest.mark.parametrize("hours", [20, 26, 36, 48, 60, 100, 167])
def test_windows_always_overlap_previous_sync(hours):
    """Every non-backfill window starts at least one day before the last sync date."""
    last = T0 - timedelta(hours=hours)
    plan = plan_sync("conn-1", "checking", last, now=T0)

    assert plan.skip is False
    assert plan.start_date <= last.date() - timedelta(days=1)
    assert plan.end_date == T0.date()


@pytest.mark.parametrize("minutes", [0, 1, 60, 600, 20 * 60 - 1])
def test_recent_syncs_are_always_throttled(minutes):
    plan = plan_sync("conn-1", "checking", T0 - timedelta(minutes=minutes), now=T0)

    assert plan.skip is True


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Checking", "checking"),
        ("current", "checking"),
        ("Credit Card", "credit_card"),
        ("credit-card", "credit_card"),
        ("CREDITCARD", "credit_card"),
        ("mortgage", "loan"),
        ("pension", "investment"),
        (None, "checking"),
        ("brokerage", "investment"),
    ],
)
def test_normalize_account_type(raw, expected):
    assert normalize_account_type(raw) == expected


def test_backfill_days_by_type():
    assert backfill_days("checking") == 90
    assert backfill_days("savings") == 365
    assert backfill_days("loan") == 365
    assert backfill_days("something_else") == 90
