from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from gymcoach.errors import InvalidTransition
from gymcoach.subscription_state import (
    AccessStatus,
    assert_transition,
    can_transition,
    derive_access_status,
    select_active_subscription,
    to_utc_naive,
    trial_days_remaining,
    trial_status,
)

NOW = datetime(2025, 3, 10, 15, 30)


def sub(status="active", start=None, end=None, id=1):
    start = start if start is not None else NOW - timedelta(days=5)
    end = end if end is not None else NOW + timedelta(days=25)
    return SimpleNamespace(id=id, status=status, current_period_start=start, current_period_end=end)


class TestDeriveAccessStatus:
    def test_running_active_subscription_is_active(self):
        assert derive_access_status([sub()], None, NOW) == AccessStatus.ACTIVE

    def test_active_status_with_elapsed_period_is_expired(self):
        stale = sub(end=NOW - timedelta(seconds=1))
        assert derive_access_status([stale], None, NOW) == AccessStatus.EXPIRED

    def test_period_ending_exactly_now_is_expired(self):
        assert derive_access_status([sub(end=NOW)], None, NOW) == AccessStatus.EXPIRED

    def test_expired_subscription_wins_over_running_trial(self):
        stale = sub(end=NOW - timedelta(days=1))
        assert derive_access_status([stale], NOW + timedelta(days=3), NOW) == AccessStatus.EXPIRED

    def test_non_active_rows_are_ignored(self):
        rows = [sub(status="canceled"), sub(status="past_due", id=2), sub(status="unpaid", id=3)]
        assert derive_access_status(rows, None, NOW) == AccessStatus.INACTIVE

    def test_trial_ending_today_is_trial(self):
        trial_end = datetime(2025, 3, 10, 0, 1)
        assert derive_access_status([], trial_end, NOW) == AccessStatus.TRIAL

    def test_trial_ending_yesterday_is_expired(self):
        trial_end = datetime(2025, 3, 9, 23, 59)
        assert derive_access_status([], trial_end, NOW) == AccessStatus.EXPIRED

    def test_no_subscription_no_trial_is_inactive(self):
        assert derive_access_status([], None, NOW) == AccessStatus.INACTIVE

    def test_malformed_trial_date_fails_closed(self):
        assert derive_access_status([], "not-a-date", NOW) == AccessStatus.EXPIRED

    def test_malformed_period_end_fails_closed(self):
        broken = sub(end="garbage")
        assert derive_access_status([broken], None, NOW) == AccessStatus.EXPIRED

    def test_deterministic(self):
        rows = [sub(), sub(status="canceled", id=2)]
        results = {derive_access_status(rows, NOW + timedelta(days=1), NOW) for _ in range(50)}
        assert results == {AccessStatus.ACTIVE}

    def test_timezone_aware_inputs_are_normalized(self):
        aware_now = NOW.replace(tzinfo=timezone.utc)
        aware_end = (NOW + timedelta(hours=1)).replace(tzinfo=timezone.utc)
        assert derive_access_status([sub(end=aware_end)], None, aware_now) == AccessStatus.ACTIVE


class TestTrialTimezone:
    def test_calendar_day_follows_configured_zone(self, monkeypatch):
        # 02:00 UTC on the 11th is still the 10th in Buenos Aires (UTC-3)
        now = datetime(2025, 3, 11, 2, 0)
        trial_end = datetime(2025, 3, 10, 12, 0)

        monkeypatch.setenv("TRIAL_TIMEZONE", "UTC")
        assert trial_status(trial_end, now) == AccessStatus.EXPIRED

        monkeypatch.setenv("TRIAL_TIMEZONE", "America/Argentina/Buenos_Aires")
        assert trial_status(trial_end, now) == AccessStatus.TRIAL

    def test_plain_date_is_the_last_day_in_any_zone(self, monkeypatch):
        # 15:00 UTC on the 10th is 12:00 on the 10th in Buenos Aires
        monkeypatch.setenv("TRIAL_TIMEZONE", "America/Argentina/Buenos_Aires")
        now = datetime(2025, 3, 10, 15, 0)
        assert derive_access_status([], date(2025, 3, 10), now) == AccessStatus.TRIAL
        assert trial_status("2025-03-10", now) == AccessStatus.TRIAL
        assert trial_status(date(2025, 3, 9), now) == AccessStatus.EXPIRED
        assert trial_days_remaining(date(2025, 3, 10), now) == 1

    def test_unknown_zone_falls_back_to_utc(self, monkeypatch):
        monkeypatch.setenv("TRIAL_TIMEZONE", "Not/AZone")
        assert trial_status(datetime(2025, 3, 10), NOW) == AccessStatus.TRIAL


def test_select_active_prefers_latest_period_start():
    older = sub(start=NOW - timedelta(days=40), end=NOW + timedelta(days=60), id=1)
    newer = sub(start=NOW - timedelta(days=2), end=NOW + timedelta(days=28), id=2)
    assert select_active_subscription([older, newer]).id == 2
    assert select_active_subscription([newer, older]).id == 2


def test_select_active_ties_go_to_latest_end():
    a = sub(end=NOW + timedelta(days=10), id=1)
    b = sub(end=NOW + timedelta(days=20), id=2)
    assert select_active_subscription([b, a]).id == 2


def test_trial_days_remaining_rounds_up_and_never_negative():
    assert trial_days_remaining(NOW + timedelta(hours=1), NOW) == 1
    assert trial_days_remaining(NOW + timedelta(days=2, hours=1), NOW) == 3
    assert trial_days_remaining(NOW - timedelta(days=2), NOW) == 0
    assert trial_days_remaining(None, NOW) == 0


def test_to_utc_naive_accepts_dates_and_strings():
    assert to_utc_naive(date(2025, 1, 2)) == datetime(2025, 1, 2)
    assert to_utc_naive("2025-01-02T03:04:05+02:00") == datetime(2025, 1, 2, 1, 4, 5)
    assert to_utc_naive("nope") is None
    assert to_utc_naive(None) is None


@pytest.mark.parametrize(
    "current,target,ok",
    [
        ("active", "past_due", True),
        ("active", "canceled", True),
        ("active", "active", False),
        ("active", "unpaid", False),
        ("past_due", "active", True),
        ("past_due", "unpaid", True),
        ("unpaid", "active", True),
        ("unpaid", "past_due", False),
        ("canceled", "active", True),
        ("canceled", "past_due", False),
    ],
)
def test_transition_table(current, target, ok):
    assert can_transition(current, target) is ok


def test_assert_transition_raises_invalid_transition():
    with pytest.raises(InvalidTransition) as exc:
        assert_transition("active", "active")
    assert exc.value.status_code == 409
    assert exc.value.extra["current_status"] == "active"
