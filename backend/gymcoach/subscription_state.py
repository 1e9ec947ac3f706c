"""
Subscription state machine.

Read side: derive_access_status() is a pure classifier over
(subscriptions, trial_ends_at, now). It never writes and never trusts
status="active" on its own: an active row whose period already ended is
reported as expired, and any date it cannot read fails closed.

Write side: the transition table below is consulted by every mutating
operation in subscriptions.py before it touches a row.
"""
from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from . import settings
from .errors import InvalidTransition

STATUS_ACTIVE = "active"
STATUS_PAST_DUE = "past_due"
STATUS_UNPAID = "unpaid"
STATUS_CANCELED = "canceled"
SUBSCRIPTION_STATUSES = (STATUS_ACTIVE, STATUS_PAST_DUE, STATUS_UNPAID, STATUS_CANCELED)


class AccessStatus(str, enum.Enum):
    ACTIVE = "active"
    TRIAL = "trial"
    EXPIRED = "expired"
    INACTIVE = "inactive"


# current status -> statuses it may move to
LEGAL_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_ACTIVE: frozenset({STATUS_PAST_DUE, STATUS_CANCELED}),
    STATUS_PAST_DUE: frozenset({STATUS_ACTIVE, STATUS_UNPAID, STATUS_CANCELED}),
    STATUS_UNPAID: frozenset({STATUS_ACTIVE, STATUS_CANCELED}),
    STATUS_CANCELED: frozenset({STATUS_ACTIVE}),
}


def normalize_status(value: Any) -> str:
    return str(value or "").strip().lower()


def can_transition(current: Any, target: Any) -> bool:
    return normalize_status(target) in LEGAL_TRANSITIONS.get(normalize_status(current), frozenset())


def assert_transition(current: Any, target: Any) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot move subscription from {normalize_status(current) or 'unknown'} "
            f"to {normalize_status(target) or 'unknown'}.",
            extra={"current_status": normalize_status(current), "target_status": normalize_status(target)},
        )


# -------------------------------------------------
# Date helpers
# -------------------------------------------------
def to_utc_naive(value: Any) -> Optional[datetime]:
    """
    Accepts datetime, date, ISO string, or None.
    Returns a naive UTC datetime, or None when the value cannot be read.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        parsed = datetime.fromisoformat(str(value).strip())
    except (TypeError, ValueError):
        return None
    return to_utc_naive(parsed)


def _zone() -> ZoneInfo:
    try:
        return ZoneInfo(settings.trial_timezone())
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def calendar_date(value: datetime) -> date:
    """Calendar date of a naive-UTC instant in the configured trial timezone."""
    return value.replace(tzinfo=timezone.utc).astimezone(_zone()).date()


# -------------------------------------------------
# Read side
# -------------------------------------------------
def _recency_key(sub: Any) -> tuple:
    start = to_utc_naive(getattr(sub, "current_period_start", None)) or datetime.min
    end = to_utc_naive(getattr(sub, "current_period_end", None)) or datetime.min
    return (start, end, getattr(sub, "id", None) or 0)


def select_active_subscription(subscriptions: Iterable[Any]) -> Optional[Any]:
    """
    Most recent subscription with status=active (latest period start; ties go to
    the latest period end). Period validity is NOT checked here.
    """
    active = [s for s in subscriptions if normalize_status(getattr(s, "status", None)) == STATUS_ACTIVE]
    if not active:
        return None
    return max(active, key=_recency_key)


def is_subscription_current(sub: Any, now: datetime) -> bool:
    """True only for an active row whose period end is readable and still ahead of now."""
    if sub is None or normalize_status(getattr(sub, "status", None)) != STATUS_ACTIVE:
        return False
    end = to_utc_naive(getattr(sub, "current_period_end", None))
    now_n = to_utc_naive(now)
    if end is None or now_n is None:
        return False
    return end > now_n


def trial_end_date(value: Any) -> Optional[date]:
    """
    Last trial day in the trial timezone. A bare date (or "YYYY-MM-DD") already
    names that day and is taken as-is; instants are converted into the zone.
    """
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, str) and len(value.strip()) == 10:
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            return None
    instant = to_utc_naive(value)
    return calendar_date(instant) if instant is not None else None


def trial_status(trial_ends_at: Any, now: datetime) -> AccessStatus:
    """Trial is valid through its whole last calendar day."""
    if trial_ends_at is None:
        return AccessStatus.INACTIVE
    last_day = trial_end_date(trial_ends_at)
    now_n = to_utc_naive(now)
    if last_day is None or now_n is None:
        return AccessStatus.EXPIRED
    if last_day >= calendar_date(now_n):
        return AccessStatus.TRIAL
    return AccessStatus.EXPIRED


def derive_access_status(
    subscriptions: Iterable[Any],
    trial_ends_at: Any,
    now: datetime,
) -> AccessStatus:
    """
    Priority:
      1) most recent active subscription -> active if its period is still running,
         expired otherwise (the processor failing to flip the status is not access)
      2) trial metadata -> trial if the trial's last day is today or later, else expired
      3) inactive
    """
    sub = select_active_subscription(subscriptions)
    if sub is not None:
        return AccessStatus.ACTIVE if is_subscription_current(sub, now) else AccessStatus.EXPIRED

    return trial_status(trial_ends_at, now)


def trial_days_remaining(trial_ends_at: Any, now: datetime) -> int:
    """Whole days left in the trial, rounded up, never negative."""
    now_n = to_utc_naive(now)
    if isinstance(trial_ends_at, date) and not isinstance(trial_ends_at, datetime):
        if now_n is None:
            return 0
        return max(0, (trial_ends_at - calendar_date(now_n)).days + 1)
    end = to_utc_naive(trial_ends_at)
    if end is None or now_n is None:
        return 0
    remaining = (end - now_n).total_seconds()
    return max(0, int((remaining + 86399) // 86400))
