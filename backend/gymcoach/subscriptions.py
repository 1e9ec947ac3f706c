# gymcoach/subscriptions.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import ledger, models
from .errors import ConcurrentWriteConflict, InvalidTransition, NotFoundError, ValidationError
from .plans import AUDIENCE_COACH, AUDIENCE_STUDENT, period_end_for, snapshot_features
from .subscription_state import (
    STATUS_ACTIVE,
    STATUS_CANCELED,
    STATUS_PAST_DUE,
    STATUS_UNPAID,
    assert_transition,
    normalize_status,
    select_active_subscription,
    to_utc_naive,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_FAILED = "failed"


# -------------------------------------------------
# Helpers
# -------------------------------------------------
def _now(now: Optional[datetime]) -> datetime:
    return to_utc_naive(now) if now is not None else models.utcnow()


def _commit(db: Session) -> None:
    """Commit, turning a unique-active / unique-payment violation into a conflict."""
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConcurrentWriteConflict("Subscription changed concurrently. Please retry.") from e


def with_conflict_retry(db: Session, op: Callable[[], T]) -> T:
    """
    Run a ledger write; on a concurrent-write conflict re-read state and try once more.
    A second conflict propagates (409).
    """
    try:
        return op()
    except ConcurrentWriteConflict:
        logger.info("Ledger write conflict, retrying once")
        db.expire_all()
        return op()


def _validate_period(start: Optional[datetime], end: Optional[datetime]) -> tuple[datetime, datetime]:
    s = to_utc_naive(start)
    e = to_utc_naive(end)
    if s is None or e is None:
        raise ValidationError("Billing period bounds are required.")
    if e <= s:
        raise ValidationError("Billing period must end after it starts.")
    return s, e


def plan_for_subscriber(db: Session, subscriber: models.User, plan_id: int) -> models.Plan:
    """Plan must exist, be active, and be sold to this kind of subscriber."""
    plan = db.get(models.Plan, plan_id) if plan_id else None
    if not plan or not plan.is_active:
        raise ValidationError("Invalid plan reference.", extra={"plan_id": plan_id})

    role = (subscriber.role or "").upper()
    if role == "COACH":
        if plan.audience != AUDIENCE_COACH:
            raise ValidationError("Coaches can only subscribe to coach plans.", extra={"plan_id": plan_id})
        return plan

    if role == "STUDENT":
        if plan.audience != AUDIENCE_STUDENT:
            raise ValidationError("Students can only subscribe to student plans.", extra={"plan_id": plan_id})
        rel = ledger.get_active_relationship(db, subscriber.id)
        if not rel or rel.coach_id != plan.coach_id:
            raise ValidationError("Plan is not offered by your coach.", extra={"plan_id": plan_id})
        return plan

    raise ValidationError("This user cannot hold subscriptions.")


def _sync_coach_limits(db: Session, subscriber: models.User, plan: models.Plan) -> None:
    if plan.audience != AUDIENCE_COACH:
        return
    profile = ledger.get_coach_profile_for_user(db, subscriber.id)
    if profile:
        profile.max_students = plan.max_students
        profile.commission_rate = plan.commission_rate


def _replace_active(
    db: Session,
    subscriber: models.User,
    plan: models.Plan,
    start: datetime,
    end: datetime,
    now: datetime,
    external_payment_id: Optional[str] = None,
) -> models.Subscription:
    """
    Cancel whatever is active for the subscriber and insert the new active row.
    Caller commits; both statements land in the same transaction.
    """
    db.execute(
        update(models.Subscription)
        .where(
            models.Subscription.subscriber_id == subscriber.id,
            models.Subscription.status == STATUS_ACTIVE,
        )
        .values(status=STATUS_CANCELED, cancel_at_period_end=False, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )

    sub = models.Subscription(
        subscriber_id=subscriber.id,
        plan_id=plan.id,
        status=STATUS_ACTIVE,
        current_period_start=start,
        current_period_end=end,
        cancel_at_period_end=False,
        features_snapshot=snapshot_features(plan) if plan.audience == AUDIENCE_COACH else dict(plan.features or {}),
        plan_version=plan.version,
        external_payment_id=external_payment_id,
        created_at=now,
        updated_at=now,
    )
    db.add(sub)
    _sync_coach_limits(db, subscriber, plan)
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        raise ConcurrentWriteConflict("Another active subscription was created concurrently.") from e
    return sub


def _load_for_update(db: Session, subscription_id: int) -> models.Subscription:
    sub = db.get(models.Subscription, subscription_id, with_for_update=True, populate_existing=True)
    if not sub:
        raise NotFoundError("Subscription not found.")
    return sub


# -------------------------------------------------
# Plan change / assignment
# -------------------------------------------------
def change_plan(
    db: Session,
    subscriber: models.User,
    new_plan_id: int,
    *,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
    now: Optional[datetime] = None,
    external_payment_id: Optional[str] = None,
    allow_same_plan: bool = False,
) -> models.Subscription:
    """
    Cancel the current active subscription and create one for new_plan_id,
    atomically. Rejects a change to the plan already held unless
    allow_same_plan is set (admin re-assignment with a new period).
    """
    now = _now(now)
    plan = plan_for_subscriber(db, subscriber, new_plan_id)

    # An active row whose period elapsed is not a held plan; buying it again is a renewal.
    current = ledger.current_subscription(db, subscriber.id, now)
    if current is not None and current.plan_id == plan.id and not allow_same_plan:
        raise ValidationError("Already subscribed to this plan.", extra={"plan_id": plan.id})

    start = to_utc_naive(period_start) or now
    end = to_utc_naive(period_end) or period_end_for(plan, start)
    start, end = _validate_period(start, end)

    sub = _replace_active(db, subscriber, plan, start, end, now, external_payment_id)
    _commit(db)
    logger.info(
        "Plan changed subscriber_id=%s plan_id=%s subscription_id=%s previous_subscription_id=%s",
        subscriber.id,
        plan.id,
        sub.id,
        current.id if current is not None else None,
    )
    return sub


# -------------------------------------------------
# Status actions
# -------------------------------------------------
def request_cancel(db: Session, subscription_id: int) -> models.Subscription:
    """User intent: stop at period end. Status stays active until the period elapses."""
    sub = _load_for_update(db, subscription_id)
    if normalize_status(sub.status) != STATUS_ACTIVE:
        raise InvalidTransition("Only an active subscription can be scheduled for cancellation.")
    if not sub.cancel_at_period_end:
        sub.cancel_at_period_end = True
        sub.updated_at = models.utcnow()
        _commit(db)
    return sub


def resume(db: Session, subscription_id: int) -> models.Subscription:
    """Undo a scheduled cancellation."""
    sub = _load_for_update(db, subscription_id)
    if normalize_status(sub.status) != STATUS_ACTIVE:
        raise InvalidTransition("Only an active subscription can be resumed.")
    if sub.cancel_at_period_end:
        sub.cancel_at_period_end = False
        sub.updated_at = models.utcnow()
        _commit(db)
    return sub


def cancel_now(db: Session, subscription_id: int) -> models.Subscription:
    sub = _load_for_update(db, subscription_id)
    assert_transition(sub.status, STATUS_CANCELED)
    sub.status = STATUS_CANCELED
    sub.cancel_at_period_end = False
    sub.updated_at = models.utcnow()
    _commit(db)
    logger.info("Subscription canceled subscription_id=%s", sub.id)
    return sub


def reactivate(
    db: Session,
    subscription_id: int,
    *,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> models.Subscription:
    """past_due / unpaid / canceled -> active with a fresh period. Illegal on an active row."""
    now = _now(now)
    sub = _load_for_update(db, subscription_id)
    assert_transition(sub.status, STATUS_ACTIVE)

    others = [s for s in ledger.list_active_subscriptions(db, sub.subscriber_id) if s.id != sub.id]
    if others:
        raise InvalidTransition(
            "Subscriber already has an active subscription.",
            extra={"active_subscription_id": others[0].id},
        )

    start = to_utc_naive(period_start) or now
    end = to_utc_naive(period_end) or period_end_for(sub.plan, start)
    start, end = _validate_period(start, end)

    sub.status = STATUS_ACTIVE
    sub.current_period_start = start
    sub.current_period_end = end
    sub.cancel_at_period_end = False
    sub.updated_at = now
    _commit(db)
    logger.info("Subscription reactivated subscription_id=%s", sub.id)
    return sub


def mark_overdue_subscriptions(db: Session, now: Optional[datetime] = None) -> list[models.Subscription]:
    """
    Sweep active rows whose period has elapsed:
      cancel_at_period_end -> canceled, otherwise -> past_due.
    """
    now = _now(now)
    overdue = list(
        db.scalars(
            select(models.Subscription)
            .where(
                models.Subscription.status == STATUS_ACTIVE,
                models.Subscription.current_period_end <= now,
            )
            .with_for_update()
        )
    )
    for sub in overdue:
        target = STATUS_CANCELED if sub.cancel_at_period_end else STATUS_PAST_DUE
        assert_transition(sub.status, target)
        sub.status = target
        sub.updated_at = now
    if overdue:
        _commit(db)
    logger.info("Overdue sweep updated=%s", len(overdue))
    return overdue


# -------------------------------------------------
# Payment events
# -------------------------------------------------
@dataclass(frozen=True)
class PaymentResult:
    duplicate: bool
    subscription: Optional[models.Subscription]
    status: Optional[str]


def _duplicate_result(db: Session, event: models.PaymentEvent) -> PaymentResult:
    sub = db.get(models.Subscription, event.subscription_id) if event.subscription_id else None
    return PaymentResult(duplicate=True, subscription=sub, status=event.resulting_status)


def apply_payment_event(
    db: Session,
    *,
    external_payment_id: str,
    subscriber_id: int,
    outcome: str,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
    plan_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PaymentResult:
    """
    Consume one "payment succeeded/failed" report from the gateway.

    Idempotent on external_payment_id: a retried delivery returns the first
    result without touching the ledger again.
    """
    now = _now(now)
    ext_id = (external_payment_id or "").strip()
    if not ext_id:
        raise ValidationError("external_payment_id is required.")

    existing = ledger.get_payment_event(db, ext_id)
    if existing:
        logger.info("Duplicate payment event ignored external_payment_id=%s", ext_id)
        return _duplicate_result(db, existing)

    outcome_n = (outcome or "").strip().lower()
    if outcome_n not in (OUTCOME_SUCCEEDED, OUTCOME_FAILED):
        raise ValidationError("outcome must be 'succeeded' or 'failed'.")

    subscriber = ledger.get_user(db, subscriber_id)
    if not subscriber:
        raise ValidationError("Unknown subscriber.", extra={"subscriber_id": subscriber_id})

    active = select_active_subscription(ledger.list_active_subscriptions(db, subscriber.id))
    touched: Optional[models.Subscription] = None

    if outcome_n == OUTCOME_SUCCEEDED:
        touched = _apply_success(db, subscriber, active, plan_id, period_start, period_end, now, ext_id)
    else:
        touched = _apply_failure(db, subscriber, active, now)

    db.add(
        models.PaymentEvent(
            external_payment_id=ext_id,
            subscriber_id=subscriber.id,
            outcome=outcome_n,
            period_start=to_utc_naive(period_start),
            period_end=to_utc_naive(period_end),
            plan_id=plan_id,
            subscription_id=touched.id if touched is not None else None,
            resulting_status=touched.status if touched is not None else None,
            received_at=now,
        )
    )
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        # Same delivery processed by a concurrent request: report its result.
        raced = ledger.get_payment_event(db, ext_id)
        if raced:
            return _duplicate_result(db, raced)
        raise ConcurrentWriteConflict("Subscription changed concurrently. Please retry.") from e

    logger.info(
        "Payment event applied external_payment_id=%s subscriber_id=%s outcome=%s subscription_id=%s status=%s",
        ext_id,
        subscriber.id,
        outcome_n,
        touched.id if touched is not None else None,
        touched.status if touched is not None else None,
    )
    return PaymentResult(duplicate=False, subscription=touched, status=touched.status if touched else None)


def _apply_success(
    db: Session,
    subscriber: models.User,
    active: Optional[models.Subscription],
    plan_id: Optional[int],
    period_start: Optional[datetime],
    period_end: Optional[datetime],
    now: datetime,
    ext_id: str,
) -> models.Subscription:
    if plan_id and (active is None or active.plan_id != plan_id):
        plan = plan_for_subscriber(db, subscriber, plan_id)
        start = to_utc_naive(period_start) or now
        end = to_utc_naive(period_end) or period_end_for(plan, start)
        start, end = _validate_period(start, end)
        return _replace_active(db, subscriber, plan, start, end, now, ext_id)

    if active is not None:
        start = to_utc_naive(period_start) or now
        end = to_utc_naive(period_end) or period_end_for(active.plan, start)
        active.current_period_start, active.current_period_end = _validate_period(start, end)
        active.external_payment_id = ext_id
        active.updated_at = now
        return active

    latest = ledger.latest_subscription(db, subscriber.id)
    if latest is None:
        raise ValidationError("No plan to activate for this payment.", extra={"subscriber_id": subscriber.id})

    start = to_utc_naive(period_start) or now
    end = to_utc_naive(period_end) or period_end_for(latest.plan, start)
    start, end = _validate_period(start, end)

    if normalize_status(latest.status) in (STATUS_PAST_DUE, STATUS_UNPAID):
        assert_transition(latest.status, STATUS_ACTIVE)
        latest.status = STATUS_ACTIVE
        latest.current_period_start = start
        latest.current_period_end = end
        latest.cancel_at_period_end = False
        latest.external_payment_id = ext_id
        latest.updated_at = now
        return latest

    # Canceled: the payment starts a brand-new subscription on the same plan.
    return _replace_active(db, subscriber, latest.plan, start, end, now, ext_id)


def _apply_failure(
    db: Session,
    subscriber: models.User,
    active: Optional[models.Subscription],
    now: datetime,
) -> Optional[models.Subscription]:
    if active is not None:
        assert_transition(active.status, STATUS_PAST_DUE)
        active.status = STATUS_PAST_DUE
        active.updated_at = now
        return active

    latest = ledger.latest_subscription(db, subscriber.id)
    if latest is not None and normalize_status(latest.status) == STATUS_PAST_DUE:
        assert_transition(latest.status, STATUS_UNPAID)
        latest.status = STATUS_UNPAID
        latest.updated_at = now
        return latest
    return latest
