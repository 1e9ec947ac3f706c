"""
Read queries over the subscription ledger and the entities the engine
derives from. Every call hits storage; nothing here is cached.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import models
from .subscription_state import (
    STATUS_ACTIVE,
    is_subscription_current,
    select_active_subscription,
)


def list_subscriptions(db: Session, subscriber_id: int) -> list[models.Subscription]:
    return list(
        db.scalars(
            select(models.Subscription)
            .where(models.Subscription.subscriber_id == subscriber_id)
            .order_by(models.Subscription.id)
        )
    )


def list_active_subscriptions(db: Session, subscriber_id: int) -> list[models.Subscription]:
    return list(
        db.scalars(
            select(models.Subscription).where(
                models.Subscription.subscriber_id == subscriber_id,
                models.Subscription.status == STATUS_ACTIVE,
            )
        )
    )


def latest_subscription(db: Session, subscriber_id: int) -> Optional[models.Subscription]:
    return db.scalar(
        select(models.Subscription)
        .where(models.Subscription.subscriber_id == subscriber_id)
        .order_by(models.Subscription.current_period_start.desc(), models.Subscription.id.desc())
        .limit(1)
    )


def get_subscription(db: Session, subscription_id: int) -> Optional[models.Subscription]:
    return db.get(models.Subscription, subscription_id)


def current_subscription(db: Session, subscriber_id: int, now: datetime) -> Optional[models.Subscription]:
    """The subscriber's active subscription, only if its period is still running."""
    sub = select_active_subscription(list_active_subscriptions(db, subscriber_id))
    return sub if is_subscription_current(sub, now) else None


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.get(models.User, user_id)


def get_coach_profile(db: Session, coach_id: int) -> Optional[models.CoachProfile]:
    return db.get(models.CoachProfile, coach_id)


def get_coach_profile_for_user(db: Session, user_id: int) -> Optional[models.CoachProfile]:
    return db.scalar(select(models.CoachProfile).where(models.CoachProfile.user_id == user_id))


def get_active_relationship(db: Session, student_id: int) -> Optional[models.CoachStudentRelationship]:
    return db.scalar(
        select(models.CoachStudentRelationship)
        .where(
            models.CoachStudentRelationship.student_id == student_id,
            models.CoachStudentRelationship.status == "active",
        )
        .order_by(models.CoachStudentRelationship.started_at.desc())
        .limit(1)
    )


def get_payment_event(db: Session, external_payment_id: str) -> Optional[models.PaymentEvent]:
    return db.scalar(
        select(models.PaymentEvent).where(models.PaymentEvent.external_payment_id == external_payment_id)
    )
