# gymcoach/preference_lock.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import ledger, models
from .errors import ConcurrentWriteConflict, LockedPreferenceChange, NotFoundError, ValidationError
from .subscription_state import to_utc_naive

logger = logging.getLogger(__name__)

REASON_LOCKED = "already_changed_this_period"


@dataclass(frozen=True)
class LockDecision:
    allowed: bool
    next_eligible_date: Optional[datetime] = None
    reason: Optional[str] = None


def can_change_preference(last_change_date: Any, subscription: Any) -> LockDecision:
    """
    Once-per-billing-period rule for discipline/level preference changes.

    - no active subscription -> unrestricted
    - changed at or after the live period start -> denied until the period ends
    - otherwise allowed

    Pure decision. The caller writes last_change_date together with the change.
    """
    if subscription is None:
        return LockDecision(True)

    last = to_utc_naive(last_change_date)
    if last is None:
        return LockDecision(True)

    period_start = to_utc_naive(getattr(subscription, "current_period_start", None))
    period_end = to_utc_naive(getattr(subscription, "current_period_end", None))
    if period_start is None:
        # Unreadable window: deny, the next eligible date is unknown.
        return LockDecision(False, period_end, REASON_LOCKED)

    if last >= period_start:
        return LockDecision(False, period_end, REASON_LOCKED)
    return LockDecision(True)


def get_preference(db: Session, user_id: int) -> Optional[models.UserPreference]:
    return db.scalar(select(models.UserPreference).where(models.UserPreference.user_id == user_id))


def lock_status(db: Session, student_id: int, now: Optional[datetime] = None) -> LockDecision:
    now = to_utc_naive(now) or models.utcnow()
    pref = get_preference(db, student_id)
    sub = ledger.current_subscription(db, student_id, now)
    return can_change_preference(pref.last_preference_change_date if pref else None, sub)


def _validate_choice(db: Session, discipline_id: Optional[int], level_id: Optional[int]) -> None:
    if discipline_id is not None:
        discipline = db.get(models.Discipline, discipline_id)
        if not discipline or not discipline.is_active:
            raise ValidationError("Invalid discipline.", extra={"discipline_id": discipline_id})
    if level_id is not None:
        level = db.get(models.DisciplineLevel, level_id)
        if not level:
            raise ValidationError("Invalid level.", extra={"level_id": level_id})
        if discipline_id is None or level.discipline_id != discipline_id:
            raise ValidationError("Level does not belong to the selected discipline.", extra={"level_id": level_id})


def _raise_lost_race(sub: Optional[models.Subscription]) -> None:
    # A concurrent request changed the preference first. Inside a billing period
    # that change consumed the window; without one the caller may simply retry.
    if sub is not None:
        raise LockedPreferenceChange(sub.current_period_end)
    raise ConcurrentWriteConflict("Preference changed concurrently. Please retry.")


def update_preference(
    db: Session,
    student_id: int,
    discipline_id: Optional[int],
    level_id: Optional[int],
    now: Optional[datetime] = None,
) -> models.UserPreference:
    """
    Guarded preference update. Decision and last_preference_change_date are
    written in one transaction; the UPDATE only applies if the row still holds
    the change date the decision was made on, so a concurrent request cannot
    slip through the same window.
    """
    now = to_utc_naive(now) or models.utcnow()
    if not ledger.get_user(db, student_id):
        raise NotFoundError("User not found.")
    _validate_choice(db, discipline_id, level_id)

    pref = db.scalar(
        select(models.UserPreference)
        .where(models.UserPreference.user_id == student_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    observed = pref.last_preference_change_date if pref else None
    sub = ledger.current_subscription(db, student_id, now)

    decision = can_change_preference(observed, sub)
    if not decision.allowed:
        logger.info("Preference change locked user_id=%s next=%s", student_id, decision.next_eligible_date)
        db.rollback()
        raise LockedPreferenceChange(decision.next_eligible_date)

    if pref is None:
        pref = models.UserPreference(
            user_id=student_id,
            preferred_discipline_id=discipline_id,
            preferred_level_id=level_id,
            last_preference_change_date=now,
            updated_at=now,
        )
        db.add(pref)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            _raise_lost_race(sub)
        return pref

    stmt = (
        update(models.UserPreference)
        .where(models.UserPreference.id == pref.id)
        .values(
            preferred_discipline_id=discipline_id,
            preferred_level_id=level_id,
            last_preference_change_date=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if observed is None:
        stmt = stmt.where(models.UserPreference.last_preference_change_date.is_(None))
    else:
        stmt = stmt.where(models.UserPreference.last_preference_change_date == observed)

    result = db.execute(stmt)
    if result.rowcount != 1:
        db.rollback()
        _raise_lost_race(sub)

    db.commit()
    db.refresh(pref)
    return pref
