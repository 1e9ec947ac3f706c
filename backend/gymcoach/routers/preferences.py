# gymcoach/routers/preferences.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gymcoach import auth, models, preference_lock, schemas
from gymcoach.database import get_db
from gymcoach.dependencies import ensure_self_or_admin

router = APIRouter(prefix="/user-preferences", tags=["preferences"])


def _out(user_id: int, pref, decision: preference_lock.LockDecision) -> schemas.PreferenceOut:
    return schemas.PreferenceOut(
        user_id=user_id,
        discipline_id=pref.preferred_discipline_id if pref else None,
        level_id=pref.preferred_level_id if pref else None,
        last_preference_change_date=pref.last_preference_change_date if pref else None,
        can_change=decision.allowed,
        next_change_date=decision.next_eligible_date,
    )


@router.get("/{user_id}", response_model=schemas.PreferenceOut)
def get_preference(
    user_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    ensure_self_or_admin(user, user_id)
    pref = preference_lock.get_preference(db, user_id)
    return _out(user_id, pref, preference_lock.lock_status(db, user_id))


@router.put("/{user_id}", response_model=schemas.PreferenceOut)
def put_preference(
    user_id: int,
    payload: schemas.PreferenceIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    """
    Change discipline/level. Allowed once per billing period of the student's
    current subscription; a locked change answers 403 PREFERENCE_LOCKED with
    next_change_date.
    """
    ensure_self_or_admin(user, user_id)
    pref = preference_lock.update_preference(db, user_id, payload.discipline_id, payload.level_id)
    return _out(user_id, pref, preference_lock.lock_status(db, user_id))
