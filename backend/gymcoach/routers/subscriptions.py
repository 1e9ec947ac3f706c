# gymcoach/routers/subscriptions.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gymcoach import auth, ledger, models, schemas, subscriptions
from gymcoach.database import get_db
from gymcoach.dependencies import ensure_self_or_admin, load_owned_subscription
from gymcoach.errors import NotFoundError

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


def _sub_out(sub: models.Subscription) -> dict:
    return schemas.SubscriptionOut.model_validate(sub).model_dump(mode="json")


@router.get("/current")
def current_subscription(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    """Latest ledger row for the caller, whatever its status. Null when there is none."""
    sub = ledger.latest_subscription(db, user.id)
    return {"subscription": _sub_out(sub) if sub else None}


@router.get("/history")
def subscription_history(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    return {"subscriptions": [_sub_out(s) for s in ledger.list_subscriptions(db, user.id)]}


@router.post("/change-plan", response_model=schemas.ChangePlanOut)
def change_plan(
    payload: schemas.ChangePlanIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    subscriber_id = payload.subscriber_id or user.id
    ensure_self_or_admin(user, subscriber_id)

    subscriber = ledger.get_user(db, subscriber_id)
    if not subscriber:
        raise NotFoundError("Subscriber not found.")

    sub = subscriptions.with_conflict_retry(
        db, lambda: subscriptions.change_plan(db, subscriber, payload.new_plan_id)
    )
    return schemas.ChangePlanOut(
        subscription_id=sub.id,
        status=sub.status,
        current_period_start=sub.current_period_start,
        current_period_end=sub.current_period_end,
    )


@router.patch("/{subscription_id}/cancel")
def cancel_at_period_end(
    subscription_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    load_owned_subscription(db, user, subscription_id)
    sub = subscriptions.request_cancel(db, subscription_id)
    return {"ok": True, "subscription": _sub_out(sub)}


@router.patch("/{subscription_id}/resume")
def resume_subscription(
    subscription_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    load_owned_subscription(db, user, subscription_id)
    sub = subscriptions.resume(db, subscription_id)
    return {"ok": True, "subscription": _sub_out(sub)}
