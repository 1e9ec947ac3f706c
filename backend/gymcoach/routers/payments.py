# gymcoach/routers/payments.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from gymcoach import schemas, settings, subscriptions
from gymcoach.database import get_db
from gymcoach.dependencies import check_shared_secret

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/webhooks/payments", response_model=schemas.PaymentEventOut)
def payment_webhook(
    payload: schemas.PaymentEventIn,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Normalized payment outcome pushed by the gateway integration.
    Retries with the same external_payment_id are answered with the first result.
    """
    token = settings.payment_webhook_token()
    if token:
        check_shared_secret(request, token)
    else:
        logger.warning("PAYMENT_WEBHOOK_TOKEN not set; accepting unauthenticated payment event")

    result = subscriptions.with_conflict_retry(
        db,
        lambda: subscriptions.apply_payment_event(
            db,
            external_payment_id=payload.external_payment_id,
            subscriber_id=payload.subscriber_id,
            outcome=payload.outcome,
            period_start=payload.period_start,
            period_end=payload.period_end,
            plan_id=payload.plan_id,
        ),
    )
    return schemas.PaymentEventOut(
        duplicate=result.duplicate,
        subscription_id=result.subscription.id if result.subscription is not None else None,
        status=result.status,
    )


@router.post("/cron/check-expired-subscriptions")
def check_expired_subscriptions(request: Request, db: Session = Depends(get_db)):
    secret = settings.cron_secret()
    if not secret:
        raise HTTPException(status_code=500, detail="CRON_SECRET not configured")
    check_shared_secret(request, secret)

    updated = subscriptions.mark_overdue_subscriptions(db)
    return {
        "ok": True,
        "updated": len(updated),
        "subscriptions": [{"id": s.id, "status": s.status} for s in updated],
    }
