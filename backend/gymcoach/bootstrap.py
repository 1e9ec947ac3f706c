# gymcoach/bootstrap.py
from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from gymcoach import auth, models, plans, schemas, settings
from gymcoach.database import get_db
from gymcoach.errors import NotAuthenticatedError, NotAuthorizedError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bootstrap"])


@router.post("/admin/bootstrap", status_code=201)
def bootstrap_first_admin(
    payload: schemas.BootstrapAdminIn,
    key: str = Query(..., description="Bootstrap key"),
    db: Session = Depends(get_db),
):
    """
    One-time bootstrap:
      - creates the first ADMIN user
      - seeds the default coach plan catalog if it is missing
    Security:
      - BOOTSTRAP_KEY unset => 404 (acts like the endpoint doesn't exist)
      - key must match BOOTSTRAP_KEY
      - once any ADMIN exists => 403 forever
    """
    bootstrap_key = settings.bootstrap_key()
    if not bootstrap_key:
        raise HTTPException(status_code=404, detail="Not Found")

    if not secrets.compare_digest(key, bootstrap_key):
        raise NotAuthenticatedError("Invalid bootstrap key")

    if db.scalar(select(models.User.id).where(models.User.role == auth.ROLE_ADMIN).limit(1)):
        raise NotAuthorizedError("Bootstrap already used")

    email = str(payload.email).strip().lower()
    if db.scalar(select(models.User).where(models.User.email == email)):
        raise ValidationError("Email already registered")

    admin = models.User(
        email=email,
        hashed_password=auth.hash_password(payload.password),
        full_name=(payload.full_name or "").strip() or "Administrator",
        role=auth.ROLE_ADMIN,
        is_active=True,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)

    seeded = plans.seed_default_plans(db)
    logger.info("Bootstrap admin created user_id=%s seeded_plans=%s", admin.id, seeded)
    return {"ok": True, "admin": {"id": admin.id, "email": admin.email}, "seeded_plans": seeded}
