# gymcoach/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import select
from sqlalchemy.orm import Session

from gymcoach import auth, authz_errors, bootstrap, models, plans, schemas, settings
from gymcoach.database import Base, SessionLocal, engine, get_db
from gymcoach.errors import NotAuthenticatedError, NotAuthorizedError
from gymcoach.routers import entitlements as entitlements_router
from gymcoach.routers import onboarding, payments, preferences, rms, student_plans, subscriptions, super_admin

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# -------------------------------------------------
# DB INIT
# -------------------------------------------------
def init_db() -> None:
    Base.metadata.create_all(bind=engine)
    if not settings.seed_plans_enabled():
        return
    db = SessionLocal()
    try:
        created = plans.seed_default_plans(db)
        if created:
            logger.info("Seeded %s default coach plans", created)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="GymCoach Subscriptions", version="1.0.0", lifespan=lifespan)

authz_errors.register(app)

app.include_router(bootstrap.router)
app.include_router(onboarding.router)
app.include_router(entitlements_router.router)
app.include_router(subscriptions.router)
app.include_router(preferences.router)
app.include_router(payments.router)
app.include_router(rms.router)
app.include_router(student_plans.router)
app.include_router(super_admin.router)


# -------------------------------------------------
# HEALTH
# -------------------------------------------------
@app.get("/health")
def health():
    return {"ok": True}


# -------------------------------------------------
# AUTH
# -------------------------------------------------
@app.post("/auth/login", response_model=schemas.TokenOut)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
):
    email = (form_data.username or "").strip().lower()
    user = db.scalar(select(models.User).where(models.User.email == email))
    if not user or not auth.verify_password(form_data.password, user.hashed_password):
        raise NotAuthenticatedError("Invalid email or password")

    if not user.is_active:
        raise NotAuthorizedError("User is inactive")

    token = auth.create_access_token(user_id=user.id, subject=user.email, role=user.role)
    return schemas.TokenOut(access_token=token, user_id=user.id, role=user.role)
