# backend/tests/conftest.py
import os

# Must be set before gymcoach.settings is imported anywhere.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("SEED_PLANS", "false")

from datetime import datetime, timedelta
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gymcoach import auth, models, plans
from gymcoach.database import Base, get_db
from gymcoach.main import app

# bcrypt is slow on purpose; hash once for every fixture user.
PASSWORD = "Secret-pass-123"
PASSWORD_HASH = auth.hash_password(PASSWORD)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def catalog(db):
    """Default coach plans keyed by slug."""
    plans.seed_default_plans(db)
    return {p.slug: p for p in plans.list_coach_plans(db)}


# -------------------------------------------------
# Factories
# -------------------------------------------------
_seq = {"n": 0}


def _email(prefix: str) -> str:
    _seq["n"] += 1
    return f"{prefix}{_seq['n']}@example.com"


def make_user(db, role: str = "STUDENT", email: Optional[str] = None) -> models.User:
    user = models.User(
        email=email or _email(role.lower()),
        hashed_password=PASSWORD_HASH,
        full_name=role.title(),
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    return user


def make_coach(db, trial_ends_at: Optional[datetime] = None):
    user = make_user(db, "COACH")
    profile = models.CoachProfile(user_id=user.id, business_name="Box", trial_ends_at=trial_ends_at)
    db.add(profile)
    db.commit()
    return user, profile


def make_student(db, coach_profile: Optional[models.CoachProfile] = None) -> models.User:
    student = make_user(db, "STUDENT")
    if coach_profile is not None:
        db.add(
            models.CoachStudentRelationship(
                coach_id=coach_profile.id,
                student_id=student.id,
                status="active",
                started_at=models.utcnow(),
            )
        )
        db.commit()
    return student


def make_student_plan(db, coach_profile: models.CoachProfile, name: str = "Monthly") -> models.Plan:
    plan = models.Plan(
        audience=plans.AUDIENCE_STUDENT,
        coach_id=coach_profile.id,
        slug=name.lower(),
        name=name,
        display_name=name,
        price=1000,
        tier="basic",
        features={},
    )
    db.add(plan)
    db.commit()
    return plan


def subscribe(
    db,
    user: models.User,
    plan: models.Plan,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: str = "active",
) -> models.Subscription:
    start = start or models.utcnow() - timedelta(days=1)
    end = end or start + timedelta(days=30)
    sub = models.Subscription(
        subscriber_id=user.id,
        plan_id=plan.id,
        status=status,
        current_period_start=start,
        current_period_end=end,
        cancel_at_period_end=False,
        features_snapshot=dict(plan.features or {}),
        plan_version=plan.version,
    )
    db.add(sub)
    db.commit()
    return sub


def auth_headers(user: models.User) -> dict:
    token = auth.create_access_token(user_id=user.id, subject=user.email, role=user.role)
    return {"Authorization": f"Bearer {token}"}
