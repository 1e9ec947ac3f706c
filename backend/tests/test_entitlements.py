from datetime import datetime, timedelta

from freezegun import freeze_time

from gymcoach import entitlements, models, plans
from gymcoach.features import CoachPlanFeatures
from gymcoach.subscription_state import AccessStatus

from conftest import make_coach, make_student, make_user, subscribe

NOW = datetime(2025, 6, 15, 12, 0)


def test_active_power_coach_has_power_features(db, catalog):
    coach, profile = make_coach(db)
    subscribe(db, coach, catalog["power"], start=NOW - timedelta(days=3), end=NOW + timedelta(days=27))

    info = entitlements.resolve_coach_plan(db, profile.id, NOW)
    assert info.slug == "power"
    assert info.is_trial is False
    assert entitlements.coach_has_feature(db, profile.id, "score_loading", NOW) is True
    assert entitlements.coach_has_feature(db, profile.id, "personalized_planifications", NOW) is False


def test_canceled_with_elapsed_period_loses_features(db, catalog):
    coach, profile = make_coach(db)
    sub = subscribe(db, coach, catalog["power"], start=NOW - timedelta(days=40), end=NOW - timedelta(days=10))
    sub.cancel_at_period_end = True
    db.commit()

    assert entitlements.resolve_coach_plan(db, profile.id, NOW) is None
    assert entitlements.coach_has_feature(db, profile.id, "score_loading", NOW) is False


def test_active_status_with_elapsed_period_is_not_access(db, catalog):
    coach, profile = make_coach(db)
    subscribe(db, coach, catalog["elite"], start=NOW - timedelta(days=31), end=NOW - timedelta(days=1))

    access = entitlements.get_coach_access(db, profile.id, NOW)
    assert access.access_status == AccessStatus.EXPIRED
    assert access.has_access is False
    assert entitlements.resolve_coach_plan(db, profile.id, NOW) is None


def test_trial_resolves_to_baseline_plan(db, catalog):
    _, profile = make_coach(db, trial_ends_at=NOW + timedelta(days=3))

    info = entitlements.resolve_coach_plan(db, profile.id, NOW)
    assert info.slug == "start"
    assert info.is_trial is True
    assert entitlements.coach_has_feature(db, profile.id, "timer", NOW) is True
    assert entitlements.coach_has_feature(db, profile.id, "score_loading", NOW) is False


def test_trial_without_baseline_plan_resolves_to_none(db):
    _, profile = make_coach(db, trial_ends_at=NOW + timedelta(days=3))
    assert entitlements.resolve_coach_plan(db, profile.id, NOW) is None


def test_unknown_coach_resolves_to_none(db, catalog):
    assert entitlements.resolve_coach_plan(db, 999, NOW) is None
    assert entitlements.get_coach_access(db, 999, NOW) is None


def test_student_inherits_coach_plan(db, catalog):
    coach, profile = make_coach(db)
    subscribe(db, coach, catalog["power"], start=NOW - timedelta(days=1), end=NOW + timedelta(days=29))
    student = make_student(db, profile)

    assert entitlements.student_has_feature(db, student.id, "score_loading", NOW) is True
    assert entitlements.user_has_feature(db, student, "community_forum", NOW) is True


def test_student_without_coach_has_nothing(db, catalog):
    student = make_student(db)
    assert entitlements.resolve_student_plan(db, student.id, NOW) is None
    assert entitlements.user_has_feature(db, student, "timer", NOW) is False


def test_student_own_subscription_does_not_unlock_coach_features(db, catalog):
    _, profile = make_coach(db)  # coach has no plan and no trial
    student = make_student(db, profile)
    student_plan = models.Plan(
        audience=plans.AUDIENCE_STUDENT,
        coach_id=profile.id,
        slug="vip",
        name="VIP",
        display_name="VIP",
        features={"progress_tracking": True},
    )
    db.add(student_plan)
    db.commit()
    subscribe(db, student, student_plan, start=NOW - timedelta(days=1), end=NOW + timedelta(days=29))

    assert entitlements.student_has_feature(db, student.id, "score_loading", NOW) is False


def test_features_snapshot_wins_over_catalog_edits(db, catalog):
    coach, profile = make_coach(db)
    power = catalog["power"]
    subscribe(db, coach, power, start=NOW - timedelta(days=1), end=NOW + timedelta(days=29))

    changed = plans.update_plan_features(power, CoachPlanFeatures(timer=True))
    db.commit()
    assert changed is True
    assert power.version == 2

    assert entitlements.coach_has_feature(db, profile.id, "score_loading", NOW) is True


def test_derived_limits(db, catalog):
    coach, profile = make_coach(db)
    subscribe(db, coach, catalog["power"], start=NOW - timedelta(days=1), end=NOW + timedelta(days=29))
    info = entitlements.resolve_coach_plan(db, profile.id, NOW)

    assert entitlements.planification_access(info) == "monthly"
    assert entitlements.max_disciplines(info) == 3
    assert entitlements.planification_access(None) == "daily"
    assert entitlements.max_disciplines(None) == 0


def test_entitlements_payload_for_student(db, catalog):
    coach, profile = make_coach(db)
    subscribe(db, coach, catalog["power"], start=NOW - timedelta(days=1), end=NOW + timedelta(days=29))
    student = make_student(db, profile)

    payload = entitlements.entitlements_payload(db, student, NOW)
    assert payload["plan_name"] == "Power"
    assert payload["access_status"] == "active"
    assert payload["features"]["score_loading"] is True
    assert payload["coach_id"] == profile.id
    assert payload["current_period_end"] == (NOW + timedelta(days=29)).isoformat()


def test_entitlements_payload_without_plan(db):
    user = make_user(db, "STUDENT")
    payload = entitlements.entitlements_payload(db, user, NOW)
    assert payload["plan_name"] is None
    assert payload["access_status"] == "inactive"
    assert not any(payload["features"].values())


@freeze_time("2025-06-15 23:59:00")
def test_trial_valid_through_last_day_with_wall_clock(db, catalog):
    _, profile = make_coach(db, trial_ends_at=datetime(2025, 6, 15, 0, 0))
    access = entitlements.get_coach_access(db, profile.id)
    assert access.access_status == AccessStatus.TRIAL
    assert entitlements.coach_access_payload(access)["days_remaining"] == 0


@freeze_time("2025-06-16 00:00:01")
def test_trial_expires_the_next_day_with_wall_clock(db, catalog):
    _, profile = make_coach(db, trial_ends_at=datetime(2025, 6, 15, 0, 0))
    access = entitlements.get_coach_access(db, profile.id)
    assert access.access_status == AccessStatus.EXPIRED
    assert entitlements.resolve_coach_plan(db, profile.id) is None
