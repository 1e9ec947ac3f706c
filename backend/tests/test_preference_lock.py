from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import insert, update

from gymcoach import models, preference_lock
from gymcoach.errors import ConcurrentWriteConflict, LockedPreferenceChange, ValidationError
from gymcoach.preference_lock import can_change_preference

from conftest import auth_headers, make_coach, make_student, make_student_plan, subscribe

PERIOD_START = datetime(2025, 5, 1)
PERIOD_END = datetime(2025, 5, 31)
SUB = SimpleNamespace(status="active", current_period_start=PERIOD_START, current_period_end=PERIOD_END)


class TestDecision:
    def test_change_inside_period_is_denied_until_period_end(self):
        decision = can_change_preference(PERIOD_START + timedelta(days=1), SUB)
        assert decision.allowed is False
        assert decision.next_eligible_date == PERIOD_END

    def test_change_exactly_at_period_start_counts_as_this_period(self):
        assert can_change_preference(PERIOD_START, SUB).allowed is False

    def test_change_before_period_is_allowed(self):
        assert can_change_preference(PERIOD_START - timedelta(seconds=1), SUB).allowed is True

    def test_never_changed_is_allowed(self):
        assert can_change_preference(None, SUB).allowed is True

    def test_no_subscription_is_unrestricted(self):
        assert can_change_preference(PERIOD_START + timedelta(days=1), None).allowed is True

    def test_unreadable_period_start_denies(self):
        broken = SimpleNamespace(current_period_start="??", current_period_end=PERIOD_END)
        decision = can_change_preference(PERIOD_START, broken)
        assert decision.allowed is False
        assert decision.next_eligible_date == PERIOD_END


@pytest.fixture
def discipline(db):
    d = models.Discipline(name="CrossFit", is_active=True)
    db.add(d)
    db.commit()
    lvl = models.DisciplineLevel(discipline_id=d.id, name="RX")
    other = models.DisciplineLevel(discipline_id=d.id, name="Scaled")
    db.add_all([lvl, other])
    db.commit()
    return d, lvl, other


@pytest.fixture
def subscribed_student(db):
    _, profile = make_coach(db)
    student = make_student(db, profile)
    plan = make_student_plan(db, profile)
    now = models.utcnow()
    sub = subscribe(db, student, plan, start=now - timedelta(days=2), end=now + timedelta(days=28))
    return student, sub


def test_first_change_is_recorded_then_locked(db, discipline, subscribed_student):
    d, lvl, other = discipline
    student, sub = subscribed_student

    pref = preference_lock.update_preference(db, student.id, d.id, lvl.id)
    assert pref.preferred_level_id == lvl.id
    assert pref.last_preference_change_date is not None

    with pytest.raises(LockedPreferenceChange) as exc:
        preference_lock.update_preference(db, student.id, d.id, other.id)
    assert exc.value.next_change_date == sub.current_period_end
    assert exc.value.extra["next_change_date"] == sub.current_period_end.isoformat()

    # rejected change left the stored preference untouched
    db.expire_all()
    assert preference_lock.get_preference(db, student.id).preferred_level_id == lvl.id


def test_student_without_subscription_changes_freely(db, discipline):
    d, lvl, other = discipline
    student = make_student(db)
    preference_lock.update_preference(db, student.id, d.id, lvl.id)
    pref = preference_lock.update_preference(db, student.id, d.id, other.id)
    assert pref.preferred_level_id == other.id


def test_level_must_belong_to_discipline(db, discipline):
    d, lvl, _ = discipline
    other_d = models.Discipline(name="Running", is_active=True)
    db.add(other_d)
    db.commit()
    student = make_student(db)
    with pytest.raises(ValidationError):
        preference_lock.update_preference(db, student.id, other_d.id, lvl.id)


def test_lock_status_reports_next_change_date(db, discipline, subscribed_student):
    d, lvl, _ = discipline
    student, sub = subscribed_student
    assert preference_lock.lock_status(db, student.id).allowed is True

    preference_lock.update_preference(db, student.id, d.id, lvl.id)
    status = preference_lock.lock_status(db, student.id)
    assert status.allowed is False
    assert status.next_eligible_date == sub.current_period_end


def test_api_locked_change_returns_403_with_next_change_date(client, db, discipline, subscribed_student):
    d, lvl, other = discipline
    student, sub = subscribed_student
    headers = auth_headers(student)

    r1 = client.put(f"/user-preferences/{student.id}", json={"discipline_id": d.id, "level_id": lvl.id}, headers=headers)
    assert r1.status_code == 200, r1.text
    assert r1.json()["can_change"] is False

    r2 = client.put(f"/user-preferences/{student.id}", json={"discipline_id": d.id, "level_id": other.id}, headers=headers)
    assert r2.status_code == 403
    body = r2.json()
    assert body["code"] == "PREFERENCE_LOCKED"
    assert body["next_change_date"] == sub.current_period_end.isoformat()
    assert body["error"]

    r3 = client.get(f"/user-preferences/{student.id}", headers=headers)
    assert r3.status_code == 200
    assert r3.json()["level_id"] == lvl.id


def test_api_cannot_edit_someone_else(client, db, discipline):
    d, lvl, _ = discipline
    alice = make_student(db)
    bob = make_student(db)
    r = client.put(f"/user-preferences/{bob.id}", json={"discipline_id": d.id, "level_id": lvl.id}, headers=auth_headers(alice))
    assert r.status_code == 403
    assert r.json()["code"] == "NOT_AUTHORIZED"


# -------------------------------------------------
# Lost races: another request wrote the preference between read and write
# -------------------------------------------------
def _write_first(monkeypatch, write):
    real = preference_lock.ledger.current_subscription

    def _current_subscription(db, subscriber_id, now):
        write(db)
        return real(db, subscriber_id, now)

    monkeypatch.setattr(preference_lock.ledger, "current_subscription", _current_subscription)


def _touch_change_date(student_id):
    def _write(db):
        db.execute(
            update(models.UserPreference)
            .where(models.UserPreference.user_id == student_id)
            .values(last_preference_change_date=models.utcnow())
            .execution_options(synchronize_session=False)
        )

    return _write


def _seed_preference(db, student_id, d, lvl, changed_at):
    db.add(
        models.UserPreference(
            user_id=student_id,
            preferred_discipline_id=d.id,
            preferred_level_id=lvl.id,
            last_preference_change_date=changed_at,
        )
    )
    db.commit()


def test_concurrent_change_inside_period_is_locked(db, discipline, subscribed_student, monkeypatch):
    d, lvl, other = discipline
    student, sub = subscribed_student
    _seed_preference(db, student.id, d, lvl, sub.current_period_start - timedelta(days=5))
    _write_first(monkeypatch, _touch_change_date(student.id))

    with pytest.raises(LockedPreferenceChange) as exc:
        preference_lock.update_preference(db, student.id, d.id, other.id)
    assert exc.value.next_change_date == sub.current_period_end

    db.expire_all()
    assert preference_lock.get_preference(db, student.id).preferred_level_id == lvl.id


def test_concurrent_change_without_subscription_is_a_conflict(db, discipline, monkeypatch):
    d, lvl, other = discipline
    student = make_student(db)
    _seed_preference(db, student.id, d, lvl, datetime(2025, 1, 1))
    _write_first(monkeypatch, _touch_change_date(student.id))

    with pytest.raises(ConcurrentWriteConflict):
        preference_lock.update_preference(db, student.id, d.id, other.id)


def test_concurrent_first_preference_insert(db, discipline, subscribed_student, monkeypatch):
    d, lvl, other = discipline
    student, sub = subscribed_student

    def _insert(session):
        session.execute(
            insert(models.UserPreference).values(
                user_id=student.id,
                preferred_discipline_id=d.id,
                preferred_level_id=lvl.id,
                last_preference_change_date=models.utcnow(),
                updated_at=models.utcnow(),
            )
        )

    _write_first(monkeypatch, _insert)

    with pytest.raises(LockedPreferenceChange) as exc:
        preference_lock.update_preference(db, student.id, d.id, other.id)
    assert exc.value.next_change_date == sub.current_period_end
