from datetime import datetime, timedelta, timezone

import pytest

import db
from engines import profiles
from engines.validation import NotFound, PermissionDenied

T0 = datetime(2024, 5, 1, 8, tzinfo=timezone.utc)


def test_first_sign_in_creates_user_profile(temp_db):
    profile = profiles.sign_in("u1", email="u1@example.com", display_name="U One", now=T0)
    assert profile.role == "user"
    assert profile.created_at == T0
    assert profile.streak_start == T0
    assert profile.completed_problems == {}
    stored = profiles.get_profile("u1")
    assert stored.display_name == "U One"
    assert stored.current_streak == 0


def test_listed_email_becomes_admin(temp_db, monkeypatch):
    monkeypatch.setenv("ADMIN_EMAILS", "Boss@Example.com, other@example.com")
    profile = profiles.sign_in("boss", email="boss@example.com", now=T0)
    assert profile.role == "admin"
    assert profiles.require_admin("boss").uid == "boss"


def test_existing_user_promoted_when_added_to_allow_list(temp_db, monkeypatch):
    profiles.sign_in("late", email="late@example.com", now=T0)
    monkeypatch.setenv("ADMIN_EMAILS", "late@example.com")
    later = profiles.sign_in("late", now=T0 + timedelta(days=1))
    assert later.role == "admin"
    assert later.created_at == T0
    assert later.last_active == T0 + timedelta(days=1)


def test_sign_in_keeps_progress(temp_db):
    profiles.sign_in("u1", now=T0)
    raw = db.load_profile("u1")
    raw["completed_problems"] = {"p1": T0.isoformat()}
    db.store_profile(raw)
    again = profiles.sign_in("u1", now=T0 + timedelta(hours=2))
    assert list(again.completed_problems) == ["p1"]


def test_heartbeat_stamps_last_active(temp_db):
    profiles.sign_in("u1", now=T0)
    profiles.heartbeat("u1", now=T0 + timedelta(minutes=5))
    assert profiles.get_profile("u1").last_active == T0 + timedelta(minutes=5)


def test_heartbeat_unknown_user(temp_db):
    with pytest.raises(NotFound):
        profiles.heartbeat("nobody")


def test_require_admin_rejects_learners(temp_db):
    profiles.sign_in("u1", email="u1@example.com", now=T0)
    with pytest.raises(PermissionDenied):
        profiles.require_admin("u1")
    with pytest.raises(PermissionDenied):
        profiles.require_admin("missing")
    with pytest.raises(PermissionDenied):
        profiles.require_admin(None)


def test_list_profiles_most_recent_first(temp_db):
    profiles.sign_in("old", now=T0)
    profiles.sign_in("new", now=T0 + timedelta(days=2))
    profiles.heartbeat("old", now=T0 + timedelta(days=3))
    assert [p.uid for p in profiles.list_profiles()] == ["old", "new"]


def test_update_display_name(temp_db):
    profiles.sign_in("u1", now=T0)
    assert profiles.update_display_name("u1", "  Renamed ").display_name == "Renamed"
    with pytest.raises(NotFound):
        profiles.update_display_name("ghost", "x")
