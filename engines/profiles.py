"""Learner profile lifecycle: first sign-in, heartbeat, roles and oversight."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

import db
from engines.validation import NotFound, PermissionDenied
from env_validation import get_admin_emails
from schemas import UserProfile

_LOGGER = logging.getLogger(__name__)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _is_admin_email(email: Optional[str]) -> bool:
    return bool(email) and email.strip().lower() in get_admin_emails()


def get_profile(user_id: str) -> UserProfile:
    raw = db.load_profile(user_id)
    if raw is None:
        raise NotFound("user", user_id)
    return UserProfile.model_validate(raw)


def sign_in(
    user_id: str,
    email: Optional[str] = None,
    display_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> UserProfile:
    """Create the profile on first sign-in, otherwise stamp activity.

    Listed admin emails are promoted on every sign-in so the allow-list can
    be extended after accounts exist.
    """
    now = _now(now)
    with db.transaction() as con:
        raw = db.load_profile(user_id, con=con)
        if raw is None:
            profile = UserProfile(
                uid=user_id,
                email=email,
                display_name=display_name,
                role="admin" if _is_admin_email(email) else "user",
                created_at=now,
                last_active=now,
                streak_start=now,
            )
            _LOGGER.info("Created profile for %s with role %s", user_id, profile.role)
        else:
            profile = UserProfile.model_validate(raw)
            update = {"last_active": now}
            if email and not profile.email:
                update["email"] = email
            if _is_admin_email(email or profile.email) and profile.role != "admin":
                update["role"] = "admin"
                _LOGGER.info("Promoted %s to admin", user_id)
            profile = profile.model_copy(update=update)
        db.store_profile(profile.model_dump(mode="json"), con=con)
    return profile


def heartbeat(user_id: str, now: Optional[datetime] = None) -> None:
    if db.touch_last_active(user_id, _now(now)) == 0:
        raise NotFound("user", user_id)


def update_display_name(user_id: str, display_name: str) -> UserProfile:
    if db.set_display_name(user_id, display_name.strip()) == 0:
        raise NotFound("user", user_id)
    return get_profile(user_id)


def require_admin(user_id: Optional[str]) -> UserProfile:
    """Return the acting profile or raise ``PermissionDenied`` unless it is an admin."""
    if not user_id:
        raise PermissionDenied("admin role required")
    raw = db.load_profile(user_id)
    if raw is None or raw.get("role") != "admin":
        _LOGGER.warning("Rejected admin operation for %s", user_id)
        raise PermissionDenied("admin role required")
    return UserProfile.model_validate(raw)


def list_profiles(limit: int = 500) -> List[UserProfile]:
    """All profiles, most recently active first."""
    return [UserProfile.model_validate(raw) for raw in db.list_profiles(limit=limit)]
