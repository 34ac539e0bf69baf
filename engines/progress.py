"""Per-user solve tracking and daily streak derivation.

The profile is one aggregate: every transition reads the whole record,
derives the next state with a pure function and writes it back inside a
single immediate transaction. Unsolving never rewinds streak history.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional

import db
from engines.validation import NotFound
from env_validation import get_streak_timezone
from schemas import UserProfile

_LOGGER = logging.getLogger(__name__)


def _aware(now: datetime) -> datetime:
    return now if now.tzinfo is not None else now.replace(tzinfo=timezone.utc)


def calendar_day(moment: datetime, tz: Optional[tzinfo] = None) -> date:
    """Calendar date of ``moment`` in the streak timezone."""
    return _aware(moment).astimezone(tz or get_streak_timezone()).date()


def apply_solve(profile: UserProfile, problem_id: str, now: datetime, tz: Optional[tzinfo] = None) -> UserProfile:
    """Return the profile after marking ``problem_id`` solved at ``now``."""
    now = _aware(now)
    if problem_id in profile.completed_problems:
        return profile.model_copy(update={"last_active": now})

    completed = dict(profile.completed_problems)
    completed[problem_id] = now
    update = {"completed_problems": completed, "last_active": now}

    today = calendar_day(now, tz)
    last = profile.last_solved_date
    if last == today:
        return profile.model_copy(update=update)
    if last is not None and last == today - timedelta(days=1):
        current = profile.current_streak + 1
        update.update(
            current_streak=current,
            max_streak=max(profile.max_streak, current),
            last_solved_date=today,
        )
    else:
        update.update(
            current_streak=1,
            max_streak=max(profile.max_streak, 1),
            last_solved_date=today,
            streak_start=now,
        )
    return profile.model_copy(update=update)


def apply_unsolve(profile: UserProfile, problem_id: str, now: datetime) -> UserProfile:
    """Return the profile with ``problem_id`` removed; streak fields are kept."""
    completed = {k: v for k, v in profile.completed_problems.items() if k != problem_id}
    return profile.model_copy(update={"completed_problems": completed, "last_active": _aware(now)})


def _load(user_id: str, con) -> UserProfile:
    raw = db.load_profile(user_id, con=con)
    if raw is None:
        raise NotFound("user", user_id)
    return UserProfile.model_validate(raw)


def solve(user_id: str, problem_id: str, now: Optional[datetime] = None) -> UserProfile:
    if db.get_entity("problem", problem_id) is None:
        raise NotFound("problem", problem_id)
    now = _aware(now or datetime.now(timezone.utc))
    with db.transaction() as con:
        before = _load(user_id, con)
        after = apply_solve(before, problem_id, now)
        db.store_profile(after.model_dump(mode="json"), con=con)
    if after.current_streak != before.current_streak:
        _LOGGER.info(
            "Streak for %s is now %s (max %s)", user_id, after.current_streak, after.max_streak
        )
    return after


def unsolve(user_id: str, problem_id: str, now: Optional[datetime] = None) -> UserProfile:
    now = _aware(now or datetime.now(timezone.utc))
    with db.transaction() as con:
        before = _load(user_id, con)
        after = apply_unsolve(before, problem_id, now)
        db.store_profile(after.model_dump(mode="json"), con=con)
    return after


def toggle(user_id: str, problem_id: str, solved: bool, now: Optional[datetime] = None) -> UserProfile:
    return solve(user_id, problem_id, now) if solved else unsolve(user_id, problem_id, now)
