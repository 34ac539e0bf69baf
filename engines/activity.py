"""Engagement metrics derived from a completion map."""

from __future__ import annotations

import random
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Dict, List, Mapping, Optional, Set

from engines.aggregation import percent_complete
from engines.progress import calendar_day
from schemas import Problem, TopicNode


@dataclass
class DailyCount:
    date: date
    count: int


def daily_activity(completed: Mapping[str, datetime], tz: Optional[tzinfo] = None) -> Dict[date, int]:
    """Number of first solves per calendar day."""
    counts: Counter = Counter(calendar_day(ts, tz) for ts in completed.values() if ts is not None)
    return dict(counts)


def activity_window(
    completed: Mapping[str, datetime],
    today: date,
    days: int = 365,
    tz: Optional[tzinfo] = None,
) -> List[DailyCount]:
    """Zero-filled series of the ``days`` calendar days ending with ``today``."""
    counts = daily_activity(completed, tz)
    start = today - timedelta(days=max(days, 1) - 1)
    return [
        DailyCount(date=start + timedelta(days=offset), count=counts.get(start + timedelta(days=offset), 0))
        for offset in range((today - start).days + 1)
    ]


def solved_on(completed: Mapping[str, datetime], day: date, tz: Optional[tzinfo] = None) -> int:
    return daily_activity(completed, tz).get(day, 0)


def daily_mission_progress(solved_today: int, target: int) -> int:
    """Percent of the daily target reached, capped at 100."""
    return min(100, percent_complete(solved_today, target))


def unsolved_in_topic(topic: TopicNode, completed: Set[str]) -> List[Problem]:
    return [
        problem
        for sub in topic.sub_patterns
        for problem in sub.problems
        if problem.id not in completed
    ]


def pick_random_unsolved(
    topic: TopicNode,
    completed: Set[str],
    rng: Optional[random.Random] = None,
) -> Optional[Problem]:
    """A uniformly random unsolved problem of ``topic``; ``None`` when all are solved."""
    remaining = unsolved_in_topic(topic, completed)
    if not remaining:
        return None
    return (rng or random).choice(remaining)
