"""Roll leaf completion up through the catalog hierarchy.

Everything here is a pure function of a hierarchy snapshot and a user's
completion set, recomputed on every read. The cross-sheet view joins
Problem -> SubPattern -> Topic -> Sheet through two lookup maps built from
one scan and drops problems whose chain is broken.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

import db
from engines import hierarchy
from engines.validation import NotFound
from schemas import (
    ProblemProgress,
    Sheet,
    SheetProgress,
    SheetStats,
    SubPatternProgress,
    TopicNode,
    TopicProgress,
    UserProfile,
)

_LOGGER = logging.getLogger(__name__)


def percent_complete(solved: int, total: int) -> int:
    """``round(100 * solved / total)`` rounding halves up; 0 for an empty scope."""
    if total <= 0:
        return 0
    return int(math.floor(100.0 * solved / total + 0.5))


@dataclass
class Tally:
    solved: int = 0
    total: int = 0

    def add(self, other: "Tally") -> None:
        self.solved += other.solved
        self.total += other.total

    @property
    def percent(self) -> int:
        return percent_complete(self.solved, self.total)


@dataclass(frozen=True)
class HierarchySnapshot:
    """Parent links from one full scan; only live rows are kept."""

    sub_to_topic: Mapping[str, str]
    topic_to_sheet: Mapping[str, str]
    problem_to_sub: Mapping[str, str]


def load_snapshot() -> HierarchySnapshot:
    def _live_links(kind: str) -> Dict[str, str]:
        return {
            row["key"]: row["parent"]
            for row in db.list_parent_links(kind)
            if not row["is_deleted"]
        }

    problems = {row["problem_id"]: row["subpattern_id"] for row in db.list_active_problems()}
    return HierarchySnapshot(
        sub_to_topic=_live_links("subpattern"),
        topic_to_sheet=_live_links("topic"),
        problem_to_sub=problems,
    )


def bucket_by_sheet(snapshot: HierarchySnapshot, completed: Set[str]) -> Dict[str, Tally]:
    """Count solved/total problems per sheet, skipping dangling chains."""
    stats: Dict[str, Tally] = {}
    skipped = 0
    for problem_id, sub_id in snapshot.problem_to_sub.items():
        topic_id = snapshot.sub_to_topic.get(sub_id)
        if topic_id is None:
            skipped += 1
            continue
        sheet_id = snapshot.topic_to_sheet.get(topic_id)
        if sheet_id is None:
            skipped += 1
            continue
        tally = stats.setdefault(sheet_id, Tally())
        tally.total += 1
        if problem_id in completed:
            tally.solved += 1
    if skipped:
        _LOGGER.debug("Excluded %s problems with broken parent chains", skipped)
    return stats


def sheet_stats(
    sheets: Sequence[Sheet],
    snapshot: HierarchySnapshot,
    completed: Iterable[str],
) -> List[SheetStats]:
    buckets = bucket_by_sheet(snapshot, set(completed))
    out: List[SheetStats] = []
    for sheet in sheets:
        tally = buckets.get(sheet.id, Tally())
        out.append(
            SheetStats(
                sheet_id=sheet.id,
                title=sheet.title,
                description=sheet.description,
                created_at=sheet.created_at,
                solved=tally.solved,
                total=tally.total,
                percent=tally.percent,
            )
        )
    return out


def summarize_structure(
    sheet_id: str,
    structure: Sequence[TopicNode],
    completed: Mapping[str, datetime],
) -> SheetProgress:
    """Annotate a full structure with solved flags and per-scope counts."""
    topics: List[TopicProgress] = []
    sheet_tally = Tally()
    for topic in structure:
        topic_tally = Tally()
        subs: List[SubPatternProgress] = []
        for sub in topic.sub_patterns:
            problems: List[ProblemProgress] = []
            prefix_solved = True
            for problem in sub.problems:
                solved = problem.id in completed
                problems.append(
                    ProblemProgress(
                        **problem.model_dump(),
                        solved=solved,
                        solved_at=completed.get(problem.id),
                        next_up=prefix_solved and not solved,
                    )
                )
                prefix_solved = prefix_solved and solved
            sub_tally = Tally(solved=sum(1 for p in problems if p.solved), total=len(problems))
            topic_tally.add(sub_tally)
            subs.append(
                SubPatternProgress(
                    **sub.model_dump(exclude={"problems"}),
                    problems=problems,
                    solved=sub_tally.solved,
                    total=sub_tally.total,
                )
            )
        sheet_tally.add(topic_tally)
        topics.append(
            TopicProgress(
                **topic.model_dump(exclude={"sub_patterns"}),
                sub_patterns=subs,
                solved=topic_tally.solved,
                total=topic_tally.total,
            )
        )
    return SheetProgress(
        sheet_id=sheet_id,
        topics=topics,
        solved=sheet_tally.solved,
        total=sheet_tally.total,
        percent=sheet_tally.percent,
    )


def _completion_map(user_id: str) -> Dict[str, datetime]:
    raw = db.load_profile(user_id)
    if raw is None:
        raise NotFound("user", user_id)
    return dict(UserProfile.model_validate(raw).completed_problems)


def get_sheet_stats(user_id: str, completed: Optional[Iterable[str]] = None) -> List[SheetStats]:
    """Solved/total per live sheet for ``user_id``."""
    done = set(completed) if completed is not None else set(_completion_map(user_id))
    return sheet_stats(hierarchy.list_sheets(), load_snapshot(), done)


def get_sheet_progress(sheet_id: str, user_id: str) -> SheetProgress:
    structure = hierarchy.get_full_structure(sheet_id)
    return summarize_structure(sheet_id, structure, _completion_map(user_id))
