"""Pydantic schemas for catalog entities, learner profiles and derived stats."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from engines.validation import MalformedBatchInput

__all__ = [
    "EntityKind",
    "Platform",
    "Role",
    "Direction",
    "Sheet",
    "Topic",
    "SubPattern",
    "Problem",
    "UserProfile",
    "Note",
    "BatchImportItem",
    "SheetStats",
    "ProblemProgress",
    "SubPatternProgress",
    "TopicProgress",
    "SheetProgress",
    "SubPatternNode",
    "TopicNode",
    "MoveResult",
    "parse_batch_import",
]

EntityKind = Literal["sheet", "topic", "subpattern", "problem"]
Platform = Literal["LeetCode", "GFG", "Other"]
Role = Literal["admin", "user"]
Direction = Literal["up", "down"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Sheet(BaseModel):
    id: str
    title: str
    description: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    is_deleted: bool = False


class Topic(BaseModel):
    id: str
    sheet_id: str
    title: str
    order: int = Field(ge=1, description="1-based position among the sheet's live topics.")
    is_deleted: bool = False


class SubPattern(BaseModel):
    id: str
    topic_id: str
    title: str
    order: int = Field(ge=1)
    is_deleted: bool = False


class Problem(BaseModel):
    id: str
    sub_pattern_id: str
    title: str
    url: str = ""
    platform: Platform = "Other"
    platform_id: str = Field(default="", description="Free-form identifier on the external platform.")
    order: int = Field(ge=1)
    is_deleted: bool = False


class UserProfile(BaseModel):
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: Role = "user"
    created_at: datetime = Field(default_factory=_utcnow)
    last_active: datetime = Field(default_factory=_utcnow)
    completed_problems: Dict[str, datetime] = Field(
        default_factory=dict,
        description="problem id -> instant of first solve; unsolved problems have no key.",
    )
    streak_start: Optional[datetime] = None
    current_streak: int = Field(default=0, ge=0)
    max_streak: int = Field(default=0, ge=0)
    last_solved_date: Optional[date] = None

    @property
    def total_solved(self) -> int:
        return len(self.completed_problems)


class Note(BaseModel):
    user_id: str
    problem_id: str
    content: str = ""
    updated_at: datetime = Field(default_factory=_utcnow)


class BatchImportItem(BaseModel):
    """One row of a problem batch import."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: str = Field(min_length=1)
    url: str
    platform: Platform
    platform_id: str = Field(default="", alias="platformId")


class SheetStats(BaseModel):
    sheet_id: str
    title: str
    description: str = ""
    created_at: Optional[datetime] = None
    solved: int
    total: int
    percent: int


class SubPatternNode(SubPattern):
    problems: List[Problem] = Field(default_factory=list)


class TopicNode(Topic):
    sub_patterns: List[SubPatternNode] = Field(default_factory=list)


class ProblemProgress(Problem):
    solved: bool = False
    solved_at: Optional[datetime] = None
    # First unsolved problem of its sub-pattern whose predecessors are all solved.
    next_up: bool = False


class SubPatternProgress(SubPattern):
    problems: List[ProblemProgress] = Field(default_factory=list)
    solved: int = 0
    total: int = 0


class TopicProgress(Topic):
    sub_patterns: List[SubPatternProgress] = Field(default_factory=list)
    solved: int = 0
    total: int = 0


class SheetProgress(BaseModel):
    sheet_id: str
    topics: List[TopicProgress] = Field(default_factory=list)
    solved: int = 0
    total: int = 0
    percent: int = 0


class MoveResult(BaseModel):
    moved: bool
    entity_id: str
    swapped_with: Optional[str] = None
    order: Optional[int] = None


def parse_batch_import(payload: Any) -> List[BatchImportItem]:
    """Validate a batch import payload; any defect rejects the whole batch.

    ``payload`` may be raw JSON text/bytes or an already decoded list.
    Raises ``MalformedBatchInput`` naming the first offending element.
    """

    data = payload
    if isinstance(payload, (str, bytes, bytearray)):
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedBatchInput(f"Invalid JSON: {exc}") from exc

    if not isinstance(data, list):
        raise MalformedBatchInput("Batch must be a JSON array of problems")
    if not data:
        raise MalformedBatchInput("Batch is empty")

    items: List[BatchImportItem] = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise MalformedBatchInput(f"Item {index} is not an object")
        try:
            items.append(BatchImportItem.model_validate(entry))
        except ValidationError as exc:
            first = exc.errors()[0]
            where = ".".join(str(part) for part in first.get("loc", ())) or "item"
            raise MalformedBatchInput(f"Item {index}: {where}: {first.get('msg')}") from exc
    return items
