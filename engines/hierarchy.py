"""Catalog hierarchy store: Sheet -> Topic -> SubPattern -> Problem.

Creation appends after the live siblings, listings hide soft-deleted rows,
and soft deletes of topics and sub-patterns are refused while they still
hold live children. The child check and the delete are separate statements,
so the guard is advisory under concurrent authoring.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from uuid import uuid4

import db
from engines.validation import HasActiveChildren, NotFound
from schemas import (
    BatchImportItem,
    Problem,
    Sheet,
    SubPattern,
    SubPatternNode,
    Topic,
    TopicNode,
    parse_batch_import,
)

_LOGGER = logging.getLogger(__name__)

Entity = Union[Sheet, Topic, SubPattern, Problem]

# Sheet deletion is left to operational policy.
GUARDED_KINDS = frozenset({"topic", "subpattern"})


def new_key() -> str:
    return uuid4().hex


def to_model(kind: str, row: sqlite3.Row) -> Entity:
    """Convert a stored row of ``kind`` into its schema model."""
    data = dict(row)
    deleted = bool(data.get("is_deleted"))
    if kind == "sheet":
        return Sheet(
            id=data["sheet_id"],
            title=data["title"],
            description=data.get("description") or "",
            created_at=data["created_at"],
            is_deleted=deleted,
        )
    if kind == "topic":
        return Topic(
            id=data["topic_id"],
            sheet_id=data["sheet_id"],
            title=data["title"],
            order=data["position"],
            is_deleted=deleted,
        )
    if kind == "subpattern":
        return SubPattern(
            id=data["subpattern_id"],
            topic_id=data["topic_id"],
            title=data["title"],
            order=data["position"],
            is_deleted=deleted,
        )
    if kind == "problem":
        return Problem(
            id=data["problem_id"],
            sub_pattern_id=data["subpattern_id"],
            title=data["title"],
            url=data.get("url") or "",
            platform=data.get("platform") or "Other",
            platform_id=data.get("platform_id") or "",
            order=data["position"],
            is_deleted=deleted,
        )
    raise ValueError(f"unknown entity kind: {kind}")


def locate(entity_id: str) -> Tuple[str, Entity]:
    """Return ``(kind, entity)`` for ``entity_id`` or raise ``NotFound``."""
    found = db.locate_entity(entity_id)
    if found is None:
        raise NotFound("entity", entity_id)
    kind, row = found
    return kind, to_model(kind, row)


def get(kind: str, entity_id: str) -> Entity:
    row = db.get_entity(kind, entity_id)
    if row is None:
        raise NotFound(kind, entity_id)
    return to_model(kind, row)


def parent_of(kind: str, entity: Entity) -> Optional[str]:
    if kind == "topic":
        return entity.sheet_id  # type: ignore[union-attr]
    if kind == "subpattern":
        return entity.topic_id  # type: ignore[union-attr]
    if kind == "problem":
        return entity.sub_pattern_id  # type: ignore[union-attr]
    return None


# -------------- listing --------------
def list_sheets(include_deleted: bool = False) -> List[Sheet]:
    return [to_model("sheet", row) for row in db.list_sheets(include_deleted=include_deleted)]  # type: ignore[misc]


def list_children(parent_id: str) -> Tuple[str, List[Entity]]:
    """Return ``(child_kind, live children ascending by order)`` for ``parent_id``."""
    parent_kind, _ = locate(parent_id)
    child_kind = db.CHILD_KIND.get(parent_kind)
    if child_kind is None:
        return "", []
    rows = db.list_children(parent_kind, parent_id)
    return child_kind, [to_model(child_kind, row) for row in rows]


def list_deleted(kind: str, limit: int = 200) -> List[Entity]:
    return [to_model(kind, row) for row in db.list_deleted(kind, limit=limit)]


def get_full_structure(sheet_id: str) -> List[TopicNode]:
    """Topic -> SubPattern -> Problem tree of live entities, each level ordered."""
    get("sheet", sheet_id)
    tree: List[TopicNode] = []
    for topic_row in db.list_children("sheet", sheet_id):
        topic = to_model("topic", topic_row)
        sub_nodes: List[SubPatternNode] = []
        for sub_row in db.list_children("topic", topic.id):
            sub = to_model("subpattern", sub_row)
            problems = [to_model("problem", row) for row in db.list_children("subpattern", sub.id)]
            sub_nodes.append(SubPatternNode(**sub.model_dump(), problems=problems))
        tree.append(TopicNode(**topic.model_dump(), sub_patterns=sub_nodes))
    return tree


# -------------- authoring --------------
def create_sheet(title: str, description: str = "") -> Sheet:
    sheet_id = new_key()
    db.insert_sheet(sheet_id, title, description)
    _LOGGER.info("Created sheet %s (%s)", sheet_id, title)
    return get("sheet", sheet_id)  # type: ignore[return-value]


def create_child(
    parent_id: str,
    title: str,
    *,
    url: str = "",
    platform: str = "Other",
    platform_id: str = "",
) -> Entity:
    """Create a child under ``parent_id`` after its highest live sibling."""
    parent_kind, _ = locate(parent_id)
    child_kind = db.CHILD_KIND.get(parent_kind)
    if child_kind is None:
        raise ValueError("problems cannot hold children")
    extra: Dict[str, Any] = {}
    if child_kind == "problem":
        extra = {"url": url, "platform": platform, "platform_id": platform_id}
    entity_id = new_key()
    position = db.insert_child(child_kind, entity_id, parent_id, title, extra)
    _LOGGER.info("Created %s %s under %s at order %s", child_kind, entity_id, parent_id, position)
    return get(child_kind, entity_id)


def rename(entity_id: str, title: str, description: Optional[str] = None) -> Entity:
    kind, _ = locate(entity_id)
    if description is not None and kind != "sheet":
        raise ValueError("only sheets carry a description")
    db.rename_entity(kind, entity_id, title)
    if description is not None:
        db.update_sheet_description(entity_id, description)
    return get(kind, entity_id)


def soft_delete(entity_id: str) -> Entity:
    """Flag ``entity_id`` deleted unless it still has live children."""
    kind, _ = locate(entity_id)
    if kind in GUARDED_KINDS:
        remaining = db.count_active_children(kind, entity_id)
        if remaining > 0:
            _LOGGER.warning(
                "Refused to delete %s %s: %s active children", kind, entity_id, remaining
            )
            raise HasActiveChildren(remaining, kind=kind, key=entity_id)
    db.set_deleted(kind, entity_id, True)
    _LOGGER.info("Soft-deleted %s %s", kind, entity_id)
    return get(kind, entity_id)


def restore(entity_id: str) -> Entity:
    """Bring ``entity_id`` back; it goes to the end if its old order was taken meanwhile."""
    # The parent is not re-validated; a restored child may sit under a deleted parent.
    kind, _ = locate(entity_id)
    moved_to = db.restore_entity(kind, entity_id)
    if moved_to is not None:
        _LOGGER.info("Restored %s %s at order %s", kind, entity_id, moved_to)
    else:
        _LOGGER.info("Restored %s %s", kind, entity_id)
    return get(kind, entity_id)


def import_problems(subpattern_id: str, payload: Any) -> List[Problem]:
    """Append every problem of a batch payload to ``subpattern_id``, or none of them."""
    get("subpattern", subpattern_id)
    items: Sequence[BatchImportItem] = parse_batch_import(payload)
    rows = [
        {
            "problem_id": new_key(),
            "title": item.title,
            "url": item.url,
            "platform": item.platform,
            "platform_id": item.platform_id,
        }
        for item in items
    ]
    inserted = db.insert_problems_batch(subpattern_id, rows)
    _LOGGER.info("Imported %s problems into sub-pattern %s", len(inserted), subpattern_id)
    return [get("problem", problem_id) for problem_id, _ in inserted]  # type: ignore[misc]
