"""Pairwise sibling reordering.

A move swaps the ``order`` of an entity with its neighbour in the sorted
sibling snapshot. Moving past either end is a no-op, never an error.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol, Sequence, Tuple

import db
from engines import hierarchy
from engines.validation import InvalidMove
from schemas import Direction, MoveResult

_LOGGER = logging.getLogger(__name__)


class Orderable(Protocol):
    id: str
    order: int


SwapWriter = Callable[[Tuple[str, int], Tuple[str, int]], None]


def plan_move(
    entity_id: str,
    direction: Direction,
    siblings: Sequence[Orderable],
) -> Optional[Tuple[Orderable, Orderable]]:
    """Return ``(entity, neighbour)`` to swap, or ``None`` when the move is a no-op.

    ``sorted`` is stable, so duplicate orders keep the snapshot's listing order.
    """
    if direction not in ("up", "down"):
        raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")
    ordered = sorted(siblings, key=lambda item: item.order)
    index = next((i for i, item in enumerate(ordered) if item.id == entity_id), None)
    if index is None:
        return None
    target = index - 1 if direction == "up" else index + 1
    if target < 0 or target >= len(ordered):
        return None
    return ordered[index], ordered[target]


def move(
    entity_id: str,
    direction: Direction,
    siblings: Sequence[Orderable],
    swap: SwapWriter,
    *,
    strict: bool = False,
) -> MoveResult:
    """Move ``entity_id`` one slot within ``siblings`` and persist via ``swap``.

    ``swap`` receives the ``(entity_id, new_order)`` pair for each side and must apply both
    atomically. With ``strict`` an out-of-range move raises ``InvalidMove``.
    """
    pair = plan_move(entity_id, direction, siblings)
    if pair is None:
        if strict:
            raise InvalidMove(f"cannot move {entity_id} {direction}")
        _LOGGER.debug("Move %s %s is a no-op", entity_id, direction)
        return MoveResult(moved=False, entity_id=entity_id)
    item, neighbour = pair
    swap((item.id, neighbour.order), (neighbour.id, item.order))
    return MoveResult(
        moved=True,
        entity_id=item.id,
        swapped_with=neighbour.id,
        order=neighbour.order,
    )


def move_in_store(entity_id: str, direction: Direction) -> MoveResult:
    """Move a stored topic, sub-pattern or problem against its live siblings."""
    kind, entity = hierarchy.locate(entity_id)
    parent_id = hierarchy.parent_of(kind, entity)
    if parent_id is None:
        raise ValueError("sheets are ordered by creation time and cannot be moved")
    parent_kind = db.PARENT_KIND[kind]
    # Snapshot and swap share one write lock so concurrent moves serialize.
    with db.transaction() as con:
        rows = db.list_children(parent_kind, parent_id, con=con)
        siblings = [hierarchy.to_model(kind, row) for row in rows]

        def _swap(first: Tuple[str, int], second: Tuple[str, int]) -> None:
            db.assign_positions(kind, [first, second], con=con)

        result = move(entity_id, direction, siblings, _swap)
    if result.moved:
        _LOGGER.info(
            "Moved %s %s %s, swapped with %s", kind, entity_id, direction, result.swapped_with
        )
    return result
