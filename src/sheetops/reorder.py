"""Dense sibling reordering.

Every non-trivial move rewrites the ``order`` of *all* siblings to their
0-based position, so gaps or duplicates left behind by earlier partial
failures are healed by the next successful move.

The output is valid only for the exact sibling list passed in.  Type
partitions (KPI vs custom columns) are enforced by passing an already
partitioned list: a move can never cross a partition because the other
partition is simply not in the list.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Hashable

from sheetops.errors import NotFoundError
from sheetops.models import WriteSet


class Direction(str, Enum):
    up = "up"
    down = "down"


def sort_siblings(siblings: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Stable sort on current ``order``; a missing order sorts as 0."""
    return sorted(siblings, key=lambda r: r.get("order") or 0)


def _index_of(siblings: list[dict[str, Any]], item_id: str, kind: str) -> int:
    for i, rec in enumerate(siblings):
        if rec.get("id") == item_id:
            return i
    raise NotFoundError(kind, item_id)


def _renumbered(ordered: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [{**rec, "order": i} for i, rec in enumerate(ordered)]


def _order_writes(ordered: list[dict[str, Any]], collection_path: str) -> WriteSet:
    ws = WriteSet()
    for i, rec in enumerate(ordered):
        ws.update(f"{collection_path}/{rec['id']}", {"order": i})
    return ws


def reordered_one_step(
    siblings: list[dict[str, Any]],
    item_id: str,
    direction: Direction | str,
    *,
    kind: str = "record",
) -> list[dict[str, Any]] | None:
    """Return the renumbered sibling list after a one-step move.

    Returns ``None`` for a boundary no-op (first item up, last item down).

    Raises:
        NotFoundError: If *item_id* is not among *siblings*.
        ValueError: If *direction* is not ``up`` or ``down``.
    """
    direction = Direction(direction)
    ordered = sort_siblings(siblings)
    i = _index_of(ordered, item_id, kind)
    j = i - 1 if direction == Direction.up else i + 1
    if j < 0 or j >= len(ordered):
        return None
    ordered[i], ordered[j] = ordered[j], ordered[i]
    return _renumbered(ordered)


def move_one_step(
    siblings: list[dict[str, Any]],
    item_id: str,
    direction: Direction | str,
    collection_path: str,
    *,
    kind: str = "record",
) -> WriteSet:
    """Swap *item_id* with its neighbour and renumber every sibling.

    Args:
        siblings: Records sharing one parent (or container).
        item_id: Record to move.
        direction: ``"up"`` (towards order 0) or ``"down"``.
        collection_path: Collection holding the siblings.
        kind: Entity kind name used in error messages.

    Returns:
        One ``order`` update per sibling, or an empty write set when the
        move is a boundary no-op.

    Raises:
        NotFoundError: If *item_id* is not among *siblings*.
    """
    result = reordered_one_step(siblings, item_id, direction, kind=kind)
    if result is None:
        return WriteSet()
    return _order_writes(result, collection_path)


def move_to(
    siblings: list[dict[str, Any]],
    item_id: str,
    target_index: int,
    collection_path: str,
    *,
    kind: str = "record",
) -> WriteSet:
    """Move *item_id* to *target_index* (drag and drop) and renumber.

    *target_index* is clamped to the list bounds.  Moving an item onto
    its own position is a no-op.

    Raises:
        NotFoundError: If *item_id* is not among *siblings*.
    """
    ordered = sort_siblings(siblings)
    i = _index_of(ordered, item_id, kind)
    target = max(0, min(target_index, len(ordered) - 1))
    if target == i:
        return WriteSet()
    moved = ordered.pop(i)
    ordered.insert(target, moved)
    return _order_writes(ordered, collection_path)


def partition(
    records: list[dict[str, Any]],
    key: Callable[[dict[str, Any]], Hashable],
) -> dict[Hashable, list[dict[str, Any]]]:
    """Split records into groups that reorder independently."""
    groups: dict[Hashable, list[dict[str, Any]]] = {}
    for rec in records:
        groups.setdefault(key(rec), []).append(rec)
    return groups


def column_partition(columns: list[dict[str, Any]], column_id: str) -> list[dict[str, Any]]:
    """Return the type group (KPI or custom) that contains *column_id*.

    Raises:
        NotFoundError: If *column_id* is not among *columns*.
    """
    target = next((c for c in columns if c.get("id") == column_id), None)
    if target is None:
        raise NotFoundError("kpi_measure_column", column_id)
    is_kpi = target.get("type") == "kpi"
    return partition(columns, lambda c: c.get("type") == "kpi")[is_kpi]
