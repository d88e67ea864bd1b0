"""Delete write sets: subtrees, measures, whole sheets, and columns.

Like the copy and reorder engines these are pure builders.  Deleting a
container deletes everything it owns in the same batch, so a failure
never leaves orphans behind.
"""

from __future__ import annotations

from typing import Any

from sheetops.entities import EntityKind, SheetKind, get_kind
from sheetops.errors import IntegrityError, NotFoundError
from sheetops.models import MeasureTree, WriteSet
from sheetops.paths import doc_path
from sheetops.rewrite import key_deletions


def descendants(records: list[dict[str, Any]], root_id: str, *, max_depth: int = 64) -> list[str]:
    """Return *root_id* followed by every descendant id, breadth first.

    Raises:
        NotFoundError: If *root_id* is not in *records*.
        IntegrityError: If the parent links loop back or nest too deep.
    """
    ids = {r["id"] for r in records}
    if root_id not in ids:
        raise NotFoundError("record", root_id)

    children: dict[str, list[str]] = {}
    for rec in sorted(records, key=lambda r: (r.get("order") or 0, r["id"])):
        parent_id = rec.get("parent_id")
        if parent_id is not None:
            children.setdefault(parent_id, []).append(rec["id"])

    out: list[str] = []
    seen: set[str] = set()
    level = [root_id]
    depth = 0
    while level:
        if depth > max_depth:
            raise IntegrityError(f"tree depth exceeds {max_depth}", path=[root_id, level[0]])
        nxt: list[str] = []
        for rec_id in level:
            if rec_id in seen:
                raise IntegrityError(f"parent cycle detected at {rec_id!r}", path=[root_id, rec_id])
            seen.add(rec_id)
            out.append(rec_id)
            nxt.extend(children.get(rec_id, []))
        level = nxt
        depth += 1
    return out


def cascade_delete(
    project_id: str,
    kind: EntityKind,
    records: list[dict[str, Any]],
    root_id: str,
    *,
    max_depth: int = 64,
) -> WriteSet:
    """Delete *root_id* and its whole subtree.

    Remaining siblings keep their ``order`` values; the gap is healed by
    the next move in that sibling group.
    """
    ws = WriteSet()
    try:
        ids = descendants(records, root_id, max_depth=max_depth)
    except NotFoundError:
        raise NotFoundError(kind.name, root_id) from None
    for rec_id in ids:
        ws.delete(doc_path(project_id, kind.collection, rec_id))
    return ws


def measure_delete(project_id: str, tree: MeasureTree, measure_id: str) -> WriteSet:
    """Delete a measure with its columns, rows, and nested sub-measures.

    Raises:
        NotFoundError: If *measure_id* is not in *tree*.
        IntegrityError: If sub-measures nest back into an ancestor.
    """
    measure_kind = get_kind("kpi_measure")
    column_kind = get_kind("kpi_measure_column")
    row_kind = get_kind("kpi_measure_row")

    tree.measure(measure_id)
    ws = WriteSet()
    pending = [(measure_id, [measure_id])]
    while pending:
        current, chain = pending.pop(0)
        ws.delete(doc_path(project_id, measure_kind.collection, current))
        for column in tree.columns_of(current):
            ws.delete(doc_path(project_id, column_kind.collection, column.id))
        for row in tree.rows_of(current):
            ws.delete(doc_path(project_id, row_kind.collection, row.id))
            for sub in tree.sub_measures_of(row.id):
                if sub.id in chain:
                    raise IntegrityError("measure nesting cycle detected", path=chain + [sub.id])
                pending.append((sub.id, chain + [sub.id]))
    return ws


def sheet_delete(
    project_id: str,
    sheet_kind: SheetKind,
    sheet: dict[str, Any],
    owned: dict[str, list[dict[str, Any]]],
    *,
    measure_trees: dict[str, MeasureTree] | None = None,
) -> WriteSet:
    """Delete a sheet together with every record it owns.

    Args:
        project_id: Owning project.
        sheet_kind: Sheet type being deleted.
        sheet: The sheet document.
        owned: Owned records keyed by kind name.
        measure_trees: Measure trees of the sheet's KPI records, keyed
            by record id.
    """
    ws = WriteSet()
    for owned_name in sheet_kind.owned:
        kind = get_kind(owned_name)
        for rec in owned.get(owned_name, []):
            ws.delete(doc_path(project_id, kind.collection, rec["id"]))
    for _, tree in sorted((measure_trees or {}).items()):
        for measure in tree.top_level():
            ws.extend(measure_delete(project_id, tree, measure.id))
    ws.delete(doc_path(project_id, get_kind(sheet_kind.sheet_kind).collection, sheet["id"]))
    return ws


def remove_columns(
    project_id: str,
    rows: list[dict[str, Any]],
    column_ids: list[str],
    *,
    column_kind: str = "kpi_measure_column",
    row_kind: str = "kpi_measure_row",
    value_field: str = "values",
) -> WriteSet:
    """Delete columns and strip their keys from every row that holds them.

    Rows are updated in place with ``DELETE_FIELD`` entries rather than
    rewritten, so concurrent edits to other cells survive.
    """
    ckind = get_kind(column_kind)
    rkind = get_kind(row_kind)
    removed = set(column_ids)

    ws = WriteSet()
    for row in sorted(rows, key=lambda r: r["id"]):
        values = row.get(value_field) or {}
        stale = sorted(k for k in values if k in removed)
        if stale:
            ws.update(doc_path(project_id, rkind.collection, row["id"]), key_deletions(value_field, stale))
    for column_id in column_ids:
        ws.delete(doc_path(project_id, ckind.collection, column_id))
    return ws
