"""User-level operations: duplicate, move, and delete against a store.

Each operation reads one snapshot from the store, has an engine build
the complete write set in memory, and submits it through
:class:`~sheetops.commit.BatchCommitCoordinator`.  Lookup and integrity
errors are raised before anything is written; store failures come back
as a failed :class:`~sheetops.commit.CommitResult`.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Callable

from sheetops.cascade import cascade_delete, measure_delete, remove_columns, sheet_delete
from sheetops.commit import (
    BatchCommitCoordinator,
    CommitResult,
    OptimisticState,
    new_op_id,
    run_optimistic,
)
from sheetops.deep_copy import DEFAULT_MAX_DEPTH, DeepCopyEngine
from sheetops.entities import EntityKind, SheetKind, get_kind, get_sheet_kind
from sheetops.errors import INTEGRITY_ERROR, NOT_FOUND, IntegrityError, NotFoundError
from sheetops.logging.events import (
    EventLevel,
    EventType,
    emit,
    make_op_event,
)
from sheetops.models import MeasureTree, WriteSet
from sheetops.paths import collection_path, doc_path
from sheetops.reorder import Direction, column_partition, move_one_step, move_to
from sheetops.store import DocumentStore
from sheetops.verify import verify_kind

DEFAULT_COPY_SUFFIX = " (copy)"


# ---------------------------------------------------------------------------
# Snapshot helpers
# ---------------------------------------------------------------------------


def _require(store: DocumentStore, project_id: str, kind: EntityKind, doc_id: str) -> dict[str, Any]:
    doc = store.get(doc_path(project_id, kind.collection, doc_id))
    if doc is None:
        raise NotFoundError(kind.name, doc_id)
    return doc


def _records(
    store: DocumentStore,
    project_id: str,
    kind: EntityKind,
    filters: dict[str, Any] | None = None,
) -> list[dict[str, Any]]:
    return store.get_all(collection_path(project_id, kind.collection), filters, order_by="order")


def load_measure_tree(store: DocumentStore, project_id: str, record_id: str) -> MeasureTree:
    """Read every measure, column, and row belonging to one KPI record."""
    measures = _records(store, project_id, get_kind("kpi_measure"), {"record_id": record_id})
    measure_ids = {m["id"] for m in measures}
    columns = [
        c for c in _records(store, project_id, get_kind("kpi_measure_column"))
        if c.get("measure_id") in measure_ids
    ]
    rows = [
        r for r in _records(store, project_id, get_kind("kpi_measure_row"))
        if r.get("measure_id") in measure_ids
    ]
    return MeasureTree.from_documents(record_id, measures, columns, rows)


def _sheet_snapshot(
    store: DocumentStore,
    project_id: str,
    kind: str,
    sheet_id: str,
) -> tuple[SheetKind, dict[str, Any], dict[str, list[dict[str, Any]]], dict[str, MeasureTree]]:
    try:
        sheet_kind = get_sheet_kind(kind)
    except KeyError:
        raise NotFoundError("sheet_kind", kind) from None
    sheet = _require(store, project_id, get_kind(sheet_kind.sheet_kind), sheet_id)
    owned = {
        name: _records(store, project_id, get_kind(name), {"sheet_id": sheet_id})
        for name in sheet_kind.owned
    }
    trees = {
        rec["id"]: load_measure_tree(store, project_id, rec["id"])
        for rec in owned.get("kpi_record", [])
    }
    return sheet_kind, sheet, owned, trees


# ---------------------------------------------------------------------------
# Event helpers
# ---------------------------------------------------------------------------


def _emit_integrity(exc: IntegrityError, op_id: str, kind: str) -> None:
    emit(
        make_op_event(
            EventType.integrity_violation,
            EventLevel.error,
            str(exc),
            op_id=op_id,
            kind=kind,
            error_code=INTEGRITY_ERROR,
            extra={"path": exc.path},
        ),
        op_id=op_id,
    )


def _emit_failure(event_type: EventType, exc: Exception, op_id: str, kind: str) -> None:
    """Log a pre-commit failure; integrity problems always log at error."""
    if isinstance(exc, IntegrityError):
        _emit_integrity(exc, op_id, kind)
    emit(
        make_op_event(
            event_type,
            EventLevel.error if isinstance(exc, IntegrityError) else EventLevel.warning,
            str(exc),
            op_id=op_id,
            kind=kind,
            error_code=INTEGRITY_ERROR if isinstance(exc, IntegrityError) else NOT_FOUND,
        ),
        op_id=op_id,
    )


def _emit_copy_outcome(result: CommitResult, op_id: str, kind: str) -> None:
    if result.ok:
        emit(
            make_op_event(
                EventType.copy_completed,
                EventLevel.info,
                f"Copied {kind} as {result.root_id} ({result.write_count} writes)",
                op_id=op_id,
                kind=kind,
                extra={"root_id": result.root_id, "write_count": result.write_count},
            ),
            op_id=op_id,
        )
    else:
        emit(
            make_op_event(
                EventType.copy_failed,
                EventLevel.error,
                f"Copy of {kind} not applied: {result.message}",
                op_id=op_id,
                kind=kind,
                error_code=result.error_code,
            ),
            op_id=op_id,
        )


def _copy_started(op_id: str, kind: str, source_id: str) -> None:
    emit(
        make_op_event(
            EventType.copy_started,
            EventLevel.info,
            f"Copying {kind} {source_id}",
            op_id=op_id,
            kind=kind,
            extra={"source_id": source_id},
        ),
        op_id=op_id,
    )


# ---------------------------------------------------------------------------
# Duplication
# ---------------------------------------------------------------------------


def duplicate_sheet(
    store: DocumentStore,
    project_id: str,
    kind: str,
    sheet_id: str,
    name: str,
    *,
    factory: Callable[[], str] | None = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> CommitResult:
    """Duplicate a sheet and everything it owns under a new name.

    The new sheet is appended after the existing sheets of its kind.

    Args:
        store: Document store.
        project_id: Owning project.
        kind: Sheet kind (``income``, ``gantt``, ``timetable``, ``kpi``).
        sheet_id: Sheet to duplicate.
        name: Name of the new sheet.
        factory: Identifier factory for the new documents.
        max_depth: Nesting cap for item trees and measures.

    Returns:
        Commit result whose ``root_id`` is the new sheet id.

    Raises:
        NotFoundError: If the sheet or sheet kind does not exist.
        IntegrityError: If the source data is corrupted.
    """
    op_id = new_op_id()
    _copy_started(op_id, f"{kind}_sheet", sheet_id)
    try:
        sheet_kind, sheet, owned, trees = _sheet_snapshot(store, project_id, kind, sheet_id)
        skind = get_kind(sheet_kind.sheet_kind)
        order = len(_records(store, project_id, skind))

        engine = DeepCopyEngine(project_id, factory=factory, max_depth=max_depth)
        ws = engine.copy_sheet(sheet_kind, sheet, owned, name=name, order=order, measure_trees=trees)
    except (NotFoundError, IntegrityError) as exc:
        _emit_failure(EventType.copy_failed, exc, op_id, f"{kind}_sheet")
        raise

    new_id = engine.resolve(skind.name, sheet_id)
    result = BatchCommitCoordinator(store).commit(ws, op_id=op_id, root_id=new_id)
    _emit_copy_outcome(result, op_id, skind.name)
    return result


def duplicate_measure(
    store: DocumentStore,
    project_id: str,
    record_id: str,
    measure_id: str,
    *,
    dest_record_id: str | None = None,
    new_name: str | None = None,
    copy_suffix: str = DEFAULT_COPY_SUFFIX,
    factory: Callable[[], str] | None = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> CommitResult:
    """Duplicate a KPI measure, with its whole nested structure.

    Within the same record the copy is named ``<name><copy_suffix>`` and
    placed next to its siblings; copied into another record it keeps its
    name and becomes that record's last top-level measure.

    Raises:
        NotFoundError: If the record, destination, or measure is missing.
        IntegrityError: If the measure nesting is corrupted.
    """
    op_id = new_op_id()
    dest_record_id = dest_record_id or record_id
    _copy_started(op_id, "kpi_measure", measure_id)
    try:
        record_kind = get_kind("kpi_record")
        _require(store, project_id, record_kind, record_id)
        if dest_record_id != record_id:
            _require(store, project_id, record_kind, dest_record_id)

        tree = load_measure_tree(store, project_id, record_id)
        source = tree.measure(measure_id)

        parent_row_id: str | None = None
        if dest_record_id == record_id:
            name = new_name if new_name is not None else f"{source.name}{copy_suffix}"
            if not tree.is_top_level(source):
                parent_row_id = source.parent_row_id
                order = len(tree.sub_measures_of(parent_row_id))
            else:
                order = len(tree.top_level())
        else:
            name = new_name
            dest_tree = load_measure_tree(store, project_id, dest_record_id)
            order = len(dest_tree.top_level())

        engine = DeepCopyEngine(project_id, factory=factory, max_depth=max_depth)
        ws = engine.copy_measure(
            tree, measure_id,
            dest_record_id=dest_record_id,
            new_name=name,
            new_order=order,
            dest_parent_row_id=parent_row_id,
        )
    except (NotFoundError, IntegrityError) as exc:
        _emit_failure(EventType.copy_failed, exc, op_id, "kpi_measure")
        raise

    new_id = engine.resolve("kpi_measure", measure_id)
    result = BatchCommitCoordinator(store).commit(ws, op_id=op_id, root_id=new_id)
    _emit_copy_outcome(result, op_id, "kpi_measure")
    return result


def copy_kpi_record(
    store: DocumentStore,
    project_id: str,
    record_id: str,
    *,
    start_date: str,
    end_date: str,
    period_label: str,
) -> CommitResult:
    """Start a new reporting period from an existing KPI record.

    The copy stays in the same sheet, so ``values`` and
    ``custom_columns`` are reused as-is.  Measures are not copied.

    Raises:
        NotFoundError: If the source record is missing.
        ValueError: If the label is blank or the period is inverted.
    """
    if not period_label.strip():
        raise ValueError("period label is required")
    if date.fromisoformat(start_date) > date.fromisoformat(end_date):
        raise ValueError(f"invalid period: {start_date} is after {end_date}")

    op_id = new_op_id()
    kind = get_kind("kpi_record")
    _copy_started(op_id, kind.name, record_id)
    try:
        source = _require(store, project_id, kind, record_id)
    except NotFoundError as exc:
        _emit_failure(EventType.copy_failed, exc, op_id, kind.name)
        raise

    new_id = store.generate_id(collection_path(project_id, kind.collection))
    data = {k: v for k, v in source.items() if k not in ("id", "is_editing")}
    data.update({
        "id": new_id,
        "start_date": start_date,
        "end_date": end_date,
        "period_label": period_label,
    })
    ws = WriteSet()
    ws.create(doc_path(project_id, kind.collection, new_id), data)

    result = BatchCommitCoordinator(store).commit(ws, op_id=op_id, root_id=new_id)
    _emit_copy_outcome(result, op_id, kind.name)
    return result


# ---------------------------------------------------------------------------
# Reordering
# ---------------------------------------------------------------------------


def _siblings(store: DocumentStore, project_id: str, kind: EntityKind, record: dict[str, Any]) -> list[dict[str, Any]]:
    if not kind.ordered:
        raise ValueError(f"{kind.name} records have no sibling order")
    siblings = _records(store, project_id, kind, kind.sibling_filter(record) or None)
    if kind.partition is not None:
        group = kind.group_of(record)
        siblings = [s for s in siblings if kind.group_of(s) == group]
    return siblings


def _submit_reorder(
    store: DocumentStore,
    ws: WriteSet,
    kind: EntityKind,
    record_id: str,
    state: OptimisticState | None,
) -> CommitResult:
    op_id = new_op_id()
    if ws.is_empty():
        emit(
            make_op_event(
                EventType.reorder_noop,
                EventLevel.info,
                f"{kind.name} {record_id} already at boundary",
                op_id=op_id,
                kind=kind.name,
            ),
            op_id=op_id,
        )
        return CommitResult(ok=True, op_id=op_id)

    coordinator = BatchCommitCoordinator(store)
    if state is not None:
        result = run_optimistic(state, ws, coordinator, op_id=op_id)
    else:
        result = coordinator.commit(ws, op_id=op_id)
    if result.ok:
        emit(
            make_op_event(
                EventType.reorder_applied,
                EventLevel.info,
                f"Reordered {len(ws)} {kind.name} siblings around {record_id}",
                op_id=op_id,
                kind=kind.name,
                extra={"record_id": record_id, "write_count": len(ws)},
            ),
            op_id=op_id,
        )
    return result


def move_record(
    store: DocumentStore,
    project_id: str,
    kind: str,
    record_id: str,
    direction: Direction | str,
    *,
    state: OptimisticState | None = None,
) -> CommitResult:
    """Move a record one step up or down among its siblings.

    When *state* is given the local view is updated before the commit
    and restored if the commit fails.

    Raises:
        NotFoundError: If the record does not exist.
    """
    ekind = get_kind(kind)
    record = _require(store, project_id, ekind, record_id)
    siblings = _siblings(store, project_id, ekind, record)
    ws = move_one_step(
        siblings, record_id, direction,
        collection_path(project_id, ekind.collection), kind=ekind.name,
    )
    return _submit_reorder(store, ws, ekind, record_id, state)


def move_record_to(
    store: DocumentStore,
    project_id: str,
    kind: str,
    record_id: str,
    target_index: int,
    *,
    state: OptimisticState | None = None,
) -> CommitResult:
    """Drag-and-drop: place a record at *target_index* among its siblings."""
    ekind = get_kind(kind)
    record = _require(store, project_id, ekind, record_id)
    siblings = _siblings(store, project_id, ekind, record)
    ws = move_to(
        siblings, record_id, target_index,
        collection_path(project_id, ekind.collection), kind=ekind.name,
    )
    return _submit_reorder(store, ws, ekind, record_id, state)


def move_column(
    store: DocumentStore,
    project_id: str,
    column_id: str,
    direction: Direction | str,
    *,
    state: OptimisticState | None = None,
) -> CommitResult:
    """Move a measure column within its type group (KPI or custom).

    Raises:
        NotFoundError: If the column does not exist.
    """
    kind = get_kind("kpi_measure_column")
    column = _require(store, project_id, kind, column_id)
    columns = _records(store, project_id, kind, {"measure_id": column.get("measure_id")})
    group = column_partition(columns, column_id)
    ws = move_one_step(
        group, column_id, direction,
        collection_path(project_id, kind.collection), kind=kind.name,
    )
    return _submit_reorder(store, ws, kind, column_id, state)


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


def _submit_delete(store: DocumentStore, ws: WriteSet, kind: str, target_id: str, op_id: str) -> CommitResult:
    result = BatchCommitCoordinator(store).commit(ws, op_id=op_id)
    if result.ok:
        emit(
            make_op_event(
                EventType.delete_applied,
                EventLevel.info,
                f"Deleted {kind} {target_id} ({len(ws)} writes)",
                op_id=op_id,
                kind=kind,
                extra={"target_id": target_id, "write_count": len(ws)},
            ),
            op_id=op_id,
        )
    return result


def delete_record(
    store: DocumentStore,
    project_id: str,
    kind: str,
    record_id: str,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> CommitResult:
    """Delete a record with all its descendants.

    Deleting a KPI record also deletes its measures.

    Raises:
        NotFoundError: If the record does not exist.
        IntegrityError: If the subtree contains a parent cycle.
    """
    op_id = new_op_id()
    ekind = get_kind(kind)
    try:
        record = _require(store, project_id, ekind, record_id)
        filters = None
        if ekind.container_field is not None:
            filters = {ekind.container_field: record.get(ekind.container_field)}
        records = _records(store, project_id, ekind, filters)
        ws = cascade_delete(project_id, ekind, records, record_id, max_depth=max_depth)
        if ekind.name == "kpi_record":
            tree = load_measure_tree(store, project_id, record_id)
            for measure in tree.top_level():
                ws.extend(measure_delete(project_id, tree, measure.id))
    except IntegrityError as exc:
        _emit_integrity(exc, op_id, ekind.name)
        raise
    return _submit_delete(store, ws, ekind.name, record_id, op_id)


def delete_measure(store: DocumentStore, project_id: str, record_id: str, measure_id: str) -> CommitResult:
    """Delete a KPI measure with its columns, rows, and sub-measures."""
    op_id = new_op_id()
    tree = load_measure_tree(store, project_id, record_id)
    try:
        ws = measure_delete(project_id, tree, measure_id)
    except IntegrityError as exc:
        _emit_integrity(exc, op_id, "kpi_measure")
        raise
    return _submit_delete(store, ws, "kpi_measure", measure_id, op_id)


def delete_sheet(store: DocumentStore, project_id: str, kind: str, sheet_id: str) -> CommitResult:
    """Delete a sheet and everything it owns in one batch."""
    op_id = new_op_id()
    sheet_kind, sheet, owned, trees = _sheet_snapshot(store, project_id, kind, sheet_id)
    ws = sheet_delete(project_id, sheet_kind, sheet, owned, measure_trees=trees)
    return _submit_delete(store, ws, sheet_kind.sheet_kind, sheet_id, op_id)


def remove_measure_columns(
    store: DocumentStore,
    project_id: str,
    measure_id: str,
    column_ids: list[str],
) -> CommitResult:
    """Delete columns of a measure and clear their cells from every row.

    Raises:
        NotFoundError: If the measure or any of the columns is missing.
    """
    op_id = new_op_id()
    _require(store, project_id, get_kind("kpi_measure"), measure_id)
    column_kind = get_kind("kpi_measure_column")
    existing = {c["id"] for c in _records(store, project_id, column_kind, {"measure_id": measure_id})}
    for column_id in column_ids:
        if column_id not in existing:
            raise NotFoundError(column_kind.name, column_id)
    rows = _records(store, project_id, get_kind("kpi_measure_row"), {"measure_id": measure_id})
    ws = remove_columns(project_id, rows, column_ids)
    return _submit_delete(store, ws, column_kind.name, ",".join(column_ids), op_id)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def verify_collection(
    store: DocumentStore,
    project_id: str,
    kind: str,
    *,
    container_id: str | None = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> dict[str, Any]:
    """Verify order contiguity and tree structure of one kind's records.

    Args:
        store: Document store.
        project_id: Owning project.
        kind: Entity kind name.
        container_id: Restrict the check to one container (sheet,
            record, or measure, depending on the kind).
        max_depth: Parent chains longer than this are reported.
    """
    ekind = get_kind(kind)
    filters = None
    if container_id is not None and ekind.container_field is not None:
        filters = {ekind.container_field: container_id}
    records = _records(store, project_id, ekind, filters)
    report = verify_kind(ekind, records, max_depth=max_depth)
    report["kind"] = ekind.name
    return report
