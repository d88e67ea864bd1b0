"""Deep copy of hierarchical records, whole sheets, and KPI measure trees.

The engine is pure with respect to external state: it reads only the
snapshot handed to it and returns a :class:`~sheetops.models.WriteSet`.
One engine instance serves one duplication operation; its identifier
maps are discarded with it.

Traversal guarantees:

- Every parent is visited (and registered in the identifier map) before
  any of its children is rewritten.
- Siblings are visited in their existing ``order``; each copy gets a
  fresh contiguous ``order`` among the copied siblings.
- ``depth`` is recomputed from traversal position, so the copy is
  consistent even when the source depths were not.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Callable, Iterator

from sheetops.entities import EntityKind, SheetKind, get_kind
from sheetops.errors import IntegrityError, NotFoundError
from sheetops.idmap import IdentifierMap, id_factory
from sheetops.models import Measure, MeasureTree, WriteSet
from sheetops.paths import doc_path

DEFAULT_MAX_DEPTH = 64


def sort_by_order(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Stable sort on ``order``; a missing order sorts as 0."""
    return sorted(records, key=lambda r: r.get("order") or 0)


def _parent_chain(record: dict[str, Any], index: dict[str, dict[str, Any]], limit: int) -> list[str]:
    """Follow ``parent_id`` links from *record* for error reporting."""
    chain = [record["id"]]
    current = record
    while len(chain) <= limit:
        parent_id = current.get("parent_id")
        if parent_id is None or parent_id not in index:
            break
        chain.append(parent_id)
        if parent_id == record["id"]:
            break
        current = index[parent_id]
    return chain


class DeepCopyEngine:
    """Builds the write set for one duplication operation.

    Usage::

        engine = DeepCopyEngine("proj1")
        ws = engine.copy(get_kind("budget_item"), items, "a", "sheet2")
        new_root = engine.resolve("budget_item", "a")

    Parameters
    ----------
    project_id : str
        Project whose collections receive the copies.
    factory : Callable[[], str] | None
        Identifier factory shared by every map of this operation.
    max_depth : int
        Nesting cap.  Deeper trees are treated as corrupted data.
    """

    def __init__(
        self,
        project_id: str,
        *,
        factory: Callable[[], str] | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self.project_id = project_id
        self.max_depth = max_depth
        self._factory = factory or id_factory()
        self._maps: dict[str, IdentifierMap] = {}

    # ------------------------------------------------------------------
    # Identifier maps
    # ------------------------------------------------------------------

    def idmap(self, kind_name: str) -> IdentifierMap:
        """Return (creating on demand) the identifier map for a kind."""
        if kind_name not in self._maps:
            self._maps[kind_name] = IdentifierMap(self._factory)
        return self._maps[kind_name]

    def resolve(self, kind_name: str, old_id: str) -> str | None:
        idmap = self._maps.get(kind_name)
        return idmap.resolve(old_id) if idmap is not None else None

    def new_ids(self) -> set[str]:
        """Every identifier generated so far by this operation."""
        out: set[str] = set()
        for idmap in self._maps.values():
            out |= idmap.new_ids()
        return out

    # ------------------------------------------------------------------
    # Hierarchical records
    # ------------------------------------------------------------------

    def copy(
        self,
        kind: EntityKind,
        records: list[dict[str, Any]],
        source_root_id: str,
        destination_container_id: str,
        *,
        order_start: int = 0,
    ) -> WriteSet:
        """Copy the subtree rooted at *source_root_id* into a container.

        The copied root becomes a root of the destination (its source
        parent is not part of the copy) and is given ``order_start``.

        Args:
            kind: Entity kind of the records.
            records: Snapshot containing the subtree.
            source_root_id: Identifier of the subtree root.
            destination_container_id: New value of the kind's container field.
            order_start: Order assigned to the copied root.

        Returns:
            Write set with one create per copied record.

        Raises:
            NotFoundError: If the root is not in *records*.
            IntegrityError: On a parent cycle or excessive depth.
        """
        index = {r["id"]: r for r in records}
        if source_root_id not in index:
            raise NotFoundError(kind.name, source_root_id)
        root = index[source_root_id]

        ws = WriteSet()
        if not kind.hierarchical:
            self._emit(kind, root, destination_container_id, ws, order=order_start)
            return ws

        for rec, depth, order in self._walk(records, [root], index, order_start):
            self._emit(kind, rec, destination_container_id, ws, order=order, depth=depth)
        return ws

    def copy_all(
        self,
        kind: EntityKind,
        records: list[dict[str, Any]],
        destination_container_id: str,
    ) -> WriteSet:
        """Copy every record of one container (a whole forest).

        Records whose parent is missing from *records* are copied as new
        roots.  Records that no root reaches sit on a parent cycle.

        Raises:
            IntegrityError: On a parent cycle or excessive depth.
        """
        ws = WriteSet()
        if not kind.hierarchical:
            for position, rec in enumerate(sort_by_order(records)):
                self._emit(kind, rec, destination_container_id, ws, order=position)
            return ws

        index = {r["id"]: r for r in records}
        roots = [
            r for r in sort_by_order(records)
            if r.get("parent_id") is None or r.get("parent_id") not in index
        ]
        seen: set[str] = set()
        for rec, depth, order in self._walk(records, roots, index, 0):
            seen.add(rec["id"])
            self._emit(kind, rec, destination_container_id, ws, order=order, depth=depth)

        unreached = sorted(set(index) - seen)
        if unreached:
            raise IntegrityError(
                f"{len(unreached)} {kind.name} record(s) unreachable from any root",
                path=_parent_chain(index[unreached[0]], index, self.max_depth),
            )
        return ws

    def _walk(
        self,
        records: list[dict[str, Any]],
        roots: list[dict[str, Any]],
        index: dict[str, dict[str, Any]],
        order_start: int,
    ) -> Iterator[tuple[dict[str, Any], int, int]]:
        """Breadth-first traversal yielding ``(record, depth, order)``."""
        children: dict[str, list[dict[str, Any]]] = {}
        for rec in sort_by_order(records):
            parent_id = rec.get("parent_id")
            if parent_id is not None:
                children.setdefault(parent_id, []).append(rec)

        queue = deque((root, 0, order_start + i) for i, root in enumerate(roots))
        visited: set[str] = set()
        while queue:
            rec, depth, order = queue.popleft()
            if rec["id"] in visited:
                raise IntegrityError(
                    f"parent cycle detected at {rec['id']!r}",
                    path=_parent_chain(rec, index, self.max_depth),
                )
            if depth > self.max_depth:
                raise IntegrityError(
                    f"tree depth exceeds {self.max_depth}",
                    path=_parent_chain(rec, index, self.max_depth),
                )
            visited.add(rec["id"])
            yield rec, depth, order
            for position, child in enumerate(children.get(rec["id"], [])):
                queue.append((child, depth + 1, position))

    def _emit(
        self,
        kind: EntityKind,
        rec: dict[str, Any],
        container_id: str,
        ws: WriteSet,
        *,
        order: int,
        depth: int | None = None,
    ) -> None:
        new_id = self.idmap(kind.name).record(rec["id"])
        data = kind.rewrite(rec, self._maps)
        if kind.container_field is not None:
            data[kind.container_field] = container_id
        if kind.ordered:
            data["order"] = order
        if kind.hierarchical and depth is not None:
            data["depth"] = depth
        ws.create(doc_path(self.project_id, kind.collection, new_id), data)

    # ------------------------------------------------------------------
    # Sheets
    # ------------------------------------------------------------------

    def copy_sheet(
        self,
        sheet_kind: SheetKind,
        sheet: dict[str, Any],
        owned: dict[str, list[dict[str, Any]]],
        *,
        name: str,
        order: int,
        measure_trees: dict[str, MeasureTree] | None = None,
    ) -> WriteSet:
        """Duplicate a sheet with everything it owns into a new sheet.

        The new sheet starts its own order space for owned records and is
        placed at *order* among sheets of its kind.

        Args:
            sheet_kind: Which sheet type is being copied.
            sheet: Source sheet document.
            owned: Records of each owned kind, keyed by kind name.
            name: Name of the new sheet.
            order: Position of the new sheet among its siblings.
            measure_trees: KPI measure trees keyed by source record id;
                each record's top-level measures are copied under the
                record's copy.

        Returns:
            Write set whose first write creates the new sheet.
        """
        kind = get_kind(sheet_kind.sheet_kind)
        new_sheet_id = self.idmap(kind.name).record(sheet["id"])

        body = WriteSet()
        for owned_name in sheet_kind.owned:
            body.extend(self.copy_all(get_kind(owned_name), owned.get(owned_name, []), new_sheet_id))

        for old_record_id, tree in sorted((measure_trees or {}).items()):
            new_record_id = self.resolve("kpi_record", old_record_id)
            if new_record_id is None:
                continue
            for position, measure in enumerate(tree.top_level()):
                body.extend(self.copy_measure(
                    tree, measure.id, dest_record_id=new_record_id, new_order=position,
                ))

        data = kind.rewrite(sheet, self._maps)
        data["name"] = name
        data["order"] = order

        ws = WriteSet()
        ws.create(doc_path(self.project_id, kind.collection, new_sheet_id), data)
        ws.extend(body)
        return ws

    # ------------------------------------------------------------------
    # KPI measures
    # ------------------------------------------------------------------

    def copy_measure(
        self,
        tree: MeasureTree,
        measure_id: str,
        *,
        dest_record_id: str,
        new_name: str | None = None,
        new_order: int = 0,
        dest_parent_row_id: str | None = None,
    ) -> WriteSet:
        """Copy a measure with its columns, rows, and nested sub-measures.

        Row values are re-keyed to the copied columns of the same
        measure; values under columns that were not copied are dropped.

        Args:
            tree: Source measure tree.
            measure_id: Measure to copy.
            dest_record_id: KPI record receiving the copy.
            new_name: Name override for the copied measure.
            new_order: Order of the copy among the destination's measures.
            dest_parent_row_id: Row that will own the copy, for sub-measures.

        Raises:
            NotFoundError: If *measure_id* is not in *tree*.
            IntegrityError: On a nesting cycle or excessive depth.
        """
        source = tree.measure(measure_id)
        ws = WriteSet()
        self._copy_measure(
            tree, source, ws,
            record_id=dest_record_id,
            parent_row_id=dest_parent_row_id,
            order=new_order,
            name=new_name,
            stack=[],
        )
        return ws

    def _copy_measure(
        self,
        tree: MeasureTree,
        source: Measure,
        ws: WriteSet,
        *,
        record_id: str,
        parent_row_id: str | None,
        order: int,
        name: str | None,
        stack: list[str],
    ) -> None:
        if source.id in stack:
            raise IntegrityError("measure nesting cycle detected", path=stack + [source.id])
        if len(stack) > self.max_depth:
            raise IntegrityError(
                f"measure nesting exceeds {self.max_depth}", path=stack + [source.id],
            )

        measure_kind = get_kind("kpi_measure")
        column_kind = get_kind("kpi_measure_column")
        row_kind = get_kind("kpi_measure_row")

        # Row values may only reference this measure's own columns.
        column_map = IdentifierMap(self._factory)
        maps = {
            "kpi_measure": self.idmap("kpi_measure"),
            "kpi_measure_row": self.idmap("kpi_measure_row"),
            "kpi_measure_column": column_map,
        }

        new_id = maps["kpi_measure"].record(source.id)
        columns = tree.columns_of(source.id)
        rows = tree.rows_of(source.id)
        for column in columns:
            column_map.record(column.id)
        for row in rows:
            maps["kpi_measure_row"].record(row.id)

        data = measure_kind.rewrite(source.model_dump(mode="json"), maps)
        data["record_id"] = record_id
        data["parent_row_id"] = parent_row_id
        data["order"] = order
        if name is not None:
            data["name"] = name
        ws.create(doc_path(self.project_id, measure_kind.collection, new_id), data)

        # KPI and custom columns are numbered independently.
        positions: dict[Any, int] = {}
        for column in columns:
            cdata = column_kind.rewrite(column.model_dump(mode="json"), maps)
            group = column_kind.group_of(cdata)
            cdata["order"] = positions.get(group, 0)
            positions[group] = cdata["order"] + 1
            ws.create(doc_path(self.project_id, column_kind.collection, cdata["id"]), cdata)

        for position, row in enumerate(rows):
            rdata = row_kind.rewrite(row.model_dump(mode="json"), maps)
            rdata["order"] = position
            ws.create(doc_path(self.project_id, row_kind.collection, rdata["id"]), rdata)

            for sub_position, sub in enumerate(tree.sub_measures_of(row.id)):
                self._copy_measure(
                    tree, sub, ws,
                    record_id=record_id,
                    parent_row_id=rdata["id"],
                    order=sub_position,
                    name=None,
                    stack=stack + [source.id],
                )
