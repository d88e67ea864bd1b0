"""Tests for delete write sets."""

from __future__ import annotations

from typing import Any

import pytest

from sheetops.cascade import cascade_delete, descendants, measure_delete, remove_columns, sheet_delete
from sheetops.entities import get_kind, get_sheet_kind
from sheetops.errors import IntegrityError, NotFoundError
from sheetops.models import DELETE_FIELD, MeasureTree, WriteType


def _items(*pairs: tuple[str, str | None]) -> list[dict[str, Any]]:
    return [{"id": i, "parent_id": p, "order": n} for n, (i, p) in enumerate(pairs)]


class TestDescendants:
    def test_breadth_first(self):
        items = _items(("A", None), ("B", "A"), ("C", "A"), ("D", "B"), ("E", None))
        assert descendants(items, "A") == ["A", "B", "C", "D"]

    def test_unknown_root(self):
        with pytest.raises(NotFoundError):
            descendants(_items(("A", None)), "Z")

    def test_cycle(self):
        items = _items(("A", "C"), ("B", "A"), ("C", "B"))
        with pytest.raises(IntegrityError, match="cycle"):
            descendants(items, "A")


class TestCascadeDelete:
    def test_deletes_subtree_only(self):
        items = _items(("A", None), ("B", "A"), ("C", "B"), ("E", None))
        ws = cascade_delete("p1", get_kind("schedule_task"), items, "B")
        assert [w.type for w in ws.writes] == [WriteType.delete] * 2
        assert ws.paths() == ["projects/p1/schedule_tasks/B", "projects/p1/schedule_tasks/C"]

    def test_not_found_names_kind(self):
        with pytest.raises(NotFoundError) as exc_info:
            cascade_delete("p1", get_kind("budget_item"), [], "A")
        assert exc_info.value.kind == "budget_item"


def _tree() -> MeasureTree:
    return MeasureTree.from_documents(
        "r1",
        [
            {"id": "m1", "record_id": "r1"},
            {"id": "m2", "record_id": "r1", "parent_row_id": "w1"},
            {"id": "m3", "record_id": "r1"},
        ],
        [{"id": "c1", "measure_id": "m1"}, {"id": "c2", "measure_id": "m2"}],
        [{"id": "w1", "measure_id": "m1"}, {"id": "w2", "measure_id": "m2"}],
    )


class TestMeasureDelete:
    def test_nested(self):
        ws = measure_delete("p1", _tree(), "m1")
        ids = {w.doc_id for w in ws.writes}
        assert ids == {"m1", "c1", "w1", "m2", "c2", "w2"}
        assert all(w.type == WriteType.delete for w in ws.writes)

    def test_missing(self):
        with pytest.raises(NotFoundError):
            measure_delete("p1", _tree(), "zz")


class TestSheetDelete:
    def test_kpi_sheet(self):
        owned = {
            "kpi_item": [{"id": "i1"}],
            "kpi_custom_column": [{"id": "cc1"}],
            "kpi_record": [{"id": "r1"}],
        }
        ws = sheet_delete("p1", get_sheet_kind("kpi"), {"id": "k1"}, owned, measure_trees={"r1": _tree()})
        ids = [w.doc_id for w in ws.writes]
        assert ids[-1] == "k1"
        assert set(ids) == {"i1", "cc1", "r1", "m1", "m2", "m3", "c1", "c2", "w1", "w2", "k1"}


class TestRemoveColumns:
    def test_cells_cleared_with_delete_sentinel(self):
        rows = [
            {"id": "w1", "values": {"c1": 1, "c2": 2}},
            {"id": "w2", "values": {"c2": 3}},
            {"id": "w3", "values": {}},
        ]
        ws = remove_columns("p1", rows, ["c1"])
        updates = ws.of_type(WriteType.update)
        assert [(w.doc_id, w.data) for w in updates] == [("w1", {"values.c1": DELETE_FIELD})]
        assert [w.path for w in ws.of_type(WriteType.delete)] == ["projects/p1/kpi_measure_columns/c1"]
