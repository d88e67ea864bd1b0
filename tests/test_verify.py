"""Tests for order and tree integrity verification."""

from __future__ import annotations

from typing import Any

from sheetops.entities import get_kind
from sheetops.verify import verify_items, verify_kind


def _item(i: str, parent: str | None, order: int, depth: int, sheet: str = "s1") -> dict[str, Any]:
    return {"id": i, "sheet_id": sheet, "parent_id": parent, "order": order, "depth": depth}


class TestVerifyItems:
    def test_clean_tree_passes(self):
        report = verify_items([
            _item("A", None, 0, 0),
            _item("B", "A", 0, 1),
            _item("C", "A", 1, 1),
            _item("E", None, 1, 0),
        ])
        assert report["status"] == "pass"
        assert report["failures"] == []
        assert report["groups"] == 2

    def test_empty_passes(self):
        assert verify_items([])["status"] == "pass"

    def test_order_gap(self):
        report = verify_items([_item("A", None, 0, 0), _item("B", None, 2, 0)])
        assert report["status"] == "fail"
        assert len(report["failures"]) == 1
        assert "order not contiguous" in report["failures"][0]

    def test_duplicate_order(self):
        report = verify_items([_item("A", None, 0, 0), _item("B", None, 0, 0)])
        assert report["status"] == "fail"

    def test_groups_are_per_sheet(self):
        report = verify_items([_item("A", None, 0, 0, "s1"), _item("B", None, 0, 0, "s2")])
        assert report["status"] == "pass"
        assert report["groups"] == 2

    def test_dangling_parent(self):
        report = verify_items([_item("A", "gone", 0, 0)])
        assert report["failures"] == ["dangling parent: A -> gone"]

    def test_depth_mismatch(self):
        report = verify_items([_item("A", None, 0, 0), _item("B", "A", 0, 3)])
        assert report["failures"] == ["depth mismatch: B has depth 3, expected 1"]

    def test_cycle(self):
        report = verify_items([_item("A", "B", 0, 0), _item("B", "A", 0, 1)])
        assert report["status"] == "fail"
        assert any(f.startswith("parent cycle") for f in report["failures"])

    def test_flat_collection(self):
        report = verify_items(
            [{"id": "i1", "sheet_id": "k1", "order": 0}, {"id": "i2", "sheet_id": "k1", "order": 1}],
            group_keys=("sheet_id",),
            hierarchical=False,
        )
        assert report["status"] == "pass"


class TestVerifyKind:
    def test_measure_columns_grouped_by_partition(self):
        columns = [
            {"id": "k1", "measure_id": "m1", "type": "kpi", "order": 0},
            {"id": "c1", "measure_id": "m1", "type": "text", "order": 0},
            {"id": "c2", "measure_id": "m1", "type": "number", "order": 1},
        ]
        report = verify_kind(get_kind("kpi_measure_column"), columns)
        assert report["status"] == "pass"
        assert report["groups"] == 2

    def test_sheets_form_one_group(self):
        sheets = [{"id": "s1", "order": 0}, {"id": "s2", "order": 0}]
        report = verify_kind(get_kind("income_sheet"), sheets)
        assert report["status"] == "fail"
        assert report["groups"] == 1

    def test_flat_unordered_kind_skips_order_and_tree_checks(self):
        entries = [
            {"id": "e1", "sheet_id": "t1", "section_id": "sec1"},
            {"id": "e2", "sheet_id": "t1", "section_id": "sec1", "depth": 4},
        ]
        report = verify_kind(get_kind("time_entry"), entries)
        assert report["status"] == "pass"
        assert report["groups"] == 0
