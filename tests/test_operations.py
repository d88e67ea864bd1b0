"""Tests for store-level operations: duplicate, move, delete, verify."""

from __future__ import annotations

import pytest

from sheetops.commit import OptimisticState
from sheetops.errors import IntegrityError, NotFoundError
from sheetops.models import WriteSet
from sheetops.operations import (
    copy_kpi_record,
    delete_measure,
    delete_record,
    delete_sheet,
    duplicate_measure,
    duplicate_sheet,
    load_measure_tree,
    move_column,
    move_record,
    move_record_to,
    remove_measure_columns,
    verify_collection,
)

ITEMS = "projects/p1/income_expense_items"


def _order(store, collection: str, **filters) -> list[str]:
    return [d["id"] for d in store.get_all(f"projects/p1/{collection}", filters or None, order_by="order")]


def _create(store, collection: str, doc_id: str, data: dict) -> None:
    ws = WriteSet()
    ws.create(f"projects/p1/{collection}/{doc_id}", data)
    store.commit_batch(ws.writes)


# ---------------------------------------------------------------------------
# Duplicate sheet
# ---------------------------------------------------------------------------


class TestDuplicateSheet:
    def test_income_sheet_copy(self, budget_store):
        before = budget_store.documents()
        result = duplicate_sheet(budget_store, "p1", "income", "s1", "Budget copy")
        assert result.ok
        assert result.write_count == 6

        new_sheet = budget_store.get(f"projects/p1/income_sheets/{result.root_id}")
        assert new_sheet["name"] == "Budget copy"
        assert new_sheet["order"] == 1

        copied = budget_store.get_all(ITEMS, {"sheet_id": result.root_id})
        assert len(copied) == 5
        assert verify_collection(budget_store, "p1", "budget_item", container_id=result.root_id)["status"] == "pass"

        # source untouched
        after = budget_store.documents()
        for path, doc in before.items():
            assert after[path] == doc

    def test_missing_sheet(self, budget_store):
        with pytest.raises(NotFoundError):
            duplicate_sheet(budget_store, "p1", "income", "nope", "x")
        assert budget_store.commit_count == 0

    def test_unknown_sheet_kind(self, budget_store):
        with pytest.raises(NotFoundError):
            duplicate_sheet(budget_store, "p1", "calendar", "s1", "x")

    def test_corrupted_tree_aborts_before_write(self, budget_store):
        ws = WriteSet()
        ws.update(f"{ITEMS}/A", {"parent_id": "D"})
        budget_store.commit_batch(ws.writes)
        count = budget_store.commit_count
        with pytest.raises(IntegrityError):
            duplicate_sheet(budget_store, "p1", "income", "s1", "x")
        assert budget_store.commit_count == count

    def test_store_failure_returns_failed_result(self, budget_store):
        budget_store.fail_next()
        before = budget_store.documents()
        result = duplicate_sheet(budget_store, "p1", "income", "s1", "x")
        assert not result.ok
        assert result.error_code == "commit_failed"
        assert budget_store.documents() == before

    def test_kpi_sheet_copy_includes_measures(self, kpi_store):
        result = duplicate_sheet(kpi_store, "p1", "kpi", "k1", "KPIs 2")
        assert result.ok
        new_records = kpi_store.get_all("projects/p1/kpi_records", {"sheet_id": result.root_id})
        assert len(new_records) == 2
        new_items = {d["name"]: d["id"] for d in kpi_store.get_all("projects/p1/kpi_items", {"sheet_id": result.root_id})}
        copied_r1 = next(r for r in new_records if r["period_label"] == "2024-01")
        assert copied_r1["values"] == {new_items["Visitors"]: 120, new_items["Orders"]: 7}

        tree = load_measure_tree(kpi_store, "p1", copied_r1["id"])
        assert [m.name for m in tree.top_level()] == ["Funnel"]
        assert len(tree.measures) == 2

    def test_kpi_sheet_comparisons_follow_copied_items(self, kpi_store):
        ws = WriteSet()
        ws.update("projects/p1/kpi_sheets/k1", {
            "view_preferences": {"visible_comparisons": {"i1": {"mode": "mom"}, "gone": {"mode": "yoy"}}},
        })
        kpi_store.commit_batch(ws.writes)
        result = duplicate_sheet(kpi_store, "p1", "kpi", "k1", "KPIs 2")
        new_items = {d["name"]: d["id"] for d in kpi_store.get_all("projects/p1/kpi_items", {"sheet_id": result.root_id})}
        prefs = kpi_store.get(f"projects/p1/kpi_sheets/{result.root_id}")["view_preferences"]
        assert prefs["visible_comparisons"] == {new_items["Visitors"]: {"mode": "mom"}}
        assert set(kpi_store.get("projects/p1/kpi_sheets/k1")["view_preferences"]["visible_comparisons"]) == {"i1", "gone"}

    def test_measure_under_missing_row_copied_as_top_level(self, kpi_store):
        _create(kpi_store, "kpi_measures", "m9", {"record_id": "r1", "name": "Stray", "order": 0, "parent_row_id": "gone"})
        result = duplicate_sheet(kpi_store, "p1", "kpi", "k1", "KPIs 2")
        assert result.ok
        copied_r1 = next(
            r for r in kpi_store.get_all("projects/p1/kpi_records", {"sheet_id": result.root_id})
            if r["period_label"] == "2024-01"
        )
        measures = kpi_store.get_all("projects/p1/kpi_measures", {"record_id": copied_r1["id"]})
        assert len(measures) == 3
        stray = next(m for m in measures if m["name"] == "Stray")
        assert stray["parent_row_id"] is None
        assert stray["order"] == 1

    def test_timetable_copy_remaps_sections(self, budget_store):
        _create(budget_store, "time_schedule_sheets", "t1", {
            "name": "Week", "order": 0, "view_preferences": {"hidden_section_ids": ["sec1", "gone"]},
        })
        _create(budget_store, "time_schedule_sections", "sec1", {"sheet_id": "t1", "name": "Morning", "order": 0})
        _create(budget_store, "time_schedule_sections", "sec2", {"sheet_id": "t1", "name": "Evening", "order": 1})
        _create(budget_store, "time_schedule_entries", "e1", {"sheet_id": "t1", "section_id": "sec1", "label": "Standup"})
        _create(budget_store, "time_schedule_entries", "e2", {"sheet_id": "t1", "section_id": "missing", "label": "Lost"})

        result = duplicate_sheet(budget_store, "p1", "timetable", "t1", "Week 2")
        assert result.ok
        sections = {
            d["name"]: d for d in budget_store.get_all("projects/p1/time_schedule_sections", {"sheet_id": result.root_id})
        }
        assert [sections[n]["order"] for n in ("Morning", "Evening")] == [0, 1]
        new_sec1 = sections["Morning"]["id"]

        sheet = budget_store.get(f"projects/p1/time_schedule_sheets/{result.root_id}")
        assert sheet["view_preferences"]["hidden_section_ids"] == [new_sec1]

        entries = {
            d["label"]: d for d in budget_store.get_all("projects/p1/time_schedule_entries", {"sheet_id": result.root_id})
        }
        assert entries["Standup"]["section_id"] == new_sec1
        assert entries["Lost"]["section_id"] is None
        for entry in entries.values():
            assert "depth" not in entry
            assert "parent_id" not in entry

    def test_gantt_copy_keeps_task_tree(self, budget_store):
        _create(budget_store, "schedule_sheets", "g1", {"name": "Plan", "order": 0})
        _create(budget_store, "schedule_tasks", "t1", {"sheet_id": "g1", "parent_id": None, "order": 0, "depth": 0, "name": "Build"})
        _create(budget_store, "schedule_tasks", "t2", {"sheet_id": "g1", "parent_id": "t1", "order": 0, "depth": 1, "name": "Frame"})

        result = duplicate_sheet(budget_store, "p1", "gantt", "g1", "Plan 2")
        assert result.ok
        assert budget_store.get(f"projects/p1/schedule_sheets/{result.root_id}")["order"] == 1
        tasks = {d["name"]: d for d in budget_store.get_all("projects/p1/schedule_tasks", {"sheet_id": result.root_id})}
        assert tasks["Frame"]["parent_id"] == tasks["Build"]["id"]
        assert tasks["Frame"]["depth"] == 1
        report = verify_collection(budget_store, "p1", "schedule_task", container_id=result.root_id)
        assert report["status"] == "pass"


# ---------------------------------------------------------------------------
# Duplicate measure / copy period
# ---------------------------------------------------------------------------


class TestDuplicateMeasure:
    def test_same_record_gets_suffix_and_last_order(self, kpi_store):
        result = duplicate_measure(kpi_store, "p1", "r1", "m1")
        assert result.ok
        copy = kpi_store.get(f"projects/p1/kpi_measures/{result.root_id}")
        assert copy["name"] == "Funnel (copy)"
        assert copy["order"] == 1
        assert copy["record_id"] == "r1"

    def test_into_other_record_keeps_name(self, kpi_store):
        result = duplicate_measure(kpi_store, "p1", "r1", "m1", dest_record_id="r2")
        copy = kpi_store.get(f"projects/p1/kpi_measures/{result.root_id}")
        assert copy["name"] == "Funnel"
        assert copy["order"] == 0
        assert len(load_measure_tree(kpi_store, "p1", "r2").measures) == 2

    def test_sub_measure_stays_under_its_row(self, kpi_store):
        result = duplicate_measure(kpi_store, "p1", "r1", "m2", new_name="Detail 2")
        copy = kpi_store.get(f"projects/p1/kpi_measures/{result.root_id}")
        assert copy["parent_row_id"] == "w1"
        assert copy["order"] == 1

    def test_missing_destination(self, kpi_store):
        with pytest.raises(NotFoundError):
            duplicate_measure(kpi_store, "p1", "r1", "m1", dest_record_id="r9")


class TestCopyKpiRecord:
    def test_new_period(self, kpi_store):
        result = copy_kpi_record(
            kpi_store, "p1", "r1", start_date="2024-03-01", end_date="2024-03-31", period_label="2024-03",
        )
        new = kpi_store.get(f"projects/p1/kpi_records/{result.root_id}")
        assert new["sheet_id"] == "k1"
        assert new["values"] == {"i1": 120, "i2": 7, "ghost": 1}
        assert new["period_label"] == "2024-03"

    def test_inverted_period(self, kpi_store):
        with pytest.raises(ValueError):
            copy_kpi_record(kpi_store, "p1", "r1", start_date="2024-03-31", end_date="2024-03-01", period_label="x")

    def test_blank_label(self, kpi_store):
        with pytest.raises(ValueError):
            copy_kpi_record(kpi_store, "p1", "r1", start_date="2024-03-01", end_date="2024-03-31", period_label=" ")


# ---------------------------------------------------------------------------
# Moves
# ---------------------------------------------------------------------------


class TestMoves:
    def test_move_record_within_parent(self, budget_store):
        result = move_record(budget_store, "p1", "budget_item", "C", "up")
        assert result.ok
        assert _order(budget_store, "income_expense_items", parent_id="A") == ["C", "B"]
        assert _order(budget_store, "income_expense_items", parent_id=None) == ["A", "E"]

    def test_boundary_is_noop(self, budget_store):
        result = move_record(budget_store, "p1", "budget_item", "A", "up")
        assert result.ok and result.write_count == 0
        assert budget_store.commit_count == 0

    def test_optimistic_rollback(self, budget_store):
        state = OptimisticState(budget_store.get_all(ITEMS, {"parent_id": "A"}))
        budget_store.fail_next()
        result = move_record(budget_store, "p1", "budget_item", "B", "down", state=state)
        assert not result.ok
        assert [r["id"] for r in state.ordered()] == ["B", "C"]

    def test_move_to(self, budget_store):
        move_record_to(budget_store, "p1", "budget_item", "E", 0)
        assert _order(budget_store, "income_expense_items", parent_id=None) == ["E", "A"]

    def test_move_column_stays_in_partition(self, kpi_store):
        ws = WriteSet()
        ws.create("projects/p1/kpi_measure_columns/c4", {"measure_id": "m1", "type": "kpi", "order": 1})
        kpi_store.commit_batch(ws.writes)

        move_column(kpi_store, "p1", "c4", "up")
        columns = {c["id"]: c for c in kpi_store.get_all("projects/p1/kpi_measure_columns", {"measure_id": "m1"})}
        assert (columns["c4"]["order"], columns["c1"]["order"]) == (0, 1)
        assert columns["c2"]["order"] == 0

    def test_unordered_kind_rejected(self, budget_store):
        ws = WriteSet()
        ws.create("projects/p1/time_schedule_entries/e1", {"sheet_id": "t1"})
        budget_store.commit_batch(ws.writes)
        with pytest.raises(ValueError):
            move_record(budget_store, "p1", "time_entry", "e1", "up")

    def test_missing_record(self, budget_store):
        with pytest.raises(NotFoundError):
            move_record(budget_store, "p1", "budget_item", "nope", "up")

    def test_move_sheet_reorders_sheets_of_kind(self, budget_store):
        _create(budget_store, "income_sheets", "s2", {"name": "Forecast", "order": 1})
        result = move_record(budget_store, "p1", "income_sheet", "s2", "up")
        assert result.ok
        assert _order(budget_store, "income_sheets") == ["s2", "s1"]
        assert budget_store.get("projects/p1/income_sheets/s1")["order"] == 1


# ---------------------------------------------------------------------------
# Deletes
# ---------------------------------------------------------------------------


class TestDeletes:
    def test_delete_record_cascades(self, budget_store):
        result = delete_record(budget_store, "p1", "budget_item", "A")
        assert result.write_count == 4
        assert _order(budget_store, "income_expense_items") == ["E"]

    def test_delete_kpi_record_removes_measures(self, kpi_store):
        delete_record(kpi_store, "p1", "kpi_record", "r1")
        assert kpi_store.get_all("projects/p1/kpi_measures") == []
        assert kpi_store.get_all("projects/p1/kpi_measure_rows") == []

    def test_delete_kpi_record_removes_measure_under_missing_row(self, kpi_store):
        _create(kpi_store, "kpi_measures", "m9", {"record_id": "r1", "name": "Stray", "order": 0, "parent_row_id": "gone"})
        delete_record(kpi_store, "p1", "kpi_record", "r1")
        assert kpi_store.get_all("projects/p1/kpi_measures") == []

    def test_delete_kpi_sheet_removes_measure_under_missing_row(self, kpi_store):
        _create(kpi_store, "kpi_measures", "m9", {"record_id": "r1", "name": "Stray", "order": 0, "parent_row_id": "gone"})
        delete_sheet(kpi_store, "p1", "kpi", "k1")
        assert kpi_store.get_all("projects/p1/kpi_measures") == []
        assert kpi_store.documents() == {}

    def test_delete_measure(self, kpi_store):
        delete_measure(kpi_store, "p1", "r1", "m1")
        assert kpi_store.get_all("projects/p1/kpi_measure_columns") == []

    def test_delete_sheet(self, budget_store):
        delete_sheet(budget_store, "p1", "income", "s1")
        assert budget_store.documents() == {}

    def test_remove_columns(self, kpi_store):
        remove_measure_columns(kpi_store, "p1", "m1", ["c2"])
        assert kpi_store.get("projects/p1/kpi_measure_columns/c2") is None
        assert kpi_store.get("projects/p1/kpi_measure_rows/w1")["values"] == {"c1": 0.5, "c3": "foreign"}

    def test_remove_unknown_column(self, kpi_store):
        with pytest.raises(NotFoundError):
            remove_measure_columns(kpi_store, "p1", "m1", ["c3"])


class TestVerifyCollection:
    def test_seed_data_is_consistent(self, budget_store):
        assert verify_collection(budget_store, "p1", "budget_item")["status"] == "pass"

    def test_reports_kind(self, kpi_store):
        report = verify_collection(kpi_store, "p1", "kpi_measure_column", container_id="m1")
        assert report["kind"] == "kpi_measure_column"
        assert report["status"] == "pass"
