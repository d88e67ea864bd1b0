"""Shared fixtures for sheetops tests."""

from __future__ import annotations

import itertools
from pathlib import Path
from typing import Any, Callable

import pytest

from sheetops.paths import doc_path
from sheetops.store import MemoryDocumentStore

PROJECT = "p1"


def make_factory(prefix: str = "n") -> Callable[[], str]:
    """Deterministic identifier factory: n001, n002, ..."""
    counter = itertools.count(1)
    return lambda: f"{prefix}{next(counter):03d}"


def seed(store_docs: dict[str, dict[str, Any]], collection: str, *records: dict[str, Any]) -> None:
    for rec in records:
        store_docs[doc_path(PROJECT, collection, rec["id"])] = dict(rec)


@pytest.fixture(autouse=True)
def _detach_event_sink():
    """Keep the module-level event sink from leaking between tests."""
    from sheetops.logging.events import clear_project_dir

    clear_project_dir()
    yield
    clear_project_dir()


@pytest.fixture
def factory() -> Callable[[], str]:
    return make_factory()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Project directory with the event sink attached."""
    from sheetops.logging.events import set_project_dir

    (tmp_path / "logs").mkdir()
    set_project_dir(tmp_path)
    return tmp_path


@pytest.fixture
def budget_docs() -> dict[str, dict[str, Any]]:
    """Income sheet s1 with a small budget tree.

    A (0)
      B (0)
        D (0)
      C (1)
    E (1)
    """
    docs: dict[str, dict[str, Any]] = {}
    seed(docs, "income_sheets", {"id": "s1", "name": "Budget", "order": 0, "view_preferences": {"collapsed_parents": ["A", "zz"]}})
    seed(
        docs, "income_expense_items",
        {"id": "A", "sheet_id": "s1", "parent_id": None, "order": 0, "depth": 0, "name": "Revenue", "amount": 0},
        {"id": "B", "sheet_id": "s1", "parent_id": "A", "order": 0, "depth": 1, "name": "Sales", "amount": 100},
        {"id": "C", "sheet_id": "s1", "parent_id": "A", "order": 1, "depth": 1, "name": "Other", "amount": 5},
        {"id": "D", "sheet_id": "s1", "parent_id": "B", "order": 0, "depth": 2, "name": "Online", "amount": 60},
        {"id": "E", "sheet_id": "s1", "parent_id": None, "order": 1, "depth": 0, "name": "Costs", "amount": -40},
    )
    return docs


@pytest.fixture
def budget_store(budget_docs, factory) -> MemoryDocumentStore:
    return MemoryDocumentStore(budget_docs, factory=factory)


@pytest.fixture
def kpi_docs() -> dict[str, dict[str, Any]]:
    """KPI sheet k1 with one record r1 holding a nested measure m1.

    m1 has a KPI column c1, a text column c2 and rows w1, w2; row w1
    owns the sub-measure m2 (column c3, row w3).
    """
    docs: dict[str, dict[str, Any]] = {}
    seed(docs, "kpi_sheets", {"id": "k1", "name": "KPIs", "order": 0})
    seed(
        docs, "kpi_items",
        {"id": "i1", "sheet_id": "k1", "name": "Visitors", "order": 0},
        {"id": "i2", "sheet_id": "k1", "name": "Orders", "order": 1},
    )
    seed(docs, "kpi_custom_columns", {"id": "cc1", "sheet_id": "k1", "name": "Note", "order": 0})
    seed(
        docs, "kpi_records",
        {
            "id": "r1", "sheet_id": "k1", "period_label": "2024-01",
            "start_date": "2024-01-01", "end_date": "2024-01-31",
            "values": {"i1": 120, "i2": 7, "ghost": 1},
            "custom_columns": {"cc1": "launch month"},
        },
        {
            "id": "r2", "sheet_id": "k1", "period_label": "2024-02",
            "start_date": "2024-02-01", "end_date": "2024-02-29",
            "values": {"i1": 90}, "custom_columns": {},
        },
    )
    seed(
        docs, "kpi_measures",
        {"id": "m1", "record_id": "r1", "name": "Funnel", "order": 0, "parent_row_id": None,
         "view_preferences": {"hidden_column_ids": ["c2"], "hidden_row_ids": ["w2"]}},
        {"id": "m2", "record_id": "r1", "name": "Detail", "order": 0, "parent_row_id": "w1"},
    )
    seed(
        docs, "kpi_measure_columns",
        {"id": "c1", "measure_id": "m1", "name": "Rate", "type": "kpi", "order": 0},
        {"id": "c2", "measure_id": "m1", "name": "Memo", "type": "text", "order": 0},
        {"id": "c3", "measure_id": "m2", "name": "Value", "type": "number", "order": 0},
    )
    seed(
        docs, "kpi_measure_rows",
        {"id": "w1", "measure_id": "m1", "name": "Top", "order": 0, "values": {"c1": 0.5, "c2": "ok", "c3": "foreign"}},
        {"id": "w2", "measure_id": "m1", "name": "Bottom", "order": 1, "values": {"c1": 0.1}},
        {"id": "w3", "measure_id": "m2", "name": "Inner", "order": 0, "values": {"c3": 42}},
    )
    return docs


@pytest.fixture
def kpi_store(kpi_docs, factory) -> MemoryDocumentStore:
    return MemoryDocumentStore(kpi_docs, factory=factory)
