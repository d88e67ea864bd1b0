"""Typed structures shared by the copy, reorder, and commit layers.

Store records themselves stay plain ``dict[str, Any]`` documents.  The
models here describe what the engines *produce* (writes and write sets)
and the recursive KPI measure structure they traverse.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sheetops.errors import NotFoundError


# ---------------------------------------------------------------------------
# Field-deletion sentinel
# ---------------------------------------------------------------------------


class _DeleteField:
    """Marker meaning "remove this key" inside an update payload."""

    _instance: _DeleteField | None = None

    def __new__(cls) -> _DeleteField:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"

    def __reduce__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


class WriteType(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"


class Write(BaseModel):
    """One document write inside an atomic batch."""

    type: WriteType
    path: str
    data: dict[str, Any] | None = None

    @property
    def doc_id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def collection_path(self) -> str:
        return self.path.rsplit("/", 1)[0]


class WriteSet(BaseModel):
    """An ordered, self-consistent list of writes built in memory.

    Nothing touches the store until the set is handed to
    :class:`sheetops.commit.BatchCommitCoordinator`.
    """

    writes: list[Write] = Field(default_factory=list)

    def create(self, path: str, data: dict[str, Any]) -> None:
        self.writes.append(Write(type=WriteType.create, path=path, data=data))

    def update(self, path: str, data: dict[str, Any]) -> None:
        self.writes.append(Write(type=WriteType.update, path=path, data=data))

    def delete(self, path: str) -> None:
        self.writes.append(Write(type=WriteType.delete, path=path))

    def extend(self, other: WriteSet) -> None:
        self.writes.extend(other.writes)

    def is_empty(self) -> bool:
        return not self.writes

    def __len__(self) -> int:
        return len(self.writes)

    def of_type(self, write_type: WriteType) -> list[Write]:
        return [w for w in self.writes if w.type == write_type]

    def created(self) -> list[dict[str, Any]]:
        """Return the data payloads of every create, in write order."""
        return [w.data or {} for w in self.of_type(WriteType.create)]

    def paths(self) -> list[str]:
        return [w.path for w in self.writes]


# ---------------------------------------------------------------------------
# KPI measure tree (arena storage)
# ---------------------------------------------------------------------------


class ColumnType(str, Enum):
    text = "text"
    number = "number"
    date = "date"
    image = "image"
    kpi = "kpi"


class Column(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    measure_id: str
    name: str = ""
    type: ColumnType = ColumnType.text
    order: int = 0
    is_visible: bool = True

    @property
    def is_kpi(self) -> bool:
        return self.type == ColumnType.kpi


class MeasureRow(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    measure_id: str
    name: str = ""
    order: int = 0
    values: dict[str, Any] = Field(default_factory=dict)
    master_row_id: str | None = None


class Measure(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    record_id: str
    name: str = ""
    order: int = 0
    parent_row_id: str | None = None
    master_id: str | None = None
    view_preferences: dict[str, Any] = Field(default_factory=dict)


class MeasureTree(BaseModel):
    """All measures, columns, and rows of one KPI record, indexed by id.

    Ownership is expressed by back-links (``Column.measure_id``,
    ``MeasureRow.measure_id``, ``Measure.parent_row_id``) rather than by
    nesting, so a sub-measure inside a row inside a measure is just
    another entry in :attr:`measures`.
    """

    record_id: str
    measures: dict[str, Measure] = Field(default_factory=dict)
    columns: dict[str, Column] = Field(default_factory=dict)
    rows: dict[str, MeasureRow] = Field(default_factory=dict)

    @classmethod
    def from_documents(
        cls,
        record_id: str,
        measures: list[dict[str, Any]],
        columns: list[dict[str, Any]],
        rows: list[dict[str, Any]],
    ) -> MeasureTree:
        """Build a tree from raw store documents."""
        return cls(
            record_id=record_id,
            measures={m["id"]: Measure(**m) for m in measures},
            columns={c["id"]: Column(**c) for c in columns},
            rows={r["id"]: MeasureRow(**r) for r in rows},
        )

    def measure(self, measure_id: str) -> Measure:
        if measure_id not in self.measures:
            raise NotFoundError("kpi_measure", measure_id)
        return self.measures[measure_id]

    def is_top_level(self, measure: Measure) -> bool:
        """A measure is top-level unless its parent row is part of the tree."""
        return measure.parent_row_id is None or measure.parent_row_id not in self.rows

    def top_level(self) -> list[Measure]:
        return _by_order(m for m in self.measures.values() if self.is_top_level(m))

    def columns_of(self, measure_id: str) -> list[Column]:
        return _by_order(c for c in self.columns.values() if c.measure_id == measure_id)

    def rows_of(self, measure_id: str) -> list[MeasureRow]:
        return _by_order(r for r in self.rows.values() if r.measure_id == measure_id)

    def sub_measures_of(self, row_id: str) -> list[Measure]:
        return _by_order(m for m in self.measures.values() if m.parent_row_id == row_id)


def _by_order(nodes: Any) -> list[Any]:
    return sorted(nodes, key=lambda n: (n.order, n.id))
