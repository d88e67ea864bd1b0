"""Registry of entity kinds handled by the copy and reorder engines.

Budget lines, schedule tasks, KPI items, measure rows ... are all the
same shape to the engines: a record with an ``id``, an ``order`` among
siblings and, for hierarchical kinds, a ``parent_id``/``depth`` pair.
Each kind only declares what differs: its collection, which fields hold
references into which other kind, and an optional payload hook.
"""

from __future__ import annotations

from typing import Any, Callable

from sheetops.idmap import IdentifierMap
from sheetops.rewrite import rewrite_keys, rewrite_record

PayloadHook = Callable[[dict[str, Any], dict[str, IdentifierMap]], dict[str, Any]]

_TRANSIENT_FIELDS = ("is_editing",)


class EntityKind:
    """Declarative description of one entity family.

    Attributes:
        name: Registry key.
        collection: Collection name under the project root.
        hierarchical: Whether ``parent_id``/``depth`` apply.
        ordered: Whether sibling ``order`` is maintained.
        sibling_keys: Fields that must match for two records to be siblings.
        container_field: Field linking a record to its owning container.
        ref_fields: Scalar reference field -> kind whose ids it holds.
        map_fields: Keyed-value map field -> kind whose ids key it.
        partition: Optional grouping function; reordering never crosses
            groups.
        hook: Optional post-rewrite payload fixup.
    """

    def __init__(
        self,
        name: str,
        collection: str,
        *,
        hierarchical: bool = False,
        ordered: bool = True,
        sibling_keys: tuple[str, ...] = (),
        container_field: str | None = None,
        ref_fields: dict[str, str] | None = None,
        map_fields: dict[str, str] | None = None,
        partition: Callable[[dict[str, Any]], Any] | None = None,
        hook: PayloadHook | None = None,
    ) -> None:
        self.name = name
        self.collection = collection
        self.hierarchical = hierarchical
        self.ordered = ordered
        self.sibling_keys = sibling_keys
        self.container_field = container_field
        self.ref_fields = dict(ref_fields or {})
        if hierarchical:
            self.ref_fields.setdefault("parent_id", name)
        self.map_fields = dict(map_fields or {})
        self.partition = partition
        self.hook = hook

    def __repr__(self) -> str:
        return f"EntityKind({self.name!r})"

    def rewrite(self, record: dict[str, Any], maps: dict[str, IdentifierMap]) -> dict[str, Any]:
        """Rewrite *record* through the per-kind identifier maps.

        References into a kind that has no map in *maps* resolve to
        nothing, so they are nulled (scalars) or dropped (map keys).
        """
        empty = IdentifierMap()
        own = maps.get(self.name, empty)
        field_maps = {
            field: maps.get(target, empty)
            for field, target in {**self.ref_fields, **self.map_fields}.items()
        }
        out = rewrite_record(
            record,
            own,
            ref_fields=tuple(self.ref_fields),
            map_fields=tuple(self.map_fields),
            field_maps=field_maps,
            drop_fields=_TRANSIENT_FIELDS,
        )
        if self.hook is not None:
            out = self.hook(out, maps)
        return out

    def sibling_filter(self, record: dict[str, Any]) -> dict[str, Any]:
        """Equality filter selecting *record*'s siblings (itself included)."""
        return {key: record.get(key) for key in self.sibling_keys}

    def group_of(self, record: dict[str, Any]) -> Any:
        return self.partition(record) if self.partition is not None else None


class SheetKind:
    """A sheet type and the entity kinds it owns, in copy order.

    Kinds referenced by others come first so their identifier maps are
    complete before dependent records are rewritten.
    """

    def __init__(self, name: str, sheet_kind: str, owned: tuple[str, ...]) -> None:
        self.name = name
        self.sheet_kind = sheet_kind
        self.owned = owned

    def __repr__(self) -> str:
        return f"SheetKind({self.name!r})"


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------

_KINDS: dict[str, EntityKind] = {}
_SHEET_KINDS: dict[str, SheetKind] = {}


def register_kind(kind: EntityKind) -> EntityKind:
    _KINDS[kind.name] = kind
    return kind


def register_sheet_kind(kind: SheetKind) -> SheetKind:
    _SHEET_KINDS[kind.name] = kind
    return kind


def get_kind(name: str) -> EntityKind:
    """Look up a registered entity kind.

    Raises:
        KeyError: If no kind is registered under *name*.
    """
    if name not in _KINDS:
        raise KeyError(f"Unknown entity kind: {name!r}")
    return _KINDS[name]


def get_sheet_kind(name: str) -> SheetKind:
    """Look up a registered sheet kind.

    Raises:
        KeyError: If no sheet kind is registered under *name*.
    """
    if name not in _SHEET_KINDS:
        raise KeyError(f"Unknown sheet kind: {name!r}")
    return _SHEET_KINDS[name]


def list_kinds() -> list[str]:
    return sorted(_KINDS)


def list_sheet_kinds() -> list[str]:
    return sorted(_SHEET_KINDS)


# ---------------------------------------------------------------------------
# Payload hooks
# ---------------------------------------------------------------------------


def _remap_ids(ids: list[str], idmap: IdentifierMap | None) -> list[str]:
    if idmap is None:
        return []
    return [new for new in (idmap.resolve(i) for i in ids) if new is not None]


def _remap_preference_lists(pref_fields: dict[str, str]) -> PayloadHook:
    """Hook factory: rewrite id lists stored under ``view_preferences``."""

    def hook(record: dict[str, Any], maps: dict[str, IdentifierMap]) -> dict[str, Any]:
        prefs = record.get("view_preferences")
        if not isinstance(prefs, dict):
            return record
        for field, target in pref_fields.items():
            if isinstance(prefs.get(field), list):
                prefs[field] = _remap_ids(prefs[field], maps.get(target))
        return record

    return hook


def _rekey_preference_maps(pref_fields: dict[str, str]) -> PayloadHook:
    """Hook factory: re-key id-keyed maps stored under ``view_preferences``."""

    def hook(record: dict[str, Any], maps: dict[str, IdentifierMap]) -> dict[str, Any]:
        prefs = record.get("view_preferences")
        if not isinstance(prefs, dict):
            return record
        for field, target in pref_fields.items():
            if isinstance(prefs.get(field), dict):
                prefs[field] = rewrite_keys(prefs[field], maps.get(target) or IdentifierMap())
        return record

    return hook


def _is_kpi_column(record: dict[str, Any]) -> bool:
    return record.get("type") == "kpi"


# ---------------------------------------------------------------------------
# Built-in kinds
# ---------------------------------------------------------------------------

register_kind(EntityKind(
    "income_sheet", "income_sheets",
    hook=_remap_preference_lists({"collapsed_parents": "budget_item"}),
))
register_kind(EntityKind("gantt_sheet", "schedule_sheets"))
register_kind(EntityKind(
    "timetable_sheet", "time_schedule_sheets",
    hook=_remap_preference_lists({"hidden_section_ids": "time_section"}),
))
register_kind(EntityKind(
    "kpi_sheet", "kpi_sheets",
    hook=_rekey_preference_maps({"visible_comparisons": "kpi_item"}),
))

register_kind(EntityKind(
    "budget_item", "income_expense_items",
    hierarchical=True, sibling_keys=("sheet_id", "parent_id"), container_field="sheet_id",
))
register_kind(EntityKind(
    "schedule_task", "schedule_tasks",
    hierarchical=True, sibling_keys=("sheet_id", "parent_id"), container_field="sheet_id",
))
register_kind(EntityKind(
    "time_section", "time_schedule_sections",
    sibling_keys=("sheet_id",), container_field="sheet_id",
))
register_kind(EntityKind(
    "time_entry", "time_schedule_entries",
    ordered=False, container_field="sheet_id",
    ref_fields={"section_id": "time_section"},
))
register_kind(EntityKind(
    "kpi_item", "kpi_items",
    sibling_keys=("sheet_id",), container_field="sheet_id",
))
register_kind(EntityKind(
    "kpi_custom_column", "kpi_custom_columns",
    sibling_keys=("sheet_id",), container_field="sheet_id",
))
register_kind(EntityKind(
    "kpi_record", "kpi_records",
    ordered=False, container_field="sheet_id",
    map_fields={"values": "kpi_item", "custom_columns": "kpi_custom_column"},
))
register_kind(EntityKind(
    "kpi_measure", "kpi_measures",
    sibling_keys=("record_id", "parent_row_id"), container_field="record_id",
    ref_fields={"parent_row_id": "kpi_measure_row"},
    hook=_remap_preference_lists({
        "hidden_row_ids": "kpi_measure_row",
        "hidden_column_ids": "kpi_measure_column",
    }),
))
register_kind(EntityKind(
    "kpi_measure_column", "kpi_measure_columns",
    sibling_keys=("measure_id",), container_field="measure_id", partition=_is_kpi_column,
    ref_fields={"measure_id": "kpi_measure"},
))
register_kind(EntityKind(
    "kpi_measure_row", "kpi_measure_rows",
    sibling_keys=("measure_id",), container_field="measure_id",
    ref_fields={"measure_id": "kpi_measure"},
    map_fields={"values": "kpi_measure_column"},
))

register_sheet_kind(SheetKind("income", "income_sheet", ("budget_item",)))
register_sheet_kind(SheetKind("gantt", "gantt_sheet", ("schedule_task",)))
register_sheet_kind(SheetKind("timetable", "timetable_sheet", ("time_section", "time_entry")))
register_sheet_kind(SheetKind("kpi", "kpi_sheet", ("kpi_custom_column", "kpi_item", "kpi_record")))
