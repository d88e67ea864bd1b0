"""Reference rewriting for copied records.

A copied record keeps its payload but every identifier it holds must
point into the copied set.  References that cannot be resolved are
never propagated: a parent outside the copy makes the record a new
root, and a value-map key outside the copy is dropped.
"""

from __future__ import annotations

import copy
from typing import Any, Iterable

from sheetops.idmap import IdentifierMap
from sheetops.models import DELETE_FIELD

DEFAULT_REF_FIELDS = ("parent_id",)
DEFAULT_MAP_FIELDS = ("values", "custom_columns")


def rewrite_keys(mapping: dict[str, Any], idmap: IdentifierMap) -> dict[str, Any]:
    """Re-key *mapping* through *idmap*, dropping keys with no mapping."""
    out: dict[str, Any] = {}
    for old_key, value in mapping.items():
        new_key = idmap.resolve(old_key)
        if new_key is not None:
            out[new_key] = copy.deepcopy(value)
    return out


def rewrite_record(
    record: dict[str, Any],
    idmap: IdentifierMap,
    *,
    ref_fields: Iterable[str] = DEFAULT_REF_FIELDS,
    map_fields: Iterable[str] = DEFAULT_MAP_FIELDS,
    field_maps: dict[str, IdentifierMap] | None = None,
    drop_fields: Iterable[str] = (),
) -> dict[str, Any]:
    """Return a rewritten copy of *record*; the input is not mutated.

    - ``id`` becomes its mapped value when the map knows it.
    - Each field in *ref_fields* that holds an id is replaced by its
      mapped value, or ``None`` when the referenced record was not copied.
    - Each dict field in *map_fields* has its keys re-mapped; unmapped
      keys are dropped.
    - ``order`` and ``depth`` pass through untouched; the caller assigns
      them from traversal position.

    Args:
        record: Source document.
        idmap: Map used for ``id`` and any field without an override.
        ref_fields: Scalar reference fields to rewrite.
        map_fields: Keyed-value map fields to rewrite.
        field_maps: Per-field map overrides, e.g. ``{"values": kpi_item_ids}``.
        drop_fields: Fields removed from the output (UI-only state).

    Returns:
        New record dict.
    """
    field_maps = field_maps or {}
    dropped = set(drop_fields)
    out = {k: copy.deepcopy(v) for k, v in record.items() if k not in dropped}

    new_id = idmap.resolve(record.get("id"))
    if new_id is not None:
        out["id"] = new_id

    for field in ref_fields:
        if field in out and out[field] is not None:
            out[field] = field_maps.get(field, idmap).resolve(out[field])

    for field in map_fields:
        value = record.get(field)
        if isinstance(value, dict):
            out[field] = rewrite_keys(value, field_maps.get(field, idmap))

    return out


def key_deletions(field: str, keys: Iterable[str]) -> dict[str, Any]:
    """Build a partial-update payload that deletes ``field.<key>`` entries.

    Used when a value map is cleaned up in place instead of being
    replaced wholesale.
    """
    return {f"{field}.{key}": DELETE_FIELD for key in keys}
