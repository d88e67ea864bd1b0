"""Integrity verification for ordered, hierarchical record collections.

The ``verify_items`` function checks:
- sibling ``order`` values are exactly ``0..n-1`` within each group
- every ``parent_id`` points at a record in the same collection
- no record sits on a parent cycle
- ``depth`` equals the number of ancestors

Grouping and contiguity are computed on a polars DataFrame; the parent
chain walks are plain Python.
"""

from __future__ import annotations

from typing import Any

import polars as pl

from sheetops.entities import EntityKind

DEFAULT_GROUP_KEYS = ("sheet_id", "parent_id")


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not value.is_integer():
        return None
    return int(value)


def _frame(records: list[dict[str, Any]], columns: list[str]) -> pl.DataFrame:
    schema: dict[str, Any] = {c: pl.Utf8 for c in columns}
    schema["order"] = pl.Int64
    schema["depth"] = pl.Int64
    rows = []
    for rec in records:
        row: dict[str, Any] = {}
        for c in columns:
            v = rec.get(c)
            row[c] = None if v is None else str(v)
        row["order"] = _as_int(rec.get("order"))
        row["depth"] = _as_int(rec.get("depth"))
        rows.append(row)
    return pl.DataFrame(rows, schema=schema)


def verify_items(
    records: list[dict[str, Any]],
    *,
    group_keys: tuple[str, ...] = DEFAULT_GROUP_KEYS,
    hierarchical: bool = True,
    ordered: bool = True,
    check_depth: bool = True,
    max_depth: int = 64,
) -> dict[str, Any]:
    """Verify sibling order and tree structure of one collection.

    Args:
        records: Documents of a single collection (optionally already
            filtered to one sheet).
        group_keys: Fields that together identify a sibling group.
        hierarchical: Whether ``parent_id`` links should be checked.
        ordered: Whether sibling ``order`` contiguity should be checked.
        check_depth: Whether stored ``depth`` values should be checked.
        max_depth: Parent chains longer than this are reported.

    Returns:
        Report dict with status ("pass" or "fail"), a sorted failures
        list, and the number of sibling groups inspected.
    """
    failures: list[str] = []

    key_columns = list(dict.fromkeys(["id", *group_keys, *(["parent_id"] if hierarchical else [])]))
    df = _frame(records, key_columns)

    groups = _check_order(df, list(group_keys), failures) if ordered else 0
    if hierarchical:
        _check_dangling(df, failures)
        _check_chains(records, failures, check_depth=check_depth, max_depth=max_depth)

    status = "pass" if not failures else "fail"
    report = {
        "status": status,
        "failures": sorted(failures),
        "groups": groups,
        "records": len(records),
    }
    _emit_verify_events(status, failures, len(records))
    return report


def _check_order(df: pl.DataFrame, group_keys: list[str], failures: list[str]) -> int:
    """Flag every sibling group whose orders are not exactly ``0..n-1``."""
    if df.height == 0:
        return 0
    if not group_keys:
        df = df.with_columns(pl.lit("collection").alias("group"))
        group_keys = ["group"]
    summary = (
        df.group_by(group_keys)
        .agg(
            pl.len().alias("n"),
            pl.col("order").null_count().alias("missing"),
            pl.col("order").n_unique().alias("distinct"),
            pl.col("order").min().alias("lo"),
            pl.col("order").max().alias("hi"),
            pl.col("order").sort().alias("orders"),
        )
    )
    bad = summary.filter(
        (pl.col("missing") > 0)
        | (pl.col("distinct") != pl.col("n"))
        | (pl.col("lo") != 0)
        | (pl.col("hi") != pl.col("n") - 1)
    )
    for row in bad.to_dicts():
        label = ", ".join(f"{k}={row[k]}" for k in group_keys)
        failures.append(
            f"order not contiguous in group ({label}): "
            f"expected 0..{row['n'] - 1}, got {row['orders']}"
        )
    return summary.height


def _check_dangling(df: pl.DataFrame, failures: list[str]) -> None:
    """Flag records whose parent is not in the collection."""
    if df.height == 0:
        return
    known = df.select(pl.col("id").alias("parent_id")).unique()
    orphans = (
        df.filter(pl.col("parent_id").is_not_null())
        .join(known, on="parent_id", how="anti")
        .select("id", "parent_id")
        .sort("id")
    )
    for row in orphans.to_dicts():
        failures.append(f"dangling parent: {row['id']} -> {row['parent_id']}")


def _check_chains(
    records: list[dict[str, Any]],
    failures: list[str],
    *,
    check_depth: bool,
    max_depth: int,
) -> None:
    """Walk each parent chain to detect cycles and depth mismatches.

    A record whose parent is missing counts as a root (depth 0); the
    dangling link itself is reported by :func:`_check_dangling`.
    """
    index = {r["id"]: r for r in records}
    # None marks records on, or hanging below, a cycle.
    depth_of: dict[str, int | None] = {}
    reported: set[frozenset[str]] = set()

    for rec_id in sorted(index):
        chain: list[str] = []
        on_chain: set[str] = set()
        current = rec_id
        base: int | None
        while True:
            if current in depth_of:
                base = depth_of[current]
                break
            if current in on_chain:
                cycle = chain[chain.index(current):]
                if frozenset(cycle) not in reported:
                    reported.add(frozenset(cycle))
                    failures.append(f"parent cycle: {' -> '.join(cycle + [current])}")
                base = None
                break
            if len(chain) > max_depth:
                failures.append(f"parent chain of {rec_id} exceeds {max_depth} levels")
                base = None
                break
            chain.append(current)
            on_chain.add(current)
            parent_id = index[current].get("parent_id")
            if parent_id is None or parent_id not in index:
                base = -1
                break
            current = parent_id

        for c in reversed(chain):
            if base is None:
                depth_of[c] = None
            else:
                base += 1
                depth_of[c] = base

    if not check_depth:
        return
    for rec_id in sorted(index):
        expected = depth_of.get(rec_id)
        if expected is None:
            continue
        actual = index[rec_id].get("depth")
        if actual is not None and _as_int(actual) != expected:
            failures.append(f"depth mismatch: {rec_id} has depth {actual}, expected {expected}")


def _emit_verify_events(status: str, failures: list[str], count: int) -> None:
    """Emit verification events to the event log."""
    try:
        from sheetops.logging.events import EventLevel, EventType, SheetOpsEvent, emit

        if status == "pass":
            emit(SheetOpsEvent(
                level=EventLevel.info,
                event_type=EventType.verify_pass,
                message=f"Verification passed for {count} records",
                context={"records": count},
            ))
        else:
            emit(SheetOpsEvent(
                level=EventLevel.error,
                event_type=EventType.verify_fail,
                message=f"Verification failed: {len(failures)} issue(s)",
                context={"records": count, "failures": sorted(failures)[:10]},
            ))
    except Exception:
        pass


def verify_kind(kind: EntityKind, records: list[dict[str, Any]], *, max_depth: int = 64) -> dict[str, Any]:
    """Run :func:`verify_items` with the sibling rules of an entity kind.

    Partitioned kinds (KPI vs custom columns) number each partition
    from 0 on its own, so the partition joins the group key.
    """
    group_keys = kind.sibling_keys
    if kind.partition is not None:
        records = [{**r, "partition": str(kind.group_of(r))} for r in records]
        group_keys = (*group_keys, "partition")
    return verify_items(
        records,
        group_keys=group_keys,
        hierarchical=kind.hierarchical,
        ordered=kind.ordered,
        max_depth=max_depth,
    )
