"""Command-line interface for sheetops (file-backed project store)."""

from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import click

from sheetops import __version__
from sheetops.errors import SheetOpsError


@click.group()
@click.version_option(version=__version__, prog_name="sheetops")
def main() -> None:
    """sheetops -- duplicate, reorder, and delete hierarchical sheet data.

    Every command works on the store of one project directory.
    """


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

_project_option = click.option(
    "--project", "directory", type=click.Path(exists=True, file_okay=False),
    default=".", help="Project directory.",
)


def _open_project(directory: str) -> tuple[Path, dict[str, Any], Any]:
    from sheetops.logging.events import set_project_dir
    from sheetops.project import load_project_config, open_store

    project_dir = Path(directory)
    set_project_dir(project_dir)
    config = load_project_config(project_dir)
    return project_dir, config, open_store(project_dir, config)


@contextmanager
def _errors() -> Iterator[None]:
    """Turn domain errors into clean CLI failures."""
    try:
        yield
    except SheetOpsError as e:
        raise click.ClickException(f"[{e.error_code}] {e}")
    except KeyError as e:
        raise click.ClickException(str(e.args[0]) if e.args else str(e))
    except ValueError as e:
        raise click.ClickException(str(e))


def _report(result: Any, verb: str) -> None:
    result.raise_for_failure()
    if result.write_count == 0:
        click.echo(f"Nothing to {verb}.")
        return
    line = f"{verb.capitalize()}: {result.write_count} writes committed"
    if result.root_id:
        line += f" (new id {result.root_id})"
    click.echo(line)


def _format_event(evt: dict[str, Any]) -> str:
    ts = evt.get("ts", "")
    lvl = evt.get("level", "").upper()
    etype = evt.get("event_type", "")
    msg = evt.get("message", "")
    err = evt.get("error_code")
    line = f"[{ts}] {lvl:7s} {etype}: {msg}"
    if err:
        line += f"  ({err})"
    return line


# ---------------------------------------------------------------------------
# Init
# ---------------------------------------------------------------------------


@main.command()
@click.argument("directory", type=click.Path())
def init(directory: str) -> None:
    """Scaffold a new project at DIRECTORY."""
    from sheetops.project import scaffold_project

    try:
        result = scaffold_project(Path(directory))
    except FileExistsError as e:
        raise click.ClickException(str(e))
    click.echo(f"Created project at {result}")


# ---------------------------------------------------------------------------
# Duplicate
# ---------------------------------------------------------------------------


@main.command("duplicate-sheet")
@click.argument("kind", type=click.Choice(["income", "gantt", "timetable", "kpi"]))
@click.argument("sheet_id")
@click.argument("name")
@_project_option
def duplicate_sheet_cmd(kind: str, sheet_id: str, name: str, directory: str) -> None:
    """Duplicate sheet SHEET_ID of KIND under NAME."""
    from sheetops.idmap import id_factory
    from sheetops.operations import duplicate_sheet

    with _errors():
        _, config, store = _open_project(directory)
        result = duplicate_sheet(
            store, config["project_id"], kind, sheet_id, name,
            factory=id_factory(int(config["id_length"])),
            max_depth=int(config["max_copy_depth"]),
        )
        _report(result, "duplicate")


@main.command("duplicate-measure")
@click.argument("record_id")
@click.argument("measure_id")
@click.option("--to", "dest_record_id", default=None, help="Destination KPI record (default: same record).")
@click.option("--name", "new_name", default=None, help="Name for the copy.")
@_project_option
def duplicate_measure_cmd(
    record_id: str,
    measure_id: str,
    dest_record_id: str | None,
    new_name: str | None,
    directory: str,
) -> None:
    """Duplicate MEASURE_ID of KPI record RECORD_ID."""
    from sheetops.idmap import id_factory
    from sheetops.operations import duplicate_measure

    with _errors():
        _, config, store = _open_project(directory)
        result = duplicate_measure(
            store, config["project_id"], record_id, measure_id,
            dest_record_id=dest_record_id,
            new_name=new_name,
            copy_suffix=str(config["copy_suffix"]),
            factory=id_factory(int(config["id_length"])),
            max_depth=int(config["max_copy_depth"]),
        )
        _report(result, "duplicate")


@main.command("copy-period")
@click.argument("record_id")
@click.option("--start", "start_date", required=True, help="Start date (YYYY-MM-DD).")
@click.option("--end", "end_date", required=True, help="End date (YYYY-MM-DD).")
@click.option("--label", "period_label", required=True, help="Period label.")
@_project_option
def copy_period_cmd(record_id: str, start_date: str, end_date: str, period_label: str, directory: str) -> None:
    """Start a new KPI period from RECORD_ID."""
    from sheetops.operations import copy_kpi_record

    with _errors():
        _, config, store = _open_project(directory)
        result = copy_kpi_record(
            store, config["project_id"], record_id,
            start_date=start_date, end_date=end_date, period_label=period_label,
        )
        _report(result, "copy")


# ---------------------------------------------------------------------------
# Reorder
# ---------------------------------------------------------------------------


@main.command()
@click.argument("kind")
@click.argument("record_id")
@click.argument("direction", type=click.Choice(["up", "down"]))
@_project_option
def move(kind: str, record_id: str, direction: str, directory: str) -> None:
    """Move RECORD_ID of KIND one step up or down among its siblings."""
    from sheetops.operations import move_column, move_record

    with _errors():
        _, config, store = _open_project(directory)
        if kind == "kpi_measure_column":
            result = move_column(store, config["project_id"], record_id, direction)
        else:
            result = move_record(store, config["project_id"], kind, record_id, direction)
        _report(result, "move")


@main.command("move-to")
@click.argument("kind")
@click.argument("record_id")
@click.argument("index", type=int)
@_project_option
def move_to_cmd(kind: str, record_id: str, index: int, directory: str) -> None:
    """Place RECORD_ID of KIND at position INDEX among its siblings."""
    from sheetops.operations import move_record_to

    with _errors():
        _, config, store = _open_project(directory)
        result = move_record_to(store, config["project_id"], kind, record_id, index)
        _report(result, "move")


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


@main.command()
@click.argument("kind")
@click.argument("record_id")
@_project_option
def delete(kind: str, record_id: str, directory: str) -> None:
    """Delete RECORD_ID of KIND and everything below it.

    KIND may be an entity kind (``budget_item``) or a sheet kind
    (``income``), in which case the whole sheet is deleted.
    """
    from sheetops.entities import list_sheet_kinds
    from sheetops.operations import delete_record, delete_sheet

    with _errors():
        _, config, store = _open_project(directory)
        if kind in list_sheet_kinds():
            result = delete_sheet(store, config["project_id"], kind, record_id)
        else:
            result = delete_record(
                store, config["project_id"], kind, record_id,
                max_depth=int(config["max_copy_depth"]),
            )
        _report(result, "delete")


# ---------------------------------------------------------------------------
# Verify
# ---------------------------------------------------------------------------


@main.command()
@click.argument("kind")
@click.option("--sheet", "container_id", default=None, help="Restrict to one container id.")
@_project_option
@click.option("--json", "as_json", is_flag=True, help="Output report as JSON.")
def verify(kind: str, container_id: str | None, directory: str, as_json: bool) -> None:
    """Check sibling order and tree structure of KIND records."""
    from sheetops.operations import verify_collection

    with _errors():
        _, config, store = _open_project(directory)
        report = verify_collection(
            store, config["project_id"], kind,
            container_id=container_id,
            max_depth=int(config["max_copy_depth"]),
        )

    if as_json:
        click.echo(json.dumps(report, indent=2, sort_keys=True))
    else:
        click.echo(f"Verify {kind}: {report['records']} records, {report['groups']} groups")
        click.echo(f"Status: {report['status'].upper()}")
        if report["failures"]:
            for f in report["failures"]:
                click.echo(f"  FAIL: {f}")
        else:
            click.echo("  All checks passed.")

    if report["status"] != "pass":
        raise SystemExit(2)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@main.command("events")
@_project_option
@click.option("--level", default=None, type=click.Choice(["info", "warning", "error"]), help="Filter by level.")
@click.option("--type", "event_type", default=None, help="Filter by event type.")
@click.option("--op-id", default=None, help="Filter by operation ID.")
@click.option("--limit", default=100, type=int, help="Maximum events to show.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def events_cmd(
    directory: str,
    level: str | None,
    event_type: str | None,
    op_id: str | None,
    limit: int,
    as_json: bool,
) -> None:
    """Show the structured event log of the project."""
    from sheetops.logging.sink import EventSink

    sink = EventSink(Path(directory))
    events = sink.read_global(level=level, event_type=event_type, op_id=op_id, limit=limit)

    if as_json:
        click.echo(json.dumps(events, indent=2, default=str))
        return
    if not events:
        click.echo("No events found.")
        return
    for evt in events:
        click.echo(_format_event(evt))


@main.command("op-log")
@click.argument("op_id")
@_project_option
def op_log_cmd(op_id: str, directory: str) -> None:
    """Show the event log of one operation."""
    from sheetops.logging.sink import EventSink

    events = EventSink(Path(directory)).read_op_log(op_id)
    if not events:
        click.echo(f"No events found for operation {op_id}.")
        return
    for evt in events:
        click.echo(_format_event(evt))
