"""Atomic submission of write sets and optimistic local state.

:class:`BatchCommitCoordinator` is the only component that talks to the
store on behalf of the engines.  A batch either applies completely or
not at all; the coordinator never retries and never raises for a store
failure.  It returns a :class:`CommitResult` instead so callers can roll
back optimistic state.
"""

from __future__ import annotations

import copy
import uuid
from typing import Any

from pydantic import BaseModel

from sheetops.errors import COMMIT_FAILED, CommitFailure, StoreError
from sheetops.logging.events import (
    EventLevel,
    EventType,
    emit,
    emit_info,
    make_op_event,
)
from sheetops.models import WriteSet, WriteType
from sheetops.store import DocumentStore, merge_update, strip_deletes


def new_op_id() -> str:
    """Return a fresh identifier for one user-visible operation."""
    return uuid.uuid4().hex[:16]


class CommitResult(BaseModel):
    """Outcome of one batch submission."""

    ok: bool
    error_code: str | None = None
    message: str = ""
    write_count: int = 0
    root_id: str | None = None
    op_id: str | None = None

    def raise_for_failure(self) -> CommitResult:
        """Return self on success; raise :class:`CommitFailure` otherwise."""
        if not self.ok:
            raise CommitFailure(self.message or "batch commit failed")
        return self


class BatchCommitCoordinator:
    """Submits write sets to a :class:`DocumentStore` as single batches."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def commit(
        self,
        write_set: WriteSet,
        *,
        op_id: str | None = None,
        root_id: str | None = None,
    ) -> CommitResult:
        """Apply every write in *write_set* atomically.

        An empty write set is a successful no-op and does not reach the
        store.

        Args:
            write_set: Writes produced by an engine.
            op_id: Operation identifier used for log attribution.
            root_id: Primary created document, echoed in the result.

        Returns:
            A :class:`CommitResult`; ``ok`` is False when the store
            rejected the batch, in which case nothing was applied.
        """
        op_id = op_id or new_op_id()
        if write_set.is_empty():
            return CommitResult(ok=True, write_count=0, root_id=root_id, op_id=op_id)

        counts = {t.value: len(write_set.of_type(t)) for t in WriteType}
        try:
            self.store.commit_batch(write_set.writes)
        except (StoreError, OSError) as exc:
            emit(
                make_op_event(
                    EventType.commit_failed,
                    EventLevel.error,
                    f"Batch of {len(write_set)} writes failed: {exc}",
                    op_id=op_id,
                    error_code=COMMIT_FAILED,
                    extra={"write_count": len(write_set), **counts},
                ),
                op_id=op_id,
            )
            return CommitResult(
                ok=False,
                error_code=COMMIT_FAILED,
                message=str(exc),
                write_count=len(write_set),
                root_id=root_id,
                op_id=op_id,
            )

        emit(
            make_op_event(
                EventType.commit_succeeded,
                EventLevel.info,
                f"Committed {len(write_set)} writes",
                op_id=op_id,
                extra={"write_count": len(write_set), **counts},
            ),
            op_id=op_id,
        )
        return CommitResult(
            ok=True,
            write_count=len(write_set),
            root_id=root_id,
            op_id=op_id,
        )


# ---------------------------------------------------------------------------
# Optimistic local state
# ---------------------------------------------------------------------------


class OptimisticState:
    """A local collection view with a last confirmed snapshot.

    ``records`` is what a UI would render right now.  ``confirmed`` is
    the state last known to match the store.  Writes are addressed by
    document id; the collection part of a path is ignored because a
    state object tracks a single collection view.
    """

    def __init__(self, records: list[dict[str, Any]] | dict[str, dict[str, Any]]) -> None:
        if isinstance(records, dict):
            snapshot = records
        else:
            snapshot = {r["id"]: r for r in records}
        self.confirmed: dict[str, dict[str, Any]] = copy.deepcopy(snapshot)
        self.records: dict[str, dict[str, Any]] = copy.deepcopy(snapshot)

    def apply(self, write_set: WriteSet) -> None:
        """Apply *write_set* to the local view only."""
        for write in write_set.writes:
            doc_id = write.doc_id
            if write.type == WriteType.create:
                self.records[doc_id] = {**strip_deletes(write.data or {}), "id": doc_id}
            elif write.type == WriteType.update:
                if doc_id in self.records:
                    self.records[doc_id] = merge_update(self.records[doc_id], write.data or {})
            else:
                self.records.pop(doc_id, None)

    def confirm(self) -> None:
        """Accept the local view as matching the store."""
        self.confirmed = copy.deepcopy(self.records)

    def rollback(self) -> None:
        """Discard unconfirmed local changes."""
        self.records = copy.deepcopy(self.confirmed)

    def replace(self, records: list[dict[str, Any]]) -> None:
        """Adopt a fresh store snapshot as both view and confirmed state."""
        snapshot = {r["id"]: r for r in records}
        self.confirmed = copy.deepcopy(snapshot)
        self.records = copy.deepcopy(snapshot)

    def ordered(self) -> list[dict[str, Any]]:
        """The local view sorted by ``order`` then ``id``."""
        return sorted(self.records.values(), key=lambda r: (r.get("order") or 0, r["id"]))


def run_optimistic(
    state: OptimisticState,
    write_set: WriteSet,
    coordinator: BatchCommitCoordinator,
    *,
    op_id: str | None = None,
    root_id: str | None = None,
) -> CommitResult:
    """Apply locally, commit, then confirm or roll back.

    The confirmed snapshot is the one captured before *write_set* was
    applied, so a failed commit leaves ``state.records`` exactly as it
    was before the call.
    """
    op_id = op_id or new_op_id()
    state.apply(write_set)
    result = coordinator.commit(write_set, op_id=op_id, root_id=root_id)
    if result.ok:
        state.confirm()
    else:
        state.rollback()
        emit_info(
            EventType.rollback_applied,
            "Optimistic state restored to last confirmed snapshot",
            {"op_id": op_id, "write_count": len(write_set)},
            op_id=op_id,
        )
    return result
