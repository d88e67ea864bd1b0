"""Document store interface and local implementations.

The engines never talk to a store; only the commit coordinator and the
operations layer do.  Two implementations ship here:

- :class:`MemoryDocumentStore` -- dict-backed, used by tests and as the
  base for the file store.  Supports fault injection.
- :class:`FileDocumentStore` -- the same semantics persisted to a single
  JSON file with atomic replace.

Batch semantics (both stores):

- ``create`` fails if the document already exists.
- ``update`` fails if the document does not exist.  Keys may be dotted
  (``values.col1``) to address nested fields; a ``DELETE_FIELD`` value
  removes the key.
- ``delete`` of a missing document is a no-op.
- All writes are validated and applied to a staged copy; the live state
  is swapped only when every write succeeded.
"""

from __future__ import annotations

import copy
import json
import os
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from sheetops.errors import StoreError
from sheetops.idmap import id_factory
from sheetops.models import DELETE_FIELD, Write, WriteType
from sheetops.paths import split_path

Snapshot = list[dict[str, Any]]
Listener = Callable[[Snapshot], None]


class DocumentStore(Protocol):
    """What the operations layer needs from a document database."""

    def get(self, path: str) -> dict[str, Any] | None: ...

    def get_all(
        self,
        collection_path: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]: ...

    def generate_id(self, collection_path: str) -> str: ...

    def commit_batch(self, writes: Iterable[Write]) -> None: ...

    def subscribe(
        self,
        collection_path: str,
        listener: Listener,
        filters: dict[str, Any] | None = None,
    ) -> Callable[[], None]: ...


# ---------------------------------------------------------------------------
# Update merging
# ---------------------------------------------------------------------------


def strip_deletes(data: dict[str, Any]) -> dict[str, Any]:
    """Drop ``DELETE_FIELD`` entries from a full-document payload."""
    return {k: v for k, v in data.items() if v is not DELETE_FIELD}


def merge_update(doc: dict[str, Any], data: dict[str, Any]) -> dict[str, Any]:
    """Return *doc* with a partial update applied; *doc* is not mutated.

    Dotted keys address nested dicts, creating intermediate dicts as
    needed.  ``DELETE_FIELD`` removes the addressed key if present.
    """
    out = copy.deepcopy(doc)
    for key, value in data.items():
        parts = key.split(".")
        target = out
        for part in parts[:-1]:
            nxt = target.get(part)
            if not isinstance(nxt, dict):
                if value is DELETE_FIELD:
                    target = None
                    break
                nxt = {}
                target[part] = nxt
            target = nxt
        if target is None:
            continue
        if value is DELETE_FIELD:
            target.pop(parts[-1], None)
        else:
            target[parts[-1]] = copy.deepcopy(value)
    return out


def _matches(doc: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(doc.get(k) == v for k, v in filters.items())


def _sort_key(field: str) -> Callable[[dict[str, Any]], Any]:
    def key(doc: dict[str, Any]) -> Any:
        value = doc.get(field)
        return (value is None, value if value is not None else 0)

    return key


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class MemoryDocumentStore:
    """Dict-backed document store with atomic batches.

    Parameters
    ----------
    documents : dict[str, dict[str, Any]] | None
        Initial documents keyed by full path.
    factory : Callable[[], str] | None
        Identifier factory for :meth:`generate_id`.
    """

    def __init__(
        self,
        documents: dict[str, dict[str, Any]] | None = None,
        *,
        factory: Callable[[], str] | None = None,
    ) -> None:
        self._docs: dict[str, dict[str, Any]] = copy.deepcopy(documents or {})
        self._factory = factory or id_factory()
        self._listeners: list[tuple[str, dict[str, Any] | None, Listener]] = []
        self._fail_remaining = 0
        self._fail_message = ""
        self.commit_count = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, path: str) -> dict[str, Any] | None:
        doc = self._docs.get(path)
        if doc is None:
            return None
        _, doc_id = split_path(path)
        return {**copy.deepcopy(doc), "id": doc_id}

    def get_all(
        self,
        collection_path: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        return self._query(self._docs, collection_path, filters, order_by)

    def documents(self) -> dict[str, dict[str, Any]]:
        """Return a deep copy of every stored document keyed by path."""
        return copy.deepcopy(self._docs)

    @staticmethod
    def _query(
        docs: dict[str, dict[str, Any]],
        collection_path: str,
        filters: dict[str, Any] | None,
        order_by: str | None,
    ) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        prefix = collection_path.rstrip("/") + "/"
        for path in sorted(docs):
            if not path.startswith(prefix) or "/" in path[len(prefix):]:
                continue
            doc = {**copy.deepcopy(docs[path]), "id": path[len(prefix):]}
            if _matches(doc, filters):
                out.append(doc)
        if order_by:
            out.sort(key=_sort_key(order_by))
        return out

    def generate_id(self, collection_path: str) -> str:
        prefix = collection_path.rstrip("/") + "/"
        while True:
            new_id = self._factory()
            if prefix + new_id not in self._docs:
                return new_id

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def fail_next(self, count: int = 1, message: str = "injected store failure") -> None:
        """Make the next *count* batches fail without applying anything."""
        self._fail_remaining = count
        self._fail_message = message

    def commit_batch(self, writes: Iterable[Write]) -> None:
        """Apply *writes* atomically.

        Raises:
            StoreError: If any write is invalid or the store is failing.
                Nothing is applied in that case.
        """
        writes = list(writes)
        if self._fail_remaining > 0:
            self._fail_remaining -= 1
            raise StoreError(self._fail_message)

        staged = copy.deepcopy(self._docs)
        for write in writes:
            self._apply(staged, write)

        self._save(staged)
        self._docs = staged
        self.commit_count += 1
        self._notify({w.collection_path for w in writes})

    @staticmethod
    def _apply(docs: dict[str, dict[str, Any]], write: Write) -> None:
        try:
            split_path(write.path)
        except ValueError as e:
            raise StoreError(str(e)) from e
        if write.type == WriteType.create:
            if write.path in docs:
                raise StoreError(f"document already exists: {write.path}")
            docs[write.path] = strip_deletes(copy.deepcopy(write.data or {}))
        elif write.type == WriteType.update:
            if write.path not in docs:
                raise StoreError(f"cannot update missing document: {write.path}")
            docs[write.path] = merge_update(docs[write.path], write.data or {})
        else:
            docs.pop(write.path, None)

    def _save(self, docs: dict[str, dict[str, Any]]) -> None:
        """Persist a staged state before it goes live (no-op in memory)."""

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(
        self,
        collection_path: str,
        listener: Listener,
        filters: dict[str, Any] | None = None,
    ) -> Callable[[], None]:
        """Call *listener* with a fresh snapshot now and after each change.

        Returns:
            A callable that cancels the subscription.
        """
        entry = (collection_path.rstrip("/"), filters, listener)
        self._listeners.append(entry)
        listener(self.get_all(collection_path, filters, order_by="order"))

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _notify(self, touched: set[str]) -> None:
        for collection_path, filters, listener in list(self._listeners):
            if collection_path in touched:
                listener(self.get_all(collection_path, filters, order_by="order"))


# ---------------------------------------------------------------------------
# File-backed store
# ---------------------------------------------------------------------------

_STORE_FORMAT_VERSION = 1


class FileDocumentStore(MemoryDocumentStore):
    """Memory store persisted to one JSON file.

    Each successful batch rewrites the file via write-to-tmp then
    ``os.replace`` so readers never observe a partial state.
    """

    def __init__(self, path: Path, *, factory: Callable[[], str] | None = None) -> None:
        self.path = Path(path)
        documents: dict[str, dict[str, Any]] = {}
        if self.path.exists():
            try:
                payload = json.loads(self.path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                raise StoreError(f"corrupt store file {self.path}: {e}") from e
            documents = payload.get("documents", {})
        super().__init__(documents, factory=factory)

    def _save(self, docs: dict[str, dict[str, Any]]) -> None:
        payload = {"version": _STORE_FORMAT_VERSION, "documents": docs}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps(payload, indent=2, sort_keys=True, default=str),
                encoding="utf-8",
            )
            os.replace(str(tmp_path), str(self.path))
        except OSError as e:
            raise StoreError(f"failed to persist store to {self.path}: {e}") from e
