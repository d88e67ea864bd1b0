"""Error types for copy, reorder, and commit operations."""

from __future__ import annotations

NOT_FOUND = "not_found"
INTEGRITY_ERROR = "integrity_error"
COMMIT_FAILED = "commit_failed"


class SheetOpsError(Exception):
    """Base class for all sheetops errors."""

    error_code: str = "error"


class NotFoundError(SheetOpsError):
    """A referenced entity, sibling, or container does not exist.

    Raised before any write is attempted.

    Attributes:
        kind: Entity kind name (e.g. ``"budget_item"``, ``"measure"``).
        ident: The identifier that could not be found.
    """

    error_code = NOT_FOUND

    def __init__(self, kind: str, ident: str) -> None:
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} not found: {ident!r}")


class IntegrityError(SheetOpsError):
    """Corrupted source data: a cycle or an invalid parent/depth chain.

    Attributes:
        path: Identifier chain leading to the violation, if known.
    """

    error_code = INTEGRITY_ERROR

    def __init__(self, message: str, path: list[str] | None = None) -> None:
        self.path = list(path or [])
        full = message
        if self.path:
            full += f" (chain: {' -> '.join(self.path)})"
        super().__init__(full)


class StoreError(SheetOpsError):
    """A document store rejected or failed to apply a batch."""

    error_code = COMMIT_FAILED


class CommitFailure(SheetOpsError):
    """An atomic batch did not apply.

    Attributes:
        cause: Underlying store error, if any.
        retryable: Whether resubmitting the same batch may succeed.
    """

    error_code = COMMIT_FAILED

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        retryable: bool = True,
    ) -> None:
        self.cause = cause
        self.retryable = retryable
        super().__init__(message)
