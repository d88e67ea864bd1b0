"""Old-to-new identifier mapping for one duplication operation."""

from __future__ import annotations

import secrets
import string
from typing import Callable, Iterator

from sheetops.errors import IntegrityError

_ID_ALPHABET = string.ascii_letters + string.digits

DEFAULT_ID_LENGTH = 20


def generate_id(length: int = DEFAULT_ID_LENGTH) -> str:
    """Return a random alphanumeric document identifier.

    Args:
        length: Number of characters.

    Returns:
        Identifier string, shaped like a document-store auto id.
    """
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def id_factory(length: int = DEFAULT_ID_LENGTH) -> Callable[[], str]:
    """Return a zero-argument identifier factory of the given length."""

    def factory() -> str:
        return generate_id(length)

    return factory


class IdentifierMap:
    """Bidirectional old→new identifier map, scoped to one operation.

    ``record`` is idempotent: the first call for an old id generates a
    fresh identifier, later calls return the same one.  ``resolve`` never
    generates; ``None`` means the old id is not part of the copied set.

    Usage::

        ids = IdentifierMap.create()
        new_a = ids.record("a")
        assert ids.record("a") == new_a
        assert ids.resolve("zzz") is None
    """

    def __init__(self, factory: Callable[[], str] | None = None) -> None:
        self._factory = factory or id_factory()
        self._forward: dict[str, str] = {}
        self._reverse: dict[str, str] = {}

    @classmethod
    def create(cls, factory: Callable[[], str] | None = None) -> IdentifierMap:
        return cls(factory)

    def record(self, old_id: str) -> str:
        """Return the new identifier for *old_id*, generating it on first use.

        Raises:
            IntegrityError: If the factory hands out an identifier this map
                already issued.
        """
        existing = self._forward.get(old_id)
        if existing is not None:
            return existing
        new_id = self._factory()
        if new_id in self._reverse:
            raise IntegrityError(
                f"identifier factory produced a duplicate id {new_id!r}",
                path=[self._reverse[new_id], old_id],
            )
        self._forward[old_id] = new_id
        self._reverse[new_id] = old_id
        return new_id

    def resolve(self, old_id: str | None) -> str | None:
        if old_id is None:
            return None
        return self._forward.get(old_id)

    def original(self, new_id: str) -> str | None:
        """Reverse lookup: the old identifier that *new_id* replaced."""
        return self._reverse.get(new_id)

    def new_ids(self) -> set[str]:
        return set(self._reverse)

    def items(self) -> Iterator[tuple[str, str]]:
        return iter(self._forward.items())

    def __contains__(self, old_id: object) -> bool:
        return old_id in self._forward

    def __len__(self) -> int:
        return len(self._forward)

    def __repr__(self) -> str:
        return f"IdentifierMap({len(self)} ids)"
