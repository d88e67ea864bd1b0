"""Document path helpers.

Every collection lives directly under its project::

    projects/<project_id>/<collection>/<doc_id>

Nested ownership (rows under a measure under a row ...) is expressed by
owner fields on the documents, not by deeper paths.
"""

from __future__ import annotations


def project_root(project_id: str) -> str:
    return f"projects/{project_id}"


def collection_path(project_id: str, collection: str) -> str:
    return f"{project_root(project_id)}/{collection}"


def doc_path(project_id: str, collection: str, doc_id: str) -> str:
    return f"{collection_path(project_id, collection)}/{doc_id}"


def split_path(path: str) -> tuple[str, str]:
    """Split a document path into ``(collection_path, doc_id)``.

    Raises:
        ValueError: If *path* has no collection component.
    """
    if "/" not in path:
        raise ValueError(f"Not a document path: {path!r}")
    collection, doc_id = path.rsplit("/", 1)
    if not collection or not doc_id:
        raise ValueError(f"Not a document path: {path!r}")
    return collection, doc_id
