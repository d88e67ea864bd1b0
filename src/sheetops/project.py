"""Project-level configuration and scaffolding."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from sheetops.idmap import id_factory
from sheetops.store import FileDocumentStore

CONFIG_FILE = "sheetops.yaml"

DEFAULT_CONFIG = {
    "project_id": "main",
    "max_copy_depth": 64,
    "id_length": 20,
    "store_file": "store.json",
    "copy_suffix": " (copy)",
    "logging_fsync": False,
    "logging_tail_bytes": 2_097_152,  # 2 MB
}

DEFAULT_PROJECT_CONFIG = """\
# sheetops project configuration
project_id: main

# Nesting cap for tree traversal and recursive measure copies
max_copy_depth: 64

# Generated document identifier length
id_length: 20

# File-backed document store, relative to the project directory
store_file: store.json

# Appended to a measure duplicated inside its own record
copy_suffix: " (copy)"

logging:
  fsync: false
  tail_bytes: 2097152
"""


def _flatten_logging_block(user_config: dict[str, Any]) -> dict[str, Any]:
    """Flatten a nested ``logging:`` block into ``logging_*`` keys.

    Supports::

        logging:
          fsync: true
          tail_bytes: 1048576

    Flat keys already present in the file win over the nested block.
    """
    block = user_config.pop("logging", None)
    if not isinstance(block, dict):
        return user_config
    for short_key, value in block.items():
        user_config.setdefault(f"logging_{short_key}", value)
    return user_config


def load_project_config(project_dir: Path) -> dict[str, Any]:
    """Load project configuration from ``sheetops.yaml``, with defaults.

    Unknown keys are kept as-is.

    Args:
        project_dir: Root of the sheetops project.

    Returns:
        Merged configuration dict.
    """
    config = dict(DEFAULT_CONFIG)
    config_path = Path(project_dir) / CONFIG_FILE
    if config_path.exists():
        user_config = yaml.safe_load(config_path.read_text()) or {}
        if not isinstance(user_config, dict):
            raise ValueError(f"{config_path} must contain a mapping")
        user_config = _flatten_logging_block(user_config)
        config.update(user_config)
    return config


def open_store(project_dir: Path, config: dict[str, Any] | None = None) -> FileDocumentStore:
    """Open the file-backed document store of a project."""
    project_dir = Path(project_dir)
    config = config or load_project_config(project_dir)
    return FileDocumentStore(
        project_dir / str(config["store_file"]),
        factory=id_factory(int(config["id_length"])),
    )


def scaffold_project(target_dir: Path) -> Path:
    """Create a new sheetops project at the target directory.

    Args:
        target_dir: Directory to create (must not already contain
            ``sheetops.yaml``).

    Returns:
        Path to the created project directory.

    Raises:
        FileExistsError: If the directory already holds a project.
    """
    target_dir = Path(target_dir).resolve()
    target_dir.mkdir(parents=True, exist_ok=True)

    config_path = target_dir / CONFIG_FILE
    if config_path.exists():
        raise FileExistsError(f"{CONFIG_FILE} already exists in {target_dir}")

    config_path.write_text(DEFAULT_PROJECT_CONFIG)
    (target_dir / "logs").mkdir(exist_ok=True)

    # Materialise an empty store file
    store = open_store(target_dir)
    store.commit_batch([])

    return target_dir
