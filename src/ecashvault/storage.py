"""Atomic JSON file persistence for the wallet stores.

Writes go to a temp file in the target directory, are fsynced, then
renamed over the target, so readers see either the old or the new
document and never a torn one. Files are created owner-only.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ecashvault.constants import STORE_DIR_MODE, STORE_FILE_MODE
from ecashvault.errors import MalformedStore

logger = logging.getLogger(__name__)


def read_json(path: Path) -> dict[str, Any] | None:
    """Load a JSON object from ``path``.

    Returns None when the file does not exist.

    Raises:
        MalformedStore: The file exists but is not a JSON object.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedStore(path, str(e)) from e
    if not isinstance(obj, dict):
        raise MalformedStore(path, f"expected an object, got {type(obj).__name__}")
    return obj


def preserve_corrupt(path: Path) -> Path | None:
    """Copy a corrupt store aside before it gets overwritten.

    Returns the backup path, or None if the file vanished meanwhile.
    """
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    backup = path.with_name(f"{path.name}.corrupt-{stamp}")
    try:
        shutil.copy2(path, backup)
    except FileNotFoundError:
        return None
    os.chmod(backup, STORE_FILE_MODE)
    logger.warning("Preserved corrupt store %s as %s.", path, backup)
    return backup


def ensure_private_dir(directory: Path) -> None:
    if not directory.exists():
        directory.mkdir(parents=True, mode=STORE_DIR_MODE, exist_ok=True)


def atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    """Replace ``path`` with ``data`` serialized as indented JSON."""
    ensure_private_dir(path.parent)
    fd, temp_path = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp",
    )
    # mkstemp creates the file 0600, and os.replace keeps that mode.
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise
