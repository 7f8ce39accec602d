"""
gateway/storage.py — Owner-only JSON files

Shared read/write helpers for the identity and token stores. Writes go to
a temp file in the same directory and are swapped in with os.replace, so a
reader never sees a half-written record. Files and their parent directory
are restricted to the owner.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from observability.logger import get_logger

log = get_logger(__name__)

FILE_MODE = 0o600
DIR_MODE = 0o700


def read_json(path: Path) -> Optional[dict[str, Any]]:
    """
    Return the parsed JSON object at path, or None.

    A missing file, unreadable file, invalid JSON, or a top-level value
    that is not an object all read as None.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        log.warning("storage.read_failed", path=str(path), error=str(exc))
        return None

    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        log.warning("storage.corrupt_json", path=str(path), error=str(exc))
        return None

    return parsed if isinstance(parsed, dict) else None


def write_private_json(path: Path, doc: dict[str, Any]) -> None:
    """Atomically write doc as indented JSON with owner-only permissions."""
    path.parent.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
    fd, tmp = tempfile.mkstemp(prefix=".tmp.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps(doc, indent=2) + "\n")
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, FILE_MODE)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise
