"""
File Chain (see DEVELOPER.md):
Doc Version: v1.0.0

- Called by: render.py (Renderer.write)
- Purpose: Persist rendered artifacts only when their bytes changed

PURPOSE:
    An unchanged configuration must produce zero writes so that nothing the
    orchestration runtime already runs is restarted. Writes go to a temporary
    file in the target directory which is then renamed over the target, so a
    crash never leaves a partially written artifact behind.

DEPENDENCIES:
    - os, tempfile: mkstemp() + os.replace() for atomic replacement
    - logging: one event per actual write
"""

import logging
import os
import tempfile
from pathlib import Path

from meshgen.models import PersistenceError

_LOGGER = logging.getLogger(__name__)


def atomic_write(path: Path, data: bytes, mode: int = 0o644):
    """write data to path via a temporary file and a rename"""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    finally:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass


def update_file_if_different(body: bytes, path: Path, mode: int = 0o644) -> bool:
    """write body to path unless it already holds exactly these bytes,
    returns True if the file was written"""
    try:
        try:
            prev = path.read_bytes()
        except FileNotFoundError:
            _LOGGER.info("writing new file", extra={"fields": {"path": str(path)}})
        else:
            if prev == body:
                return False
            _LOGGER.info("file has changed", extra={"fields": {"path": str(path)}})
        atomic_write(path, body, mode)
    except OSError as exc:
        raise PersistenceError(f"cannot write {path}: {exc}") from exc
    return True
