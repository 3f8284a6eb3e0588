"""Atomic file writes: temp file in the target directory, then rename.

Readers never observe a partially written file. Parent directories are
created as needed.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def write_atomic(path: Path, content: str | bytes) -> None:
    """Write *content* to *path* atomically (temp → fsync → rename).

    Creates parent directories if needed. On failure the temp file is
    removed and the original exception propagates.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    data = content.encode("utf-8") if isinstance(content, str) else content

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
