"""Composed artifact writer: destination resolution + path guard + atomic write.

Responsibilities:
  1. Resolve the destination: explicit path, else
     ``settings.export_path / settings.default_filename``.
  2. Validate it: relative paths are confined to the working directory.
     Path traversal (../../etc/passwd) → hard fail.
  3. Write atomically (temp file → rename), creating parent directories.
"""

from __future__ import annotations

from pathlib import Path

import structlog

from pluqqy.config import Settings
from pluqqy.errors import InvalidNameError, StoreIOError
from pluqqy.store.atomic import write_atomic

logger = structlog.get_logger(__name__)


# ------------------------------------------------------------------
# Path validation
# ------------------------------------------------------------------


def validate_output_path(output: str | Path, allowed_base: Path | None = None) -> Path:
    """Normalize and validate an artifact destination.

    Security model:
    - Absolute paths are accepted as-is (user explicitly chose the location).
    - Relative paths are confined to *allowed_base* (default: CWD).
      Traversal sequences like '../../etc/passwd' are hard-blocked.

    Returns:
        Resolved absolute Path.

    Raises:
        InvalidNameError: If a relative path escapes the allowed base directory.
    """
    path = Path(output)

    if path.is_absolute():
        return path.resolve()

    if allowed_base is None:
        allowed_base = Path.cwd()

    allowed_base = allowed_base.resolve()
    resolved = (allowed_base / path).resolve()

    try:
        resolved.relative_to(allowed_base)
    except ValueError:
        raise InvalidNameError(
            f"Output path '{output}' resolves outside the allowed directory "
            f"('{allowed_base}'). Path traversal is not permitted.",
            path=str(output),
        )

    return resolved


def default_output_path(settings: Settings) -> Path:
    return Path(settings.export_path) / settings.default_filename


# ------------------------------------------------------------------
# Write
# ------------------------------------------------------------------


def write_composed(
    artifact: str,
    settings: Settings,
    path: str | Path | None = None,
    allowed_base: Path | None = None,
) -> Path:
    """Persist *artifact* and return the absolute destination.

    Args:
        artifact: Composed Markdown.
        settings: Supplies the default destination when *path* is empty.
        path: Explicit destination (file path).
        allowed_base: Confinement root for relative destinations (default CWD).

    Raises:
        InvalidNameError: Destination escapes *allowed_base*.
        StoreIOError: The write itself failed.
    """
    target = validate_output_path(path or default_output_path(settings), allowed_base)
    try:
        write_atomic(target, artifact)
    except OSError as exc:
        raise StoreIOError(
            f"Cannot write composed output to '{target}': {exc}",
            operation="write_composed",
            path=str(target),
        ) from exc
    logger.info("artifact_written", path=str(target), chars=len(artifact))
    return target
