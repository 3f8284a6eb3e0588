"""Library layout on disk and path conversions.

Layout (relative to the library root, default ``./.pluqqy``):

  components/{contexts,prompts,rules}/<slug>.md
  pipelines/<slug>.yaml
  archive/components/<kind-dir>/<slug>.md
  archive/pipelines/<slug>.yaml
  settings.yaml
  tags.yaml

Library paths (the keys used everywhere above the Store) never include the
``archive/`` prefix; archived-ness is a flag on the entity.
"""

from __future__ import annotations

import posixpath
from pathlib import Path

from pluqqy.errors import InvalidNameError
from pluqqy.store.models import DIR_KINDS, KIND_DIRS, KINDS

DEFAULT_LIBRARY_DIR = ".pluqqy"
COMPONENTS_DIR = "components"
PIPELINES_DIR = "pipelines"
ARCHIVE_DIR = "archive"
SETTINGS_FILE = "settings.yaml"
TAGS_FILE = "tags.yaml"

FRAGMENT_SUFFIX = ".md"
PIPELINE_SUFFIX = ".yaml"

# Component and pipeline files larger than this are refused
MAX_FILE_SIZE = 10 * 1024 * 1024

_ARCHIVE_PREFIX = ARCHIVE_DIR + "/"


def normalize_library_path(path: str) -> str:
    """Return *path* as a clean posix library path.

    Raises:
        InvalidNameError: If the path is absolute or escapes the library root.
    """
    raw = str(path).replace("\\", "/").strip()
    if not raw:
        raise InvalidNameError("Path cannot be empty.")
    if raw.startswith("/"):
        raise InvalidNameError(f"Invalid path '{path}': library paths are relative.", path=path)
    cleaned = posixpath.normpath(raw)
    if cleaned == ".." or cleaned.startswith("../") or "/../" in cleaned:
        raise InvalidNameError(
            f"Invalid path '{path}': contains directory traversal.", path=path
        )
    return cleaned


def split_archive(path: str) -> tuple[str, bool]:
    """Strip a leading ``archive/`` segment. Returns (library_path, was_archived)."""
    cleaned = normalize_library_path(path)
    if cleaned.startswith(_ARCHIVE_PREFIX):
        return cleaned[len(_ARCHIVE_PREFIX):], True
    return cleaned, False


def fragment_path(kind: str, slug: str) -> str:
    return f"{COMPONENTS_DIR}/{KIND_DIRS[kind]}/{slug}{FRAGMENT_SUFFIX}"


def pipeline_path(slug: str) -> str:
    return f"{PIPELINES_DIR}/{slug}{PIPELINE_SUFFIX}"


def kind_from_path(path: str) -> str | None:
    """Return the fragment kind encoded in *path*'s directory segment, else None."""
    parts = path.split("/")
    if len(parts) != 3 or parts[0] != COMPONENTS_DIR:
        return None
    if not parts[2].endswith(FRAGMENT_SUFFIX):
        return None
    return DIR_KINDS.get(parts[1])


def is_fragment_path(path: str) -> bool:
    return kind_from_path(path) is not None


def is_pipeline_path(path: str) -> bool:
    parts = path.split("/")
    return len(parts) == 2 and parts[0] == PIPELINES_DIR and parts[1].endswith(PIPELINE_SUFFIX)


def kind_dir(kind: str | None) -> str:
    """Directory (relative to a root) listing items of *kind*; None means pipelines."""
    if kind is None:
        return PIPELINES_DIR
    if kind not in KINDS:
        raise InvalidNameError(
            f"Invalid component type '{kind}': must be one of: {', '.join(KINDS)}."
        )
    return f"{COMPONENTS_DIR}/{KIND_DIRS[kind]}"


def ref_to_fragment_path(ref_path: str) -> str:
    """Canonical library path for a pipeline-relative component ref.

    ``../components/prompts/x.md`` and ``../archive/components/prompts/x.md``
    both map to ``components/prompts/x.md``. Refs written with a library
    directory prefix (``.pluqqy/components/...``) are cut at ``components/``.
    """
    raw = str(ref_path).replace("\\", "/").strip()
    resolved = posixpath.normpath(posixpath.join(PIPELINES_DIR, raw))
    if resolved.startswith(_ARCHIVE_PREFIX):
        resolved = resolved[len(_ARCHIVE_PREFIX):]
    if not resolved.startswith(COMPONENTS_DIR + "/"):
        idx = resolved.find("/" + COMPONENTS_DIR + "/")
        if idx >= 0:
            resolved = resolved[idx + 1:]
    return resolved


def fragment_to_ref(path: str) -> str:
    """Pipeline-relative ref for a fragment library path."""
    return "../" + path


def disk_path(root: Path, path: str, archived: bool = False) -> Path:
    """Absolute location of library *path* in the active or archive root."""
    base = root / ARCHIVE_DIR if archived else root
    return base.joinpath(*path.split("/"))
