"""Filesystem repository for the pluqqy library.

Single interface for: fragments, pipelines, archive moves, settings and the
tag registry file. Every write goes through write_atomic(); every OSError is
converted to StoreIOError at this boundary.

Entities are addressed by library path (``components/prompts/x.md``,
``pipelines/x.yaml``) plus an ``archived`` flag. Read operations accept
``archived=None`` to mean "wherever the file lives, active first".
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog
import yaml

from pluqqy.config import Settings, load_settings, write_settings
from pluqqy.errors import (
    AlreadyExistsError,
    MalformedError,
    NotFoundError,
    StoreIOError,
)
from pluqqy.store.atomic import write_atomic
from pluqqy.store.frontmatter import parse_frontmatter, render_frontmatter
from pluqqy.store.models import (
    KIND_DIRS,
    KINDS,
    ComponentRef,
    Fragment,
    Pipeline,
    normalize_kind,
    normalize_tags,
)
from pluqqy.store.paths import (
    ARCHIVE_DIR,
    COMPONENTS_DIR,
    FRAGMENT_SUFFIX,
    MAX_FILE_SIZE,
    PIPELINE_SUFFIX,
    PIPELINES_DIR,
    SETTINGS_FILE,
    TAGS_FILE,
    disk_path,
    is_fragment_path,
    is_pipeline_path,
    kind_dir,
    kind_from_path,
    normalize_library_path,
    ref_to_fragment_path,
    split_archive,
)
from pluqqy.tokens import estimate_tokens

logger = structlog.get_logger(__name__)


class Store:
    """Data access layer over one library root directory.

    The Store exclusively owns on-disk bytes. It keeps no cache: every read
    goes to disk, callers (LibraryService) own the in-memory snapshot.
    """

    def __init__(self, root: Path) -> None:
        """Initialise over *root* (the library directory, e.g. ``./.pluqqy``).

        The directory does not need to exist yet; writes create it.
        """
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def file_path(self, path: str, archived: bool = False) -> Path:
        """Absolute on-disk location of library *path*."""
        return disk_path(self._root, normalize_library_path(path), archived)

    # ------------------------------------------------------------------
    # Listing + lookup
    # ------------------------------------------------------------------

    def list_paths(self, kind: str | None, archived: bool = False) -> list[str]:
        """Return sorted library paths of one kind (None = pipelines).

        Args:
            kind: Fragment kind, or None for pipelines.
            archived: List the archive root instead of the active root.
        """
        rel_dir = kind_dir(kind)
        suffix = PIPELINE_SUFFIX if kind is None else FRAGMENT_SUFFIX
        directory = disk_path(self._root, rel_dir, archived)
        if not directory.is_dir():
            return []
        try:
            names = sorted(
                entry.name
                for entry in directory.iterdir()
                if entry.is_file() and entry.name.endswith(suffix) and not entry.name.startswith(".")
            )
        except OSError as exc:
            raise StoreIOError(f"Cannot list '{directory}': {exc}", operation="list", path=rel_dir) from exc
        return [f"{rel_dir}/{name}" for name in names]

    def list_fragment_paths(self, archived: bool = False) -> list[str]:
        paths: list[str] = []
        for kind in KINDS:
            paths.extend(self.list_paths(kind, archived))
        return paths

    def exists(self, path: str, archived: bool | None = None) -> bool:
        """True if *path* exists in the given root (None = either root)."""
        if archived is None:
            return self.exists(path, False) or self.exists(path, True)
        return self.file_path(path, archived).is_file()

    def where(self, path: str) -> bool:
        """Return the archived flag of the root holding *path*.

        Raises:
            NotFoundError: If *path* exists in neither root.
        """
        if self.exists(path, False):
            return False
        if self.exists(path, True):
            return True
        raise NotFoundError(f"'{path}' not found in the library.", path=path)

    def find_clash(self, path: str, exclude: str | None = None) -> str | None:
        """Return an existing library path equal to *path* ignoring case, else None.

        Both roots are checked. *exclude* (compared ignoring case) is never
        reported, so an item can be re-saved under its own name.
        """
        target = normalize_library_path(path).lower()
        skip = normalize_library_path(exclude).lower() if exclude else None
        kind = kind_from_path(target)
        if kind is None and not is_pipeline_path(target):
            return None
        for archived in (False, True):
            for candidate in self.list_paths(kind, archived):
                folded = candidate.lower()
                if folded == target and folded != skip:
                    return candidate
        return None

    def locate(self, ref: str) -> tuple[str, bool]:
        """Resolve a user reference to (library_path, archived).

        Accepted forms:
          components/prompts/x.md, pipelines/x.yaml   library paths
          archive/components/prompts/x.md             archive-prefixed paths
          prompts/x, prompts/x.md                     <kind-dir>/<slug>
          x, x.md, x.yaml                             bare slug or name

        Raises:
            NotFoundError: If nothing, or more than one item, matches.
        """
        raw = str(ref).strip()
        if not raw:
            raise NotFoundError("Empty reference.")

        path, archived_hint = split_archive(raw)

        if is_fragment_path(path) or is_pipeline_path(path):
            if archived_hint:
                if self.exists(path, True):
                    return path, True
                raise NotFoundError(f"'{raw}' not found in the archive.", path=raw)
            return path, self.where(path)

        candidates = self._candidates(path)
        if archived_hint:
            candidates = [c for c in candidates if c[1]]
        if len(candidates) == 1:
            return candidates[0]
        if not candidates:
            raise NotFoundError(f"No component or pipeline matches '{raw}'.", path=raw)
        listed = ", ".join(
            f"{ARCHIVE_DIR}/{p}" if archived else p for p, archived in candidates
        )
        raise NotFoundError(f"'{raw}' is ambiguous; candidates: {listed}", path=raw)

    def _candidates(self, short: str) -> list[tuple[str, bool]]:
        """Items whose slug matches *short* (``x``, ``x.md``, ``prompts/x``)."""
        parts = short.split("/")
        name = parts[-1].lower()
        scan: list[str | None]
        if len(parts) == 2 and normalize_kind(parts[0]) is not None:
            scan = [normalize_kind(parts[0])]
        elif len(parts) == 2 and parts[0] == PIPELINES_DIR:
            scan = [None]
        elif len(parts) == 1 and name.endswith(FRAGMENT_SUFFIX):
            scan = list(KINDS)
        elif len(parts) == 1 and name.endswith((PIPELINE_SUFFIX, ".yml")):
            scan = [None]
        elif len(parts) == 1:
            scan = [*KINDS, None]
        else:
            return []
        stem = _strip_suffix(name)

        found: list[tuple[str, bool]] = []
        for archived in (False, True):
            for kind in scan:
                for candidate in self.list_paths(kind, archived):
                    if Path(candidate).stem.lower() == stem:
                        found.append((candidate, archived))
        return found

    # ------------------------------------------------------------------
    # Raw bytes (used for rollback snapshots)
    # ------------------------------------------------------------------

    def read_bytes(self, path: str, archived: bool = False) -> bytes:
        target = self.file_path(path, archived)
        self._check_size(target, path)
        try:
            return target.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"'{path}' not found.", path=path) from exc
        except OSError as exc:
            raise StoreIOError(f"Cannot read '{path}': {exc}", operation="read", path=path) from exc

    def write_bytes(self, path: str, data: bytes, archived: bool = False) -> None:
        if len(data) > MAX_FILE_SIZE:
            raise StoreIOError(
                f"Refusing to write '{path}': {len(data)} bytes exceeds {MAX_FILE_SIZE}.",
                operation="write",
                path=path,
            )
        target = self.file_path(path, archived)
        try:
            write_atomic(target, data)
        except OSError as exc:
            raise StoreIOError(f"Cannot write '{path}': {exc}", operation="write", path=path) from exc

    def read_text(self, path: str, archived: bool = False) -> str:
        """Decode a library file as strict UTF-8.

        Raises:
            MalformedError: If the file is not valid UTF-8. Lossy decoding
                would corrupt the file on the next rewrite.
        """
        data = self.read_bytes(path, archived)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedError(
                f"'{path}' is not valid UTF-8 (byte offset {exc.start}).", path=path
            ) from exc

    def _check_size(self, target: Path, path: str) -> None:
        try:
            size = target.stat().st_size
        except FileNotFoundError as exc:
            raise NotFoundError(f"'{path}' not found.", path=path) from exc
        except OSError as exc:
            raise StoreIOError(f"Cannot stat '{path}': {exc}", operation="stat", path=path) from exc
        if size > MAX_FILE_SIZE:
            raise StoreIOError(
                f"'{path}' is {size} bytes; files over {MAX_FILE_SIZE} bytes are refused.",
                operation="read",
                path=path,
            )

    def _mtime(self, path: str, archived: bool) -> float | None:
        try:
            return self.file_path(path, archived).stat().st_mtime
        except OSError:
            return None

    # ------------------------------------------------------------------
    # Fragments
    # ------------------------------------------------------------------

    def read_fragment(self, path: str, archived: bool | None = None) -> Fragment:
        """Read and parse a fragment file.

        Raises:
            NotFoundError: If the file does not exist.
            MalformedError: If the frontmatter is not a YAML mapping.
        """
        path = normalize_library_path(path)
        kind = kind_from_path(path)
        if kind is None:
            raise NotFoundError(f"'{path}' is not a component path.", path=path)
        if archived is None:
            archived = self.where(path)

        text = self.read_text(path, archived)
        meta, body = parse_frontmatter(text, source=path)

        name = meta.get("name")
        raw_tags = meta.get("tags")
        if isinstance(raw_tags, str):
            raw_tags = [raw_tags]
        elif raw_tags is not None and not isinstance(raw_tags, list):
            raise MalformedError(f"'tags' in '{path}' must be a list.", path=path)

        return Fragment(
            path=path,
            kind=kind,
            display_name=str(name).strip() if name else Path(path).stem,
            body=body,
            tags=normalize_tags(str(t) for t in (raw_tags or [])),
            is_archived=archived,
            last_modified=self._mtime(path, archived),
            token_count=estimate_tokens(body),
        )

    def write_fragment(
        self,
        path: str,
        body: str,
        name: str | None = None,
        tags: Iterable[str] = (),
        archived: bool = False,
    ) -> None:
        """Write a fragment file, emitting frontmatter when name or tags are set."""
        path = normalize_library_path(path)
        if not is_fragment_path(path):
            raise NotFoundError(f"'{path}' is not a component path.", path=path)
        content = render_frontmatter(body, name=name, tags=normalize_tags(tags))
        self.write_bytes(path, content.encode("utf-8"), archived)

    def delete_fragment(self, path: str, archived: bool | None = None) -> None:
        self._delete(path, archived)

    def archive_fragment(self, path: str) -> None:
        self._move(path, to_archive=True)

    def unarchive_fragment(self, path: str) -> None:
        self._move(path, to_archive=False)

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    def read_pipeline(self, path: str, archived: bool | None = None) -> Pipeline:
        """Read and parse a pipeline file.

        Component ``type`` accepts singular/plural spellings; components are
        sorted by stored ``order`` (stable for ties) and renumbered 1..N.

        Raises:
            NotFoundError: If the file does not exist.
            MalformedError: If the YAML is unparseable or has the wrong shape.
        """
        path = normalize_library_path(path)
        if not is_pipeline_path(path):
            raise NotFoundError(f"'{path}' is not a pipeline path.", path=path)
        if archived is None:
            archived = self.where(path)

        text = self.read_text(path, archived)
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise MalformedError(f"Invalid YAML in pipeline '{path}': {exc}", path=path) from exc
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise MalformedError(f"Pipeline '{path}' must contain a mapping.", path=path)

        raw_components = data.get("components") or []
        if not isinstance(raw_components, list):
            raise MalformedError(f"'components' in '{path}' must be a list.", path=path)

        indexed: list[tuple[int, int, ComponentRef]] = []
        for position, entry in enumerate(raw_components):
            indexed.append(_parse_ref(entry, path, position))

        indexed.sort(key=lambda item: (item[0], item[1]))
        components = tuple(
            ComponentRef(kind=ref.kind, path=ref.path, order=i)
            for i, (_, _, ref) in enumerate(indexed, start=1)
        )

        raw_tags = data.get("tags")
        if isinstance(raw_tags, str):
            raw_tags = [raw_tags]
        output_path = data.get("output_path")

        return Pipeline(
            path=path,
            name=str(data.get("name") or Path(path).stem),
            components=components,
            tags=normalize_tags(str(t) for t in (raw_tags or [])),
            output_path=str(output_path) if output_path else None,
            is_archived=archived,
        )

    def write_pipeline(self, pipeline: Pipeline, archived: bool | None = None) -> None:
        """Serialise *pipeline*; ``order`` is renumbered 1..N from position."""
        path = normalize_library_path(pipeline.path)
        if not is_pipeline_path(path):
            raise NotFoundError(f"'{path}' is not a pipeline path.", path=path)
        target_archived = pipeline.is_archived if archived is None else archived

        data: dict[str, Any] = {"name": pipeline.name}
        if pipeline.tags:
            data["tags"] = list(normalize_tags(pipeline.tags))
        if pipeline.output_path:
            data["output_path"] = pipeline.output_path
        data["components"] = [
            {"type": ref.kind, "path": ref.path, "order": i}
            for i, ref in enumerate(pipeline.components, start=1)
        ]

        content = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
        self.write_bytes(path, content.encode("utf-8"), target_archived)

    def delete_pipeline(self, path: str, archived: bool | None = None) -> None:
        self._delete(path, archived)

    def archive_pipeline(self, path: str) -> None:
        self._move(path, to_archive=True)

    def unarchive_pipeline(self, path: str) -> None:
        self._move(path, to_archive=False)

    def resolve_ref(self, ref: ComponentRef) -> tuple[str, bool] | None:
        """Return (fragment_path, archived) for *ref*, or None if it dangles."""
        target = ref_to_fragment_path(ref.path)
        if not is_fragment_path(target):
            return None
        if self.exists(target, False):
            return target, False
        if self.exists(target, True):
            return target, True
        return None

    # ------------------------------------------------------------------
    # Delete + archive moves (shared by fragments and pipelines)
    # ------------------------------------------------------------------

    def _delete(self, path: str, archived: bool | None) -> None:
        path = normalize_library_path(path)
        if archived is None:
            archived = self.where(path)
        target = self.file_path(path, archived)
        try:
            target.unlink()
        except FileNotFoundError as exc:
            raise NotFoundError(f"'{path}' not found.", path=path) from exc
        except OSError as exc:
            raise StoreIOError(f"Cannot delete '{path}': {exc}", operation="delete", path=path) from exc
        logger.debug("file_deleted", path=path, archived=archived)

    def rename_file(self, old: str, new: str, archived: bool = False) -> None:
        """Move *old* to *new* inside one root.

        A case-only change (``Foo.md`` → ``foo.md``) is allowed; any other
        existing destination is an AlreadyExistsError.
        """
        old = normalize_library_path(old)
        new = normalize_library_path(new)
        src = self.file_path(old, archived)
        dst = self.file_path(new, archived)
        if not src.is_file():
            raise NotFoundError(f"'{old}' not found.", path=old)
        if old.lower() != new.lower() and dst.exists():
            raise AlreadyExistsError(f"Cannot rename to '{new}': it already exists.", path=new)
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            os.rename(src, dst)
        except OSError as exc:
            raise StoreIOError(f"Cannot rename '{old}' to '{new}': {exc}", operation="rename", path=old) from exc
        logger.debug("file_renamed", old=old, new=new, archived=archived)

    def _move(self, path: str, to_archive: bool) -> None:
        """Move *path* between the active and archive roots, bytes untouched."""
        path = normalize_library_path(path)
        src = self.file_path(path, archived=not to_archive)
        dst = self.file_path(path, archived=to_archive)
        operation = "archive" if to_archive else "unarchive"

        if not src.is_file():
            where = "active library" if to_archive else "archive"
            raise NotFoundError(f"'{path}' not found in the {where}.", path=path)
        if dst.exists():
            raise AlreadyExistsError(
                f"Cannot {operation} '{path}': destination already exists.", path=path
            )
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            os.rename(src, dst)
        except OSError as exc:
            raise StoreIOError(f"Cannot {operation} '{path}': {exc}", operation=operation, path=path) from exc
        logger.debug("file_moved", path=path, operation=operation)

    # ------------------------------------------------------------------
    # Settings + tag registry
    # ------------------------------------------------------------------

    def read_settings(self) -> Settings:
        try:
            return load_settings(self._root / SETTINGS_FILE)
        except OSError as exc:
            raise StoreIOError(f"Cannot read settings: {exc}", operation="read_settings") from exc

    def write_settings(self, settings: Settings) -> None:
        try:
            write_settings(self._root / SETTINGS_FILE, settings)
        except OSError as exc:
            raise StoreIOError(f"Cannot write settings: {exc}", operation="write_settings") from exc

    def read_tag_registry(self) -> list[dict[str, Any]]:
        """Return the raw ``tags:`` entries of tags.yaml ([] when absent)."""
        target = self._root / TAGS_FILE
        if not target.is_file():
            return []
        try:
            data = yaml.safe_load(target.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise MalformedError(f"Invalid YAML in '{TAGS_FILE}': {exc}", path=TAGS_FILE) from exc
        except OSError as exc:
            raise StoreIOError(f"Cannot read '{TAGS_FILE}': {exc}", operation="read", path=TAGS_FILE) from exc
        if data is None:
            return []
        if not isinstance(data, dict) or not isinstance(data.get("tags") or [], list):
            raise MalformedError(f"'{TAGS_FILE}' must be a mapping with a 'tags' list.", path=TAGS_FILE)
        return [entry for entry in data.get("tags") or [] if isinstance(entry, dict)]

    def write_tag_registry(self, entries: list[dict[str, Any]]) -> None:
        content = yaml.safe_dump({"tags": entries}, sort_keys=False, allow_unicode=True)
        try:
            write_atomic(self._root / TAGS_FILE, content)
        except OSError as exc:
            raise StoreIOError(f"Cannot write '{TAGS_FILE}': {exc}", operation="write", path=TAGS_FILE) from exc

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def init_layout(self) -> list[Path]:
        """Create every library directory; return the ones that were created."""
        created: list[Path] = []
        dirs = [self._root / COMPONENTS_DIR / d for d in KIND_DIRS.values()]
        dirs.append(self._root / PIPELINES_DIR)
        dirs += [self._root / ARCHIVE_DIR / COMPONENTS_DIR / d for d in KIND_DIRS.values()]
        dirs.append(self._root / ARCHIVE_DIR / PIPELINES_DIR)
        for directory in dirs:
            if directory.is_dir():
                continue
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StoreIOError(f"Cannot create '{directory}': {exc}", operation="init") from exc
            created.append(directory)
        return created


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _strip_suffix(name: str) -> str:
    for suffix in (FRAGMENT_SUFFIX, PIPELINE_SUFFIX, ".yml"):
        if name.lower().endswith(suffix):
            return name[: -len(suffix)]
    return name


def _parse_ref(entry: Any, source: str, position: int) -> tuple[int, int, ComponentRef]:
    """Parse one ``components:`` entry into (sort_order, position, ref)."""
    if not isinstance(entry, dict) or not entry.get("path"):
        raise MalformedError(
            f"Component #{position + 1} in '{source}' must be a mapping with a 'path'.", path=source
        )
    ref_path = str(entry["path"])
    kind = normalize_kind(entry.get("type", "")) or kind_from_path(ref_to_fragment_path(ref_path))
    if kind is None:
        raise MalformedError(
            f"Component #{position + 1} in '{source}' has unknown type '{entry.get('type')}'.",
            path=source,
        )
    raw_order = entry.get("order")
    try:
        order = int(raw_order) if raw_order is not None else position + 1
    except (TypeError, ValueError) as exc:
        raise MalformedError(
            f"Component #{position + 1} in '{source}' has non-integer order '{raw_order}'.",
            path=source,
        ) from exc
    return order, position, ComponentRef(kind=kind, path=ref_path, order=order)
