"""LibraryService: the operations a UI or the CLI invokes on a library.

Binds the Store, Composer, indices and tag registry together. The service
owns the in-memory snapshot of the library: it is built lazily on first
read, handed out as immutable values, and invalidated by every mutation so
the next read rebuilds it. Library load never fails on a single bad file:
malformed or unreadable files are logged and skipped.

Side effects that may run later (tag registry cleanup, compose-and-set) go
through a TaskScheduler; call ``run_tasks()`` to deliver their messages.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from pathlib import Path

import structlog

from pluqqy.compose.composer import Composer
from pluqqy.compose.writer import validate_output_path, write_composed
from pluqqy.config import Settings, apply_env_overrides
from pluqqy.editor import PipelineEditor
from pluqqy.errors import AlreadyExistsError, InvalidNameError, MalformedError, NotFoundError, StoreIOError
from pluqqy.index.tags import TagInfo, TagRegistry, all_tags, tag_usage
from pluqqy.index.usage import UsageIndex
from pluqqy.search.engine import SearchIndex, SearchResult
from pluqqy.search.query import Filter, parse_query
from pluqqy.store.atomic import write_atomic
from pluqqy.store.models import (
    KINDS,
    ComponentRef,
    Fragment,
    Pipeline,
    PipelineSummary,
    normalize_kind,
    normalize_tags,
    sanitize_slug,
    validate_display_name,
    validate_tag,
)
from pluqqy.store.paths import (
    fragment_path,
    fragment_to_ref,
    is_fragment_path,
    is_pipeline_path,
    kind_from_path,
    normalize_library_path,
    pipeline_path,
    ref_to_fragment_path,
)
from pluqqy.store.repository import Store
from pluqqy.tasks import Task, TaskResult, TaskScheduler

logger = structlog.get_logger(__name__)

_GITIGNORE = ".gitignore"
_GITIGNORE_ENTRY = "/tmp/"


@dataclass(frozen=True)
class SkippedFile:
    path: str
    archived: bool
    reason: str


@dataclass(frozen=True)
class LibrarySnapshot:
    """Everything derived from one library load."""

    settings: Settings
    fragments: tuple[Fragment, ...]
    pipelines: tuple[Pipeline, ...]
    usage: UsageIndex
    search: SearchIndex
    skipped: tuple[SkippedFile, ...] = ()
    _fragment_map: dict[tuple[str, bool], Fragment] = field(default_factory=dict, repr=False)
    _pipeline_map: dict[tuple[str, bool], Pipeline] = field(default_factory=dict, repr=False)

    def fragment(self, path: str, archived: bool | None = None) -> Fragment | None:
        if archived is None:
            return self._fragment_map.get((path, False)) or self._fragment_map.get((path, True))
        return self._fragment_map.get((path, archived))

    def pipeline(self, path: str, archived: bool | None = None) -> Pipeline | None:
        if archived is None:
            return self._pipeline_map.get((path, False)) or self._pipeline_map.get((path, True))
        return self._pipeline_map.get((path, archived))


class LibraryService:
    """Façade over one library directory."""

    def __init__(self, root: Path, scheduler: TaskScheduler | None = None) -> None:
        """Open the library at *root* (created lazily on first write).

        Args:
            root: Library directory, e.g. ``Path(".pluqqy")``.
            scheduler: Task scheduler for deferred side effects; a private
                one is created when omitted.
        """
        self.store = Store(root)
        self.composer = Composer(self.store)
        self.tags = TagRegistry(self.store)
        self.scheduler = scheduler or TaskScheduler()
        self._snapshot: LibrarySnapshot | None = None

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def invalidate(self) -> None:
        self._snapshot = None

    def snapshot(self) -> LibrarySnapshot:
        """Current library snapshot, rebuilt if a mutation invalidated it."""
        if self._snapshot is None:
            self._snapshot = self._load()
        return self._snapshot

    @property
    def settings(self) -> Settings:
        return self.snapshot().settings

    def _load(self) -> LibrarySnapshot:
        settings = apply_env_overrides(self.store.read_settings())
        skipped: list[SkippedFile] = []

        fragments: list[Fragment] = []
        pipelines: list[Pipeline] = []
        for archived in (False, True):
            for path in self.store.list_fragment_paths(archived):
                try:
                    fragments.append(self.store.read_fragment(path, archived))
                except (MalformedError, StoreIOError, NotFoundError) as exc:
                    skipped.append(self._skip(path, archived, exc))
            for path in self.store.list_paths(None, archived):
                try:
                    pipelines.append(self.store.read_pipeline(path, archived))
                except (MalformedError, StoreIOError, NotFoundError) as exc:
                    skipped.append(self._skip(path, archived, exc))

        known = {f.path for f in fragments}
        usage = UsageIndex.build(pipelines, known)
        fragments = [replace(f, usage_count=usage.count(f.path)) for f in fragments]
        pipelines = [
            replace(
                p,
                missing_refs=tuple(r.path for r in p.components if ref_to_fragment_path(r.path) not in known),
            )
            for p in pipelines
        ]
        search = SearchIndex(fragments, pipelines, settings.formatting.section_order())

        logger.debug(
            "library_indexed",
            root=str(self.store.root),
            fragments=len(fragments),
            pipelines=len(pipelines),
            skipped=len(skipped),
        )
        return LibrarySnapshot(
            settings=settings,
            fragments=tuple(fragments),
            pipelines=tuple(pipelines),
            usage=usage,
            search=search,
            skipped=tuple(skipped),
            _fragment_map={(f.path, f.is_archived): f for f in fragments},
            _pipeline_map={(p.path, p.is_archived): p for p in pipelines},
        )

    @staticmethod
    def _skip(path: str, archived: bool, exc: Exception) -> SkippedFile:
        logger.warning("file_skipped", path=path, archived=archived, reason=str(exc))
        return SkippedFile(path=path, archived=archived, reason=str(exc))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_library(self, flt: Filter | str | None = None) -> SearchResult:
        """Fragments and pipelines matching *flt* (None = default view)."""
        if flt is None:
            flt = Filter()
        elif isinstance(flt, str):
            flt = parse_query(flt)
        return self.snapshot().search.search(flt)

    def locate(self, ref: str) -> tuple[str, bool]:
        return self.store.locate(ref)

    def get_fragment(self, path: str, archived: bool | None = None) -> Fragment:
        fragment = self.snapshot().fragment(path, archived)
        if fragment is None:
            # Not in the snapshot: surfaces the real Malformed/NotFound reason
            fragment = self.store.read_fragment(path, archived)
        return fragment

    def get_pipeline(self, path: str, archived: bool | None = None) -> Pipeline:
        pipeline = self.snapshot().pipeline(path, archived)
        if pipeline is None:
            pipeline = self.store.read_pipeline(path, archived)
        return pipeline

    def usage_count(self, fragment_path_: str) -> int:
        return self.snapshot().usage.count(fragment_path_)

    def pipelines_using(self, fragment_path_: str) -> tuple[list[PipelineSummary], list[PipelineSummary]]:
        """(active, archived) pipelines referencing *fragment_path_*."""
        return self.snapshot().usage.split_using(fragment_path_)

    def all_tags(self) -> list[str]:
        snap = self.snapshot()
        return all_tags(snap.fragments, snap.pipelines)

    def tag_overview(self) -> list[tuple[TagInfo, int]]:
        """Every tag in use or registered, with its info and active usage count."""
        snap = self.snapshot()
        usage = tag_usage(snap.fragments, snap.pipelines)
        names = sorted(set(usage) | {info.name for info in self.tags.list_tags()})
        return [(self.tags.get(name), usage.get(name, 0)) for name in names]

    # ------------------------------------------------------------------
    # Fragment mutations
    # ------------------------------------------------------------------

    def create_fragment(self, kind: str, name: str, body: str = "", tags: Iterable[str] = ()) -> str:
        """Create a new active fragment and return its library path.

        Raises:
            InvalidNameError: Bad name, tag or kind.
            AlreadyExistsError: A fragment with the same slug exists (any case,
                either root).
        """
        canonical = normalize_kind(kind)
        if canonical is None:
            raise InvalidNameError(f"Invalid component type '{kind}': must be one of: {', '.join(KINDS)}.")
        name = validate_display_name(name)
        tag_list = _validated_tags(tags)

        path = fragment_path(canonical, sanitize_slug(name))
        self._refuse_clash(path)
        self.store.write_fragment(path, body, name=name, tags=tag_list)
        self.tags.register(tag_list)
        self.invalidate()
        logger.info("fragment_created", path=path, kind=canonical)
        return path

    def update_fragment(
        self,
        path: str,
        body: str,
        tags: Iterable[str],
        name: str | None = None,
    ) -> None:
        """Rewrite a fragment's body and tags in place (either root).

        *name*, when given, replaces the display name without renaming the
        file; use ``rename`` to change the slug.
        """
        path = normalize_library_path(path)
        archived = self.store.where(path)
        current = self.store.read_fragment(path, archived)
        tag_list = _validated_tags(tags)

        if name is not None:
            display = validate_display_name(name)
        else:
            display = current.display_name if current.display_name != current.slug else None

        self.store.write_fragment(path, body, name=display, tags=tag_list, archived=archived)
        self.tags.register(tag_list)
        self.invalidate()
        logger.info("fragment_updated", path=path, archived=archived)

    # ------------------------------------------------------------------
    # Shared mutations (fragments + pipelines)
    # ------------------------------------------------------------------

    def rename(self, path: str, new_name: str) -> str:
        """Rename a fragment or pipeline; return its new library path.

        Fragment renames rewrite every pipeline ref (active and archived)
        that points at the fragment. If any write fails, the file move and
        every rewritten pipeline are rolled back before the error propagates.
        """
        path = normalize_library_path(path)
        new_name = validate_display_name(new_name)
        archived = self.store.where(path)

        if is_fragment_path(path):
            new_path = self._rename_fragment(path, new_name, archived)
        elif is_pipeline_path(path):
            new_path = self._rename_pipeline(path, new_name, archived)
        else:
            raise NotFoundError(f"'{path}' is not a component or pipeline path.", path=path)

        self.invalidate()
        logger.info("item_renamed", old=path, new=new_path, archived=archived)
        return new_path

    def _rename_fragment(self, path: str, new_name: str, archived: bool) -> str:
        kind = kind_from_path(path)
        assert kind is not None
        new_path = fragment_path(kind, sanitize_slug(new_name))
        self._refuse_clash(new_path, exclude=path)

        fragment = self.store.read_fragment(path, archived)
        backup = self.store.read_bytes(path, archived)

        self.store.write_fragment(path, fragment.body, name=new_name, tags=fragment.tags, archived=archived)
        if new_path == path:
            return path
        try:
            self.store.rename_file(path, new_path, archived)
        except Exception:
            self.store.write_bytes(path, backup, archived)
            raise

        try:
            self._rewrite_refs(path, new_path)
        except Exception:
            self.store.rename_file(new_path, path, archived)
            self.store.write_bytes(path, backup, archived)
            raise
        return new_path

    def _rewrite_refs(self, old_path: str, new_path: str) -> None:
        """Point every ref to *old_path* at *new_path*, all-or-nothing."""
        backups: list[tuple[str, bool, bytes]] = []
        try:
            for archived in (False, True):
                for pl_path in self.store.list_paths(None, archived):
                    try:
                        pipeline = self.store.read_pipeline(pl_path, archived)
                    except (MalformedError, StoreIOError) as exc:
                        logger.warning("file_skipped", path=pl_path, archived=archived, reason=str(exc))
                        continue
                    if not any(ref_to_fragment_path(r.path) == old_path for r in pipeline.components):
                        continue
                    components = tuple(
                        replace(r, path=fragment_to_ref(new_path)) if ref_to_fragment_path(r.path) == old_path else r
                        for r in pipeline.components
                    )
                    backups.append((pl_path, archived, self.store.read_bytes(pl_path, archived)))
                    self.store.write_pipeline(replace(pipeline, components=components), archived)
        except Exception:
            for pl_path, archived, data in reversed(backups):
                self.store.write_bytes(pl_path, data, archived)
            raise
        if backups:
            logger.info("references_updated", old=old_path, new=new_path, pipelines=len(backups))

    def _rename_pipeline(self, path: str, new_name: str, archived: bool) -> str:
        new_path = pipeline_path(sanitize_slug(new_name))
        self._refuse_clash(new_path, exclude=path)

        pipeline = self.store.read_pipeline(path, archived)
        backup = self.store.read_bytes(path, archived)
        self.store.write_pipeline(replace(pipeline, name=new_name), archived)
        if new_path == path:
            return path
        try:
            self.store.rename_file(path, new_path, archived)
        except Exception:
            self.store.write_bytes(path, backup, archived)
            raise
        return new_path

    def clone(self, path: str, new_name: str, to_archive: bool = False) -> str:
        """Copy a fragment or pipeline under *new_name*; return the new path.

        Raises:
            AlreadyExistsError: The new slug clashes with any existing item.
        """
        path = normalize_library_path(path)
        new_name = validate_display_name(new_name)
        archived = self.store.where(path)

        if is_fragment_path(path):
            kind = kind_from_path(path)
            assert kind is not None
            new_path = fragment_path(kind, sanitize_slug(new_name))
            self._refuse_clash(new_path)
            source = self.store.read_fragment(path, archived)
            self.store.write_fragment(new_path, source.body, name=new_name, tags=source.tags, archived=to_archive)
            tags = source.tags
        elif is_pipeline_path(path):
            new_path = pipeline_path(sanitize_slug(new_name))
            self._refuse_clash(new_path)
            source_pl = self.store.read_pipeline(path, archived)
            self.store.write_pipeline(
                replace(source_pl, path=new_path, name=new_name, is_archived=to_archive), to_archive
            )
            tags = source_pl.tags
        else:
            raise NotFoundError(f"'{path}' is not a component or pipeline path.", path=path)

        if not to_archive:
            self.tags.register(tags)
        self.invalidate()
        logger.info("item_cloned", source=path, path=new_path, archived=to_archive)
        return new_path

    def delete(self, path: str, archived: bool | None = None) -> Task | None:
        """Delete a fragment or pipeline from whichever root holds it.

        Pipeline refs to a deleted fragment are kept (they dangle). When the
        item carried tags, a cancellable tag cleanup task is queued and
        returned.
        """
        path = normalize_library_path(path)
        if archived is None:
            archived = self.store.where(path)
        tags = self._tags_of(path, archived)

        if is_fragment_path(path):
            self.store.delete_fragment(path, archived)
        elif is_pipeline_path(path):
            self.store.delete_pipeline(path, archived)
        else:
            raise NotFoundError(f"'{path}' is not a component or pipeline path.", path=path)

        self.invalidate()
        logger.info("item_deleted", path=path, archived=archived)
        return self._schedule_tag_cleanup(tags)

    def archive(self, path: str) -> tuple[str, Task | None]:
        """Move an active item to the archive root, bytes unchanged.

        Returns:
            (library path, tag cleanup task or None).
        """
        path = normalize_library_path(path)
        tags = self._tags_of(path, False) if self.store.exists(path, False) else ()
        if is_fragment_path(path):
            self.store.archive_fragment(path)
        elif is_pipeline_path(path):
            self.store.archive_pipeline(path)
        else:
            raise NotFoundError(f"'{path}' is not a component or pipeline path.", path=path)
        self.invalidate()
        logger.info("item_archived", path=path)
        return path, self._schedule_tag_cleanup(tags)

    def unarchive(self, path: str) -> str:
        """Move an archived item back to the active root, bytes unchanged."""
        path = normalize_library_path(path)
        if is_fragment_path(path):
            self.store.unarchive_fragment(path)
        elif is_pipeline_path(path):
            self.store.unarchive_pipeline(path)
        else:
            raise NotFoundError(f"'{path}' is not a component or pipeline path.", path=path)
        self.tags.register(self._tags_of(path, False))
        self.invalidate()
        logger.info("item_unarchived", path=path)
        return path

    def _tags_of(self, path: str, archived: bool) -> tuple[str, ...]:
        try:
            if is_fragment_path(path):
                return self.store.read_fragment(path, archived).tags
            if is_pipeline_path(path):
                return self.store.read_pipeline(path, archived).tags
        except MalformedError:
            return ()
        return ()

    def _refuse_clash(self, path: str, exclude: str | None = None) -> None:
        clash = self.store.find_clash(path, exclude=exclude)
        if clash is not None:
            raise AlreadyExistsError(
                f"'{clash}' already exists (names are compared ignoring case).", path=clash
            )

    # ------------------------------------------------------------------
    # Tag cleanup
    # ------------------------------------------------------------------

    def _schedule_tag_cleanup(self, tags: Iterable[str]) -> Task | None:
        tag_list = list(tags)
        if not tag_list:
            return None
        return self.scheduler.submit(self.cleanup_tags, tag_list, name="tag_cleanup", cancellable=True)

    def cleanup_tags(self, candidate_tags: Iterable[str]) -> list[str]:
        """Drop registry entries for *candidate_tags* no active item still uses."""
        self.invalidate()
        return self.tags.cleanup_orphans(candidate_tags, self.all_tags())

    def run_tasks(self) -> list[TaskResult]:
        """Run queued background tasks; return their completion messages."""
        return self.scheduler.run_pending()

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    def open_editor(self, path: str) -> PipelineEditor:
        pipeline = self.get_pipeline(normalize_library_path(path))
        return PipelineEditor(pipeline, self.settings.formatting.section_order())

    def new_editor(self, name: str = "") -> PipelineEditor:
        return PipelineEditor.new(name, self.settings.formatting.section_order())

    def save_pipeline(self, draft: Pipeline) -> str:
        """Persist *draft* under the slug of its name; return the saved path.

        The clash check ignores case and spans both roots; the draft's own
        current file is not a clash. A name change writes the new file and
        removes the old one.

        Raises:
            InvalidNameError: The name is empty or sanitises to nothing.
            AlreadyExistsError: Another pipeline owns the sanitised name.
        """
        name = validate_display_name(draft.name)
        target = pipeline_path(sanitize_slug(name))
        previous = draft.path or None
        self._refuse_clash(target, exclude=previous)

        tag_list = _validated_tags(draft.tags)
        components = tuple(
            ComponentRef(kind=r.kind, path=r.path, order=i) for i, r in enumerate(draft.components, start=1)
        )
        saved = replace(draft, path=target, name=name, tags=tag_list, components=components, missing_refs=())

        archived = draft.is_archived
        if previous and previous != target and self.store.exists(previous, archived):
            # Rewrite in place then move, so case-only renames behave on every filesystem
            self.store.write_pipeline(replace(saved, path=previous), archived)
            self.store.rename_file(previous, target, archived)
        else:
            self.store.write_pipeline(saved, archived)

        if not archived:
            self.tags.register(tag_list)
        self.invalidate()
        logger.info("pipeline_saved", path=target, components=len(components), previous=previous)
        return target

    def save_editor(self, editor: PipelineEditor) -> str:
        """Save an editor's draft and reset its dirty baseline."""
        path = self.save_pipeline(editor.draft())
        editor.mark_saved(self.get_pipeline(path))
        return path

    # ------------------------------------------------------------------
    # Compose
    # ------------------------------------------------------------------

    def compose(self, pipeline: Pipeline | str) -> str:
        """Compose a pipeline (value or library path) under current settings."""
        if isinstance(pipeline, str):
            pipeline = self.get_pipeline(normalize_library_path(pipeline))
        return self.composer.compose(pipeline, self.settings)

    def compose_and_write(self, pipeline: Pipeline | str, out: str | Path | None = None) -> Path:
        """Compose and write the artifact; return its absolute path.

        Destination: *out*, else the pipeline's ``output_path``, else
        ``export_path/default_filename``.
        """
        if isinstance(pipeline, str):
            pipeline = self.get_pipeline(normalize_library_path(pipeline))
        artifact = self.compose(pipeline)
        destination = out or pipeline.output_path or None
        target = write_composed(artifact, self.settings, destination)
        logger.info("pipeline_composed", path=pipeline.path, output=str(target))
        return target

    def set_active(self, pipeline: Pipeline | str, output_file: str | None = None) -> Path:
        """Compose and write to ``export_path/<output_file or default_filename>``."""
        settings = self.settings
        filename = output_file or settings.default_filename
        return self.compose_and_write(pipeline, Path(settings.export_path) / filename)

    def schedule_set_active(self, pipeline: Pipeline | str, output_file: str | None = None) -> Task:
        """Queue ``set_active``; not cancellable once queued."""
        return self.scheduler.submit(self.set_active, pipeline, output_file, name="set_active", cancellable=False)

    # ------------------------------------------------------------------
    # Project init
    # ------------------------------------------------------------------

    def init_library(self) -> list[Path]:
        """Create the library layout, settings.yaml, the scratch dir and .gitignore.

        Safe to re-run: existing files are left alone and the ``/tmp/``
        ignore entry is appended at most once.

        Returns:
            Paths that were created or updated.
        """
        root = self.store.root
        created = self.store.init_layout()
        settings_path = root / "settings.yaml"
        if not settings_path.exists():
            self.store.read_settings()
            created.append(settings_path)

        scratch = validate_output_path(self.store.read_settings().output_path.rstrip("/") or "tmp", root)
        if not scratch.is_dir():
            scratch.mkdir(parents=True, exist_ok=True)
            created.append(scratch)

        gitignore = root / _GITIGNORE
        existing = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
        if _GITIGNORE_ENTRY not in existing.splitlines():
            if existing and not existing.endswith("\n"):
                existing += "\n"
            write_atomic(gitignore, existing + _GITIGNORE_ENTRY + "\n")
            created.append(gitignore)

        self.invalidate()
        logger.info("library_initialized", root=str(root), created=len(created))
        return created


def _validated_tags(tags: Iterable[str]) -> tuple[str, ...]:
    raw = [t for t in tags if t is not None]
    for tag in raw:
        validate_tag(str(tag).strip())
    return normalize_tags(raw)
