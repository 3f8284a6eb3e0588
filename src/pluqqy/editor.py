"""In-memory pipeline draft with ordering rules.

A PipelineEditor holds the immutable snapshot a pipeline was loaded from and
a mutable draft of its component list. Every mutation leaves the draft:

  - grouped by kind in section order, user order kept inside each group
  - numbered 1..N (``order``) without gaps

Saving is not done here: ``draft()`` produces the Pipeline value that
LibraryService.save_pipeline() persists, then ``mark_saved()`` resets the
dirty baseline.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace

from pluqqy.index.usage import UsageIndex, provisional_counts
from pluqqy.store.models import KINDS, ComponentRef, Fragment, Pipeline, normalize_tags
from pluqqy.store.paths import fragment_to_ref, ref_to_fragment_path


def reorganize_refs(refs: Iterable[ComponentRef], section_order: Sequence[str] = KINDS) -> list[ComponentRef]:
    """Group *refs* by kind in *section_order*, keep intra-kind order, renumber.

    Kinds absent from *section_order* keep their relative order after the
    listed ones.
    """
    groups: dict[str, list[ComponentRef]] = {}
    for ref in refs:
        groups.setdefault(ref.kind, []).append(ref)

    ordered: list[ComponentRef] = []
    for kind in section_order:
        ordered.extend(groups.pop(kind, []))
    for leftover in groups.values():
        ordered.extend(leftover)
    return [replace(ref, order=i) for i, ref in enumerate(ordered, start=1)]


class PipelineEditor:
    """Draft editing API for one pipeline.

    Attributes:
        cursor: Index of the selected draft component, kept valid after
            removals so a UI can keep its selection in place.
    """

    def __init__(self, pipeline: Pipeline, section_order: Sequence[str] = KINDS, is_new: bool = False) -> None:
        self._section_order = tuple(section_order)
        self._is_new = is_new
        self._loaded = pipeline
        self._baseline: tuple[ComponentRef, ...] = tuple(reorganize_refs(pipeline.components, self._section_order))
        self._components: list[ComponentRef] = list(self._baseline)
        self.name = pipeline.name
        self.tags: tuple[str, ...] = pipeline.tags
        self.output_path = pipeline.output_path
        self.cursor = 0

    @classmethod
    def new(cls, name: str, section_order: Sequence[str] = KINDS) -> PipelineEditor:
        """Editor for a pipeline that has never been saved."""
        return cls(Pipeline(path="", name=name), section_order, is_new=True)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def original(self) -> Pipeline:
        return self._loaded

    @property
    def is_new(self) -> bool:
        return self._is_new

    @property
    def components(self) -> tuple[ComponentRef, ...]:
        return tuple(self._components)

    def fragment_paths(self) -> list[str]:
        """Canonical fragment paths referenced by the draft, in draft order."""
        return [ref_to_fragment_path(ref.path) for ref in self._components]

    def contains(self, fragment_path: str) -> bool:
        return self._index_of(fragment_path) is not None

    def _index_of(self, fragment_path: str) -> int | None:
        for i, ref in enumerate(self._components):
            if ref_to_fragment_path(ref.path) == fragment_path:
                return i
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, fragment: Fragment) -> bool:
        """Toggle *fragment* in the draft.

        Returns:
            True if it was added, False if it was already present and got removed.
        """
        existing = self._index_of(fragment.path)
        if existing is not None:
            self.cursor = existing
            del self._components[existing]
            self.reorganize()
            if self.cursor >= len(self._components):
                self.cursor = max(len(self._components) - 1, 0)
            return False

        self._components.append(ComponentRef(kind=fragment.kind, path=fragment_to_ref(fragment.path)))
        self.reorganize()
        self.cursor = self._index_of(fragment.path) or 0
        return True

    def remove(self, index: int) -> None:
        """Delete the component at *index*; out-of-range indexes are ignored.

        Afterwards the cursor stays at the same position (clamped to the
        list), then moves back to the last component of the removed kind at
        or before it, if there is one.
        """
        if not 0 <= index < len(self._components):
            return
        removed_kind = self._components[index].kind
        del self._components[index]
        self.reorganize()

        cursor = index
        if cursor >= len(self._components) and cursor > 0:
            cursor = len(self._components) - 1
        if self._components:
            same_kind = [i for i in range(min(cursor, len(self._components) - 1) + 1) if self._components[i].kind == removed_kind]
            if same_kind:
                cursor = same_kind[-1]
        self.cursor = max(cursor, 0)

    def move_up(self, index: int) -> int:
        """Swap *index* with its predecessor if both share a kind.

        Returns:
            The component's new index (unchanged when the move is refused).
        """
        if 0 < index < len(self._components) and self._components[index].kind == self._components[index - 1].kind:
            self._swap(index - 1, index)
            index -= 1
        self.cursor = index
        return index

    def move_down(self, index: int) -> int:
        """Swap *index* with its successor if both share a kind."""
        if 0 <= index < len(self._components) - 1 and self._components[index].kind == self._components[index + 1].kind:
            self._swap(index, index + 1)
            index += 1
        self.cursor = index
        return index

    def _swap(self, a: int, b: int) -> None:
        self._components[a], self._components[b] = self._components[b], self._components[a]
        self._renumber()

    def reorganize(self) -> None:
        """Regroup by section order, keep intra-kind order, renumber 1..N."""
        self._components = reorganize_refs(self._components, self._section_order)

    def _renumber(self) -> None:
        self._components = [replace(ref, order=i) for i, ref in enumerate(self._components, start=1)]

    def set_tags(self, tags: Iterable[str]) -> None:
        self.tags = normalize_tags(tags)

    # ------------------------------------------------------------------
    # Dirty tracking + save support
    # ------------------------------------------------------------------

    def is_dirty(self) -> bool:
        """True iff the draft components differ from the baseline in path or order.

        A never-saved pipeline is dirty as soon as it has any component.
        """
        if self._is_new:
            return bool(self._components)
        if len(self._components) != len(self._baseline):
            return True
        return any(
            a.path != b.path or a.order != b.order
            for a, b in zip(self._components, self._baseline)
        )

    def draft(self) -> Pipeline:
        """The draft as a Pipeline value (path of the loaded pipeline kept)."""
        return replace(
            self._loaded,
            name=self.name,
            tags=normalize_tags(self.tags),
            output_path=self.output_path,
            components=tuple(self._components),
            missing_refs=(),
        )

    def mark_saved(self, saved: Pipeline) -> None:
        """Make *saved* the new baseline after a successful save."""
        self._loaded = saved
        self._is_new = False
        self._baseline = tuple(reorganize_refs(saved.components, self._section_order))
        self._components = list(self._baseline)

    def provisional_usage(self, committed: UsageIndex) -> dict[str, int]:
        """Predicted usage counts if the draft were saved as-is.

        Only fragments whose count would change are returned; callers overlay
        these on the committed counts for display.
        """
        original = [] if self._is_new else [ref_to_fragment_path(r.path) for r in self._baseline]
        return provisional_counts(committed, original, self.fragment_paths())
