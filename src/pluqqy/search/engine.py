"""In-memory search over a library snapshot.

The index holds the fragments and pipelines of one snapshot and applies a
parsed Filter with a linear scan. Results come back in a stable display
order: fragments by section order then name, pipelines by name.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from pluqqy.search.query import PIPELINES, Filter, parse_query
from pluqqy.store.models import KINDS, Fragment, Pipeline
from pluqqy.store.paths import ref_to_fragment_path


@dataclass(frozen=True)
class SearchResult:
    pipelines: tuple[Pipeline, ...] = ()
    fragments: tuple[Fragment, ...] = ()

    def __len__(self) -> int:
        return len(self.pipelines) + len(self.fragments)


def _status_ok(is_archived: bool, flt: Filter) -> bool:
    if flt.status == "archived":
        return is_archived
    # "default" and "active" both hide the archive
    return not is_archived


class SearchIndex:
    """Filtered views over one snapshot of the library."""

    def __init__(
        self,
        fragments: Iterable[Fragment],
        pipelines: Iterable[Pipeline],
        section_order: Sequence[str] = KINDS,
    ) -> None:
        """Index a snapshot.

        Args:
            fragments: Every fragment, active and archived.
            pipelines: Every pipeline, active and archived.
            section_order: Kind order used to sort fragment results.
        """
        rank = {kind: i for i, kind in enumerate(section_order)}
        self._fragments = sorted(
            fragments,
            key=lambda f: (rank.get(f.kind, len(rank)), f.display_name.casefold(), f.path),
        )
        self._pipelines = sorted(pipelines, key=lambda p: (p.name.casefold(), p.path))

        names = {f.path: f.display_name for f in self._fragments}
        self._fragment_text = {
            (f.path, f.is_archived): self._haystack([f.display_name, f.slug, *f.tags, f.body]) for f in self._fragments
        }
        self._pipeline_text: dict[tuple[str, bool], str] = {}
        for p in self._pipelines:
            parts = [p.name, p.slug, *p.tags]
            for ref in p.components:
                target = ref_to_fragment_path(ref.path)
                parts.append(target.rsplit("/", 1)[-1].removesuffix(".md"))
                if target in names:
                    parts.append(names[target])
            self._pipeline_text[(p.path, p.is_archived)] = self._haystack(parts)

    @staticmethod
    def _haystack(parts: Iterable[str]) -> str:
        return "\n".join(parts).casefold()

    def search(self, flt: Filter) -> SearchResult:
        """Apply *flt* to the snapshot."""
        want_pipelines = not flt.types or PIPELINES in flt.types
        kinds = {k for k in flt.types if k != PIPELINES}
        want_fragments = not flt.types or bool(kinds)

        fragments: list[Fragment] = []
        if want_fragments:
            for fragment in self._fragments:
                if kinds and fragment.kind not in kinds:
                    continue
                if not _status_ok(fragment.is_archived, flt):
                    continue
                if not flt.tags.issubset(fragment.tags):
                    continue
                text = self._fragment_text[(fragment.path, fragment.is_archived)]
                if all(term in text for term in flt.terms):
                    fragments.append(fragment)

        pipelines: list[Pipeline] = []
        if want_pipelines:
            for pipeline in self._pipelines:
                if not _status_ok(pipeline.is_archived, flt):
                    continue
                if not flt.tags.issubset(pipeline.tags):
                    continue
                text = self._pipeline_text[(pipeline.path, pipeline.is_archived)]
                if all(term in text for term in flt.terms):
                    pipelines.append(pipeline)

        return SearchResult(pipelines=tuple(pipelines), fragments=tuple(fragments))

    def query(self, query: str) -> SearchResult:
        """Parse *query* and search."""
        return self.search(parse_query(query))
