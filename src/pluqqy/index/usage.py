"""Reverse reference index: fragment path → pipelines that use it.

Built in one pass over every loaded pipeline, active and archived. The index
is a plain map of lists keyed by canonical fragment path; entities never hold
back-pointers.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable

from pluqqy.store.models import Pipeline, PipelineSummary
from pluqqy.store.paths import ref_to_fragment_path


class UsageIndex:
    """Usage counts and reverse lookups for fragments."""

    def __init__(self, users: dict[str, list[PipelineSummary]] | None = None) -> None:
        self._users: dict[str, list[PipelineSummary]] = users or {}

    @classmethod
    def build(cls, pipelines: Iterable[Pipeline], known_fragments: Collection[str]) -> UsageIndex:
        """Index *pipelines*; refs to paths outside *known_fragments* are ignored.

        A pipeline referencing the same fragment twice is counted once.
        """
        users: dict[str, list[PipelineSummary]] = {}
        for pipeline in pipelines:
            summary = PipelineSummary(path=pipeline.path, name=pipeline.name, is_archived=pipeline.is_archived)
            seen: set[str] = set()
            for ref in pipeline.components:
                target = ref_to_fragment_path(ref.path)
                if target in seen or target not in known_fragments:
                    continue
                seen.add(target)
                users.setdefault(target, []).append(summary)
        for summaries in users.values():
            summaries.sort(key=lambda s: (s.is_archived, s.name.casefold(), s.path))
        return cls(users)

    def count(self, fragment_path: str) -> int:
        return len(self._users.get(fragment_path, ()))

    def pipelines_using(self, fragment_path: str) -> list[PipelineSummary]:
        """Pipelines referencing *fragment_path*: active first, then by name."""
        return list(self._users.get(fragment_path, ()))

    def split_using(self, fragment_path: str) -> tuple[list[PipelineSummary], list[PipelineSummary]]:
        """Return (active, archived) pipelines referencing *fragment_path*."""
        users = self._users.get(fragment_path, ())
        return [s for s in users if not s.is_archived], [s for s in users if s.is_archived]

    def counts(self) -> dict[str, int]:
        return {path: len(users) for path, users in self._users.items()}


def provisional_counts(
    committed: UsageIndex,
    original_refs: Iterable[str],
    draft_refs: Iterable[str],
) -> dict[str, int]:
    """Usage counts as they would be if the draft pipeline were saved now.

    Only fragments whose count changes appear in the result. *original_refs*
    and *draft_refs* are canonical fragment paths of the pipeline before and
    after editing.
    """
    before = set(original_refs)
    after = set(draft_refs)
    result: dict[str, int] = {}
    for path in after - before:
        result[path] = committed.count(path) + 1
    for path in before - after:
        result[path] = max(committed.count(path) - 1, 0)
    return result
