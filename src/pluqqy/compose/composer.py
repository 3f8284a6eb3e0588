"""Pipeline composition: expand a pipeline into its Markdown artifact.

Output shape (default settings, headings on):

  ## CONTEXTS

  <context body>

  ## PROMPTS

  <prompt body>

Sections follow ``settings.formatting.sections``; a section with no
components is skipped entirely. Within a section, components keep their
stored order. Composition is all-or-nothing: one missing fragment fails it.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import structlog

from pluqqy.config import FormattingCfg, Settings
from pluqqy.errors import UnresolvedRefError
from pluqqy.store.models import KINDS, Pipeline
from pluqqy.store.repository import Store

logger = structlog.get_logger(__name__)


def normalize_line_endings(text: str) -> str:
    """CRLF → LF, then ``\\r\\r`` → ``\\n\\n``, then any lone ``\\r`` → ``\\n``."""
    return text.replace("\r\n", "\n").replace("\r\r", "\n\n").replace("\r", "\n")


def assemble(bodies: Mapping[str, Sequence[str]], formatting: FormattingCfg) -> str:
    """Render per-kind body lists into the final artifact.

    Args:
        bodies: Fragment bodies keyed by kind, each list in pipeline order.
        formatting: Section order, headings and the show_headings switch.

    Returns:
        The artifact with normalised line endings and exactly one trailing
        newline, or an empty string when there is nothing to emit.
    """
    parts: list[str] = []
    for kind in formatting.section_order():
        section_bodies = bodies.get(kind) or []
        if not section_bodies:
            continue
        if formatting.show_headings:
            heading = next(s.heading for s in formatting.sections if s.type == kind)
            parts.append(f"{heading}\n\n")
        for body in section_bodies:
            parts.append(normalize_line_endings(body).rstrip() + "\n\n")

    artifact = normalize_line_endings("".join(parts)).rstrip()
    return artifact + "\n" if artifact else ""


class Composer:
    """Resolves a pipeline's refs through the Store and assembles the artifact."""

    def __init__(self, store: Store) -> None:
        self._store = store

    def compose(self, pipeline: Pipeline, settings: Settings) -> str:
        """Compose *pipeline* under *settings*.

        Archived pipelines and archived fragments compose like active ones.

        Raises:
            UnresolvedRefError: If any component ref does not resolve; the
                error lists every missing ref, not just the first.
        """
        bodies: dict[str, list[str]] = {kind: [] for kind in KINDS}
        missing: list[str] = []

        for ref in pipeline.components:
            located = self._store.resolve_ref(ref)
            if located is None:
                missing.append(ref.path)
                continue
            fragment = self._store.read_fragment(*located)
            bodies[fragment.kind].append(fragment.body)

        if missing:
            raise UnresolvedRefError(
                f"Pipeline '{pipeline.name}' references missing components: {', '.join(missing)}",
                path=pipeline.path,
                missing=missing,
            )

        artifact = assemble(bodies, settings.formatting)
        logger.debug(
            "pipeline_composed",
            path=pipeline.path,
            components=len(pipeline.components),
            chars=len(artifact),
        )
        return artifact
