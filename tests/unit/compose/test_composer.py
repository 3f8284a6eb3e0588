"""Tests for pipeline composition."""

from __future__ import annotations

import pytest

from pluqqy.compose.composer import Composer, assemble, normalize_line_endings
from pluqqy.config import FormattingCfg, Section, Settings
from pluqqy.errors import UnresolvedRefError
from pluqqy.store.models import ComponentRef, Pipeline
from pluqqy.store.repository import Store


def _pipeline(*refs: tuple[str, str]) -> Pipeline:
    return Pipeline(
        path="pipelines/t.yaml",
        name="T",
        components=tuple(ComponentRef(kind=k, path=p, order=i) for i, (k, p) in enumerate(refs, start=1)),
    )


C1 = ("context", "../components/contexts/c1.md")
P1 = ("prompt", "../components/prompts/p1.md")
P2 = ("prompt", "../components/prompts/p2.md")
R1 = ("rules", "../components/rules/r1.md")


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_compose_all_three_sections(library: Store) -> None:
    artifact = Composer(library).compose(_pipeline(C1, P1, R1), Settings())
    assert artifact == "## CONTEXTS\n\nCTX1\n\n## PROMPTS\n\nP1\n\n## RULES\n\nR1\n"


def test_empty_section_is_omitted(library: Store) -> None:
    artifact = Composer(library).compose(_pipeline(P1), Settings())
    assert artifact == "## PROMPTS\n\nP1\n"
    assert "## CONTEXTS" not in artifact
    assert "## RULES" not in artifact


def test_cross_kind_interleaving_does_not_matter(library: Store) -> None:
    composer = Composer(library)
    a = composer.compose(_pipeline(P1, C1, P2, R1), Settings())
    b = composer.compose(_pipeline(R1, C1, P1, P2), Settings())
    assert a == b
    assert a.index("P1") < a.index("P2")


def test_intra_kind_order_is_kept(library: Store) -> None:
    artifact = Composer(library).compose(_pipeline(P2, P1), Settings())
    assert artifact == "## PROMPTS\n\nP2\n\nP1\n"


def test_custom_section_order_and_headings(library: Store) -> None:
    settings = Settings(
        formatting=FormattingCfg(
            sections=[
                Section(type="rules", heading="# Rules"),
                Section(type="context", heading="# Context"),
                Section(type="prompt", heading="# Task"),
            ]
        )
    )
    artifact = Composer(library).compose(_pipeline(C1, P1, R1), settings)
    assert artifact == "# Rules\n\nR1\n\n# Context\n\nCTX1\n\n# Task\n\nP1\n"


def test_headings_off(library: Store) -> None:
    settings = Settings(formatting=FormattingCfg(show_headings=False))
    artifact = Composer(library).compose(_pipeline(C1, P1), settings)
    assert artifact == "CTX1\n\nP1\n"


def test_archived_fragment_composes(library: Store) -> None:
    artifact = Composer(library).compose(_pipeline(("context", "../components/contexts/old-ctx.md")), Settings())
    assert "OLD" in artifact


def test_empty_pipeline_composes_to_empty(library: Store) -> None:
    assert Composer(library).compose(_pipeline(), Settings()) == ""


def test_missing_refs_are_all_reported(library: Store) -> None:
    pipeline = _pipeline(C1, ("prompt", "../components/prompts/gone.md"), ("rules", "../components/rules/gone.md"))
    with pytest.raises(UnresolvedRefError) as exc_info:
        Composer(library).compose(pipeline, Settings())
    assert exc_info.value.missing == ["../components/prompts/gone.md", "../components/rules/gone.md"]
    assert exc_info.value.path == "pipelines/t.yaml"


# ---------------------------------------------------------------------------
# assemble + line endings
# ---------------------------------------------------------------------------


def test_normalize_line_endings() -> None:
    assert normalize_line_endings("a\r\nb\rc\r\rd") == "a\nb\nc\n\nd"


def test_assemble_trims_bodies_and_ends_with_one_newline() -> None:
    artifact = assemble({"prompt": ["first\r\n\r\n\r\n", "second   \n"]}, FormattingCfg())
    assert artifact == "## PROMPTS\n\nfirst\n\nsecond\n"
