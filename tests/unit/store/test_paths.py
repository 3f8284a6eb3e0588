"""Tests for library path handling."""

from __future__ import annotations

from pathlib import Path

import pytest

from pluqqy.errors import InvalidNameError
from pluqqy.store.paths import (
    disk_path,
    fragment_path,
    fragment_to_ref,
    is_fragment_path,
    is_pipeline_path,
    kind_from_path,
    normalize_library_path,
    pipeline_path,
    ref_to_fragment_path,
    split_archive,
)


def test_normalize_library_path_cleans_separators() -> None:
    assert normalize_library_path("components\\prompts\\x.md") == "components/prompts/x.md"
    assert normalize_library_path("./pipelines//x.yaml") == "pipelines/x.yaml"


@pytest.mark.parametrize("path", ["../etc/passwd", "components/../../x", "/abs/path", "", ".."])
def test_normalize_library_path_rejects_escape(path: str) -> None:
    with pytest.raises(InvalidNameError):
        normalize_library_path(path)


def test_split_archive() -> None:
    assert split_archive("archive/pipelines/x.yaml") == ("pipelines/x.yaml", True)
    assert split_archive("pipelines/x.yaml") == ("pipelines/x.yaml", False)


def test_fragment_and_pipeline_paths() -> None:
    assert fragment_path("context", "auth") == "components/contexts/auth.md"
    assert fragment_path("rules", "style") == "components/rules/style.md"
    assert pipeline_path("main") == "pipelines/main.yaml"


def test_kind_from_path() -> None:
    assert kind_from_path("components/prompts/x.md") == "prompt"
    assert kind_from_path("components/other/x.md") is None
    assert kind_from_path("components/prompts/x.txt") is None
    assert kind_from_path("pipelines/x.yaml") is None


def test_is_fragment_and_pipeline_path() -> None:
    assert is_fragment_path("components/rules/r.md")
    assert not is_fragment_path("pipelines/p.yaml")
    assert is_pipeline_path("pipelines/p.yaml")
    assert not is_pipeline_path("pipelines/nested/p.yaml")


@pytest.mark.parametrize(
    "ref",
    [
        "../components/prompts/x.md",
        "../archive/components/prompts/x.md",
        ".pluqqy/components/prompts/x.md",
    ],
)
def test_ref_to_fragment_path(ref: str) -> None:
    assert ref_to_fragment_path(ref) == "components/prompts/x.md"


def test_fragment_to_ref_round_trips() -> None:
    path = "components/contexts/auth.md"
    assert fragment_to_ref(path) == "../components/contexts/auth.md"
    assert ref_to_fragment_path(fragment_to_ref(path)) == path


def test_disk_path(tmp_path: Path) -> None:
    assert disk_path(tmp_path, "pipelines/x.yaml") == tmp_path / "pipelines" / "x.yaml"
    assert disk_path(tmp_path, "pipelines/x.yaml", archived=True) == tmp_path / "archive" / "pipelines" / "x.yaml"
