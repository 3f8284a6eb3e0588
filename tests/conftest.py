"""Shared pytest fixtures."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
import structlog

from pluqqy.service import LibraryService
from pluqqy.store.models import ComponentRef, Pipeline
from pluqqy.store.repository import Store


@pytest.fixture(autouse=True)
def _reset_logging():
    """CLI tests configure structlog against CliRunner streams; undo after each test."""
    yield
    structlog.reset_defaults()
    root = logging.getLogger()
    for handler in list(root.handlers):
        stream = getattr(handler, "stream", None)
        if stream is not None and getattr(stream, "closed", False):
            root.removeHandler(handler)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("PLUQQY_DIR", "PLUQQY_DEFAULT_FILENAME", "PLUQQY_EXPORT_PATH", "EDITOR"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def lib_root(tmp_path: Path) -> Path:
    return tmp_path / ".pluqqy"


@pytest.fixture
def store(lib_root: Path) -> Store:
    s = Store(lib_root)
    s.init_layout()
    return s


def _ref(kind: str, kind_dir: str, slug: str) -> ComponentRef:
    return ComponentRef(kind=kind, path=f"../components/{kind_dir}/{slug}.md")


@pytest.fixture
def library(store: Store) -> Store:
    """A small populated library.

    Active:
      components/contexts/c1.md   "CTX1"  tags [api]
      components/prompts/p1.md    "P1"    tags [api, review]   name "Prompt One"
      components/prompts/p2.md    "P2"
      components/rules/r1.md      "R1"
      pipelines/main.yaml         [c1, p1, r1]   tags [api]
      pipelines/prompts-only.yaml [p1]
    Archived:
      components/contexts/old-ctx.md  "OLD"  tags [legacy]
      pipelines/legacy.yaml           [old-ctx, p1]
    """
    store.write_fragment("components/contexts/c1.md", "CTX1", tags=["api"])
    store.write_fragment("components/prompts/p1.md", "P1", name="Prompt One", tags=["api", "review"])
    store.write_fragment("components/prompts/p2.md", "P2")
    store.write_fragment("components/rules/r1.md", "R1")
    store.write_fragment("components/contexts/old-ctx.md", "OLD", tags=["legacy"], archived=True)

    store.write_pipeline(
        Pipeline(
            path="pipelines/main.yaml",
            name="Main",
            tags=("api",),
            components=(
                _ref("context", "contexts", "c1"),
                _ref("prompt", "prompts", "p1"),
                _ref("rules", "rules", "r1"),
            ),
        )
    )
    store.write_pipeline(
        Pipeline(
            path="pipelines/prompts-only.yaml",
            name="Prompts Only",
            components=(_ref("prompt", "prompts", "p1"),),
        )
    )
    store.write_pipeline(
        Pipeline(
            path="pipelines/legacy.yaml",
            name="Legacy",
            components=(
                _ref("context", "contexts", "old-ctx"),
                _ref("prompt", "prompts", "p1"),
            ),
            is_archived=True,
        )
    )
    return store


@pytest.fixture
def service(library: Store) -> LibraryService:
    return LibraryService(library.root)
