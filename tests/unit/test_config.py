"""Tests for the settings loader."""

from __future__ import annotations

import warnings
from pathlib import Path

import pytest
import yaml

from pluqqy.config import (
    ConfigError,
    Settings,
    apply_env_overrides,
    load_settings,
    resolve_library_root,
    settings_from_dict,
    settings_to_dict,
    write_settings,
)
from pluqqy.errors import MalformedError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: object) -> None:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


# ---------------------------------------------------------------------------
# Defaults + lazy create
# ---------------------------------------------------------------------------


def test_missing_file_creates_defaults(tmp_path: Path) -> None:
    path = tmp_path / "lib" / "settings.yaml"
    cfg = load_settings(path)

    assert cfg.default_filename == "PLUQQY.md"
    assert cfg.export_path == "./"
    assert cfg.output_path == "tmp/"
    assert cfg.formatting.show_headings is True
    assert [(s.type, s.heading) for s in cfg.formatting.sections] == [
        ("context", "## CONTEXTS"),
        ("prompt", "## PROMPTS"),
        ("rules", "## RULES"),
    ]
    assert path.is_file()
    assert yaml.safe_load(path.read_text(encoding="utf-8")) == settings_to_dict(cfg)


def test_empty_file_gives_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("", encoding="utf-8")
    assert load_settings(path) == Settings()


# ---------------------------------------------------------------------------
# Merge + normalisation
# ---------------------------------------------------------------------------


def test_partial_file_merges_over_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    _write_yaml(path, {"default_filename": "CLAUDE.md", "formatting": {"show_headings": False}})
    cfg = load_settings(path)
    assert cfg.default_filename == "CLAUDE.md"
    assert cfg.export_path == "./"
    assert cfg.formatting.show_headings is False
    assert cfg.formatting.section_order() == ["context", "prompt", "rules"]


def test_section_aliases_and_missing_kind_appended() -> None:
    cfg = settings_from_dict(
        {
            "formatting": {
                "sections": [
                    {"type": "rules", "heading": "# Rules"},
                    {"type": "prompts", "heading": "# Prompts"},
                    {"type": "rule", "heading": "# Ignored duplicate"},
                ]
            }
        }
    )
    assert cfg.formatting.section_order() == ["rules", "prompt", "context"]
    assert cfg.formatting.sections[0].heading == "# Rules"
    assert cfg.formatting.sections[2].heading == "## CONTEXTS"


def test_unknown_section_type_raises() -> None:
    with pytest.raises(ConfigError, match="widgets"):
        settings_from_dict({"formatting": {"sections": [{"type": "widgets", "heading": "#"}]}})


def test_legacy_output_nesting() -> None:
    cfg = settings_from_dict({"output": {"default_filename": "AGENTS.md", "export_path": "docs/"}})
    assert cfg.default_filename == "AGENTS.md"
    assert cfg.export_path == "docs/"


def test_unknown_key_warns() -> None:
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        settings_from_dict({"colour_scheme": "dark"})
    assert any("colour_scheme" in str(w.message) for w in caught)


@pytest.mark.parametrize("content", ["key: [unclosed\n", "- a\n- b\n"])
def test_malformed_file(tmp_path: Path, content: str) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(MalformedError):
        load_settings(path)


def test_write_then_load_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    cfg = Settings(default_filename="X.md", export_path="out/")
    cfg.formatting.show_headings = False
    write_settings(path, cfg)
    assert load_settings(path) == cfg


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("PLUQQY_DEFAULT_FILENAME", "CONTEXT.md")
    monkeypatch.setenv("PLUQQY_EXPORT_PATH", "build/")
    cfg = apply_env_overrides(Settings())
    assert cfg.default_filename == "CONTEXT.md"
    assert cfg.export_path == "build/"


def test_resolve_library_root(monkeypatch, tmp_path: Path) -> None:
    assert resolve_library_root() == Path(".pluqqy")
    monkeypatch.setenv("PLUQQY_DIR", str(tmp_path / "env-lib"))
    assert resolve_library_root() == tmp_path / "env-lib"
    assert resolve_library_root(tmp_path / "explicit") == tmp_path / "explicit"


@pytest.mark.parametrize("value", ["false", "no", 0, None])
def test_show_headings_must_be_boolean(value: object) -> None:
    with pytest.raises(ConfigError, match="show_headings"):
        settings_from_dict({"formatting": {"show_headings": value}})


@pytest.mark.parametrize("key", ["ui", "editor"])
def test_unparsed_sections_warn(key: str) -> None:
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        settings_from_dict({key: {"theme": "dark"}})
    assert any(key in str(w.message) for w in caught)
