"""Tests for the pluqqy CLI commands."""

from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from pluqqy.cli.main import app
from pluqqy.store.repository import Store

runner = CliRunner()


def _invoke(store: Store, *args: str, input: str | None = None):
    return runner.invoke(app, [*args, "--lib", str(store.root)], input=input)


# ---------------------------------------------------------------------------
# Global options
# ---------------------------------------------------------------------------


def test_version() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("pluqqy ")


def test_missing_library_hints_init(tmp_path: Path) -> None:
    result = runner.invoke(app, ["list", "--lib", str(tmp_path / "nope")])
    assert result.exit_code == 1
    assert "pluqqy init" in result.output


def test_lib_from_environment(library: Store) -> None:
    result = runner.invoke(app, ["list", "pipelines"], env={"PLUQQY_DIR": str(library.root)})
    assert result.exit_code == 0
    assert "Main" in result.output


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


def test_init_creates_layout(tmp_path: Path) -> None:
    root = tmp_path / ".pluqqy"
    result = runner.invoke(app, ["init", "--lib", str(root)])
    assert result.exit_code == 0
    assert (root / "components" / "rules").is_dir()
    assert (root / ".gitignore").read_text(encoding="utf-8") == "/tmp/\n"

    again = runner.invoke(app, ["init", "--lib", str(root)])
    assert again.exit_code == 0
    assert "already initialized" in again.output
    assert (root / ".gitignore").read_text(encoding="utf-8") == "/tmp/\n"


# ---------------------------------------------------------------------------
# list / show / search / usage / tags
# ---------------------------------------------------------------------------


def test_list_json(library: Store) -> None:
    result = _invoke(library, "list", "--json")
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert [p["name"] for p in payload["pipelines"]] == ["Main", "Prompts Only"]
    p1 = next(c for c in payload["components"] if c["path"] == "components/prompts/p1.md")
    assert p1["usage"] == 3
    assert p1["tags"] == ["api", "review"]


def test_list_archived(library: Store) -> None:
    result = _invoke(library, "list", "--archived", "--json")
    payload = json.loads(result.stdout)
    assert [p["name"] for p in payload["pipelines"]] == ["Legacy"]
    assert [c["path"] for c in payload["components"]] == ["components/contexts/old-ctx.md"]


def test_list_scope_rules(library: Store) -> None:
    result = _invoke(library, "list", "rules", "--json")
    payload = json.loads(result.stdout)
    assert payload["pipelines"] == []
    assert [c["kind"] for c in payload["components"]] == ["rules"]


def test_show_fragment(library: Store) -> None:
    result = _invoke(library, "show", "p1")
    assert result.exit_code == 0
    assert "Prompt One" in result.output
    assert "P1" in result.output


def test_show_pipeline_marks_missing(library: Store) -> None:
    library.delete_fragment("components/rules/r1.md")
    result = _invoke(library, "show", "main")
    assert result.exit_code == 0
    assert "missing" in result.output


def test_show_unknown_ref(library: Store) -> None:
    result = _invoke(library, "show", "ghost")
    assert result.exit_code == 1
    assert "Error" in result.output


def test_search_json(library: Store) -> None:
    result = _invoke(library, "search", "type:prompts", "tag:review", "--json")
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert [c["path"] for c in payload["components"]] == ["components/prompts/p1.md"]


def test_usage(library: Store) -> None:
    result = _invoke(library, "usage", "p1")
    assert result.exit_code == 0
    assert "3 pipeline(s)" in result.output
    assert "Legacy" in result.output


def test_usage_rejects_pipeline(library: Store) -> None:
    result = _invoke(library, "usage", "main")
    assert result.exit_code == 1


def test_tags(library: Store) -> None:
    result = _invoke(library, "tags")
    assert result.exit_code == 0
    assert "api" in result.output
    assert "review" in result.output


# ---------------------------------------------------------------------------
# compose / set
# ---------------------------------------------------------------------------


def test_compose_to_stdout(library: Store) -> None:
    result = _invoke(library, "compose", "main")
    assert result.exit_code == 0
    assert result.stdout == "## CONTEXTS\n\nCTX1\n\n## PROMPTS\n\nP1\n\n## RULES\n\nR1\n"


def test_compose_to_file(library: Store, tmp_path: Path) -> None:
    out = tmp_path / "ctx.md"
    result = _invoke(library, "compose", "prompts-only", "--out", str(out))
    assert result.exit_code == 0
    assert out.read_text(encoding="utf-8") == "## PROMPTS\n\nP1\n"


def test_compose_unresolved_exits_1(library: Store) -> None:
    library.delete_fragment("components/prompts/p1.md")
    result = _invoke(library, "compose", "prompts-only")
    assert result.exit_code == 1
    assert "missing components" in result.output


def test_compose_rejects_fragment(library: Store) -> None:
    result = _invoke(library, "compose", "c1")
    assert result.exit_code == 1
    assert "not a pipeline" in result.output


def test_set_writes_default_file(library: Store, tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    result = _invoke(library, "set", "main")
    assert result.exit_code == 0
    assert (tmp_path / "PLUQQY.md").read_text(encoding="utf-8").startswith("## CONTEXTS")

    result = _invoke(library, "set", "main", "--output-file", "AGENTS.md")
    assert result.exit_code == 0
    assert (tmp_path / "AGENTS.md").is_file()


# ---------------------------------------------------------------------------
# create / rename / clone / archive / delete / edit
# ---------------------------------------------------------------------------


def test_create(library: Store) -> None:
    result = _invoke(library, "create", "prompt", "Code Review", "--tag", "qa", "--body", "Check it.")
    assert result.exit_code == 0
    fragment = library.read_fragment("components/prompts/code-review.md")
    assert fragment.body == "Check it."
    assert fragment.tags == ("qa",)


def test_create_clash_exits_1(library: Store) -> None:
    result = _invoke(library, "create", "prompt", "P1")
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_rename_updates_pipelines(library: Store) -> None:
    result = _invoke(library, "rename", "p1", "Primary")
    assert result.exit_code == 0
    main = library.read_pipeline("pipelines/main.yaml")
    assert "../components/prompts/primary.md" in [r.path for r in main.components]


def test_clone_into_archive(library: Store) -> None:
    result = _invoke(library, "clone", "main", "Main Backup", "--archive")
    assert result.exit_code == 0
    assert library.exists("pipelines/main-backup.yaml", archived=True)


def test_archive_and_unarchive(library: Store) -> None:
    result = _invoke(library, "archive", "r1")
    assert result.exit_code == 0
    assert library.exists("components/rules/r1.md", archived=True)

    result = _invoke(library, "unarchive", "r1")
    assert result.exit_code == 0
    assert library.exists("components/rules/r1.md", archived=False)


def test_delete_requires_confirmation(library: Store) -> None:
    result = _invoke(library, "delete", "p1", input="n\n")
    assert result.exit_code == 0
    assert "Used by 3 pipeline(s)" in result.output
    assert library.exists("components/prompts/p1.md")


def test_delete_yes(library: Store) -> None:
    result = _invoke(library, "delete", "p2", "--yes")
    assert result.exit_code == 0
    assert not library.exists("components/prompts/p2.md")


def test_edit_without_editor_is_reported(library: Store) -> None:
    result = _invoke(library, "edit", "p1")
    assert result.exit_code == 1
    assert "EDITOR" in result.output


def test_edit_runs_editor(library: Store, monkeypatch) -> None:
    monkeypatch.setenv("EDITOR", "true")
    result = _invoke(library, "edit", "p1")
    assert result.exit_code == 0
    assert "Edited" in result.output
