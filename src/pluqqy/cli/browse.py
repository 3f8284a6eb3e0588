"""Read-only CLI commands: list, show, search, usage, tags.

Usage:
  pluqqy list                       all active pipelines and components
  pluqqy list prompts --archived    archived prompts only
  pluqqy show auth-context          fragment body + metadata
  pluqqy search "api tag:backend"   query language of pluqqy.search.query
  pluqqy usage auth-context         pipelines referencing a component
  pluqqy tags                       every tag with colour and usage
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from pluqqy.cli.common import LibOption, fail, open_service
from pluqqy.cli.errors import err_not_a_fragment
from pluqqy.config import ConfigError
from pluqqy.errors import PluqqyError
from pluqqy.search.engine import SearchResult
from pluqqy.search.query import PIPELINES, Filter
from pluqqy.store.models import CONTEXT, KINDS, PROMPT, RULES, Fragment, Pipeline
from pluqqy.store.paths import is_fragment_path
from pluqqy.tokens import format_token_count, token_limit_status

console = Console()

_STATUS_STYLE = {"good": "green", "warning": "yellow", "danger": "red"}


class Scope(str, Enum):
    all = "all"
    pipelines = "pipelines"
    components = "components"
    contexts = "contexts"
    prompts = "prompts"
    rules = "rules"


_SCOPE_TYPES: dict[Scope, frozenset[str]] = {
    Scope.all: frozenset(),
    Scope.pipelines: frozenset({PIPELINES}),
    Scope.components: frozenset(KINDS),
    Scope.contexts: frozenset({CONTEXT}),
    Scope.prompts: frozenset({PROMPT}),
    Scope.rules: frozenset({RULES}),
}


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _tags_cell(tags: tuple[str, ...]) -> str:
    return ", ".join(escape(t) for t in tags)


def _fragment_dict(fragment: Fragment) -> dict[str, Any]:
    return {
        "path": fragment.path,
        "kind": fragment.kind,
        "name": fragment.display_name,
        "tags": list(fragment.tags),
        "archived": fragment.is_archived,
        "tokens": fragment.token_count,
        "usage": fragment.usage_count,
    }


def _pipeline_dict(pipeline: Pipeline) -> dict[str, Any]:
    return {
        "path": pipeline.path,
        "name": pipeline.name,
        "tags": list(pipeline.tags),
        "archived": pipeline.is_archived,
        "components": [ref.path for ref in pipeline.components],
        "missing": list(pipeline.missing_refs),
    }


def _echo_json(result: SearchResult) -> None:
    payload = {
        "pipelines": [_pipeline_dict(p) for p in result.pipelines],
        "components": [_fragment_dict(f) for f in result.fragments],
    }
    typer.echo(json.dumps(payload, indent=2))


def _print_result(result: SearchResult, show_paths: bool, title_suffix: str = "") -> None:
    if not len(result):
        console.print(f"[yellow]Nothing found{title_suffix}.[/]")
        return

    if result.pipelines:
        table = Table(title=f"Pipelines{title_suffix}", show_header=True, header_style="bold")
        table.add_column("Name", style="bold")
        if show_paths:
            table.add_column("Path")
        table.add_column("Components", justify="right")
        table.add_column("Tags")
        for p in result.pipelines:
            name = escape(p.name)
            if p.missing_refs:
                name += f" [red]({len(p.missing_refs)} missing)[/]"
            row = [name]
            if show_paths:
                row.append(escape(p.path))
            row += [str(len(p.components)), _tags_cell(p.tags)]
            table.add_row(*row)
        console.print(table)

    if result.fragments:
        table = Table(title=f"Components{title_suffix}", show_header=True, header_style="bold")
        table.add_column("Name", style="bold")
        table.add_column("Type")
        if show_paths:
            table.add_column("Path")
        table.add_column("Tokens", justify="right")
        table.add_column("Usage", justify="right")
        table.add_column("Tags")
        for f in result.fragments:
            row = [escape(f.display_name), f.kind]
            if show_paths:
                row.append(escape(f.path))
            row += [str(f.token_count), str(f.usage_count), _tags_cell(f.tags)]
            table.add_row(*row)
        console.print(table)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def list_cmd(
    scope: Annotated[
        Scope,
        typer.Argument(help="What to list.", case_sensitive=False),
    ] = Scope.all,
    archived: Annotated[
        bool,
        typer.Option("--archived", "-a", help="List archived items instead of active ones."),
    ] = False,
    paths: Annotated[
        bool,
        typer.Option("--paths", help="Show library paths."),
    ] = False,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print machine-readable JSON."),
    ] = False,
    lib: LibOption = None,
) -> None:
    """List pipelines and components."""
    service = open_service(lib, console)
    flt = Filter(types=_SCOPE_TYPES[scope], status="archived" if archived else "default")
    try:
        result = service.list_library(flt)
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)

    if as_json:
        _echo_json(result)
        return
    _print_result(result, paths, " (archived)" if archived else "")
    for skipped in service.snapshot().skipped:
        console.print(f"[yellow]⚠[/] Skipped {escape(skipped.path)}: {escape(skipped.reason)}")


def show_cmd(
    ref: Annotated[str, typer.Argument(help="Component or pipeline (path, slug or name).")],
    lib: LibOption = None,
) -> None:
    """Show a component's content or a pipeline's components."""
    service = open_service(lib, console)
    try:
        path, archived = service.locate(ref)
        if is_fragment_path(path):
            _show_fragment(service.get_fragment(path, archived))
        else:
            _show_pipeline(service.get_pipeline(path, archived))
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)


def _show_fragment(fragment: Fragment) -> None:
    pct, limit, status = token_limit_status(fragment.token_count)
    style = _STATUS_STYLE[status]
    console.print(f"[bold]{escape(fragment.display_name)}[/]  [dim]({fragment.kind})[/]")
    console.print(f"  Path:    {escape(fragment.path)}{'  [yellow](archived)[/]' if fragment.is_archived else ''}")
    if fragment.tags:
        console.print(f"  Tags:    {_tags_cell(fragment.tags)}")
    console.print(
        f"  Tokens:  {format_token_count(fragment.token_count)}  "
        f"[{style}]{pct}% of {limit // 1024}K[/]"
    )
    console.print(f"  Used by: {fragment.usage_count} pipeline(s)\n")
    typer.echo(fragment.body)


def _show_pipeline(pipeline: Pipeline) -> None:
    console.print(f"[bold]{escape(pipeline.name)}[/]  [dim](pipeline)[/]")
    console.print(f"  Path:    {escape(pipeline.path)}{'  [yellow](archived)[/]' if pipeline.is_archived else ''}")
    if pipeline.tags:
        console.print(f"  Tags:    {_tags_cell(pipeline.tags)}")
    if pipeline.output_path:
        console.print(f"  Output:  {escape(pipeline.output_path)}")

    if not pipeline.components:
        console.print("\n  [dim](no components)[/]")
        return

    missing = set(pipeline.missing_refs)
    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Type")
    table.add_column("Component")
    for ref in pipeline.components:
        marker = "  [red]✗ missing[/]" if ref.path in missing else ""
        table.add_row(str(ref.order), ref.kind, escape(ref.path) + marker)
    console.print(table)


def search_cmd(
    query: Annotated[list[str], typer.Argument(help="Query words and filters (type:, tag:, status:).")],
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print machine-readable JSON."),
    ] = False,
    lib: LibOption = None,
) -> None:
    """Search the library with the filter query language."""
    service = open_service(lib, console)
    try:
        result = service.list_library(" ".join(query))
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)

    if as_json:
        _echo_json(result)
        return
    _print_result(result, show_paths=True)


def usage_cmd(
    ref: Annotated[str, typer.Argument(help="Component (path, slug or name).")],
    lib: LibOption = None,
) -> None:
    """Show which pipelines use a component."""
    service = open_service(lib, console)
    try:
        path, _ = service.locate(ref)
        if not is_fragment_path(path):
            console.print(err_not_a_fragment(ref))
            raise typer.Exit(1)
        active, archived = service.pipelines_using(path)
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)

    if not active and not archived:
        console.print(f"[dim]{escape(path)} is not used by any pipeline.[/]")
        return

    console.print(f"[bold]{escape(path)}[/] is used by {len(active) + len(archived)} pipeline(s):")
    for summary in active:
        console.print(f"  • {escape(summary.name)}  [dim]{escape(summary.path)}[/]")
    for summary in archived:
        console.print(f"  • {escape(summary.name)}  [dim]{escape(summary.path)}[/]  [yellow](archived)[/]")


def tags_cmd(lib: LibOption = None) -> None:
    """List tags with their colour and active usage count."""
    service = open_service(lib, console)
    try:
        overview = service.tag_overview()
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)

    if not overview:
        console.print("[yellow]No tags yet.[/]")
        return

    table = Table(title="Tags", show_header=True, header_style="bold")
    table.add_column("Tag", style="bold")
    table.add_column("Colour")
    table.add_column("Used by", justify="right")
    table.add_column("Description")
    for info, count in overview:
        table.add_row(
            escape(info.name),
            f"[{info.color}]■[/] {info.color}",
            str(count),
            escape(info.description),
        )
    console.print(table)
