"""pluqqy compose / pluqqy set: turn a pipeline into its Markdown artifact.

Usage:
  pluqqy compose my-pipeline                 artifact to stdout
  pluqqy compose my-pipeline --out ctx.md    artifact written atomically
  pluqqy set my-pipeline                     write to export_path/default_filename
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from pluqqy.cli.common import LibOption, fail, open_service
from pluqqy.cli.errors import err_not_a_pipeline
from pluqqy.config import ConfigError
from pluqqy.errors import PluqqyError
from pluqqy.service import LibraryService
from pluqqy.store.models import Pipeline
from pluqqy.store.paths import is_pipeline_path
from pluqqy.tokens import estimate_tokens, format_token_count

console = Console(stderr=True)


def _pipeline(service: LibraryService, ref: str) -> Pipeline:
    path, archived = service.locate(ref)
    if not is_pipeline_path(path):
        console.print(err_not_a_pipeline(ref))
        raise typer.Exit(1)
    return service.get_pipeline(path, archived)


def compose_cmd(
    pipeline: Annotated[str, typer.Argument(help="Pipeline (path, slug or name).")],
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Write the artifact to this file instead of stdout."),
    ] = None,
    lib: LibOption = None,
) -> None:
    """Compose a pipeline into a single Markdown document."""
    service = open_service(lib, console)
    try:
        loaded = _pipeline(service, pipeline)
        if out is None:
            typer.echo(service.compose(loaded), nl=False)
            return
        target = service.compose_and_write(loaded, out)
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)

    tokens = estimate_tokens(target.read_text(encoding="utf-8"))
    console.print(f"[green]✓[/] Composed {escape(loaded.name)} → {escape(str(target))}  [dim]{format_token_count(tokens)}[/]")


def set_cmd(
    pipeline: Annotated[str, typer.Argument(help="Pipeline (path, slug or name).")],
    output_file: Annotated[
        str | None,
        typer.Option("--output-file", "-f", help="File name inside export_path (default: settings default_filename)."),
    ] = None,
    lib: LibOption = None,
) -> None:
    """Compose a pipeline and write it as the project's active context file."""
    service = open_service(lib, console)
    try:
        loaded = _pipeline(service, pipeline)
        target = service.set_active(loaded, output_file)
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)
    console.print(f"[green]✓[/] Set {escape(loaded.name)} → {escape(str(target))}")
