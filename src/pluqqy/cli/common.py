"""Shared CLI plumbing: the --lib option, service construction, error exit."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, NoReturn

import typer
from rich.console import Console

from pluqqy.cli.errors import err_no_library, render_error
from pluqqy.config import LIBRARY_ENV_VAR, resolve_library_root
from pluqqy.service import LibraryService

LibOption = Annotated[
    Path | None,
    typer.Option(
        "--lib",
        envvar=LIBRARY_ENV_VAR,
        help="Library directory (default: ./.pluqqy).",
        show_default=False,
    ),
]


def open_service(lib: Path | None, console: Console, must_exist: bool = True) -> LibraryService:
    """Build a LibraryService for the resolved library root.

    Exits 1 with a hint to run ``pluqqy init`` when the library is missing.
    """
    root = resolve_library_root(lib)
    if must_exist and not root.is_dir():
        console.print(err_no_library(str(root)))
        raise typer.Exit(1)
    return LibraryService(root)


def fail(console: Console, exc: Exception) -> NoReturn:
    console.print(render_error(exc))
    raise typer.Exit(1)


def report_tasks(service: LibraryService, console: Console) -> None:
    """Run queued background tasks and print what they did."""
    for message in service.run_tasks():
        if message.name == "tag_cleanup" and message.success and message.result:
            console.print(f"[dim]Removed unused tags: {', '.join(message.result)}[/]")
        elif message.failed:
            console.print(f"[yellow]⚠[/] Background task '{message.name}' failed: {message.error}")
