"""Pluqqy CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from pluqqy.cli.browse import list_cmd, search_cmd, show_cmd, tags_cmd, usage_cmd
from pluqqy.cli.compose import compose_cmd, set_cmd
from pluqqy.cli.init import init_cmd
from pluqqy.cli.items import (
    archive_cmd,
    clone_cmd,
    create_cmd,
    delete_cmd,
    edit_cmd,
    rename_cmd,
    unarchive_cmd,
)
from pluqqy.logging import configure_logging


def _version() -> str:
    try:
        return importlib.metadata.version("pluqqy")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"pluqqy {_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="pluqqy",
    help=(
        "Pluqqy: compose AI context files from reusable components.\n\n"
        "  pluqqy create prompt \"Review\"   Add a component to the library.\n"
        "  pluqqy compose <pipeline>      Assemble a pipeline into Markdown.\n"
        "  pluqqy set <pipeline>          Write it as the project's context file."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="More log output on stderr (-vv for debug)."),
    ] = 0,
    log_json: Annotated[
        bool,
        typer.Option("--log-json", help="Emit logs as JSON lines."),
    ] = False,
) -> None:
    """Pluqqy: compose AI context files from reusable components."""
    configure_logging(json_mode=log_json, verbosity=verbose)


app.command("init")(init_cmd)
app.command("list")(list_cmd)
app.command("show")(show_cmd)
app.command("search")(search_cmd)
app.command("usage")(usage_cmd)
app.command("tags")(tags_cmd)
app.command("compose")(compose_cmd)
app.command("set")(set_cmd)
app.command("create")(create_cmd)
app.command("rename")(rename_cmd)
app.command("clone")(clone_cmd)
app.command("archive")(archive_cmd)
app.command("unarchive")(unarchive_cmd)
app.command("delete")(delete_cmd)
app.command("edit")(edit_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed pluqqy version."""
    typer.echo(f"pluqqy {_version()}")


if __name__ == "__main__":
    app()
