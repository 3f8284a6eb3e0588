"""Pluqqy rich error messages: what went wrong, and what to do about it.

Usage:
    from pluqqy.cli.errors import render_error
    console.print(render_error(exc))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from pluqqy.config import ConfigError
from pluqqy.errors import (
    AlreadyExistsError,
    InvalidNameError,
    MalformedError,
    NotFoundError,
    StoreIOError,
    UnresolvedRefError,
)


def err_not_found(exc: NotFoundError) -> str:
    """Reference did not resolve to a library item."""
    return (
        f"[red]Error:[/] {escape(str(exc))}\n"
        "  Run:  pluqqy list all --paths  to see every item and its path."
    )


def err_already_exists(exc: AlreadyExistsError) -> str:
    """Case-insensitive name clash."""
    return (
        f"[red]Error:[/] {escape(str(exc))}\n"
        "  Choose a different name (names differing only in case also clash)."
    )


def err_invalid(exc: InvalidNameError) -> str:
    return f"[red]Error:[/] {escape(str(exc))}"


def err_malformed(exc: MalformedError) -> str:
    """Unparseable YAML or frontmatter."""
    where = f"  File: {escape(exc.path)}\n" if exc.path else ""
    return (
        f"[red]Error:[/] {escape(str(exc))}\n"
        f"{where}"
        "  Fix the file by hand, or run:  pluqqy edit <ref>"
    )


def err_unresolved(exc: UnresolvedRefError) -> str:
    """Compose failed: the pipeline references fragments that do not exist."""
    missing = "\n".join(f"    - {escape(ref)}" for ref in exc.missing)
    return (
        "[red]Error:[/] Pipeline references missing components:\n"
        f"{missing}\n"
        "  Restore or recreate them, or remove the references from the pipeline."
    )


def err_io(exc: StoreIOError) -> str:
    op = f" during {exc.operation}" if exc.operation else ""
    return (
        f"[red]Error:[/] Filesystem error{op}: {escape(str(exc))}\n"
        "  Check permissions and free disk space, then retry."
    )


def err_config(exc: ConfigError) -> str:
    """settings.yaml holds an unusable value."""
    return (
        f"[red]Error:[/] Invalid settings: {escape(str(exc))}\n"
        "  Edit settings.yaml in the library directory."
    )


def err_no_library(root: str) -> str:
    """No library directory at the resolved root."""
    return (
        f"[red]Error:[/] No pluqqy library found at '{escape(root)}'.\n"
        "  Run:  pluqqy init"
    )


def err_no_editor() -> str:
    """$EDITOR is not set; external editing is unavailable."""
    return (
        "[red]Error:[/] No editor configured.\n"
        "  Set:  export EDITOR=vim   (or any editor command)"
    )


def err_editor_failed(editor: str, detail: str) -> str:
    return (
        f"[red]Error:[/] Editor '{escape(editor)}' failed: {escape(detail)}\n"
        "  Check that $EDITOR names an installed program."
    )


def err_not_a_pipeline(ref: str) -> str:
    return (
        f"[red]Error:[/] '{escape(ref)}' is not a pipeline.\n"
        "  Run:  pluqqy list pipelines"
    )


def err_not_a_fragment(ref: str) -> str:
    return (
        f"[red]Error:[/] '{escape(ref)}' is not a component.\n"
        "  Run:  pluqqy list components"
    )


def render_error(exc: Exception) -> str:
    """Pick the message for *exc* by error kind."""
    if isinstance(exc, UnresolvedRefError):
        return err_unresolved(exc)
    if isinstance(exc, NotFoundError):
        return err_not_found(exc)
    if isinstance(exc, AlreadyExistsError):
        return err_already_exists(exc)
    if isinstance(exc, InvalidNameError):
        return err_invalid(exc)
    if isinstance(exc, MalformedError):
        return err_malformed(exc)
    if isinstance(exc, StoreIOError):
        return err_io(exc)
    if isinstance(exc, ConfigError):
        return err_config(exc)
    return f"[red]Error:[/] {escape(str(exc))}"
