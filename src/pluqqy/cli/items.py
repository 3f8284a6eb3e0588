"""Mutating CLI commands: create, rename, clone, archive, unarchive, delete, edit.

Every command resolves its <ref> argument with Store.locate, so a library
path (components/prompts/x.md), a short form (prompts/x) or a bare slug
all work.
"""

from __future__ import annotations

import os
import shlex
import subprocess
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from pluqqy.cli.common import LibOption, fail, open_service, report_tasks
from pluqqy.cli.errors import err_editor_failed, err_no_editor
from pluqqy.config import ConfigError
from pluqqy.errors import PluqqyError
from pluqqy.store.paths import is_fragment_path

console = Console()


def create_cmd(
    kind: Annotated[str, typer.Argument(help="Component type: context, prompt or rules.")],
    name: Annotated[str, typer.Argument(help="Display name, e.g. \"Auth Context\".")],
    tag: Annotated[
        list[str] | None,
        typer.Option("--tag", "-t", help="Tag to attach (repeatable)."),
    ] = None,
    body: Annotated[
        str,
        typer.Option("--body", "-b", help="Initial content."),
    ] = "",
    lib: LibOption = None,
) -> None:
    """Create a new component."""
    service = open_service(lib, console)
    try:
        path = service.create_fragment(kind, name, body=body, tags=tag or [])
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)
    console.print(f"[green]✓[/] Created: {escape(path)}")


def rename_cmd(
    ref: Annotated[str, typer.Argument(help="Component or pipeline to rename.")],
    new_name: Annotated[str, typer.Argument(help="New display name.")],
    lib: LibOption = None,
) -> None:
    """Rename a component or pipeline (pipeline references are updated)."""
    service = open_service(lib, console)
    try:
        path, _ = service.locate(ref)
        users = service.pipelines_using(path) if is_fragment_path(path) else ([], [])
        new_path = service.rename(path, new_name)
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)

    console.print(f"[green]✓[/] Renamed: {escape(path)} → {escape(new_path)}")
    updated = len(users[0]) + len(users[1])
    if updated and new_path != path:
        console.print(f"  Updated references in {updated} pipeline(s)")


def clone_cmd(
    ref: Annotated[str, typer.Argument(help="Component or pipeline to copy.")],
    new_name: Annotated[str, typer.Argument(help="Display name of the copy.")],
    archive: Annotated[
        bool,
        typer.Option("--archive", help="Create the copy directly in the archive."),
    ] = False,
    lib: LibOption = None,
) -> None:
    """Copy a component or pipeline under a new name."""
    service = open_service(lib, console)
    try:
        path, _ = service.locate(ref)
        new_path = service.clone(path, new_name, to_archive=archive)
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)
    where = " (archived)" if archive else ""
    console.print(f"[green]✓[/] Cloned: {escape(path)} → {escape(new_path)}{where}")


def archive_cmd(
    ref: Annotated[str, typer.Argument(help="Component or pipeline to archive.")],
    lib: LibOption = None,
) -> None:
    """Move an item into the archive."""
    service = open_service(lib, console)
    try:
        path, archived = service.locate(ref)
        if archived:
            console.print(f"[yellow]Already archived:[/] {escape(path)}")
            raise typer.Exit(0)
        service.archive(path)
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)
    console.print(f"[green]✓[/] Archived: {escape(path)}")
    report_tasks(service, console)


def unarchive_cmd(
    ref: Annotated[str, typer.Argument(help="Archived component or pipeline to restore.")],
    lib: LibOption = None,
) -> None:
    """Restore an item from the archive."""
    service = open_service(lib, console)
    try:
        path, archived = service.locate(ref)
        if not archived:
            console.print(f"[yellow]Not archived:[/] {escape(path)}")
            raise typer.Exit(0)
        service.unarchive(path)
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)
    console.print(f"[green]✓[/] Restored: {escape(path)}")


def delete_cmd(
    ref: Annotated[str, typer.Argument(help="Component or pipeline to delete.")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
    lib: LibOption = None,
) -> None:
    """Delete a component or pipeline permanently."""
    service = open_service(lib, console)
    try:
        path, archived = service.locate(ref)
        active_users, archived_users = (
            service.pipelines_using(path) if is_fragment_path(path) else ([], [])
        )
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)

    console.print(f"\nDelete: [bold]{escape(path)}[/]{'  [yellow](archived)[/]' if archived else ''}")
    if active_users or archived_users:
        console.print(f"  [yellow]⚠[/] Used by {len(active_users) + len(archived_users)} pipeline(s):")
        for summary in active_users:
            console.print(f"    • {escape(summary.name)}")
        for summary in archived_users:
            console.print(f"    • {escape(summary.name)}  [dim](archived)[/]")
        console.print("  Their references will be left dangling.")

    if not yes:
        if not typer.confirm("Confirm delete?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    try:
        service.delete(path, archived)
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)
    console.print(f"[green]✓[/] Deleted: {escape(path)}")
    report_tasks(service, console)


def edit_cmd(
    ref: Annotated[str, typer.Argument(help="Component or pipeline to open in $EDITOR.")],
    lib: LibOption = None,
) -> None:
    """Open an item in the external editor named by $EDITOR."""
    service = open_service(lib, console)
    try:
        path, archived = service.locate(ref)
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)

    editor = os.environ.get("EDITOR", "").strip()
    if not editor:
        console.print(err_no_editor())
        raise typer.Exit(1)

    target = service.store.file_path(path, archived)
    try:
        completed = subprocess.run([*shlex.split(editor), str(target)], check=False)
    except OSError as exc:
        console.print(err_editor_failed(editor, str(exc)))
        raise typer.Exit(1)
    if completed.returncode != 0:
        console.print(err_editor_failed(editor, f"exit status {completed.returncode}"))
        raise typer.Exit(1)

    service.invalidate()
    try:
        if is_fragment_path(path):
            service.get_fragment(path, archived)
        else:
            service.get_pipeline(path, archived)
    except PluqqyError as exc:
        console.print(f"[yellow]⚠[/] Saved, but the file no longer parses: {escape(str(exc))}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/] Edited: {escape(path)}")
