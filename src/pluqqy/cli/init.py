"""pluqqy init: create the library layout.

Creates (inside the library root, default ./.pluqqy):
  components/{contexts,prompts,rules}/
  pipelines/
  archive/components/{contexts,prompts,rules}/ + archive/pipelines/
  settings.yaml    default settings, only if missing
  tmp/             scratch output directory (settings.output_path)
  .gitignore       ignores /tmp/, entry appended once
"""

from __future__ import annotations

from rich.console import Console

from pluqqy.cli.common import LibOption, fail, open_service
from pluqqy.config import ConfigError
from pluqqy.errors import PluqqyError

console = Console()


def init_cmd(lib: LibOption = None) -> None:
    """Initialize a pluqqy library (safe to re-run)."""
    service = open_service(lib, console, must_exist=False)
    try:
        created = service.init_library()
    except (PluqqyError, ConfigError) as exc:
        fail(console, exc)

    root = service.store.root
    if not created:
        console.print(f"[yellow]⚠[/]  Library already initialized at {root}")
        return

    for path in created:
        console.print(f"[green]✓[/] {path}")
    console.print(f"\n[bold]Library ready:[/] {root}")
    console.print("  Next:  pluqqy create prompt \"My first prompt\"")
