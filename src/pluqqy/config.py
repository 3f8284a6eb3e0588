"""Pluqqy settings loader.

Priority (high → low):
  1. CLI flags              (applied by the commands, not here)
  2. Environment variables  (PLUQQY_DEFAULT_FILENAME, PLUQQY_EXPORT_PATH)
  3. <library>/settings.yaml
  4. Hardcoded defaults

settings.yaml is created with defaults the first time it is read. Older
files nest everything under a top-level ``output:`` key; that shape is still
accepted on read and rewritten flat on the next write.
YAML is read with yaml.safe_load() only.
"""

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from pluqqy.errors import MalformedError
from pluqqy.store.atomic import write_atomic
from pluqqy.store.models import CONTEXT, KINDS, PROMPT, RULES, normalize_kind

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

LIBRARY_ENV_VAR = "PLUQQY_DIR"

_KNOWN_KEYS: frozenset[str] = frozenset(
    ["default_filename", "export_path", "output_path", "formatting", "output"]
)

_DEFAULT_HEADINGS: dict[str, str] = {
    CONTEXT: "## CONTEXTS",
    PROMPT: "## PROMPTS",
    RULES: "## RULES",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when settings contain an invalid value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class Section:
    """One composed-output section (settings.yaml: formatting.sections[]).

    Attributes:
        type: Fragment kind collected in this section (context | prompt | rules).
        heading: Markdown heading emitted before the section when headings are on.
    """

    type: str
    heading: str


def _default_sections() -> list[Section]:
    return [Section(type=k, heading=_DEFAULT_HEADINGS[k]) for k in KINDS]


@dataclass
class FormattingCfg:
    """Composed-output formatting (settings.yaml: formatting:)."""

    show_headings: bool = True
    sections: list[Section] = field(default_factory=_default_sections)

    def section_order(self) -> list[str]:
        """Kinds in section order, first occurrence wins."""
        seen: list[str] = []
        for section in self.sections:
            if section.type not in seen:
                seen.append(section.type)
        return seen


@dataclass
class Settings:
    """Root settings object, built by settings_from_dict() from settings.yaml."""

    default_filename: str = "PLUQQY.md"
    export_path: str = "./"
    output_path: str = "tmp/"
    formatting: FormattingCfg = field(default_factory=FormattingCfg)


def default_settings() -> Settings:
    return Settings()


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _warn_unknown_keys(data: dict[str, Any], source: Path | None) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_KEYS:
            warnings.warn(
                f"Unknown settings key '{key}' in '{source or 'settings'}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _parse_sections(raw: Any) -> list[Section]:
    """Build the section list; unknown types are errors, duplicates collapse."""
    if not raw:
        return _default_sections()
    if not isinstance(raw, list):
        raise ConfigError("formatting.sections must be a list of {type, heading} entries.")

    sections: list[Section] = []
    seen: set[str] = set()
    for entry in raw:
        if not isinstance(entry, dict):
            raise ConfigError("formatting.sections entries must be mappings with 'type' and 'heading'.")
        kind = normalize_kind(entry.get("type", ""))
        if kind is None:
            raise ConfigError(
                f"Unknown section type '{entry.get('type')}': must be one of: {', '.join(KINDS)}."
            )
        if kind in seen:
            continue
        seen.add(kind)
        heading = entry.get("heading")
        sections.append(Section(type=kind, heading=str(heading) if heading is not None else _DEFAULT_HEADINGS[kind]))

    # Every kind must be composable; append defaults for any the file leaves out
    for kind in KINDS:
        if kind not in seen:
            sections.append(Section(type=kind, heading=_DEFAULT_HEADINGS[kind]))
    return sections


# ---------------------------------------------------------------------------
# Build + serialise
# ---------------------------------------------------------------------------


def settings_from_dict(data: dict[str, Any], source: Path | None = None) -> Settings:
    """Build a *Settings* from a raw settings.yaml mapping, merged over defaults."""
    _warn_unknown_keys(data, source)

    # Legacy layout: everything under output:
    if isinstance(data.get("output"), dict):
        data = {**data["output"], **{k: v for k, v in data.items() if k != "output"}}

    cfg = Settings()
    if data.get("default_filename"):
        cfg.default_filename = str(data["default_filename"])
    if data.get("export_path"):
        cfg.export_path = str(data["export_path"])
    if data.get("output_path"):
        cfg.output_path = str(data["output_path"])

    fmt = data.get("formatting")
    if isinstance(fmt, dict):
        show_headings = fmt.get("show_headings", cfg.formatting.show_headings)
        if not isinstance(show_headings, bool):
            raise ConfigError(
                f"formatting.show_headings must be true or false, got {show_headings!r}."
            )
        cfg.formatting = FormattingCfg(
            show_headings=show_headings,
            sections=_parse_sections(fmt.get("sections")),
        )
    elif fmt is not None:
        raise ConfigError("formatting must be a mapping.")

    return cfg


def settings_to_dict(cfg: Settings) -> dict[str, Any]:
    return {
        "default_filename": cfg.default_filename,
        "export_path": cfg.export_path,
        "output_path": cfg.output_path,
        "formatting": {
            "show_headings": cfg.formatting.show_headings,
            "sections": [{"type": s.type, "heading": s.heading} for s in cfg.formatting.sections],
        },
    }


def apply_env_overrides(cfg: Settings) -> Settings:
    """Apply PLUQQY_* environment variable overrides (layer 2)."""
    if filename := os.environ.get("PLUQQY_DEFAULT_FILENAME"):
        cfg.default_filename = filename
    if export := os.environ.get("PLUQQY_EXPORT_PATH"):
        cfg.export_path = export
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_settings(path: Path) -> Settings:
    """Read settings.yaml at *path*, creating it with defaults if missing.

    Args:
        path: Location of settings.yaml inside the library root.

    Returns:
        Settings merged over defaults. Environment overrides are *not* applied
        here so that a read/write cycle never persists them.

    Raises:
        MalformedError: If the file is not valid YAML or not a mapping.
        ConfigError: If a value is invalid (e.g. an unknown section type).
    """
    if not path.exists():
        cfg = default_settings()
        write_settings(path, cfg)
        return cfg

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise MalformedError(f"Invalid YAML in settings file '{path}': {exc}", path=str(path)) from exc

    if raw is None:
        return default_settings()
    if not isinstance(raw, dict):
        raise MalformedError(f"Settings file '{path}' must contain a mapping.", path=str(path))
    return settings_from_dict(raw, path)


def write_settings(path: Path, cfg: Settings) -> None:
    """Write *cfg* to *path* atomically."""
    content = yaml.safe_dump(settings_to_dict(cfg), sort_keys=False, allow_unicode=True)
    write_atomic(path, content)


def resolve_library_root(explicit: Path | None = None) -> Path:
    """Library root: explicit argument, else $PLUQQY_DIR, else ./.pluqqy."""
    if explicit is not None:
        return explicit
    if env := os.environ.get(LIBRARY_ENV_VAR):
        return Path(env)
    from pluqqy.store.paths import DEFAULT_LIBRARY_DIR

    return Path(DEFAULT_LIBRARY_DIR)
