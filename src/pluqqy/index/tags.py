"""Tag set across the library, plus the ``tags.yaml`` registry file.

The derived tag set (``all_tags``) is the union of tags on active fragments
and pipelines. The registry file stores per-tag metadata (colour,
description) and is kept in step with that set: tags are registered when an
item carrying them is saved, and ``cleanup_orphans`` drops entries that no
active item references any more.

tags.yaml format:

  tags:
    - name: api
      color: "#3498db"
      description: Public API work
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import structlog

from pluqqy.store.models import Fragment, Pipeline, normalize_tag
from pluqqy.store.repository import Store

logger = structlog.get_logger(__name__)

# Fixed palette; a tag without a stored colour gets a stable pick by name hash
DEFAULT_COLOR_PALETTE: tuple[str, ...] = (
    "#e74c3c",
    "#3498db",
    "#2ecc71",
    "#f39c12",
    "#9b59b6",
    "#1abc9c",
    "#34495e",
    "#e67e22",
    "#16a085",
    "#8e44ad",
    "#f1c40f",
    "#d35400",
    "#27ae60",
    "#2980b9",
    "#c0392b",
)

_FNV32_OFFSET = 0x811C9DC5
_FNV32_PRIME = 0x01000193


def _fnv1a_32(data: bytes) -> int:
    h = _FNV32_OFFSET
    for byte in data:
        h ^= byte
        h = (h * _FNV32_PRIME) & 0xFFFFFFFF
    return h


def tag_color(name: str, registry_color: str | None = None) -> str:
    """Stored colour if any, else a palette colour derived from the name."""
    if registry_color:
        return registry_color
    return DEFAULT_COLOR_PALETTE[_fnv1a_32(name.lower().encode("utf-8")) % len(DEFAULT_COLOR_PALETTE)]


def is_hierarchical(name: str) -> bool:
    return "/" in name


def tag_parent(name: str) -> str:
    """``team/backend/api`` → ``team/backend``; flat tags have no parent ("")."""
    return name.rsplit("/", 1)[0] if "/" in name else ""


def tag_leaf(name: str) -> str:
    return name.rsplit("/", 1)[-1]


def all_tags(fragments: Iterable[Fragment], pipelines: Iterable[Pipeline]) -> list[str]:
    """Sorted union of tags on non-archived fragments and pipelines."""
    found: set[str] = set()
    for item in [*fragments, *pipelines]:
        if not item.is_archived:
            found.update(item.tags)
    return sorted(found)


def tag_usage(fragments: Iterable[Fragment], pipelines: Iterable[Pipeline]) -> dict[str, int]:
    """Number of active items carrying each tag."""
    usage: dict[str, int] = {}
    for item in [*fragments, *pipelines]:
        if item.is_archived:
            continue
        for tag in item.tags:
            usage[tag] = usage.get(tag, 0) + 1
    return usage


@dataclass(frozen=True)
class TagInfo:
    name: str
    color: str
    description: str = ""

    @property
    def parent(self) -> str:
        return tag_parent(self.name)

    @property
    def leaf(self) -> str:
        return tag_leaf(self.name)


class TagRegistry:
    """Read-modify-write access to tags.yaml through the Store.

    Every method reloads the file; the registry keeps no state between calls.
    """

    def __init__(self, store: Store) -> None:
        self._store = store

    def _load(self) -> list[dict[str, Any]]:
        entries: list[dict[str, Any]] = []
        seen: set[str] = set()
        for raw in self._store.read_tag_registry():
            name = normalize_tag(str(raw.get("name", "")))
            if not name or name in seen:
                continue
            seen.add(name)
            entry: dict[str, Any] = {"name": name}
            if raw.get("color"):
                entry["color"] = str(raw["color"])
            if raw.get("description"):
                entry["description"] = str(raw["description"])
            entries.append(entry)
        return entries

    def list_tags(self) -> list[TagInfo]:
        return [
            TagInfo(
                name=e["name"],
                color=tag_color(e["name"], e.get("color")),
                description=e.get("description", ""),
            )
            for e in sorted(self._load(), key=lambda e: e["name"])
        ]

    def get(self, name: str) -> TagInfo:
        """Registry entry for *name*, or a synthesised one with the derived colour."""
        normalized = normalize_tag(name)
        for info in self.list_tags():
            if info.name == normalized:
                return info
        return TagInfo(name=normalized, color=tag_color(normalized))

    def register(self, tags: Iterable[str]) -> list[str]:
        """Add any unknown *tags* with their derived colour; return the added names."""
        entries = self._load()
        known = {e["name"] for e in entries}
        added: list[str] = []
        for tag in tags:
            name = normalize_tag(tag)
            if not name or name in known:
                continue
            known.add(name)
            entries.append({"name": name, "color": tag_color(name)})
            added.append(name)
        if added:
            self._store.write_tag_registry(entries)
            logger.debug("tags_registered", tags=added)
        return added

    def cleanup_orphans(self, candidate_tags: Iterable[str], in_use: Iterable[str]) -> list[str]:
        """Remove registry entries among *candidate_tags* that are not in *in_use*.

        Args:
            candidate_tags: Tags of the item that was just deleted or archived.
            in_use: Tags still carried by active items (see ``all_tags``).

        Returns:
            Names actually removed from tags.yaml.
        """
        candidates = {normalize_tag(t) for t in candidate_tags} - {""}
        if not candidates:
            return []
        still_used = {normalize_tag(t) for t in in_use}
        orphans = candidates - still_used

        entries = self._load()
        kept = [e for e in entries if e["name"] not in orphans]
        removed = sorted(e["name"] for e in entries if e["name"] in orphans)
        if removed:
            self._store.write_tag_registry(kept)
        logger.info("tags_cleaned", removed=removed, checked=sorted(candidates))
        return removed
