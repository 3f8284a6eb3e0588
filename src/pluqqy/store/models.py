"""Domain models for the pluqqy library: fragments, pipelines, component refs.

Entities are frozen dataclasses. Snapshots handed to callers can be shared
freely; every change goes through ``dataclasses.replace`` or a service
operation, never in-place mutation.

Fragment kinds are a tagged variant: one record shape, with kind-keyed
tables (``KIND_DIRS``) instead of subclasses.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from pluqqy.errors import InvalidNameError

# ---------------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------------

CONTEXT = "context"
PROMPT = "prompt"
RULES = "rules"

KINDS: tuple[str, ...] = (CONTEXT, PROMPT, RULES)

# Directory segment under components/ for each kind
KIND_DIRS: dict[str, str] = {
    CONTEXT: "contexts",
    PROMPT: "prompts",
    RULES: "rules",
}

DIR_KINDS: dict[str, str] = {d: k for k, d in KIND_DIRS.items()}

# Accepted spellings in pipeline files, settings and queries
_KIND_ALIASES: dict[str, str] = {
    "context": CONTEXT,
    "contexts": CONTEXT,
    "prompt": PROMPT,
    "prompts": PROMPT,
    "rule": RULES,
    "rules": RULES,
}


def normalize_kind(value: str) -> str | None:
    """Return the canonical kind for *value* (any accepted spelling), else None."""
    return _KIND_ALIASES.get(str(value).strip().lower())


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Fragment:
    """A reusable text unit: one context, prompt or rules file.

    Attributes:
        path: Library-relative key, ``components/<kind-dir>/<slug>.md``. The
            same key is used whether the file lives in the active or archive root.
        kind: One of ``KINDS``; derived solely from the directory segment.
        display_name: Frontmatter ``name``, else the filename stem.
        tags: Normalised lowercase tags, sorted and unique.
        body: Markdown text after the frontmatter.
        is_archived: True when the file lives under ``archive/``.
        last_modified: File mtime (derived).
        token_count: Estimated tokens in ``body`` (derived).
        usage_count: Pipelines referencing this fragment (derived).
    """

    path: str
    kind: str
    display_name: str
    body: str = ""
    tags: tuple[str, ...] = ()
    is_archived: bool = False
    last_modified: float | None = field(default=None, compare=False)
    token_count: int = field(default=0, compare=False)
    usage_count: int = field(default=0, compare=False)

    @property
    def slug(self) -> str:
        return PurePosixPath(self.path).stem


@dataclass(frozen=True)
class ComponentRef:
    """One entry of a pipeline's component list.

    ``path`` is pipeline-relative (``../components/<kind-dir>/<slug>.md``);
    ``order`` is the 1-based dense position.
    """

    kind: str
    path: str
    order: int = 0


@dataclass(frozen=True)
class Pipeline:
    """An ordered assembly of fragment references.

    ``missing_refs`` is filled when the library is indexed: refs whose
    fragment does not exist in either root. They are surfaced, never removed.
    """

    path: str
    name: str
    components: tuple[ComponentRef, ...] = ()
    tags: tuple[str, ...] = ()
    output_path: str | None = None
    is_archived: bool = False
    missing_refs: tuple[str, ...] = field(default=(), compare=False)

    @property
    def slug(self) -> str:
        return PurePosixPath(self.path).stem


@dataclass(frozen=True)
class PipelineSummary:
    """Lightweight pipeline identity used by the usage index."""

    path: str
    name: str
    is_archived: bool = False


# ---------------------------------------------------------------------------
# Sanitation
# ---------------------------------------------------------------------------

_NON_SLUG_RE = re.compile(r"[^a-z0-9-]+")
_DASH_RUN_RE = re.compile(r"-+")
_ALNUM_RE = re.compile(r"[a-z0-9]")

_TAG_INVALID_RE = re.compile(r"[^a-z0-9/-]")
_TAG_VALID_INPUT_RE = re.compile(r"^[A-Za-z0-9/ -]+$")
MAX_TAG_LENGTH = 50


def sanitize_slug(name: str) -> str:
    """Convert a display name into a filename-safe slug.

    Total and idempotent: ``sanitize_slug(sanitize_slug(x)) == sanitize_slug(x)``.

    Examples:
        "Auth Context"     -> "auth-context"
        "User's Profile!"  -> "user-s-profile"
        "!!!"              -> "untitled"
    """
    slug = _NON_SLUG_RE.sub("-", name.lower())
    slug = slug.strip("-")
    slug = _DASH_RUN_RE.sub("-", slug)
    return slug or "untitled"


def validate_display_name(name: str) -> str:
    """Return *name* stripped, or raise InvalidNameError.

    Rejects empty names, names with no letters or digits (they would only
    sanitise to the ``untitled`` fallback) and names ending in ``.md``.
    """
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidNameError("Name cannot be empty.")
    if cleaned.lower().endswith(".md"):
        raise InvalidNameError(
            f"Name '{cleaned}' must not include the .md extension; it is added automatically."
        )
    if not _ALNUM_RE.search(cleaned.lower()):
        raise InvalidNameError(f"Name '{cleaned}' contains no letters or digits.")
    return cleaned


def normalize_tag(name: str) -> str:
    """Lowercase, spaces to hyphens, keep only ``[a-z0-9-/]``."""
    normalized = str(name).strip().lower().replace(" ", "-")
    return _TAG_INVALID_RE.sub("", normalized)


def normalize_tags(tags: Iterable[str] | None) -> tuple[str, ...]:
    """Normalise, drop empties, de-duplicate and sort."""
    if not tags:
        return ()
    return tuple(sorted({t for t in (normalize_tag(x) for x in tags) if t}))


def validate_tag(name: str) -> None:
    """Raise InvalidNameError if *name* is not acceptable user input for a tag."""
    if not name:
        raise InvalidNameError("Tag name cannot be empty.")
    if len(name) > MAX_TAG_LENGTH:
        raise InvalidNameError(f"Tag name cannot exceed {MAX_TAG_LENGTH} characters.")
    if not _TAG_VALID_INPUT_RE.match(name):
        raise InvalidNameError(f"Tag name '{name}' contains invalid characters.")
