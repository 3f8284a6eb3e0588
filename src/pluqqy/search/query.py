"""Filter query language.

Grammar (whitespace-separated tokens, any order):

  type:pipelines | type:prompts | type:contexts | type:rules
  status:archived | status:active
  tag:<name>
  <free word>

Keys and values are case-insensitive; singular type spellings are accepted
(``type:prompt``). Parsing never fails: a token that is not a well-formed
filter becomes a free word. Double-quoted text is one free word
(``"error handling"``).

Usage:
    flt = parse_query("api status:archived type:prompts")
    flt.types   -> frozenset({"prompt"})
    flt.status  -> "archived"
    flt.terms   -> ("api",)

``toggle_archived`` and ``cycle_type`` rewrite the query *string* for the
one-key UI shortcuts; everything else consumes the parsed ``Filter``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal

from pluqqy.store.models import CONTEXT, PROMPT, RULES, normalize_tag

# Type value for pipelines; fragment kinds use their canonical kind names
PIPELINES = "pipelines"

Status = Literal["default", "archived", "active"]
Domain = Literal["all", "components"]

_TOKEN_RE = re.compile(r'"[^"]*"|\S+')
_FILTER_RE = re.compile(r"^(\w+):(\S+)$")

_TYPE_VALUES: dict[str, str] = {
    "pipeline": PIPELINES,
    "pipelines": PIPELINES,
    "prompt": PROMPT,
    "prompts": PROMPT,
    "context": CONTEXT,
    "contexts": CONTEXT,
    "rule": RULES,
    "rules": RULES,
}

# Query spelling of each type, used when writing a type: token back
_TYPE_SPELLING: dict[str, str] = {
    PIPELINES: "pipelines",
    PROMPT: "prompts",
    CONTEXT: "contexts",
    RULES: "rules",
}

_STATUS_VALUES = ("archived", "active")

ARCHIVED_TOKEN = "status:archived"

# None is the "no type filter" position of each cycle
_CYCLES: dict[str, tuple[str | None, ...]] = {
    "all": (None, PIPELINES, PROMPT, CONTEXT, RULES),
    "components": (None, PROMPT, CONTEXT, RULES),
}


@dataclass(frozen=True)
class Filter:
    """Normalised query value consumed by the search index.

    Attributes:
        types: Subset of {"pipelines", "context", "prompt", "rules"}; empty = all.
        status: "default" (no status: token), "archived" or "active".
        tags: Lowercase tags that must all be present.
        terms: Lowercase free words that must all match.
    """

    types: frozenset[str] = field(default_factory=frozenset)
    status: Status = "default"
    tags: frozenset[str] = field(default_factory=frozenset)
    terms: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.types or self.tags or self.terms) and self.status == "default"


def tokenize(query: str) -> list[str]:
    return _TOKEN_RE.findall(query or "")


def _parse_filter_token(token: str) -> tuple[str, str] | None:
    """Return (key, canonical_value) for a well-formed filter token, else None."""
    match = _FILTER_RE.match(token)
    if not match:
        return None
    key, value = match.group(1).lower(), match.group(2).lower()
    if key == "type" and value in _TYPE_VALUES:
        return key, _TYPE_VALUES[value]
    if key == "status" and value in _STATUS_VALUES:
        return key, value
    if key == "tag":
        tag = normalize_tag(value)
        if tag:
            return key, tag
    return None


class QueryParser:
    """Parses query strings into Filter values. Stateless."""

    def parse(self, query: str) -> Filter:
        types: set[str] = set()
        tags: set[str] = set()
        terms: list[str] = []
        status: Status = "default"

        for token in tokenize(query):
            parsed = _parse_filter_token(token)
            if parsed is None:
                word = token[1:-1] if len(token) >= 2 and token.startswith('"') and token.endswith('"') else token
                word = word.strip().casefold()
                if word:
                    terms.append(word)
                continue
            key, value = parsed
            if key == "type":
                types.add(value)
            elif key == "tag":
                tags.add(value)
            else:
                # Last status: token wins
                status = "archived" if value == "archived" else "active"

        return Filter(types=frozenset(types), status=status, tags=frozenset(tags), terms=tuple(terms))


_PARSER = QueryParser()


def parse_query(query: str) -> Filter:
    return _PARSER.parse(query)


# ---------------------------------------------------------------------------
# String helpers for the UI shortcuts
# ---------------------------------------------------------------------------


def _is_archived_token(token: str) -> bool:
    return _parse_filter_token(token) == ("status", "archived")


def _type_of_token(token: str) -> str | None:
    parsed = _parse_filter_token(token)
    if parsed is not None and parsed[0] == "type":
        return parsed[1]
    return None


def toggle_archived(query: str) -> str:
    """Add ``status:archived`` if absent, else remove every occurrence.

    Other tokens keep their order; whitespace collapses to single spaces.

    Examples:
        ""                              -> "status:archived"
        "status:archived"               -> ""
        "api  status:archived  test"    -> "api test"
    """
    tokens = tokenize(query)
    if any(_is_archived_token(t) for t in tokens):
        return " ".join(t for t in tokens if not _is_archived_token(t))
    return " ".join([*tokens, ARCHIVED_TOKEN])


def cycle_type(query: str, domain: Domain = "all") -> str:
    """Advance the ``type:`` filter one step through the domain's cycle.

    ``all``:        (none) → pipelines → prompts → contexts → rules → (none)
    ``components``: (none) → prompts → contexts → rules → (none)

    The current position is the first valid ``type:`` token; a value outside
    the domain's cycle (``type:pipelines`` in ``components``) counts as
    (none). Existing ``type:`` tokens are removed and the next one appended.
    """
    cycle = _CYCLES[domain]
    tokens = tokenize(query)

    current: str | None = None
    for token in tokens:
        found = _type_of_token(token)
        if found is not None:
            current = found
            break
    index = cycle.index(current) if current in cycle else 0
    nxt = cycle[(index + 1) % len(cycle)]

    kept = [t for t in tokens if _type_of_token(t) is None]
    if nxt is not None:
        kept.append(f"type:{_TYPE_SPELLING[nxt]}")
    return " ".join(kept)
