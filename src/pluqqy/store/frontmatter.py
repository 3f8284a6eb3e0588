"""YAML frontmatter for fragment files.

Format:

  ---
  name: Auth Context
  tags: [api, auth]
  ---
  <markdown body>

A file without an opening ``---`` line (or without a closing one) has no
frontmatter: the whole file is the body. An opening block that is not valid
YAML, or is not a mapping, is Malformed.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import yaml

from pluqqy.errors import MalformedError

_DELIMITER = "---"


def _is_delimiter(line: str) -> bool:
    return line.rstrip("\r\n").strip() == _DELIMITER


def split_frontmatter(text: str) -> tuple[str | None, str]:
    """Return (frontmatter_text, body). frontmatter_text is None when absent."""
    lines = text.splitlines(keepends=True)
    if not lines or not _is_delimiter(lines[0]):
        return None, text
    for idx in range(1, len(lines)):
        if _is_delimiter(lines[idx]):
            return "".join(lines[1:idx]), "".join(lines[idx + 1:])
    # Opening delimiter without a closing one: not frontmatter
    return None, text


def parse_frontmatter(text: str, source: str = "") -> tuple[dict[str, Any], str]:
    """Parse fragment file *text* into (metadata, body).

    Args:
        text: Full file content.
        source: Library path used in error messages.

    Raises:
        MalformedError: If the frontmatter block is not a YAML mapping.
    """
    block, body = split_frontmatter(text)
    if block is None:
        return {}, body

    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as exc:
        raise MalformedError(
            f"Invalid YAML frontmatter in '{source or '<text>'}': {exc}", path=source or None
        ) from exc

    if data is None:
        return {}, body
    if not isinstance(data, dict):
        raise MalformedError(
            f"Frontmatter in '{source or '<text>'}' must be a mapping, got {type(data).__name__}.",
            path=source or None,
        )
    return data, body


def render_frontmatter(body: str, name: str | None = None, tags: Iterable[str] = ()) -> str:
    """Serialise a fragment file.

    Frontmatter is emitted only when *name* or *tags* carry a value, or when
    the body itself starts with a ``---`` line (an empty block then keeps the
    body from being read back as frontmatter).
    """
    tag_list = list(tags)
    if not name and not tag_list:
        first_line = body.splitlines()[0] if body else ""
        if _is_delimiter(first_line):
            return f"{_DELIMITER}\n{_DELIMITER}\n{body}"
        return body

    # Block style at the top level, flow style for the tag list
    header = ""
    if name:
        header += yaml.safe_dump({"name": name}, default_flow_style=False, allow_unicode=True)
    if tag_list:
        header += "tags: " + yaml.safe_dump(
            tag_list, default_flow_style=True, allow_unicode=True, width=float("inf")
        )
    return f"{_DELIMITER}\n{header}{_DELIMITER}\n{body}"
