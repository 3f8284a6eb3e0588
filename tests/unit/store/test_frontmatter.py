"""Tests for fragment frontmatter parsing and rendering."""

from __future__ import annotations

import pytest

from pluqqy.errors import MalformedError
from pluqqy.store.frontmatter import parse_frontmatter, render_frontmatter, split_frontmatter


def test_parse_with_name_and_tags() -> None:
    text = "---\nname: Auth Context\ntags: [api, auth]\n---\nBody line\n"
    meta, body = parse_frontmatter(text)
    assert meta == {"name": "Auth Context", "tags": ["api", "auth"]}
    assert body == "Body line\n"


def test_parse_without_frontmatter_returns_whole_text() -> None:
    meta, body = parse_frontmatter("# Title\n\ntext\n")
    assert meta == {}
    assert body == "# Title\n\ntext\n"


def test_unclosed_block_is_body() -> None:
    block, body = split_frontmatter("---\nname: x\nno closing line\n")
    assert block is None
    assert body.startswith("---")


def test_empty_block_gives_empty_meta() -> None:
    meta, body = parse_frontmatter("---\n---\nbody")
    assert meta == {}
    assert body == "body"


def test_crlf_delimiters() -> None:
    meta, body = parse_frontmatter("---\r\nname: X\r\n---\r\nbody\r\n")
    assert meta["name"] == "X"
    assert body == "body\r\n"


def test_invalid_yaml_is_malformed() -> None:
    with pytest.raises(MalformedError) as exc_info:
        parse_frontmatter("---\nname: [unclosed\n---\nbody", source="components/prompts/x.md")
    assert exc_info.value.path == "components/prompts/x.md"


def test_non_mapping_is_malformed() -> None:
    with pytest.raises(MalformedError, match="mapping"):
        parse_frontmatter("---\n- a\n- b\n---\nbody")


def test_render_without_metadata_is_plain_body() -> None:
    assert render_frontmatter("just text\n") == "just text\n"


def test_render_protects_body_starting_with_delimiter() -> None:
    rendered = render_frontmatter("---\nnot frontmatter\n")
    meta, body = parse_frontmatter(rendered)
    assert meta == {}
    assert body == "---\nnot frontmatter\n"


def test_render_then_parse_preserves_fields() -> None:
    rendered = render_frontmatter("Use the API.\n", name="Auth: Context", tags=["api", "auth"])
    meta, body = parse_frontmatter(rendered)
    assert meta == {"name": "Auth: Context", "tags": ["api", "auth"]}
    assert body == "Use the API.\n"


def test_render_uses_block_mapping_with_flow_tags() -> None:
    assert render_frontmatter("Body\n", name="Latin Two") == "---\nname: Latin Two\n---\nBody\n"
    assert (
        render_frontmatter("Body\n", name="Auth", tags=["api", "auth"])
        == "---\nname: Auth\ntags: [api, auth]\n---\nBody\n"
    )
    assert render_frontmatter("Body\n", tags=["api"]) == "---\ntags: [api]\n---\nBody\n"
