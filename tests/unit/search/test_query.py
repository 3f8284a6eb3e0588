"""Tests for the filter query language."""

from __future__ import annotations

import pytest

from pluqqy.search.query import PIPELINES, Filter, cycle_type, parse_query, toggle_archived


# ---------------------------------------------------------------------------
# parse_query
# ---------------------------------------------------------------------------


def test_parse_mixed_query() -> None:
    flt = parse_query("API status:archived type:prompts tag:Backend")
    assert flt == Filter(
        types=frozenset({"prompt"}),
        status="archived",
        tags=frozenset({"backend"}),
        terms=("api",),
    )


def test_parse_singular_and_plural_types() -> None:
    assert parse_query("type:pipeline type:rule type:contexts").types == frozenset({PIPELINES, "rules", "context"})


def test_invalid_filters_become_free_words() -> None:
    flt = parse_query("type:widgets status:maybe foo:bar")
    assert flt.types == frozenset()
    assert flt.status == "default"
    assert flt.terms == ("type:widgets", "status:maybe", "foo:bar")


def test_quoted_free_word() -> None:
    assert parse_query('"Error Handling" api').terms == ("error handling", "api")


def test_last_status_wins() -> None:
    assert parse_query("status:archived status:active").status == "active"


def test_empty_query_is_empty_filter() -> None:
    assert parse_query("").is_empty
    assert parse_query("   ").is_empty
    assert not parse_query("status:active").is_empty


@pytest.mark.parametrize(
    "q1, q2",
    [
        ("api type:prompts", "TYPE:PROMPT   api"),
        ("tag:b tag:a", "tag:a tag:b tag:a"),
    ],
)
def test_equivalent_queries_parse_equal(q1: str, q2: str) -> None:
    assert parse_query(q1).types == parse_query(q2).types
    assert parse_query(q1).tags == parse_query(q2).tags
    assert set(parse_query(q1).terms) == set(parse_query(q2).terms)


# ---------------------------------------------------------------------------
# toggle_archived
# ---------------------------------------------------------------------------


def test_toggle_archived_scenarios() -> None:
    assert toggle_archived("") == "status:archived"
    assert toggle_archived("status:archived") == ""
    assert toggle_archived("api  status:archived  test") == "api test"


@pytest.mark.parametrize("query", ["", "api", "api type:prompts", "tag:x  words here"])
def test_toggle_archived_twice_is_identity(query: str) -> None:
    assert toggle_archived(toggle_archived(query)) == " ".join(query.split())


def test_toggle_archived_removes_every_occurrence() -> None:
    assert toggle_archived("status:archived api STATUS:ARCHIVED") == "api"


# ---------------------------------------------------------------------------
# cycle_type
# ---------------------------------------------------------------------------


def test_cycle_type_scenario() -> None:
    q = "api status:archived type:prompts"
    q = cycle_type(q)
    assert q == "api status:archived type:contexts"
    q = cycle_type(q)
    assert q == "api status:archived type:rules"
    q = cycle_type(q)
    assert q == "api status:archived"


def test_cycle_type_full_cycle_all() -> None:
    seen = []
    q = "api"
    for _ in range(5):
        q = cycle_type(q)
        seen.append(q)
    assert seen == [
        "api type:pipelines",
        "api type:prompts",
        "api type:contexts",
        "api type:rules",
        "api",
    ]


def test_cycle_type_full_cycle_components() -> None:
    q = "x"
    for _ in range(4):
        q = cycle_type(q, "components")
    assert q == "x"
    assert cycle_type("x", "components") == "x type:prompts"


def test_cycle_type_pipelines_outside_components_domain() -> None:
    assert cycle_type("type:pipelines", "components") == "type:prompts"
