"""Tests for token estimation and display helpers."""

from __future__ import annotations

import pytest

from pluqqy.tokens import estimate_tokens, format_token_count, token_limit_status


def test_estimate_tokens() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("a") == 1
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_estimate_tokens_monotone() -> None:
    text = "word " * 50
    assert estimate_tokens(text) <= estimate_tokens(text + "more")


@pytest.mark.parametrize(
    "tokens, expected",
    [
        (0, "~0 tokens"),
        (950, "~950 tokens"),
        (1530, "~1.5K tokens"),
        (9999, "~10.0K tokens"),
        (12000, "~12K tokens"),
        (131072, "~131K tokens"),
    ],
)
def test_format_token_count(tokens: int, expected: str) -> None:
    assert format_token_count(tokens) == expected


@pytest.mark.parametrize(
    "tokens, expected",
    [
        (1000, (24, 4096, "good")),
        (3000, (73, 4096, "warning")),
        (4000, (97, 4096, "danger")),
        (5000, (61, 8192, "warning")),
        (200000, (152, 131072, "danger")),
    ],
)
def test_token_limit_status(tokens: int, expected: tuple[int, int, str]) -> None:
    assert token_limit_status(tokens) == expected
