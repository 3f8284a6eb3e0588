"""Token estimation for fragment bodies and composed artifacts.

A character heuristic (~4 characters per token) instead of a tokenizer: the
numbers are for display, they only need to be stable and monotone.
"""

from __future__ import annotations

from typing import Literal

TokenStatus = Literal["good", "warning", "danger"]

_CHARS_PER_TOKEN = 4

# Common context window sizes, smallest first
TOKEN_LIMITS: tuple[int, ...] = (4096, 8192, 16384, 32768, 131072)

_WARNING_PCT = 50
_DANGER_PCT = 80


def estimate_tokens(text: str) -> int:
    """Return the estimated token count of *text* (0 for empty text)."""
    if not text:
        return 0
    return (len(text) + _CHARS_PER_TOKEN - 1) // _CHARS_PER_TOKEN


def format_token_count(tokens: int) -> str:
    """Human-readable count.

    Examples:
        950    -> "~950 tokens"
        1530   -> "~1.5K tokens"
        12000  -> "~12K tokens"
    """
    if tokens < 1000:
        return f"~{tokens} tokens"
    if tokens < 10000:
        return f"~{tokens / 1000:.1f}K tokens"
    return f"~{tokens / 1000:.0f}K tokens"


def token_limit_status(tokens: int) -> tuple[int, int, TokenStatus]:
    """Bucket *tokens* against the smallest context limit that fits it.

    Returns:
        (percentage of that limit, the limit, status). Counts above the largest
        limit are measured against the largest one.
    """
    limit = next((lim for lim in TOKEN_LIMITS if tokens <= lim), TOKEN_LIMITS[-1])
    percentage = tokens * 100 // limit

    status: TokenStatus
    if percentage < _WARNING_PCT:
        status = "good"
    elif percentage < _DANGER_PCT:
        status = "warning"
    else:
        status = "danger"
    return percentage, limit, status
