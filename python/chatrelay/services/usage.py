"""Local token estimation for turns without provider usage.

Streaming responses from the provider carry no authoritative usage, so
token counts are approximated from text length: one token per
CHARS_PER_TOKEN characters of trimmed text, at least one for non-blank
text. The prompt side is the role-tagged history plus the new user text,
one "role:content" line per turn.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass

from chatrelay.services.llm.types import LLMUsage

CHARS_PER_TOKEN = 3


@dataclass(frozen=True)
class HistoryEntry:
    """Role and stored text of one prior message."""

    role: str
    content: str


@dataclass(frozen=True)
class UsageEstimate:
    """Token counts for one turn, flagged as estimated or provider-reported."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    estimated: bool = True


def estimate_tokens(text: str | None) -> int:
    """Approximate token count: ceil(len / 3) of trimmed text, 0 when blank."""
    if not text:
        return 0
    cleaned = text.strip()
    if not cleaned:
        return 0
    return max(math.ceil(len(cleaned) / CHARS_PER_TOKEN), 1)


def _prompt_text(history: Sequence[HistoryEntry], user_text: str) -> str:
    lines = [f"{entry.role}:{entry.content}" for entry in history]
    lines.append(f"user:{user_text}")
    return "\n".join(lines)


def estimate_chat_usage(
    history: Sequence[HistoryEntry], user_text: str, answer: str
) -> UsageEstimate:
    """Estimate usage of a finished turn."""
    prompt_tokens = estimate_tokens(_prompt_text(history, user_text))
    completion_tokens = estimate_tokens(answer)
    return UsageEstimate(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
    )


def estimate_conversation_tokens(history: Sequence[HistoryEntry], user_text: str) -> int:
    """Estimated prompt tokens before a call is made (for logging)."""
    return estimate_tokens(_prompt_text(history, user_text))


def usage_from_provider(
    usage: LLMUsage | None,
    history: Sequence[HistoryEntry],
    user_text: str,
    answer: str,
) -> UsageEstimate:
    """Provider usage when it has counts, otherwise a local estimate."""
    if usage is None or usage.is_empty:
        return estimate_chat_usage(history, user_text, answer)

    prompt_tokens = usage.prompt_tokens or 0
    completion_tokens = usage.completion_tokens or 0
    total_tokens = usage.total_tokens or (prompt_tokens + completion_tokens)
    return UsageEstimate(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
        estimated=False,
    )
