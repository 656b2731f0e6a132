"""Tests for local token estimation."""

import pytest

from chatrelay.services.llm import LLMUsage
from chatrelay.services.usage import (
    HistoryEntry,
    estimate_chat_usage,
    estimate_conversation_tokens,
    estimate_tokens,
    usage_from_provider,
)


class TestEstimateTokens:
    """Tests for estimate_tokens()."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            (None, 0),
            ("", 0),
            ("   \n ", 0),
            ("a", 1),
            ("abc", 1),
            ("abcd", 2),
            ("  abcdef  ", 2),
            ("x" * 300, 100),
        ],
    )
    def test_ceil_of_length_over_three(self, text, expected):
        """ceil(len(trimmed) / 3), at least 1 for non-blank text."""
        assert estimate_tokens(text) == expected


class TestEstimateChatUsage:
    """Tests for estimate_chat_usage()."""

    def test_prompt_is_role_tagged_transcript(self):
        """Prompt tokens cover "role:content" lines plus the new user line."""
        history = [HistoryEntry("user", "hi"), HistoryEntry("assistant", "hello")]
        usage = estimate_chat_usage(history, "how are you", "fine")

        transcript = "user:hi\nassistant:hello\nuser:how are you"
        assert usage.prompt_tokens == estimate_tokens(transcript)
        assert usage.completion_tokens == estimate_tokens("fine")
        assert usage.total_tokens == usage.prompt_tokens + usage.completion_tokens
        assert usage.estimated is True

    def test_empty_answer(self):
        """An empty answer has zero completion tokens."""
        usage = estimate_chat_usage([], "hello", "")
        assert usage.completion_tokens == 0
        assert usage.total_tokens == usage.prompt_tokens

    def test_conversation_tokens_match_prompt_side(self):
        """The pre-call estimate equals the prompt side of the final estimate."""
        history = [HistoryEntry("user", "q"), HistoryEntry("assistant", "a")]
        assert (
            estimate_conversation_tokens(history, "next")
            == estimate_chat_usage(history, "next", "x").prompt_tokens
        )


class TestUsageFromProvider:
    """Tests for usage_from_provider()."""

    def test_provider_counts_preferred(self):
        """Reported counts are used and flagged as not estimated."""
        usage = usage_from_provider(LLMUsage(10, 5, 15), [], "hi", "answer")
        assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (10, 5, 15)
        assert usage.estimated is False

    def test_total_derived_when_missing(self):
        """A missing total is the sum of the parts."""
        usage = usage_from_provider(LLMUsage(10, 5, None), [], "hi", "answer")
        assert usage.total_tokens == 15

    @pytest.mark.parametrize("reported", [None, LLMUsage(None, None, None), LLMUsage(0, 0, 0)])
    def test_falls_back_to_estimate(self, reported):
        """No usable counts means a local estimate."""
        usage = usage_from_provider(reported, [], "hello there", "general kenobi")
        assert usage.estimated is True
        assert usage == estimate_chat_usage([], "hello there", "general kenobi")
