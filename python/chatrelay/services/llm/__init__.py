"""LLM provider layer for the chat-completions relay.

This module provides:

- An OpenRouter-compatible client (non-streaming, streaming, model catalog)
- Event-stream decoding (line reader + `data:` line parser)
- Error classification and normalization
- Prompt rendering (system turn, history, new user turn)

Usage:
    from chatrelay.services.llm import OpenRouterClient, LLMRequest, Turn

    client = OpenRouterClient.from_settings(httpx_client, settings)
    request = LLMRequest(
        model_name="openai/gpt-4o-mini",
        messages=[Turn(role="user", content="Hello!")],
    )
    response = await client.complete(request, timeout_s=300)
"""

from chatrelay.services.llm.errors import LLMError, LLMErrorClass, classify_httpx_error
from chatrelay.services.llm.openrouter import OpenRouterClient
from chatrelay.services.llm.prompt import (
    ATTACHMENT_BLOCK_HEADER,
    FILE_CONTEXT_SYSTEM_PROMPT,
    render_prompt,
)
from chatrelay.services.llm.sse import LineReader, parse_sse_line
from chatrelay.services.llm.types import (
    ContentPart,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    StreamEvent,
    Turn,
)

__all__ = [
    # Core types
    "Turn",
    "ContentPart",
    "LLMRequest",
    "LLMResponse",
    "LLMUsage",
    "StreamEvent",
    # Client
    "OpenRouterClient",
    # Stream decoding
    "LineReader",
    "parse_sse_line",
    # Errors
    "LLMError",
    "LLMErrorClass",
    "classify_httpx_error",
    # Prompt rendering
    "render_prompt",
    "FILE_CONTEXT_SYSTEM_PROMPT",
    "ATTACHMENT_BLOCK_HEADER",
]
