"""Shared type definitions for the LLM provider layer.

- Turn: One chat-completions message (text, or text + image parts)
- LLMRequest: Request to the provider client
- LLMUsage: Token usage from a provider response
- LLMResponse: Complete response from a non-streaming call
- StreamEvent: One decoded upstream event-stream line
"""

from dataclasses import dataclass
from typing import Any, Literal

# A content part in the chat-completions shape:
#   {"type": "text", "text": "..."}
#   {"type": "image_url", "image_url": {"url": "data:image/png;base64,..."}}
ContentPart = dict[str, Any]


@dataclass(frozen=True)
class Turn:
    """Provider-agnostic conversation turn.

    Attributes:
        role: One of "system", "user", or "assistant"
        content: Text, or a list of content parts for multimodal user turns
    """

    role: Literal["system", "user", "assistant"]
    content: str | list[ContentPart]

    def to_message(self) -> dict[str, Any]:
        """Render as a chat-completions message dict."""
        return {"role": self.role, "content": self.content}

    @property
    def text(self) -> str:
        """The text portion of the turn (image parts ignored)."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            part.get("text", "") for part in self.content if part.get("type") == "text"
        )


@dataclass(frozen=True)
class LLMUsage:
    """Token usage from provider response.

    All fields are optional as not all providers return all metrics,
    and streaming responses may not include usage data.
    """

    prompt_tokens: int | None
    completion_tokens: int | None
    total_tokens: int | None

    @property
    def is_empty(self) -> bool:
        """True when the provider reported no usable counts."""
        return not (self.prompt_tokens or self.completion_tokens or self.total_tokens)


@dataclass(frozen=True)
class LLMRequest:
    """Request to the provider client.

    Attributes:
        model_name: Provider model id (e.g. "openai/gpt-4o-mini")
        messages: List of Turn objects (system turn first)
        max_tokens: Optional completion cap, provider default when None
        temperature: Sampling temperature, provider default when None
    """

    model_name: str
    messages: list[Turn]
    max_tokens: int | None = None
    temperature: float | None = None

    def to_body(self, *, stream: bool) -> dict[str, Any]:
        """Build the chat-completions request body."""
        body: dict[str, Any] = {
            "model": self.model_name,
            "messages": [turn.to_message() for turn in self.messages],
            "stream": stream,
        }
        if self.max_tokens is not None:
            body["max_tokens"] = self.max_tokens
        if self.temperature is not None:
            body["temperature"] = self.temperature
        return body


@dataclass(frozen=True)
class LLMResponse:
    """Complete response from non-streaming call.

    Attributes:
        text: The generated text content
        usage: Token usage information (None if provider doesn't return it)
        provider_request_id: Provider's request ID for debugging (may be None)
    """

    text: str
    usage: LLMUsage | None
    provider_request_id: str | None


@dataclass(frozen=True)
class StreamEvent:
    """One meaningful upstream event-stream line.

    Exactly one of the two shapes:
    - done=False: delta_text holds the next text increment (may be empty)
    - done=True: the `[DONE]` sentinel, delta_text is empty
    """

    delta_text: str = ""
    done: bool = False

    def __post_init__(self):
        if self.done and self.delta_text:
            raise ValueError("The [DONE] sentinel cannot carry text")
