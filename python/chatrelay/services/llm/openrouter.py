"""OpenRouter-compatible chat-completions client.

- Endpoint: POST {base_url}/chat/completions
- Headers: Authorization: Bearer <key>, optional HTTP-Referer / X-Title
- Streaming: Server-Sent Events, `data: {...}` lines, terminal `data: [DONE]`
- Catalog: GET {base_url}/models (used by the model list proxy and pricing)

Rules:
- No retries
- No DB access
- No logging of request/response bodies (safe_kv enforces this)
- httpx failures are normalized to LLMError here, in one place

open_stream() returns the live httpx.Response once the status line has
been checked; the caller owns reading and closing it. This keeps the
"non-2xx means no stream is ever opened" decision before any NDJSON is
written to the client.
"""

import asyncio
import time
from typing import Any

import httpx

from chatrelay.config import Settings
from chatrelay.logging import get_logger
from chatrelay.services.llm.errors import (
    LLMError,
    LLMErrorClass,
    classify_httpx_error,
    extract_error_message,
)
from chatrelay.services.llm.types import LLMRequest, LLMResponse, LLMUsage
from chatrelay.services.redact import safe_kv

logger = get_logger(__name__)

DEFAULT_CONNECT_TIMEOUT_S = 10.0
CATALOG_TIMEOUT_S = 30.0


def parse_usage(data: dict | None) -> LLMUsage | None:
    """Map a chat-completions `usage` object to LLMUsage."""
    if not isinstance(data, dict):
        return None
    return LLMUsage(
        prompt_tokens=data.get("prompt_tokens"),
        completion_tokens=data.get("completion_tokens"),
        total_tokens=data.get("total_tokens"),
    )


class OpenRouterClient:
    """Client for an OpenRouter-compatible provider.

    Wraps the shared httpx.AsyncClient owned by the app lifespan.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str | None,
        base_url: str,
        http_referer: str | None = None,
        app_title: str | None = None,
        connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S,
    ):
        """Initialize with shared HTTP client and provider settings.

        Args:
            client: Shared httpx.AsyncClient for connection pooling.
            api_key: Provider key; None defers the failure to call time.
            base_url: Provider API root, without trailing slash.
            http_referer: Optional HTTP-Referer attribution header.
            app_title: Optional X-Title attribution header.
            connect_timeout_s: Connect timeout for every call.
        """
        self._client = client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._http_referer = http_referer
        self._app_title = app_title
        self._connect_timeout_s = connect_timeout_s

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: Settings) -> "OpenRouterClient":
        """Build a client from application settings."""
        return cls(
            client,
            api_key=settings.openrouter_api_key,
            base_url=settings.normalized_base_url,
            http_referer=settings.openrouter_http_referer,
            app_title=settings.openrouter_app_title,
            connect_timeout_s=settings.upstream_connect_timeout_s,
        )

    @property
    def chat_url(self) -> str:
        return f"{self._base_url}/chat/completions"

    @property
    def models_url(self) -> str:
        return f"{self._base_url}/models"

    def _build_headers(self, *, require_key: bool = True) -> dict[str, str]:
        """Build request headers.

        Raises:
            LLMError(KEY_MISSING): If a key is required and not configured.
        """
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        elif require_key:
            raise LLMError(LLMErrorClass.KEY_MISSING, "OPENROUTER_API_KEY is not configured")
        if self._http_referer:
            headers["HTTP-Referer"] = self._http_referer
        if self._app_title:
            headers["X-Title"] = self._app_title
        return headers

    @staticmethod
    def _base_log_fields(req: LLMRequest, streaming: bool) -> dict[str, Any]:
        return {
            "model_name": req.model_name,
            "streaming": streaming,
            "num_messages": len(req.messages),
            "message_chars": sum(len(turn.text) for turn in req.messages),
        }

    async def _raise_for_status(self, response: httpx.Response) -> None:
        """Read the error body of a non-2xx response and raise LLMError."""
        if response.is_success:
            return
        await response.aread()
        try:
            body = response.json()
        except ValueError:
            body = None
        raise LLMError(
            LLMErrorClass.UPSTREAM_STATUS,
            extract_error_message(body, response.status_code),
            status_code=response.status_code,
        )

    async def complete(self, req: LLMRequest, *, timeout_s: float) -> LLMResponse:
        """Non-streaming chat completion bounded by a total deadline.

        Raises:
            LLMError: With normalized error class on failure.
        """
        headers = self._build_headers()
        base = self._base_log_fields(req, streaming=False)
        logger.info("llm.request.started", **safe_kv(**base))
        start = time.monotonic()

        try:
            # httpx timeouts are per operation; the deadline covers the whole call
            async with asyncio.timeout(timeout_s):
                response = await self._client.post(
                    self.chat_url,
                    headers=headers,
                    json=req.to_body(stream=False),
                    timeout=httpx.Timeout(
                        timeout_s, connect=min(self._connect_timeout_s, timeout_s)
                    ),
                )
                await self._raise_for_status(response)
            result = self._parse_response(response)
        except LLMError as e:
            self._log_failure(base, start, e)
            raise
        except (httpx.HTTPError, TimeoutError) as e:
            err = classify_httpx_error(e)
            self._log_failure(base, start, err)
            raise err from e

        usage = result.usage
        logger.info(
            "llm.request.finished",
            **safe_kv(
                **base,
                outcome="success",
                latency_ms=int((time.monotonic() - start) * 1000),
                tokens_input=usage.prompt_tokens if usage else None,
                tokens_output=usage.completion_tokens if usage else None,
                tokens_total=usage.total_tokens if usage else None,
                provider_request_id=result.provider_request_id,
            ),
        )
        return result

    async def open_stream(self, req: LLMRequest) -> httpx.Response:
        """Open a streaming chat completion and check its status.

        The read timeout is left unset: the relay enforces its own idle
        window over the byte stream.

        Returns:
            The un-consumed streaming response (caller must aclose()).

        Raises:
            LLMError: Missing key, connect failure, or non-2xx status.
        """
        headers = self._build_headers()
        base = self._base_log_fields(req, streaming=True)
        logger.info("llm.request.started", **safe_kv(**base))
        start = time.monotonic()

        request = self._client.build_request(
            "POST",
            self.chat_url,
            headers=headers,
            json=req.to_body(stream=True),
            timeout=httpx.Timeout(None, connect=self._connect_timeout_s),
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            err = classify_httpx_error(e)
            self._log_failure(base, start, err)
            raise err from e

        try:
            await self._raise_for_status(response)
        except LLMError as e:
            await response.aclose()
            self._log_failure(base, start, e)
            raise
        except httpx.HTTPError as e:
            await response.aclose()
            err = classify_httpx_error(e)
            self._log_failure(base, start, err)
            raise err from e
        except BaseException:
            await response.aclose()
            raise

        logger.info(
            "llm.stream.opened",
            **safe_kv(
                **base,
                latency_ms=int((time.monotonic() - start) * 1000),
                provider_request_id=response.headers.get("x-request-id"),
            ),
        )
        return response

    async def list_models(self, *, timeout_s: float = CATALOG_TIMEOUT_S) -> list[dict[str, Any]]:
        """Fetch the provider model catalog (`data` array).

        The key is sent when configured but not required.

        Raises:
            LLMError: On transport failure, non-2xx status, or a body without `data`.
        """
        try:
            response = await self._client.get(
                self.models_url,
                headers=self._build_headers(require_key=False),
                timeout=httpx.Timeout(timeout_s, connect=min(self._connect_timeout_s, timeout_s)),
            )
            await self._raise_for_status(response)
            payload = response.json()
        except httpx.HTTPError as e:
            raise classify_httpx_error(e) from e
        except ValueError as e:
            raise LLMError(LLMErrorClass.BAD_RESPONSE, "Model catalog is not JSON") from e

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise LLMError(LLMErrorClass.BAD_RESPONSE, "Model catalog missing data")
        return [item for item in data if isinstance(item, dict)]

    def _parse_response(self, response: httpx.Response) -> LLMResponse:
        """Parse non-streaming response."""
        try:
            data = response.json()
        except ValueError as e:
            raise LLMError(
                LLMErrorClass.BAD_RESPONSE,
                "Provider response is not JSON",
                status_code=response.status_code,
            ) from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices or not isinstance(choices[0], dict):
            raise LLMError(
                LLMErrorClass.BAD_RESPONSE,
                "Provider response missing choices",
                status_code=response.status_code,
            )

        text = (choices[0].get("message") or {}).get("content") or ""
        if not isinstance(text, str):
            text = ""

        return LLMResponse(
            text=text,
            usage=parse_usage(data.get("usage")),
            provider_request_id=response.headers.get("x-request-id") or data.get("id"),
        )

    @staticmethod
    def _log_failure(base: dict[str, Any], start: float, err: LLMError) -> None:
        logger.error(
            "llm.request.failed",
            **safe_kv(
                **base,
                outcome="error",
                error_class=err.error_class.value,
                status_code=err.status_code,
                latency_ms=int((time.monotonic() - start) * 1000),
            ),
        )
