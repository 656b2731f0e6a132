"""Guard for structured log fields.

Chat text never reaches the logs: not what the user typed, not the prompt
sent upstream, not the generated answer and not extracted attachment text.
Credentials (provider key, session token) are kept out the same way.

Log the size or a digest instead, under a suffixed key:
`prompt_chars=1234`, `content_sha256=...`.
"""

import os

import structlog

FORBIDDEN_KEYS = frozenset(
    {
        # chat text
        "prompt",
        "content",
        "message",
        "answer",
        "attachment_text",
        "raw_body",
        # credentials
        "api_key",
        "bearer",
        "token",
        "secret",
        "password",
    }
)

ALLOWED_SUFFIXES = ("_chars", "_length", "_sha256", "_hash")

STRICT_ENVS = ("local", "test")


def forbidden_keys(fields: dict) -> list[str]:
    return [key for key in fields if key in FORBIDDEN_KEYS and not key.endswith(ALLOWED_SUFFIXES)]


def safe_kv(*, _env: str | None = None, **fields) -> dict:
    """Return `fields` for a log call after checking the key names.

    In local and test environments a forbidden key raises ValueError so
    the offending log call fails loudly. Elsewhere the keys are dropped
    and a `safe_kv_violation` warning names them.

        logger.info("llm.request.started", **safe_kv(model_name=model, prompt_chars=n))

    Args:
        _env: Environment override; CHATRELAY_ENV when None.
    """
    violations = forbidden_keys(fields)
    if not violations:
        return fields

    env = _env or os.environ.get("CHATRELAY_ENV", "local")
    if env in STRICT_ENVS:
        raise ValueError(f"Forbidden log keys without redacted suffix: {violations}")

    structlog.get_logger(__name__).warning("safe_kv_violation", forbidden_keys=violations)
    return {key: value for key, value in fields.items() if key not in violations}
