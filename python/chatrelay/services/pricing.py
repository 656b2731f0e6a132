"""Per-model pricing backed by the provider's model catalog.

The catalog (`GET /models`) lists `pricing.prompt` / `pricing.completion`
as USD per token (number strings). Prices are held in an explicit
PriceCache owned by the application (app.state.price_cache), never in
module globals.

Refresh policy:
- Entries are fresh for `ttl_s` after a successful fetch.
- When stale, the next lookup refreshes under a lock (one fetch at a time).
- A failed refresh keeps the previous entries and is not retried for
  `retry_after_s`; stale prices are served until a refresh succeeds.

Lookup order: exact model id, normalized id, static fallback table.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from chatrelay.logging import get_logger

logger = get_logger(__name__)

# Decimal places kept when a cost is stored
COST_PRECISION = 6

# USD per 1M tokens for common models when the catalog is unavailable
FALLBACK_PRICING_PER_1M: dict[str, tuple[float, float]] = {
    "openai/gpt-4o-mini": (0.15, 0.6),
    "openai/gpt-4o": (5.0, 15.0),
    "anthropic/claude-3.5-sonnet": (3.0, 15.0),
    "anthropic/claude-3-haiku": (0.25, 1.25),
    "meta-llama/llama-3.1-70b-instruct": (0.9, 0.9),
    "meta-llama/llama-3.1-8b-instruct": (0.1, 0.1),
}

CatalogFetcher = Callable[[], Awaitable[list[dict[str, Any]]]]


@dataclass(frozen=True)
class ModelPricing:
    """USD price per prompt token and per completion token."""

    prompt_per_token: float
    completion_per_token: float


@dataclass
class PriceCache:
    """Catalog prices plus the bookkeeping for the TTL refresh policy."""

    ttl_s: float = 3600.0
    retry_after_s: float = 60.0
    entries: dict[str, ModelPricing] = field(default_factory=dict)
    fetched_at: float | None = None
    last_attempt_at: float | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def needs_refresh(self, now: float) -> bool:
        """Whether a catalog fetch should be attempted at `now` (monotonic seconds)."""
        if self.fetched_at is not None and now - self.fetched_at < self.ttl_s:
            return False
        if self.last_attempt_at is not None and now - self.last_attempt_at < self.retry_after_s:
            return False
        return True


def normalize_model_id(model_id: str | None) -> str:
    """Strip provider suffixes: "openai/gpt-4o:free" / "x@provider" -> base id."""
    value = (model_id or "").strip()
    if not value:
        return ""
    return value.split("@")[0].split(":")[0].strip()


def _as_price(value: Any) -> float | None:
    """Parse a catalog price (number or number string); None if unusable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return None
    else:
        return None
    if number != number or number in (float("inf"), float("-inf")) or number < 0:
        return None
    return number


def parse_catalog_pricing(models: list[dict[str, Any]]) -> dict[str, ModelPricing]:
    """Extract per-token prices keyed by model id; entries without both prices are skipped."""
    entries: dict[str, ModelPricing] = {}
    for model in models:
        model_id = str(model.get("id") or "").strip()
        pricing = model.get("pricing")
        if not model_id or not isinstance(pricing, dict):
            continue
        prompt = _as_price(pricing.get("prompt"))
        completion = _as_price(pricing.get("completion"))
        if prompt is None or completion is None:
            continue
        entries[model_id] = ModelPricing(prompt_per_token=prompt, completion_per_token=completion)
    return entries


async def ensure_fresh(
    cache: PriceCache,
    fetch_catalog: CatalogFetcher,
    *,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Refresh the cache from the catalog if the TTL policy says so.

    Never raises: a failed fetch is logged and the stale entries are kept.
    """
    if not cache.needs_refresh(clock()):
        return

    async with cache.lock:
        now = clock()
        # Another task may have refreshed while this one waited for the lock
        if not cache.needs_refresh(now):
            return
        cache.last_attempt_at = now

        try:
            models = await fetch_catalog()
        except Exception as e:
            logger.warning(
                "pricing_refresh_failed",
                error_type=type(e).__name__,
                stale_entries=len(cache.entries),
            )
            return

        entries = parse_catalog_pricing(models)
        if not entries and cache.entries:
            logger.warning("pricing_refresh_empty", stale_entries=len(cache.entries))
            return

        cache.entries = entries
        cache.fetched_at = now
        logger.info("pricing_refreshed", entries=len(entries))


def fallback_pricing(model_id: str) -> ModelPricing | None:
    """Static fallback price, converted from per-1M to per-token."""
    per_1m = FALLBACK_PRICING_PER_1M.get(model_id) or FALLBACK_PRICING_PER_1M.get(
        normalize_model_id(model_id)
    )
    if per_1m is None:
        return None
    prompt, completion = per_1m
    return ModelPricing(
        prompt_per_token=prompt / 1_000_000,
        completion_per_token=completion / 1_000_000,
    )


def lookup_pricing(cache: PriceCache, model_id: str | None) -> ModelPricing | None:
    """Find pricing for a model: exact id, normalized id, then fallback table."""
    model_id = (model_id or "").strip()
    if not model_id:
        return None

    found = cache.entries.get(model_id)
    if found is None:
        base = normalize_model_id(model_id)
        found = cache.entries.get(base) if base else None
    if found is not None:
        return found
    return fallback_pricing(model_id)


def calculate_cost(
    pricing: ModelPricing | None, prompt_tokens: int | None, completion_tokens: int | None
) -> float:
    """USD cost rounded to COST_PRECISION decimals; 0 when pricing is unknown."""
    if pricing is None:
        return 0.0
    cost = (prompt_tokens or 0) * pricing.prompt_per_token + (
        completion_tokens or 0
    ) * pricing.completion_per_token
    return round(cost, COST_PRECISION)


async def get_model_cost(
    cache: PriceCache,
    fetch_catalog: CatalogFetcher,
    model_id: str,
    prompt_tokens: int | None,
    completion_tokens: int | None,
) -> float:
    """Refresh if needed, then price a request's token counts."""
    await ensure_fresh(cache, fetch_catalog)
    return calculate_cost(lookup_pricing(cache, model_id), prompt_tokens, completion_tokens)
