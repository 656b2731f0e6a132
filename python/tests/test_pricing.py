"""Tests for the model price cache and cost calculation.

Covers:
- Catalog parsing (number strings, missing or invalid prices)
- Lookup order: exact id, normalized id, static fallback
- TTL refresh, single-flight under concurrency, stale entries kept on failure
"""

import asyncio

import pytest

from chatrelay.services.pricing import (
    ModelPricing,
    PriceCache,
    calculate_cost,
    ensure_fresh,
    get_model_cost,
    lookup_pricing,
    normalize_model_id,
    parse_catalog_pricing,
)

CATALOG = [
    {"id": "vendor/model-a", "pricing": {"prompt": "0.000001", "completion": "0.000002"}},
    {"id": "vendor/model-b", "pricing": {"prompt": 0.5, "completion": "bad"}},
    {"id": "", "pricing": {"prompt": "1", "completion": "1"}},
    {"id": "vendor/model-c"},
]


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class CatalogStub:
    """Counts fetches; can be switched to fail."""

    def __init__(self, models=None, fail: bool = False):
        self.models = models if models is not None else CATALOG
        self.fail = fail
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(0)
        if self.fail:
            raise RuntimeError("catalog unavailable")
        return self.models


class TestParsing:
    """Tests for catalog parsing and id normalization."""

    def test_only_complete_entries_kept(self):
        """Entries need an id and two valid prices."""
        entries = parse_catalog_pricing(CATALOG)
        assert entries == {
            "vendor/model-a": ModelPricing(prompt_per_token=0.000001, completion_per_token=0.000002)
        }

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("openai/gpt-4o:free", "openai/gpt-4o"),
            ("openai/gpt-4o@azure", "openai/gpt-4o"),
            ("  openai/gpt-4o  ", "openai/gpt-4o"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_normalize_model_id(self, raw, expected):
        """Provider suffixes are dropped."""
        assert normalize_model_id(raw) == expected


class TestLookupAndCost:
    """Tests for lookup_pricing() and calculate_cost()."""

    def test_exact_then_normalized(self):
        """A suffixed id falls back to its base id."""
        cache = PriceCache(entries=parse_catalog_pricing(CATALOG))
        assert lookup_pricing(cache, "vendor/model-a") is not None
        assert lookup_pricing(cache, "vendor/model-a:beta") == lookup_pricing(
            cache, "vendor/model-a"
        )

    def test_static_fallback(self):
        """Known models are priced even with an empty cache."""
        pricing = lookup_pricing(PriceCache(), "openai/gpt-4o-mini")
        assert pricing.prompt_per_token == pytest.approx(0.15e-6)
        assert pricing.completion_per_token == pytest.approx(0.6e-6)

    def test_unknown_model(self):
        """Unknown models have no pricing and cost nothing."""
        assert lookup_pricing(PriceCache(), "nobody/knows") is None
        assert calculate_cost(None, 1000, 1000) == 0.0

    def test_cost_rounded_to_six_decimals(self):
        """Cost = prompt * p + completion * c, 6 decimals."""
        pricing = ModelPricing(prompt_per_token=0.000001, completion_per_token=0.000002)
        assert calculate_cost(pricing, 1234, 567) == pytest.approx(0.002368)
        assert calculate_cost(pricing, None, None) == 0.0


class TestEnsureFresh:
    """Tests for the TTL refresh policy."""

    @pytest.mark.asyncio
    async def test_first_lookup_fetches(self):
        """An empty cache is filled on first use."""
        cache = PriceCache(ttl_s=60)
        fetch = CatalogStub()

        await ensure_fresh(cache, fetch, clock=FakeClock())

        assert fetch.calls == 1
        assert "vendor/model-a" in cache.entries

    @pytest.mark.asyncio
    async def test_fresh_cache_not_refetched(self):
        """Within the TTL no fetch happens."""
        clock = FakeClock()
        cache = PriceCache(ttl_s=60)
        fetch = CatalogStub()

        await ensure_fresh(cache, fetch, clock=clock)
        clock.now += 59
        await ensure_fresh(cache, fetch, clock=clock)

        assert fetch.calls == 1

    @pytest.mark.asyncio
    async def test_stale_cache_refetched(self):
        """After the TTL the catalog is fetched again."""
        clock = FakeClock()
        cache = PriceCache(ttl_s=60)
        fetch = CatalogStub()

        await ensure_fresh(cache, fetch, clock=clock)
        clock.now += 61
        await ensure_fresh(cache, fetch, clock=clock)

        assert fetch.calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_refresh_fetches_once(self):
        """Concurrent lookups share one fetch."""
        cache = PriceCache(ttl_s=60)
        fetch = CatalogStub()
        clock = FakeClock()

        await asyncio.gather(*(ensure_fresh(cache, fetch, clock=clock) for _ in range(10)))

        assert fetch.calls == 1

    @pytest.mark.asyncio
    async def test_failure_keeps_stale_entries_and_backs_off(self):
        """A failed refresh serves stale prices and waits before retrying."""
        clock = FakeClock()
        cache = PriceCache(ttl_s=60, retry_after_s=30)
        fetch = CatalogStub()
        await ensure_fresh(cache, fetch, clock=clock)

        fetch.fail = True
        clock.now += 61
        await ensure_fresh(cache, fetch, clock=clock)
        assert fetch.calls == 2
        assert "vendor/model-a" in cache.entries

        clock.now += 10
        await ensure_fresh(cache, fetch, clock=clock)
        assert fetch.calls == 2

        fetch.fail = False
        clock.now += 25
        await ensure_fresh(cache, fetch, clock=clock)
        assert fetch.calls == 3

    @pytest.mark.asyncio
    async def test_empty_catalog_does_not_wipe_entries(self):
        """An empty refresh keeps the previous prices."""
        clock = FakeClock()
        cache = PriceCache(ttl_s=60)
        await ensure_fresh(cache, CatalogStub(), clock=clock)

        clock.now += 61
        await ensure_fresh(cache, CatalogStub(models=[]), clock=clock)

        assert "vendor/model-a" in cache.entries

    @pytest.mark.asyncio
    async def test_get_model_cost(self):
        """Cost uses freshly fetched catalog prices."""
        cache = PriceCache(ttl_s=60)
        cost = await get_model_cost(cache, CatalogStub(), "vendor/model-a", 1000, 500)
        assert cost == pytest.approx(0.002)

    @pytest.mark.asyncio
    async def test_get_model_cost_never_raises(self):
        """A failing catalog still yields a (fallback) cost."""
        cache = PriceCache(ttl_s=60)
        cost = await get_model_cost(
            cache, CatalogStub(fail=True), "openai/gpt-4o-mini", 1_000_000, 0
        )
        assert cost == pytest.approx(0.15)
