"""Component tests for the engine layer.

Covers ProductRegistry, ProductSweep, ErrorEngine wiring, and build_engine.
Everything runs against the in-memory store with a fixed clock; the demo
data set doubles as an end-to-end scenario.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from core.config import Settings
from core.engine import ErrorEngine, build_engine
from core.errors import NotFound
from core.executor import ProductSweep
from core.registry import Product, ProductRegistry
from schemas.deployments import Badge
from schemas.groups import GroupStatus
from store.adapter import StoreAdapter
from store.memory import InMemoryEventStore
from store.rest import RestEventStore
from stubs import DEMO_PRODUCTS, seed_demo_store

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# ── Shared fixtures ───────────────────────────────────────────────────────────

def make_payload(**overrides) -> dict:
    payload = {
        "product": "storefront",
        "error_message": "TypeError: boom",
        "error_type": "client_crash",
        "source": "client",
        "fingerprint": "fp-boom",
    }
    payload.update(overrides)
    return payload


def make_engine(store=None, **settings) -> ErrorEngine:
    settings.setdefault("store_retry_backoff_seconds", 0)
    return ErrorEngine(store or InMemoryEventStore(), settings=Settings(**settings), clock=lambda: NOW)


@pytest.fixture
async def demo_engine():
    store = InMemoryEventStore()
    await seed_demo_store(store, NOW)
    return ErrorEngine(
        store,
        settings=Settings(store_retry_backoff_seconds=0),
        registry=ProductRegistry.from_names(DEMO_PRODUCTS),
        clock=lambda: NOW,
    )


# ── ProductRegistry ───────────────────────────────────────────────────────────

class TestProductRegistry:
    def test_register_and_get_all(self):
        registry = ProductRegistry()
        registry.register(Product(key="storefront", display_name="Storefront"))
        registry.register(Product(key="legacy", display_name="Legacy", is_active=False))

        assert [p.key for p in registry.get_all()] == ["storefront", "legacy"]
        assert registry.active_keys() == ["storefront"]
        assert len(registry) == 2

    def test_duplicate_key_raises(self):
        registry = ProductRegistry()
        registry.register(Product(key="storefront", display_name="Storefront"))
        with pytest.raises(ValueError, match="already registered"):
            registry.register(Product(key="storefront", display_name="Other"))

    def test_get_returns_none_when_missing(self):
        assert ProductRegistry().get("nope") is None

    def test_from_names(self):
        registry = ProductRegistry.from_names(DEMO_PRODUCTS)
        assert registry.get("admin").display_name == "Admin Console"
        assert registry.display_names() == DEMO_PRODUCTS


# ── ProductSweep ──────────────────────────────────────────────────────────────

class TestProductSweep:
    async def test_collects_results_in_product_order(self):
        async def job(product: str) -> str:
            return product.upper()

        results = await ProductSweep().run(["b", "a", "b"], job)
        assert results == {"b": "B", "a": "A"}
        assert list(results) == ["b", "a"]

    async def test_crashing_product_is_skipped(self):
        async def job(product: str) -> int:
            if product == "bad":
                raise RuntimeError("boom")
            return 1

        assert await ProductSweep().run(["bad", "good"], job) == {"good": 1}

    async def test_timed_out_product_is_skipped(self):
        async def job(product: str) -> int:
            if product == "slow":
                await asyncio.sleep(5)
            return 1

        assert await ProductSweep(timeout_seconds=0.05).run(["slow", "fast"], job) == {"fast": 1}

    async def test_none_is_a_valid_result(self):
        async def job(product: str) -> None:
            return None

        assert await ProductSweep().run(["a"], job) == {"a": None}

    async def test_empty_product_list(self):
        async def job(product: str) -> int:
            return 1

        assert await ProductSweep().run([], job) == {}


# ── ErrorEngine ───────────────────────────────────────────────────────────────

class TestErrorEngine:
    def test_wraps_bare_backend_in_adapter(self):
        engine = make_engine(store_timeout_seconds=3)
        assert isinstance(engine.store, StoreAdapter)
        assert engine.store.timeout_seconds == 3

    def test_keeps_existing_adapter(self):
        adapter = StoreAdapter(InMemoryEventStore())
        assert make_engine(adapter).store is adapter

    async def test_ingest_group_and_resolve(self):
        engine = make_engine()
        for _ in range(3):
            assert (await engine.ingest(make_payload())).accepted
        await engine.ingest(make_payload(fingerprint="fp-other", error_message="other"))

        assert await engine.refresh_groups() == 2
        await engine.set_status("fp-boom", "storefront", "resolved", notes="fixed")

        group = await engine.get_group("fp-boom", "storefront")
        assert group.occurrence_count == 3
        assert group.status == GroupStatus.RESOLVED
        assert group.resolved_at == NOW

    async def test_bulk_status_overlays_every_group(self):
        engine = make_engine()
        await engine.ingest(make_payload(fingerprint="fp-a"))
        await engine.ingest(make_payload(fingerprint="fp-b"))

        items = [{"fingerprint": "fp-a", "product": "storefront"}, {"fingerprint": "fp-b", "product": "storefront"}]
        assert await engine.bulk_set_status(items, "ignored") == 2
        assert {g.status for g in await engine.groups("storefront")} == {GroupStatus.IGNORED}

    async def test_get_group_missing_raises(self):
        with pytest.raises(NotFound):
            await make_engine().get_group("fp", "storefront")

    async def test_rate_limit_from_settings(self):
        engine = make_engine(rate_limit_per_window=2)
        results = [await engine.ingest(make_payload()) for _ in range(3)]
        assert [r.status_code for r in results] == [201, 201, 429]

    async def test_demo_spike_sweep(self, demo_engine):
        alerts = await demo_engine.detect_spikes()
        by_product = {a.product: a for a in alerts}

        assert set(by_product) == {"storefront", "billing-api"}
        assert by_product["billing-api"].spike_multiplier == 8.0
        assert by_product["billing-api"].baseline_avg == 0
        assert by_product["storefront"].current_count == 36

        assert await demo_engine.detect_spikes() == []
        acknowledged = await demo_engine.acknowledge_spike(by_product["storefront"].id)
        assert acknowledged.acknowledged
        assert len(await demo_engine.list_spikes(unacknowledged_only=True)) == 1

    async def test_demo_deploy_badges(self, demo_engine):
        summaries = await demo_engine.summarize_deployments()
        badges = {s.deployment.product: s.correlation for s in summaries}

        assert badges["storefront"].badge == Badge.RED
        assert (badges["storefront"].pre_count, badges["storefront"].post_count) == (0, 36)
        assert badges["admin"].badge == Badge.GREEN

        storefront = next(s.deployment for s in summaries if s.deployment.product == "storefront")
        result = await demo_engine.correlate_deployment(storefront.id)
        assert len(result.new_errors) == 1
        assert result.new_errors[0].message == "Error: Payment intent already confirmed"

    async def test_inactive_products_skipped_by_sweep(self):
        store = InMemoryEventStore()
        await seed_demo_store(store, NOW)
        registry = ProductRegistry()
        registry.register(Product(key="billing-api", display_name="Billing API", is_active=False))
        registry.register(Product(key="storefront", display_name="Storefront"))
        engine = ErrorEngine(store, settings=Settings(store_retry_backoff_seconds=0),
                             registry=registry, clock=lambda: NOW)

        assert [a.product for a in await engine.detect_spikes()] == ["storefront"]


# ── build_engine() ────────────────────────────────────────────────────────────

class TestBuildEngine:
    def test_memory_backend_by_default(self):
        engine = build_engine(Settings())
        assert isinstance(engine.store.backend, InMemoryEventStore)

    def test_rest_backend_requires_url_and_key(self):
        with pytest.raises(ValueError, match="STORE_REST_URL"):
            build_engine(Settings(store_backend="rest", store_rest_url="https://db.example.test"))

    async def test_rest_backend_selected(self):
        engine = build_engine(Settings(
            store_backend="rest", store_rest_url="https://db.example.test", store_rest_key="k",
        ))
        assert isinstance(engine.store.backend, RestEventStore)
        await engine.aclose()

    def test_registry_built_from_products_setting(self):
        engine = build_engine(Settings(products="storefront:Storefront,admin:Admin Console"))
        assert engine.registry.active_keys() == ["storefront", "admin"]
