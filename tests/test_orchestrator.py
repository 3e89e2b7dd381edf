"""Tests for the orchestrator: chain walking, retry, cache, ledger and fallback."""

import asyncio
import threading
from decimal import Decimal

import httpx
import pytest

from rideai.config import MapboxConfig
from rideai.interfaces import ErrorKind, Feature, ProviderResult
from rideai.providers import HeuristicProvider, MapboxProvider
from rideai.services import (
    CredentialRegistry,
    InteractionMemory,
    SQLiteInteractionStore,
    cache_key,
)
from rideai.testing import ScriptedProvider

PRICE_PAYLOAD = {"distance": 8.5, "time": 25, "hour": 12}
OPENAI_PRICE = {"base_price": 19.95, "surge_multiplier": 1.0, "final_price": 19.95}

ORIGIN = {"lat": 40.7128, "lng": -74.0060}
DESTINATION = {"lat": 40.7580, "lng": -73.9855}


class TestHappyPath:
    """The first provider answers."""

    async def test_primary_answers(self, make_orchestrator, openai_price, ledger, cache, clock):
        orchestrator = make_orchestrator([openai_price, HeuristicProvider()])

        result = await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)

        assert result.source == "openai"
        assert result.value["final_price"] == 19.95
        assert result.tokens_used == 120
        assert result.error_kind == ErrorKind.NONE
        assert not result.is_fallback

        row = ledger.get("openai", Feature.PRICE)
        assert row.request_count == 1
        assert row.total_tokens == 120
        assert row.failed_attempts == 0

        # Cached for the price TTL (300s)
        key = cache_key(Feature.PRICE, PRICE_PAYLOAD)
        clock.advance(299)
        assert cache.get(key) == result
        clock.advance(1)
        assert cache.get(key) is None

    async def test_cache_hit_skips_providers(self, make_orchestrator, openai_price, ledger):
        orchestrator = make_orchestrator([openai_price])

        first = await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)
        second = await orchestrator.invoke(Feature.PRICE, dict(reversed(list(PRICE_PAYLOAD.items()))))

        assert second == first
        assert openai_price.call_count == 1
        assert ledger.get("openai", Feature.PRICE).request_count == 1

    async def test_expired_cache_calls_provider_again(self, make_orchestrator, openai_price, clock):
        orchestrator = make_orchestrator([openai_price])

        await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)
        clock.advance(301)
        await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)

        assert openai_price.call_count == 2

    async def test_success_is_remembered_and_fed_back(self, make_orchestrator, openai_price, memory):
        orchestrator = make_orchestrator([openai_price])

        await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)
        await orchestrator.invoke(Feature.PRICE, {"distance": 3.0, "time": 10, "hour": 12})

        assert memory.count() == 2
        stored = memory.by_feature(Feature.PRICE)[0]
        assert stored.metadata["source"] == "openai"
        assert stored.metadata["price"] == 19.95
        assert stored.metadata["time_of_day"] == "afternoon"
        # Second call saw the first interaction as context
        assert openai_price.calls[0][2] == ""
        assert "Previous interactions" in openai_price.calls[1][2]


class TestFailover:
    """Provider failures cascade down the chain."""

    async def test_rate_limited_primary_falls_to_heuristic(
        self, make_orchestrator, rate_limited, ledger, sleep
    ):
        openai = ScriptedProvider("openai", [rate_limited("openai")])
        orchestrator = make_orchestrator([openai, HeuristicProvider()])

        result = await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)

        assert result.source == "ml"
        assert result.value["base_price"] == 19.95
        assert openai.call_count == 3
        assert sleep.delays == [1.0, 2.0]

        assert ledger.get("openai", Feature.PRICE).failed_attempts == 3
        assert ledger.get("openai", Feature.PRICE).request_count == 0
        assert ledger.get("ml", Feature.PRICE).request_count == 1

    async def test_retry_then_success_counts_failures(
        self, make_orchestrator, rate_limited, ledger
    ):
        openai = ScriptedProvider("openai", [
            rate_limited("openai"),
            ProviderResult.success("openai", dict(OPENAI_PRICE), tokens_used=90),
        ])
        orchestrator = make_orchestrator([openai])

        result = await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)

        assert result.source == "openai"
        row = ledger.get("openai", Feature.PRICE)
        assert row.request_count == 1
        assert row.failed_attempts == 1

    async def test_fatal_failure_is_not_retried(self, make_orchestrator, sleep):
        openai = ScriptedProvider.failing("openai", ErrorKind.QUOTA_EXHAUSTED, retryable=False)
        orchestrator = make_orchestrator([openai, HeuristicProvider()])

        result = await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)

        assert result.source == "ml"
        assert openai.call_count == 1
        assert sleep.delays == []

    async def test_provider_without_credential_is_skipped(self, make_orchestrator):
        gemini = ScriptedProvider.succeeding("gemini", {"response": "hi"})
        orchestrator = make_orchestrator([gemini, HeuristicProvider()])

        result = await orchestrator.invoke(Feature.CHAT, {"message": "hello"})

        assert result.source == "ml"
        assert gemini.call_count == 0

    async def test_provider_exception_is_contained(self, make_orchestrator, caplog):
        openai = ScriptedProvider("openai", [RuntimeError("adapter bug")])
        orchestrator = make_orchestrator([openai, HeuristicProvider()])

        result = await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)

        assert result.source == "ml"
        assert openai.call_count == 1
        assert "adapter bug" in caplog.text

    async def test_credential_change_takes_effect(self, make_orchestrator, credentials, cache):
        gemini = ScriptedProvider.succeeding("gemini", {"response": "from gemini"})
        orchestrator = make_orchestrator([gemini, HeuristicProvider()])

        assert (await orchestrator.invoke(Feature.CHAT, {"message": "hello"})).source == "ml"

        credentials.set_credential("gemini", "AIzaNew")
        cache.clear()

        assert (await orchestrator.invoke(Feature.CHAT, {"message": "hello"})).source == "gemini"


class TestFallback:
    """Every provider failed."""

    async def test_total_outage_returns_fallback(self, make_orchestrator, rate_limited, ledger, cache, clock, memory):
        openai = ScriptedProvider("openai", [rate_limited("openai")])
        gemini = ScriptedProvider("gemini", [rate_limited("gemini")])
        credentials = CredentialRegistry({"openai": "sk-a", "gemini": "AIza-b"})
        orchestrator = make_orchestrator(
            [gemini, openai], chains={"chat": ["gemini", "openai"]}, credentials=credentials
        )

        result = await orchestrator.invoke(Feature.CHAT, {"message": "book a ride"})

        assert result.is_fallback
        assert result.source == "fallback"
        assert result.error_kind == ErrorKind.RATE_LIMIT
        assert result.value["response"]
        assert result.value["confidence"] == 0.5
        assert result.tokens_used == 0
        assert result.cost == Decimal("0")

        assert ledger.get("gemini", Feature.CHAT).failed_attempts == 3
        assert ledger.get("openai", Feature.CHAT).failed_attempts == 3
        assert memory.count() == 0

        # Fallback results are cached briefly (30s)
        key = cache_key(Feature.CHAT, {"message": "book a ride"})
        clock.advance(29)
        assert cache.get(key) == result
        clock.advance(1)
        assert cache.get(key) is None

    async def test_no_usable_provider(self, make_orchestrator):
        openai = ScriptedProvider.succeeding("openai", dict(OPENAI_PRICE))
        orchestrator = make_orchestrator([openai], credentials=CredentialRegistry())

        result = await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)

        assert result.is_fallback
        assert result.error_kind == ErrorKind.UNAVAILABLE
        assert result.value["final_price"] == 19.95

    async def test_failures_recorded_when_enabled(self, make_orchestrator, memory):
        orchestrator = make_orchestrator(
            [ScriptedProvider.failing("openai", ErrorKind.AUTH, retryable=False)],
            record_failures=True,
        )

        await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)

        assert memory.count() == 1
        assert memory.by_feature(Feature.PRICE)[0].metadata["source"] == "fallback"


class TestInvalidInput:
    """Structurally invalid requests never reach a provider."""

    async def test_empty_drivers(self, make_orchestrator, openai_price, ledger, cache, memory):
        orchestrator = make_orchestrator([openai_price, HeuristicProvider()])

        result = await orchestrator.match_drivers([])

        assert result.error_kind == ErrorKind.INVALID_INPUT
        assert result.value["matches"] == []
        assert result.value["message"] == "No drivers available"
        assert openai_price.call_count == 0
        assert len(cache) == 0
        assert ledger.snapshot() == []
        assert memory.count() == 0

    async def test_missing_price_fields(self, make_orchestrator, openai_price):
        orchestrator = make_orchestrator([openai_price])

        result = await orchestrator.calculate_price({"distance": 8.5})

        assert result.error_kind == ErrorKind.INVALID_INPUT
        assert result.value["final_price"] == 0.0


class TestRouteEnrichment:
    """Route requests pull candidate routes from the map provider first."""

    @pytest.fixture
    def directions(self):
        return {"routes": [
            {"distance": 7000.0, "duration": 1200.0, "geometry": {}, "legs": []},
            {"distance": 8000.0, "duration": 900.0, "geometry": {}, "legs": []},
        ]}

    async def test_routes_fetched_and_ranked(self, make_orchestrator, directions, ledger):
        credentials = CredentialRegistry({"mapbox": "pk.test"})
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=directions))
        )
        mapbox = MapboxProvider(MapboxConfig(), credentials, client)
        orchestrator = make_orchestrator(
            [HeuristicProvider()], credentials=credentials, map_provider=mapbox
        )

        result = await orchestrator.optimize_route(ORIGIN, DESTINATION)

        assert result.source == "ml"
        assert len(result.value["routes"]) == 2
        assert result.value["recommended_index"] == 1
        assert ledger.get("mapbox", Feature.ROUTE).request_count == 1

    async def test_map_failure_degrades_to_estimate(self, make_orchestrator, ledger):
        credentials = CredentialRegistry({"mapbox": "pk.test"})
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
        mapbox = MapboxProvider(MapboxConfig(), credentials, client)
        orchestrator = make_orchestrator(
            [HeuristicProvider()], credentials=credentials, map_provider=mapbox
        )

        result = await orchestrator.optimize_route(ORIGIN, DESTINATION)

        assert result.source == "ml"
        assert result.value["routes"] == []
        assert result.value["estimated_distance"] > 0
        assert ledger.get("mapbox", Feature.ROUTE).failed_attempts == 3

    async def test_non_object_directions_body(self, make_orchestrator, ledger):
        credentials = CredentialRegistry({"mapbox": "pk.test"})
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=["unexpected"]))
        )
        mapbox = MapboxProvider(MapboxConfig(), credentials, client)
        orchestrator = make_orchestrator(
            [HeuristicProvider()], credentials=credentials, map_provider=mapbox
        )

        result = await orchestrator.optimize_route(ORIGIN, DESTINATION)

        assert result.source == "ml"
        assert result.value["routes"] == []
        # Malformed bodies are not retried
        assert ledger.get("mapbox", Feature.ROUTE).failed_attempts == 1


class ThreadRecordingStore(SQLiteInteractionStore):
    """SQLite store that remembers which thread ran each insert."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.add_threads = []

    def add(self, interaction):
        self.add_threads.append(threading.get_ident())
        super().add(interaction)


class TestMemoryWrites:
    """Recording an interaction never changes what invoke returns."""

    async def test_non_mapping_matched_driver(self, make_orchestrator, ledger, cache, memory):
        openai = ScriptedProvider.succeeding("openai", {"matched_driver": "drv-1"}, tokens_used=30)
        orchestrator = make_orchestrator([openai])
        payload = {"drivers": [{"id": "drv-1"}]}

        result = await orchestrator.invoke(Feature.MATCH, payload)

        assert result.source == "openai"
        assert result.value == {"matched_driver": "drv-1"}
        assert ledger.get("openai", Feature.MATCH).request_count == 1
        assert cache.get(cache_key(Feature.MATCH, payload)) == result
        assert memory.count() == 1
        assert "vehicle_type" not in memory.by_feature(Feature.MATCH)[0].metadata

    async def test_non_mapping_preferences(self, make_orchestrator, memory):
        orchestrator = make_orchestrator([HeuristicProvider()])

        result = await orchestrator.invoke(
            Feature.ROUTE,
            {"origin": ORIGIN, "destination": DESTINATION, "preferences": "fastest"},
        )

        assert result.source == "ml"
        assert result.error_kind == ErrorKind.NONE
        assert result.value["estimated_distance"] > 0
        assert memory.count() == 1

    async def test_recording_error_is_logged(self, make_orchestrator, openai_price, memory, cache, caplog):
        def explode(*args, **kwargs):
            raise RuntimeError("memory unavailable")

        memory.record_nowait = explode
        orchestrator = make_orchestrator([openai_price])

        result = await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)

        assert result.source == "openai"
        assert cache.get(cache_key(Feature.PRICE, PRICE_PAYLOAD)) == result
        assert "Could not record price interaction" in caplog.text

    async def test_sqlite_inserts_run_off_the_event_loop(self, make_orchestrator, openai_price, tmp_path):
        store = ThreadRecordingStore(str(tmp_path / "memory.db"))
        memory = InteractionMemory(store)
        orchestrator = make_orchestrator([openai_price], memory=memory)

        result = await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)
        await memory.flush()

        assert result.source == "openai"
        assert memory.count() == 1
        assert store.add_threads
        assert threading.get_ident() not in store.add_threads
        store.close()


class TestCachedValueIsolation:
    """Callers cannot alter what later cache hits return."""

    async def test_mutating_a_result_leaves_the_cache_intact(self, make_orchestrator, openai_price):
        orchestrator = make_orchestrator([openai_price])

        first = await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)
        first.value["final_price"] = -1
        second = await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)
        second.value["price_breakdown"]["surge"] = 99.0
        third = await orchestrator.invoke(Feature.PRICE, PRICE_PAYLOAD)

        assert second.value["final_price"] == 19.95
        assert third.value["final_price"] == 19.95
        assert third.value["price_breakdown"]["surge"] == 0.0
        assert openai_price.call_count == 1


class TestConcurrency:
    """Concurrent invocations do not lose ledger updates."""

    async def test_parallel_invocations(self, make_orchestrator, ledger):
        openai = ScriptedProvider.succeeding("openai", dict(OPENAI_PRICE), tokens_used=10, latency_s=0.001)
        orchestrator = make_orchestrator([openai])

        results = await asyncio.gather(*[
            orchestrator.invoke(Feature.PRICE, {"distance": float(i), "time": 5})
            for i in range(20)
        ])

        assert all(r.source == "openai" for r in results)
        row = ledger.get("openai", Feature.PRICE)
        assert row.request_count == 20
        assert row.total_tokens == 200


class TestWrappers:
    """Convenience methods build the expected payloads."""

    async def test_every_feature_is_total(self, make_orchestrator):
        orchestrator = make_orchestrator([HeuristicProvider()])

        results = [
            await orchestrator.match_drivers([{"id": "d1", "eta": 4}]),
            await orchestrator.calculate_price({"distance": 2, "time": 6}),
            await orchestrator.optimize_route(ORIGIN, DESTINATION),
            await orchestrator.predict_demand("downtown", "6h"),
            await orchestrator.get_analytics("24h", {"revenue": 100}),
            await orchestrator.chat("hello"),
        ]

        assert [r.feature for r in results] == list(Feature)
        assert all(r.source == "ml" for r in results)

    async def test_invalidate_all_drops_volatile_features(self, make_orchestrator, cache):
        orchestrator = make_orchestrator([HeuristicProvider()])
        await orchestrator.calculate_price(PRICE_PAYLOAD)
        await orchestrator.chat("hello")

        assert orchestrator.invalidate_all() == 1
        assert len(cache) == 1
