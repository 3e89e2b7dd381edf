"""Orchestrator: cache, provider chain, retry, fallback.

``invoke`` is a total function. Every call resolves to an
``OrchestrationResult``; provider failures never surface as exceptions.

Per invocation the states are::

    validate -> cache check -> [route enrichment] -> provider(i) attempts
             -> success | next provider -> ... -> fallback -> done
"""

import asyncio
import json
import logging
from functools import partial
from typing import Any, Mapping, Optional, Sequence

from .config.providers import CacheConfig, HeuristicConfig
from .errors import InvalidInputError
from .interfaces import (
    FALLBACK_SOURCE,
    ErrorKind,
    Feature,
    FeatureRequest,
    OrchestrationResult,
    ProviderResult,
)
from .providers.base import FeatureProvider
from .providers.mapbox import MapboxProvider
from .services.cache import ResultCache, cache_key
from .services.credentials import CredentialRegistry
from .services.fallback import empty_value, fallback_value, validate_payload
from .services.ledger import UsageLedger
from .services.memory import InteractionMemory
from .services.retry import RetryPolicy, Sleep, with_retry
from .utils import as_number

logger = logging.getLogger(__name__)

MAX_MEMORY_TEXT = 500

# Cached results that go stale with real-world conditions
VOLATILE_FEATURES = (Feature.PRICE, Feature.DEMAND_FORECAST, Feature.ANALYTICS)


def _time_of_day(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def _compact(value: Any) -> str:
    text = json.dumps(value, sort_keys=True, default=str, separators=(",", ":"))
    return text if len(text) <= MAX_MEMORY_TEXT else text[:MAX_MEMORY_TEXT] + "..."


def _hint(source: Any, key: str) -> Optional[str]:
    """A non-empty string under ``key``, or None when source is not a mapping."""
    if not isinstance(source, Mapping):
        return None
    found = source.get(key)
    return found if isinstance(found, str) and found else None


class Orchestrator:
    """Decides which provider answers each feature request.

    All collaborators are injected. Two orchestrators built from distinct
    services share no state.

    Usage:
        orchestrator = Orchestrator(
            providers={"openai": openai, "ml": heuristic},
            chains={"price": ["openai", "ml"]},
            credentials=registry,
            cache=ResultCache(),
            ledger=UsageLedger(),
            memory=InteractionMemory(),
        )
        result = await orchestrator.invoke(Feature.PRICE, {"distance": 8.5, "time": 25})
        result.source  # "openai", "ml" or "fallback"
    """

    def __init__(
        self,
        providers: Mapping[str, FeatureProvider],
        chains: Mapping[str, Sequence[str]],
        credentials: CredentialRegistry,
        cache: ResultCache,
        ledger: UsageLedger,
        memory: InteractionMemory,
        policy: Optional[RetryPolicy] = None,
        map_provider: Optional[MapboxProvider] = None,
        cache_config: Optional[CacheConfig] = None,
        heuristic_config: Optional[HeuristicConfig] = None,
        context_limit: int = 10,
        record_failures: bool = False,
        sleep: Sleep = asyncio.sleep,
    ):
        self.providers = dict(providers)
        self.chains = {
            (k.value if isinstance(k, Feature) else k): list(v) for k, v in chains.items()
        }
        self.credentials = credentials
        self.cache = cache
        self.ledger = ledger
        self.memory = memory
        self.policy = policy or RetryPolicy()
        self.map_provider = map_provider
        self.cache_config = cache_config or CacheConfig()
        self.heuristic_config = heuristic_config or HeuristicConfig()
        self.context_limit = context_limit
        self.record_failures = record_failures
        self._sleep = sleep

    def chain_for(self, feature: Feature) -> list[str]:
        return list(self.chains.get(feature.value, []))

    async def invoke(
        self,
        feature: Feature,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> OrchestrationResult:
        """Answer a feature request.

        Args:
            feature: Feature to invoke
            payload: Feature-specific request data

        Returns:
            OrchestrationResult whose ``source`` names the provider that
            answered, or ``"fallback"``
        """
        request = FeatureRequest.create(feature, payload)

        try:
            validate_payload(feature, request.payload)
        except InvalidInputError as e:
            logger.info(f"Rejected {feature.value} request: {e.reason}")
            return OrchestrationResult(
                feature=feature,
                value=empty_value(feature, e.reason),
                source=FALLBACK_SOURCE,
                error_kind=ErrorKind.INVALID_INPUT,
            )

        key = cache_key(feature, request.payload)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for {feature.value} ({cached.source})")
            return cached

        working = dict(request.payload)
        if feature == Feature.ROUTE and "routes" not in working:
            working["routes"] = await self._fetch_routes(working)

        context = self._context(feature)
        last_kind = ErrorKind.UNAVAILABLE

        for provider_id in self.chain_for(feature):
            provider = self.providers.get(provider_id)
            if provider is None or not provider.supports(feature):
                logger.debug(f"Skipping {provider_id}: does not serve {feature.value}")
                continue
            if provider.requires_credential and not self.credentials.is_available(provider_id):
                logger.info(f"Skipping {provider_id} for {feature.value}: no usable credential")
                continue

            outcome = await with_retry(
                self.policy,
                partial(self._attempt, provider, feature, working, context),
                provider_id=provider_id,
                sleep=self._sleep,
            )
            self.ledger.record_failure(provider_id, feature, outcome.failed_attempts)

            result = outcome.result
            if result.ok:
                return self._succeed(key, request, working, result)

            last_kind = result.error_kind
            logger.warning(
                f"{provider_id} failed {feature.value} after {outcome.attempts} attempt(s): "
                f"{result.error_kind.value}" + (f" ({result.message})" if result.message else "")
            )

        return self._fall_back(key, request, working, last_kind)

    async def _attempt(
        self,
        provider: FeatureProvider,
        feature: Feature,
        payload: Mapping[str, Any],
        context: str,
    ) -> ProviderResult:
        try:
            return await provider.call(feature, payload, context)
        except Exception as e:
            logger.exception(f"Provider {provider.provider_id} raised during {feature.value}")
            return ProviderResult.fatal_failure(
                provider.provider_id, ErrorKind.UNKNOWN, f"{type(e).__name__}: {e}"
            )

    async def _fetch_routes(self, payload: Mapping[str, Any]) -> list[dict[str, Any]]:
        """Candidate routes from the map provider; empty when it is unusable."""
        if self.map_provider is None or not self.map_provider.available:
            return []
        provider_id = self.map_provider.provider_id
        outcome = await with_retry(
            self.policy,
            partial(self.map_provider.route_result, payload.get("origin"), payload.get("destination")),
            provider_id=provider_id,
            sleep=self._sleep,
        )
        self.ledger.record_failure(provider_id, Feature.ROUTE, outcome.failed_attempts)
        if not outcome.result.ok:
            logger.warning(
                f"Directions lookup failed ({outcome.result.error_kind.value}); ranking without routes"
            )
            return []
        self.ledger.record(provider_id, Feature.ROUTE)
        return list(outcome.result.value.get("routes", []))

    def _context(self, feature: Feature) -> str:
        if self.context_limit <= 0:
            return ""
        try:
            return self.memory.context_for(feature, self.context_limit)
        except Exception:
            logger.exception(f"Could not read interaction context for {feature.value}")
            return ""

    def _succeed(
        self,
        key: str,
        request: FeatureRequest,
        payload: Mapping[str, Any],
        result: ProviderResult,
    ) -> OrchestrationResult:
        feature = request.feature
        self.ledger.record(result.provider_id, feature, result.tokens_used, result.cost)
        final = OrchestrationResult(
            feature=feature,
            value=result.value or {},
            source=result.provider_id,
            tokens_used=result.tokens_used,
            cost=result.cost,
        )
        self._remember(request, payload, final)
        self.cache.put(key, final, self.cache_config.ttl_for(feature))
        return final

    def _fall_back(
        self,
        key: str,
        request: FeatureRequest,
        payload: Mapping[str, Any],
        error_kind: ErrorKind,
    ) -> OrchestrationResult:
        feature = request.feature
        logger.warning(f"All providers exhausted for {feature.value}; using local fallback")
        final = OrchestrationResult(
            feature=feature,
            value=fallback_value(feature, payload, self.heuristic_config),
            source=FALLBACK_SOURCE,
            error_kind=error_kind,
        )
        if self.record_failures:
            self._remember(request, payload, final)
        self.cache.put(key, final, self.cache_config.fallback_ttl_seconds)
        return final

    def _remember(
        self,
        request: FeatureRequest,
        payload: Mapping[str, Any],
        result: OrchestrationResult,
    ) -> None:
        try:
            self._write_memory(request, payload, result)
        except Exception:
            logger.exception(f"Could not record {request.feature.value} interaction")

    def _write_memory(
        self,
        request: FeatureRequest,
        payload: Mapping[str, Any],
        result: OrchestrationResult,
    ) -> None:
        feature = request.feature
        value = result.value if isinstance(result.value, Mapping) else {}

        if feature == Feature.CHAT:
            query = str(payload.get("message", ""))
            response = str(value.get("response", ""))
        else:
            query = _compact({k: v for k, v in payload.items() if k != "routes"})
            response = _compact(value)

        hour = as_number(payload.get("hour"))
        metadata: dict[str, Any] = {
            "source": result.source,
            "tokens_used": result.tokens_used,
            "cost": str(result.cost),
            "time_of_day": _time_of_day(int(hour) if hour is not None else request.requested_at.hour),
        }
        vehicle = (
            _hint(payload.get("preferences"), "vehicle_type")
            or _hint(payload, "vehicle_type")
            or _hint(value.get("matched_driver"), "vehicle_type")
        )
        if vehicle:
            metadata["vehicle_type"] = vehicle
        price = as_number(value.get("final_price"))
        if feature == Feature.PRICE and price is not None:
            metadata["price"] = price

        self.memory.record_nowait(feature, query, response, metadata)

    # Convenience wrappers

    async def match_drivers(
        self,
        drivers: Sequence[Mapping[str, Any]],
        preferences: Optional[Mapping[str, Any]] = None,
        passenger: Optional[Mapping[str, Any]] = None,
    ) -> OrchestrationResult:
        payload: dict[str, Any] = {"drivers": [dict(d) for d in drivers]}
        if preferences:
            payload["preferences"] = dict(preferences)
        if passenger:
            payload["passenger"] = dict(passenger)
        return await self.invoke(Feature.MATCH, payload)

    async def calculate_price(self, trip: Mapping[str, Any]) -> OrchestrationResult:
        return await self.invoke(Feature.PRICE, trip)

    async def optimize_route(
        self,
        origin: Any,
        destination: Any,
        preferences: Optional[Mapping[str, Any]] = None,
    ) -> OrchestrationResult:
        payload: dict[str, Any] = {"origin": origin, "destination": destination}
        if preferences:
            payload["preferences"] = dict(preferences)
        return await self.invoke(Feature.ROUTE, payload)

    async def predict_demand(self, location: Any, time_range: str = "6h") -> OrchestrationResult:
        return await self.invoke(Feature.DEMAND_FORECAST, {"location": location, "time_range": time_range})

    async def get_analytics(
        self,
        timeframe: str = "24h",
        metrics: Optional[Mapping[str, Any]] = None,
    ) -> OrchestrationResult:
        payload: dict[str, Any] = {"timeframe": timeframe}
        if metrics:
            payload["metrics"] = dict(metrics)
        return await self.invoke(Feature.ANALYTICS, payload)

    async def chat(self, message: str, conversation_id: str = "default") -> OrchestrationResult:
        return await self.invoke(Feature.CHAT, {"message": message, "conversation_id": conversation_id})

    def invalidate_all(self) -> int:
        """Drop cached price, demand and analytics results."""
        return sum(self.cache.invalidate_feature(f) for f in VOLATILE_FEATURES)
