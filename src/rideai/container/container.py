"""Dependency injection container for RideAI."""

import asyncio
import logging
from typing import Optional

import httpx

from ..config import MemoryBackendType, ProviderId, SystemConfig
from ..orchestrator import Orchestrator
from ..providers.base import FeatureProvider, ProviderHealth
from ..providers.gemini import GeminiProvider
from ..providers.heuristic import HeuristicProvider
from ..providers.mapbox import MapboxProvider
from ..providers.openai import OpenAIProvider
from ..services.cache import ResultCache
from ..services.credentials import CredentialRegistry
from ..services.ledger import UsageLedger
from ..services.memory import (
    InMemoryInteractionStore,
    InteractionMemory,
    InteractionStore,
    SQLiteInteractionStore,
)
from ..services.retry import RetryPolicy, Sleep

logger = logging.getLogger(__name__)


class Container:
    """Dependency injection container.

    Owns the credential registry, providers, cache, ledger, interaction
    memory and the orchestrator wired from them. Nothing here is global:
    two containers never share state.

    Usage:
        container = Container(config)
        await container.initialize()

        result = await container.orchestrator.invoke(Feature.PRICE, payload)

        await container.shutdown()

    Tests may pass a shared ``http_client`` (e.g. backed by
    ``httpx.MockTransport``) or replace chain providers outright.
    """

    def __init__(
        self,
        config: SystemConfig,
        credentials: Optional[CredentialRegistry] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        providers: Optional[dict[str, FeatureProvider]] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config
        self._http_client = http_client
        self._credentials = credentials
        self._provider_overrides = providers
        self._sleep = sleep

        self._providers: dict[str, FeatureProvider] = {}
        self._map: Optional[MapboxProvider] = None
        self._cache: Optional[ResultCache] = None
        self._ledger: Optional[UsageLedger] = None
        self._memory: Optional[InteractionMemory] = None
        self._orchestrator: Optional[Orchestrator] = None
        self._initialized = False

    async def initialize(self) -> None:
        """Create and initialize everything in dependency order.

        1. Credential registry (no dependencies)
        2. Leaf services: cache, ledger, interaction memory
        3. Providers (depend on credentials)
        4. Orchestrator (depends on all of the above)
        """
        if self._initialized:
            return

        logger.info(f"Initializing container for instance: {self.config.instance_id}")

        if self._credentials is None:
            self._credentials = CredentialRegistry(
                self.config.credentials,
                client=self._http_client,
                probe_bases={
                    ProviderId.OPENAI.value: self.config.openai.api_base,
                    ProviderId.GEMINI.value: self.config.gemini.api_base,
                    ProviderId.MAPBOX.value: self.config.mapbox.api_base,
                },
            )

        self._cache = ResultCache()
        self._ledger = UsageLedger()
        self._memory = InteractionMemory(self._create_store())

        self._providers = self._provider_overrides or self._create_providers()
        for provider in self._providers.values():
            await provider.initialize()
        self._map = MapboxProvider(self.config.mapbox, self._credentials, self._http_client)
        await self._map.initialize()

        self._orchestrator = Orchestrator(
            providers=self._providers,
            chains=self.config.chains,
            credentials=self._credentials,
            cache=self._cache,
            ledger=self._ledger,
            memory=self._memory,
            policy=RetryPolicy.from_config(self.config.retry),
            map_provider=self._map,
            cache_config=self.config.cache,
            heuristic_config=self.config.heuristic,
            context_limit=self.config.memory.context_limit,
            record_failures=self.config.memory.record_failures,
            sleep=self._sleep,
        )

        self._initialized = True
        logger.info("Container initialized successfully")

    async def shutdown(self) -> None:
        """Shutdown all providers gracefully, in reverse order."""
        if not self._initialized:
            return

        logger.info("Shutting down container")

        if self._map:
            await self._map.shutdown()
        for provider in reversed(list(self._providers.values())):
            await provider.shutdown()
        if self._memory:
            await self._memory.flush()
            self._memory.close()

        self._initialized = False
        logger.info("Container shutdown complete")

    async def health_check(self) -> dict[str, ProviderHealth]:
        """Check health of all providers."""
        results = {}
        for provider_id, provider in self._providers.items():
            results[provider_id] = await provider.health_check()
        if self._map:
            results[self._map.provider_id] = await self._map.health_check()
        return results

    def _require(self, value, name: str):
        if value is None:
            raise RuntimeError(f"Container not initialized. Call initialize() first ({name}).")
        return value

    @property
    def credentials(self) -> CredentialRegistry:
        return self._require(self._credentials, "credentials")

    @property
    def cache(self) -> ResultCache:
        return self._require(self._cache, "cache")

    @property
    def ledger(self) -> UsageLedger:
        return self._require(self._ledger, "ledger")

    @property
    def memory(self) -> InteractionMemory:
        return self._require(self._memory, "memory")

    @property
    def orchestrator(self) -> Orchestrator:
        return self._require(self._orchestrator, "orchestrator")

    @property
    def providers(self) -> dict[str, FeatureProvider]:
        return dict(self._providers)

    @property
    def map_provider(self) -> MapboxProvider:
        return self._require(self._map, "map_provider")

    def _create_store(self) -> InteractionStore:
        """Create the interaction store based on config."""
        cfg = self.config.memory
        if cfg.backend == MemoryBackendType.SQLITE:
            return SQLiteInteractionStore(cfg.path)
        elif cfg.backend == MemoryBackendType.MEMORY:
            return InMemoryInteractionStore()
        else:
            raise ValueError(f"Unknown memory backend: {cfg.backend}")

    def _create_providers(self) -> dict[str, FeatureProvider]:
        """Create every chain provider; chains decide which are consulted."""
        return {
            ProviderId.OPENAI.value: OpenAIProvider(
                self.config.openai, self._credentials, self._http_client
            ),
            ProviderId.GEMINI.value: GeminiProvider(
                self.config.gemini, self._credentials, self._http_client
            ),
            ProviderId.HEURISTIC.value: HeuristicProvider(self.config.heuristic),
        }

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
