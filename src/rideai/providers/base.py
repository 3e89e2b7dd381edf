"""Abstract base classes for all providers.

These define the contracts that provider implementations must satisfy.
A feature provider normalizes a feature request into its own call shape
and normalizes the answer, or the failure, back into a ``ProviderResult``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Mapping, Optional, TypeVar

import httpx

from ..errors import ProviderError, result_from_exception
from ..interfaces import ErrorKind, Feature, ProviderResult, utcnow
from ..services.credentials import CredentialRegistry


# Type variable for provider-specific configuration
TConfig = TypeVar('TConfig')


class ProviderStatus(Enum):
    """Provider health status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    INITIALIZING = "initializing"


@dataclass
class ProviderHealth:
    """Health check result for a provider."""
    status: ProviderStatus
    latency_ms: Optional[float] = None
    message: Optional[str] = None
    last_check: datetime = field(default_factory=utcnow)


class Provider(ABC, Generic[TConfig]):
    """Base class for all providers.

    Provides common functionality:
    - Configuration management
    - Health checking
    - Lifecycle management (init/shutdown)
    """

    def __init__(self, config: TConfig):
        self.config = config
        self._initialized = False

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the provider. Called once before first use."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Gracefully shutdown the provider."""
        pass

    @abstractmethod
    async def health_check(self) -> ProviderHealth:
        """Check provider health and connectivity."""
        pass

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def __aenter__(self):
        if not self._initialized:
            await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()


class FeatureProvider(Provider[TConfig]):
    """A provider that can answer AI feature requests.

    Subclasses set ``provider_id`` and implement ``call``. ``call`` must
    return a ``ProviderResult`` for every outcome; provider-specific
    exceptions never cross this boundary.
    """

    provider_id: str = ""
    requires_credential: bool = True
    features: frozenset = frozenset(Feature)

    def supports(self, feature: Feature) -> bool:
        return feature in self.features

    @abstractmethod
    async def call(
        self,
        feature: Feature,
        payload: Mapping[str, Any],
        context: str = "",
    ) -> ProviderResult:
        """Answer one feature request.

        Args:
            feature: Which feature is being invoked
            payload: Feature-specific request data
            context: Plain-text summary of recent interactions

        Returns:
            ProviderResult tagged SUCCESS, RETRYABLE_FAILURE or FATAL_FAILURE
        """
        pass


class HTTPFeatureProvider(FeatureProvider[TConfig]):
    """Feature provider backed by a remote JSON API over httpx.

    The secret is looked up in the credential registry on every call,
    so credential edits take effect without restarting the provider.
    An injected client is shared and never closed here.
    """

    def __init__(
        self,
        config: TConfig,
        credentials: CredentialRegistry,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config)
        self.credentials = credentials
        self._client = client
        self._owns_client = client is None

    async def initialize(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout_seconds),
                headers={"Content-Type": "application/json"},
            )
            self._owns_client = True
        self._initialized = True

    async def shutdown(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._initialized = False

    async def health_check(self) -> ProviderHealth:
        if self._client is None:
            return ProviderHealth(
                status=ProviderStatus.UNAVAILABLE,
                message="Client not initialized",
            )
        if not self.credentials.is_available(self.provider_id):
            return ProviderHealth(
                status=ProviderStatus.DEGRADED,
                message="No usable credential",
            )
        return ProviderHealth(status=ProviderStatus.HEALTHY)

    async def call(
        self,
        feature: Feature,
        payload: Mapping[str, Any],
        context: str = "",
    ) -> ProviderResult:
        secret = self.credentials.secret_for(self.provider_id)
        if not secret:
            return ProviderResult.fatal_failure(
                self.provider_id, ErrorKind.AUTH, "no credential configured"
            )
        if self._client is None:
            await self.initialize()
        try:
            return await self._request(feature, payload, context, secret)
        except (ProviderError, httpx.HTTPError) as e:
            return result_from_exception(self.provider_id, e)

    @abstractmethod
    async def _request(
        self,
        feature: Feature,
        payload: Mapping[str, Any],
        context: str,
        secret: str,
    ) -> ProviderResult:
        """Perform the HTTP exchange.

        May raise ``ProviderError`` or httpx errors; ``call`` classifies them.
        Anything else is a defect and propagates to the orchestrator.
        """
        pass
