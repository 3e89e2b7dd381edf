"""Provider-specific configuration classes."""

from dataclasses import dataclass, field
from typing import Optional
from enum import Enum

from ..interfaces import Feature


class ProviderId(Enum):
    """Known provider identifiers."""
    OPENAI = "openai"
    GEMINI = "gemini"
    HEURISTIC = "ml"
    MAPBOX = "mapbox"


class MemoryBackendType(Enum):
    """Available interaction memory backends."""
    MEMORY = "memory"
    SQLITE = "sqlite"


@dataclass
class OpenAIConfig:
    """Configuration for the primary generative provider.

    Attributes:
        model: Chat model name (e.g., "gpt-4o-mini")
        api_base: API base URL
        temperature: Sampling temperature
        max_tokens: Completion token cap
        timeout_seconds: HTTP timeout
    """
    model: str = "gpt-4o-mini"
    api_base: str = "https://api.openai.com/v1"
    temperature: float = 0.3
    max_tokens: int = 1000
    timeout_seconds: float = 30.0


@dataclass
class GeminiConfig:
    """Configuration for the Google AI (Gemini) provider."""
    model: str = "gemini-2.5-flash"
    api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    temperature: float = 0.7
    max_output_tokens: int = 1000
    timeout_seconds: float = 30.0


@dataclass
class HeuristicConfig:
    """Tuning knobs for the local heuristic model.

    Attributes:
        base_fare: Flat fare component
        per_km_rate: Distance rate
        per_minute_rate: Time rate
        max_surge: Upper bound on the surge multiplier
        peak_hours: Hours of day treated as peak demand
    """
    base_fare: float = 3.50
    per_km_rate: float = 1.20
    per_minute_rate: float = 0.25
    max_surge: float = 2.5
    peak_hours: list[int] = field(default_factory=lambda: [7, 8, 9, 17, 18, 19])


@dataclass
class MapboxConfig:
    """Configuration for the directions provider."""
    api_base: str = "https://api.mapbox.com"
    profile: str = "driving-traffic"
    alternatives: bool = True
    timeout_seconds: float = 15.0


@dataclass
class RetryConfig:
    """Retry and backoff policy applied to every provider.

    Attributes:
        max_retries: Retries of the same provider after the first attempt
        backoff_base: Delay before the first retry, in seconds
        backoff_max: Maximum backoff delay
        timeout_seconds: Bound on a single provider call
    """
    max_retries: int = 2
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    timeout_seconds: float = 30.0


def _default_ttls() -> dict[str, float]:
    return {
        Feature.PRICE.value: 300.0,
        Feature.DEMAND_FORECAST.value: 300.0,
        Feature.ROUTE.value: 300.0,
        Feature.MATCH.value: 60.0,
        Feature.ANALYTICS.value: 1800.0,
        Feature.CHAT.value: 60.0,
    }


@dataclass
class CacheConfig:
    """Result cache configuration.

    Attributes:
        ttl_seconds: TTL per feature value
        fallback_ttl_seconds: TTL for locally computed fallback results
        default_ttl_seconds: TTL for features missing from ttl_seconds
    """
    ttl_seconds: dict[str, float] = field(default_factory=_default_ttls)
    fallback_ttl_seconds: float = 30.0
    default_ttl_seconds: float = 300.0

    def ttl_for(self, feature: Feature) -> float:
        return self.ttl_seconds.get(feature.value, self.default_ttl_seconds)


@dataclass
class MemoryConfig:
    """Interaction memory configuration.

    Attributes:
        backend: Where interactions are kept
        path: SQLite database path (sqlite backend only)
        retention_days: Interactions older than this are swept
        context_limit: Interactions folded into each prompt
        sweep_interval_seconds: How often the server sweeps
        record_failures: Also remember invocations that fell back
    """
    backend: MemoryBackendType = MemoryBackendType.MEMORY
    path: Optional[str] = None
    retention_days: int = 30
    context_limit: int = 10
    sweep_interval_seconds: float = 6 * 60 * 60
    record_failures: bool = False


@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = "127.0.0.1"
    port: int = 8001
