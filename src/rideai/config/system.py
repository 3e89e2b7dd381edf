"""System-wide configuration."""

import os
from dataclasses import dataclass, field
from typing import Optional
from pathlib import Path

import yaml

from ..interfaces import Feature
from .providers import (
    OpenAIConfig,
    GeminiConfig,
    HeuristicConfig,
    MapboxConfig,
    RetryConfig,
    CacheConfig,
    MemoryConfig,
    MemoryBackendType,
    ProviderId,
    ServerConfig,
)

CHAIN_PROVIDERS = {ProviderId.OPENAI.value, ProviderId.GEMINI.value, ProviderId.HEURISTIC.value}


def _default_chains() -> dict[str, list[str]]:
    primary = [ProviderId.OPENAI.value, ProviderId.HEURISTIC.value]
    chains = {feature.value: list(primary) for feature in Feature}
    chains[Feature.CHAT.value] = [
        ProviderId.GEMINI.value,
        ProviderId.OPENAI.value,
        ProviderId.HEURISTIC.value,
    ]
    return chains


@dataclass
class SystemConfig:
    """Complete system configuration.

    Combines all provider configurations into a single object.
    Can be loaded from environment variables, a YAML file, or
    constructed programmatically.

    Attributes:
        instance_id: Identifier for this orchestrator instance
        credentials: Initial provider secrets keyed by provider id
        chains: Ordered provider ids per feature value
        openai: Primary generative provider configuration
        gemini: Google AI provider configuration
        heuristic: Local heuristic model configuration
        mapbox: Directions provider configuration
        retry: Retry/backoff policy
        cache: Result cache TTLs
        memory: Interaction memory configuration
        server: HTTP server configuration
        debug: Enable debug logging
    """
    instance_id: str = "default"
    credentials: dict[str, str] = field(default_factory=dict)
    chains: dict[str, list[str]] = field(default_factory=_default_chains)
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    heuristic: HeuristicConfig = field(default_factory=HeuristicConfig)
    mapbox: MapboxConfig = field(default_factory=MapboxConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    debug: bool = False

    def chain_for(self, feature: Feature) -> list[str]:
        return self.chains.get(feature.value, _default_chains()[feature.value])

    @classmethod
    def from_env(cls, prefix: str = "RIDEAI") -> "SystemConfig":
        """Load configuration from environment variables.

        Environment variables:
            {prefix}_CONFIG: Optional YAML file loaded first
            {prefix}_INSTANCE_ID: Instance identifier
            {prefix}_DEBUG: Enable debug mode

            {prefix}_OPENAI_API_KEY: OpenAI key (or OPENAI_API_KEY)
            {prefix}_OPENAI_MODEL: Chat model name
            {prefix}_GOOGLE_AI_API_KEY: Google AI key (or GOOGLE_AI_API_KEY)
            {prefix}_GOOGLE_AI_MODEL: Gemini model name
            {prefix}_MAPBOX_TOKEN: Mapbox token (or MAPBOX_TOKEN)

            {prefix}_MAX_RETRIES: Retries per provider
            {prefix}_TIMEOUT_SECONDS: Per-call timeout

            {prefix}_MEMORY_BACKEND: memory|sqlite
            {prefix}_MEMORY_PATH: SQLite path
            {prefix}_MEMORY_RETENTION_DAYS: Days to keep interactions

            {prefix}_HOST: HTTP bind address
            {prefix}_PORT: HTTP port
        """
        def get(key: str, default: str = None) -> Optional[str]:
            return os.environ.get(f"{prefix}_{key}", default)

        def get_bool(key: str, default: bool = False) -> bool:
            val = get(key)
            if val is None:
                return default
            return val.lower() in ("true", "1", "yes")

        def get_float(key: str, default: float) -> float:
            val = get(key)
            return float(val) if val else default

        def get_int(key: str, default: int) -> int:
            val = get(key)
            return int(val) if val else default

        config_path = get("CONFIG")
        config = cls.from_file(config_path) if config_path else cls()

        credentials = dict(config.credentials)
        for provider_id, names in (
            (ProviderId.OPENAI.value, ("OPENAI_API_KEY",)),
            (ProviderId.GEMINI.value, ("GOOGLE_AI_API_KEY", "GEMINI_API_KEY")),
            (ProviderId.MAPBOX.value, ("MAPBOX_TOKEN",)),
        ):
            for name in names:
                value = get(name) or os.environ.get(name)
                if value:
                    credentials[provider_id] = value
                    break
        config.credentials = credentials

        config.instance_id = get("INSTANCE_ID", config.instance_id)
        config.debug = get_bool("DEBUG", config.debug)
        config.openai.model = get("OPENAI_MODEL", config.openai.model)
        config.gemini.model = get("GOOGLE_AI_MODEL", config.gemini.model)

        config.retry.max_retries = get_int("MAX_RETRIES", config.retry.max_retries)
        config.retry.timeout_seconds = get_float("TIMEOUT_SECONDS", config.retry.timeout_seconds)

        backend = get("MEMORY_BACKEND")
        if backend:
            config.memory.backend = MemoryBackendType(backend)
        config.memory.path = get("MEMORY_PATH", config.memory.path)
        config.memory.retention_days = get_int("MEMORY_RETENTION_DAYS", config.memory.retention_days)

        config.server.host = get("HOST", config.server.host)
        config.server.port = get_int("PORT", config.server.port)

        return config

    @classmethod
    def from_file(cls, path: str | Path) -> "SystemConfig":
        """Load configuration from YAML file. Missing file yields defaults."""
        path = Path(path).expanduser()
        if not path.exists():
            return cls()

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "SystemConfig":
        """Create configuration from a dictionary (e.g. parsed YAML)."""
        def section(name: str, factory):
            values = data.get(name) or {}
            return factory(**values) if values else factory()

        memory_data = dict(data.get("memory") or {})
        if "backend" in memory_data:
            memory_data["backend"] = MemoryBackendType(memory_data["backend"])

        chains = _default_chains()
        chains.update({k: list(v) for k, v in (data.get("chains") or {}).items()})

        cache_data = dict(data.get("cache") or {})
        if "ttl_seconds" in cache_data:
            ttls = CacheConfig().ttl_seconds
            ttls.update(cache_data["ttl_seconds"])
            cache_data["ttl_seconds"] = ttls

        return cls(
            instance_id=data.get("instance_id", "default"),
            credentials=dict(data.get("credentials") or {}),
            chains=chains,
            openai=section("openai", OpenAIConfig),
            gemini=section("gemini", GeminiConfig),
            heuristic=section("heuristic", HeuristicConfig),
            mapbox=section("mapbox", MapboxConfig),
            retry=section("retry", RetryConfig),
            cache=CacheConfig(**cache_data) if cache_data else CacheConfig(),
            memory=MemoryConfig(**memory_data) if memory_data else MemoryConfig(),
            server=section("server", ServerConfig),
            debug=bool(data.get("debug", False)),
        )

    @classmethod
    def for_testing(cls, instance_id: str = "test") -> "SystemConfig":
        """Create a configuration suitable for testing.

        No credentials (so only the heuristic model answers), in-memory
        interaction store and zero backoff delays.
        """
        return cls(
            instance_id=instance_id,
            retry=RetryConfig(
                max_retries=2,
                backoff_base=0.0,
                backoff_max=0.0,
                timeout_seconds=5.0,
            ),
            memory=MemoryConfig(backend=MemoryBackendType.MEMORY),
            debug=True,
        )

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Checks:
        - Instance ID format
        - Retry and timeout bounds
        - Cache TTL bounds
        - Memory retention and backend requirements
        - Provider ids used in chains
        """
        errors = []

        if not self.instance_id or not self.instance_id.strip():
            errors.append("instance_id cannot be empty")

        # Retry bounds
        if self.retry.max_retries < 0:
            errors.append(f"retry.max_retries must be >= 0, got {self.retry.max_retries}")
        if self.retry.backoff_base < 0:
            errors.append(f"retry.backoff_base must be >= 0, got {self.retry.backoff_base}")
        if self.retry.backoff_max < self.retry.backoff_base:
            errors.append(
                f"retry.backoff_max ({self.retry.backoff_max}) "
                f"should not be below backoff_base ({self.retry.backoff_base})"
            )
        if self.retry.timeout_seconds <= 0:
            errors.append(f"retry.timeout_seconds must be positive, got {self.retry.timeout_seconds}")

        for name, timeout in (
            ("openai", self.openai.timeout_seconds),
            ("gemini", self.gemini.timeout_seconds),
            ("mapbox", self.mapbox.timeout_seconds),
        ):
            if timeout <= 0:
                errors.append(f"{name}.timeout_seconds must be positive, got {timeout}")

        # Cache bounds
        for feature, ttl in self.cache.ttl_seconds.items():
            if ttl < 0:
                errors.append(f"cache.ttl_seconds[{feature}] must be >= 0, got {ttl}")
        if self.cache.fallback_ttl_seconds < 0:
            errors.append(
                f"cache.fallback_ttl_seconds must be >= 0, got {self.cache.fallback_ttl_seconds}"
            )

        # Memory
        if self.memory.retention_days < 1:
            errors.append(f"memory.retention_days must be >= 1, got {self.memory.retention_days}")
        if self.memory.context_limit < 0:
            errors.append(f"memory.context_limit must be >= 0, got {self.memory.context_limit}")
        if self.memory.backend == MemoryBackendType.SQLITE and not self.memory.path:
            errors.append("SQLite memory backend requires memory.path")
        if not 0 < self.server.port < 65536:
            errors.append(f"server.port must be 1-65535, got {self.server.port}")

        # Chains
        known_features = {feature.value for feature in Feature}
        for feature, chain in self.chains.items():
            if feature not in known_features:
                errors.append(f"Unknown feature in chains: {feature}")
            if not chain:
                errors.append(f"Provider chain for {feature} is empty")
            for provider_id in chain:
                if provider_id not in CHAIN_PROVIDERS:
                    errors.append(f"Unknown provider '{provider_id}' in chain for {feature}")

        return errors
