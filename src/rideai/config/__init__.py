"""Configuration system for RideAI.

Provides strongly-typed configuration objects that can be loaded from:
- Environment variables
- YAML files
- Programmatic construction

All configuration is validated when the system starts.
"""

from .system import SystemConfig
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

__all__ = [
    "SystemConfig",
    "OpenAIConfig",
    "GeminiConfig",
    "HeuristicConfig",
    "MapboxConfig",
    "RetryConfig",
    "CacheConfig",
    "MemoryConfig",
    "MemoryBackendType",
    "ProviderId",
    "ServerConfig",
]
