"""Provider interfaces and implementations.

Providers are swappable backends behind one contract: ``call(feature,
payload, context) -> ProviderResult``. The map provider is consulted by
the orchestrator directly and is not part of any chain.
"""

from .base import (
    Provider,
    ProviderHealth,
    ProviderStatus,
    FeatureProvider,
    HTTPFeatureProvider,
)
from .openai import OpenAIProvider
from .gemini import GeminiProvider
from .heuristic import HeuristicProvider
from .mapbox import MapboxProvider

__all__ = [
    # Base interfaces
    "Provider",
    "ProviderHealth",
    "ProviderStatus",
    "FeatureProvider",
    "HTTPFeatureProvider",
    # Chain providers
    "OpenAIProvider",
    "GeminiProvider",
    "HeuristicProvider",
    # Directions
    "MapboxProvider",
]
