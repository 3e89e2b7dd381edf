"""RideAI: AI request orchestration for rideshare operator consoles."""

from .config import SystemConfig
from .interfaces import Feature, OrchestrationResult
from .system import RideAISystem

__version__ = "0.1.0"

__all__ = [
    "Feature",
    "OrchestrationResult",
    "RideAISystem",
    "SystemConfig",
]
