"""Testing utilities for RideAI."""

from .fakes import FakeClock, RecordingSleep, ScriptedProvider

__all__ = [
    "FakeClock",
    "RecordingSleep",
    "ScriptedProvider",
]
