"""Pytest fixtures for RideAI tests."""

import pytest

from rideai.interfaces import ErrorKind, ProviderResult
from rideai.orchestrator import Orchestrator
from rideai.services import (
    CredentialRegistry,
    InteractionMemory,
    ResultCache,
    RetryPolicy,
    UsageLedger,
)
from rideai.testing import FakeClock, RecordingSleep, ScriptedProvider

OPENAI_PRICE = {
    "base_price": 19.95,
    "surge_multiplier": 1.0,
    "final_price": 19.95,
    "price_breakdown": {"base_fare": 3.5, "distance_fare": 10.2, "time_fare": 6.25, "surge": 0.0},
}


@pytest.fixture
def clock():
    """Provide a controllable monotonic clock."""
    return FakeClock()


@pytest.fixture
def sleep():
    """Provide a sleep that records backoff delays."""
    return RecordingSleep()


@pytest.fixture
def credentials():
    """Registry with an OpenAI key configured."""
    return CredentialRegistry({"openai": "sk-test-key"})


@pytest.fixture
def cache(clock):
    return ResultCache(clock=clock)


@pytest.fixture
def ledger():
    return UsageLedger()


@pytest.fixture
def memory():
    return InteractionMemory()


@pytest.fixture
def policy():
    """Two retries with a 1s base, so delays are observable but never slept."""
    return RetryPolicy(max_retries=2, backoff_base=1.0, backoff_max=30.0, timeout_seconds=5.0)


@pytest.fixture
def rate_limited():
    return lambda pid: ProviderResult.retryable_failure(pid, ErrorKind.RATE_LIMIT, "429")


@pytest.fixture
def make_orchestrator(credentials, cache, ledger, memory, policy, sleep):
    """Factory for orchestrators wired to the shared fake services."""
    def _make(providers, chains=None, **kwargs):
        providers = {p.provider_id: p for p in providers}
        if chains is None:
            chains = {
                feature: list(providers)
                for feature in ("match", "price", "route", "demand_forecast", "analytics", "chat")
            }
        return Orchestrator(
            providers=providers,
            chains=chains,
            credentials=kwargs.pop("credentials", credentials),
            cache=cache,
            ledger=ledger,
            memory=kwargs.pop("memory", memory),
            policy=kwargs.pop("policy", policy),
            sleep=sleep,
            **kwargs,
        )
    return _make


@pytest.fixture
def openai_price():
    """OpenAI fake that answers price requests with 120 tokens."""
    return ScriptedProvider.succeeding("openai", dict(OPENAI_PRICE), tokens_used=120)
