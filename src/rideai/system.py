"""RideAI System - high-level API.

This is the main entry point for the operator console. It provides a
small async interface while delegating to the orchestrator and services
through the container.
"""

from typing import Any, Mapping, Optional, Sequence

from .config import SystemConfig
from .container import Container
from .interfaces import Credential, Feature, OrchestrationResult, UsageRecord, ValidationResult
from .services.ledger import UsageTotals


class RideAISystem:
    """High-level orchestration API.

    Usage:
        config = SystemConfig.from_env()
        system = RideAISystem(config)

        async with system:
            price = await system.calculate_price({"distance": 8.5, "time": 25})
            print(price.source, price.value["final_price"])

    Or manually:
        system = RideAISystem(config)
        await system.start()
        try:
            await system.chat("Where is my driver?")
        finally:
            await system.stop()
    """

    def __init__(self, config: SystemConfig, container: Optional[Container] = None):
        """Initialize the system.

        Args:
            config: System configuration
            container: Pre-built container (tests inject fakes through it)
        """
        self.config = config
        self._container = container or Container(config)
        self._started = False

    @property
    def container(self) -> Container:
        return self._container

    async def start(self) -> None:
        """Validate configuration and start all services."""
        if self._started:
            return

        errors = self.config.validate()
        if errors:
            raise ValueError(f"Invalid configuration: {errors}")

        await self._container.initialize()
        self._started = True

    async def stop(self) -> None:
        if not self._started:
            return
        await self._container.shutdown()
        self._started = False

    async def invoke(
        self,
        feature: Feature,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> OrchestrationResult:
        self._ensure_started()
        return await self._container.orchestrator.invoke(feature, payload)

    async def match_drivers(
        self,
        drivers: Sequence[Mapping[str, Any]],
        preferences: Optional[Mapping[str, Any]] = None,
        passenger: Optional[Mapping[str, Any]] = None,
    ) -> OrchestrationResult:
        self._ensure_started()
        return await self._container.orchestrator.match_drivers(drivers, preferences, passenger)

    async def calculate_price(self, trip: Mapping[str, Any]) -> OrchestrationResult:
        self._ensure_started()
        return await self._container.orchestrator.calculate_price(trip)

    async def optimize_route(
        self,
        origin: Any,
        destination: Any,
        preferences: Optional[Mapping[str, Any]] = None,
    ) -> OrchestrationResult:
        self._ensure_started()
        return await self._container.orchestrator.optimize_route(origin, destination, preferences)

    async def predict_demand(self, location: Any, time_range: str = "6h") -> OrchestrationResult:
        self._ensure_started()
        return await self._container.orchestrator.predict_demand(location, time_range)

    async def get_analytics(
        self,
        timeframe: str = "24h",
        metrics: Optional[Mapping[str, Any]] = None,
    ) -> OrchestrationResult:
        self._ensure_started()
        return await self._container.orchestrator.get_analytics(timeframe, metrics)

    async def chat(self, message: str, conversation_id: str = "default") -> OrchestrationResult:
        self._ensure_started()
        return await self._container.orchestrator.chat(message, conversation_id)

    def usage(self) -> list[UsageRecord]:
        """Snapshot of the usage ledger."""
        self._ensure_started()
        return self._container.ledger.snapshot()

    def usage_totals(self) -> UsageTotals:
        self._ensure_started()
        return self._container.ledger.totals()

    def reset_usage(self) -> None:
        self._ensure_started()
        self._container.ledger.reset()

    def set_credential(self, provider_id: str, secret: Optional[str]) -> None:
        """Store (or clear, if blank) a provider secret.

        Cached results are dropped so the new provider is consulted.
        """
        self._ensure_started()
        self._container.credentials.set_credential(provider_id, secret)
        self._container.cache.clear()

    async def validate_credential(self, provider_id: str) -> ValidationResult:
        self._ensure_started()
        return await self._container.credentials.validate(provider_id)

    def credential_status(self) -> list[Credential]:
        self._ensure_started()
        return self._container.credentials.status()

    def sweep_memory(self) -> int:
        """Delete interactions past the retention window; also evict expired cache entries."""
        self._ensure_started()
        self._container.cache.sweep()
        return self._container.memory.sweep(self.config.memory.retention_days)

    def analyze_patterns(self, days: Optional[int] = None) -> dict[str, Any]:
        self._ensure_started()
        return self._container.memory.analyze_patterns(days or self.config.memory.retention_days)

    async def health(self) -> dict[str, Any]:
        """Check system health.

        Returns:
            Dict with ``status``, ``instance_id`` and per-provider health
        """
        if not self._started:
            return {"status": "stopped"}

        health = await self._container.health_check()
        return {
            "status": "running",
            "instance_id": self.config.instance_id,
            "providers": {
                name: {"status": h.status.value, "latency_ms": h.latency_ms, "message": h.message}
                for name, h in health.items()
            },
        }

    def _ensure_started(self) -> None:
        if not self._started:
            raise RuntimeError("RideAISystem not started. Call start() first.")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
