"""Core data model for the RideAI orchestration layer.

These records are shared by every component: providers speak
``ProviderResult``, callers only ever see ``OrchestrationResult``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional
import uuid

# Provenance tag for locally computed results
FALLBACK_SOURCE = "fallback"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Feature(Enum):
    """AI features exposed to the operator console."""
    MATCH = "match"
    PRICE = "price"
    ROUTE = "route"
    DEMAND_FORECAST = "demand_forecast"
    ANALYTICS = "analytics"
    CHAT = "chat"


class ResultStatus(Enum):
    """Outcome of a single provider attempt."""
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"


class ErrorKind(Enum):
    """Normalized failure reasons, independent of any provider SDK."""
    NONE = "none"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVER_ERROR = "server_error"
    INVALID_REQUEST = "invalid_request"
    QUOTA_EXHAUSTED = "quota_exhausted"
    MALFORMED_RESPONSE = "malformed_response"
    UNAVAILABLE = "unavailable"
    INVALID_INPUT = "invalid_input"
    UNKNOWN = "unknown"


class Validity(Enum):
    """Last known state of a stored credential."""
    UNKNOWN = "unknown"
    VALID = "valid"
    INVALID = "invalid"


@dataclass(frozen=True)
class FeatureRequest:
    """A single feature invocation. Immutable once created."""
    feature: Feature
    payload: Mapping[str, Any]
    requested_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        feature: Feature,
        payload: Optional[Mapping[str, Any]] = None,
        requested_at: Optional[datetime] = None,
    ) -> "FeatureRequest":
        return cls(
            feature=feature,
            payload=MappingProxyType(dict(payload or {})),
            requested_at=requested_at or utcnow(),
        )


@dataclass(frozen=True)
class ProviderResult:
    """Tagged result of one adapter call.

    Attributes:
        provider_id: Which provider produced this result
        status: Success, retryable failure or fatal failure
        value: Normalized response payload (None on failure)
        error_kind: Why the call failed (NONE on success)
        tokens_used: Tokens billed for the call
        cost: Estimated USD cost of the call
        message: Human-readable detail for logs
    """
    provider_id: str
    status: ResultStatus
    value: Optional[dict[str, Any]] = None
    error_kind: ErrorKind = ErrorKind.NONE
    tokens_used: int = 0
    cost: Decimal = Decimal("0")
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    @property
    def retryable(self) -> bool:
        return self.status == ResultStatus.RETRYABLE_FAILURE

    @classmethod
    def success(
        cls,
        provider_id: str,
        value: dict[str, Any],
        tokens_used: int = 0,
        cost: Decimal = Decimal("0"),
    ) -> "ProviderResult":
        return cls(
            provider_id=provider_id,
            status=ResultStatus.SUCCESS,
            value=value,
            tokens_used=tokens_used,
            cost=cost,
        )

    @classmethod
    def retryable_failure(
        cls, provider_id: str, error_kind: ErrorKind, message: Optional[str] = None
    ) -> "ProviderResult":
        return cls(
            provider_id=provider_id,
            status=ResultStatus.RETRYABLE_FAILURE,
            error_kind=error_kind,
            message=message,
        )

    @classmethod
    def fatal_failure(
        cls, provider_id: str, error_kind: ErrorKind, message: Optional[str] = None
    ) -> "ProviderResult":
        return cls(
            provider_id=provider_id,
            status=ResultStatus.FATAL_FAILURE,
            error_kind=error_kind,
            message=message,
        )

    def __repr__(self) -> str:
        if self.ok:
            return f"ProviderResult({self.provider_id}, success, tokens={self.tokens_used})"
        return f"ProviderResult({self.provider_id}, {self.status.value}, {self.error_kind.value})"


@dataclass(frozen=True)
class OrchestrationResult:
    """The only object returned to callers. Always present, never an exception."""
    feature: Feature
    value: dict[str, Any]
    source: str
    tokens_used: int = 0
    cost: Decimal = Decimal("0")
    computed_at: datetime = field(default_factory=utcnow)
    error_kind: ErrorKind = ErrorKind.NONE

    @property
    def is_fallback(self) -> bool:
        return self.source == FALLBACK_SOURCE

    def to_dict(self) -> dict[str, Any]:
        return {
            "feature": self.feature.value,
            "value": self.value,
            "source": self.source,
            "tokens_used": self.tokens_used,
            "cost": str(self.cost),
            "computed_at": self.computed_at.isoformat(),
            "error_kind": self.error_kind.value,
        }


@dataclass
class CacheEntry:
    """Cached orchestration result. Never served at or past ``expires_at``."""
    key: str
    value: OrchestrationResult
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class UsageRecord:
    """Usage counters for one (provider, feature) pair."""
    provider_id: str
    feature: Feature
    request_count: int = 0
    total_tokens: int = 0
    total_cost: Decimal = Decimal("0")
    failed_attempts: int = 0


@dataclass
class Interaction:
    """A past AI interaction kept for prompt context.

    Attributes:
        id: Unique identifier (UUID by default)
        timestamp: When the interaction completed
        feature: Which feature was invoked
        query: Compact text form of the request
        response: Compact text form of the answer
        metadata: Provider, cost, tokens and feature hints (vehicle type, price...)
    """
    feature: Feature
    query: str
    response: str
    timestamp: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __repr__(self) -> str:
        preview = self.query[:40] + "..." if len(self.query) > 40 else self.query
        return f"Interaction(id={self.id[:8]}..., feature={self.feature.value}, query='{preview}')"


@dataclass
class Credential:
    """Per-provider secret and its last known validity."""
    provider_id: str
    secret: str
    validity: Validity = Validity.UNKNOWN
    last_checked_at: Optional[datetime] = None
    reason: Optional[str] = None

    def __repr__(self) -> str:
        # Never print the secret
        return (
            f"Credential(provider_id={self.provider_id}, "
            f"validity={self.validity.value}, last_checked_at={self.last_checked_at})"
        )


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a credential probe."""
    valid: bool
    reason: Optional[str] = None


@dataclass
class Route:
    """A single route alternative from the directions provider.

    Attributes:
        distance: Route length in meters
        duration: Travel time in seconds
        geometry: GeoJSON LineString
        legs: Per-leg summaries
        weight: Provider routing weight
    """
    distance: float
    duration: float
    geometry: dict[str, Any] = field(default_factory=dict)
    legs: list[dict[str, Any]] = field(default_factory=list)
    weight: Optional[float] = None

    @property
    def duration_minutes(self) -> int:
        return round(self.duration / 60)

    @property
    def distance_km(self) -> float:
        return round(self.distance / 1000, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "distance": self.distance,
            "duration": self.duration,
            "duration_minutes": self.duration_minutes,
            "distance_km": self.distance_km,
            "geometry": self.geometry,
            "legs": self.legs,
            "weight": self.weight,
        }
