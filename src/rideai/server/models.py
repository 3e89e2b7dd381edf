"""Pydantic models for HTTP API request/response."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Request Models
# =============================================================================

class InvokeRequest(BaseModel):
    """Request to invoke an AI feature."""
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Feature-specific request data",
    )


class CredentialRequest(BaseModel):
    """Request to set (or clear, if blank) a provider secret."""
    secret: Optional[str] = Field(default=None, description="API key or access token")


# =============================================================================
# Response Models
# =============================================================================

class InvokeResponse(BaseModel):
    """Answer to a feature invocation. Always produced, even on fallback."""
    feature: str
    value: dict[str, Any]
    source: str = Field(..., description="Provider id, or 'fallback'")
    tokens_used: int = 0
    cost: str = Field(default="0", description="Estimated USD cost as a decimal string")
    computed_at: datetime
    error_kind: str = "none"
    is_fallback: bool = False


class UsageRecordResponse(BaseModel):
    """Usage counters for one (provider, feature) pair."""
    provider_id: str
    feature: str
    request_count: int
    total_tokens: int
    total_cost: str
    failed_attempts: int


class UsageTotalsResponse(BaseModel):
    request_count: int
    total_tokens: int
    total_cost: str
    failed_attempts: int


class UsageResponse(BaseModel):
    records: list[UsageRecordResponse]
    totals: UsageTotalsResponse


class ResetResponse(BaseModel):
    success: bool


class CredentialStatusResponse(BaseModel):
    """Credential state. The secret itself is never returned."""
    provider_id: str
    configured: bool
    validity: str = "unknown"
    last_checked_at: Optional[datetime] = None
    reason: Optional[str] = None


class ValidationResponse(BaseModel):
    provider_id: str
    valid: bool
    reason: Optional[str] = None


class ProviderHealthResponse(BaseModel):
    status: str
    latency_ms: Optional[float] = None
    message: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    instance_id: str
    providers: dict[str, ProviderHealthResponse] = Field(default_factory=dict)
    interactions: int = 0
