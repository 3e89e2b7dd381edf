"""API route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..config import ProviderId
from ..interfaces import Credential, Feature, OrchestrationResult
from ..system import RideAISystem
from .models import (
    CredentialRequest,
    CredentialStatusResponse,
    HealthResponse,
    InvokeRequest,
    InvokeResponse,
    ProviderHealthResponse,
    ResetResponse,
    UsageRecordResponse,
    UsageResponse,
    UsageTotalsResponse,
    ValidationResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["orchestration"])

CREDENTIAL_PROVIDERS = {
    ProviderId.OPENAI.value,
    ProviderId.GEMINI.value,
    ProviderId.MAPBOX.value,
}


def get_system() -> RideAISystem:
    """Dependency injection for the system.

    This is set by the app during startup.
    """
    from .app import _system
    if _system is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return _system


def _feature(name: str) -> Feature:
    try:
        return Feature(name)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown feature: {name}")


def _credential_provider(provider_id: str) -> str:
    if provider_id not in CREDENTIAL_PROVIDERS:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider_id}")
    return provider_id


def _result_to_response(result: OrchestrationResult) -> InvokeResponse:
    return InvokeResponse(
        feature=result.feature.value,
        value=result.value,
        source=result.source,
        tokens_used=result.tokens_used,
        cost=str(result.cost),
        computed_at=result.computed_at,
        error_kind=result.error_kind.value,
        is_fallback=result.is_fallback,
    )


def _credential_to_response(provider_id: str, credential: Credential | None) -> CredentialStatusResponse:
    if credential is None:
        return CredentialStatusResponse(provider_id=provider_id, configured=False)
    return CredentialStatusResponse(
        provider_id=provider_id,
        configured=True,
        validity=credential.validity.value,
        last_checked_at=credential.last_checked_at,
        reason=credential.reason,
    )


@router.post("/invoke/{feature}", response_model=InvokeResponse)
async def invoke(
    feature: str,
    request: InvokeRequest,
    system: RideAISystem = Depends(get_system),
) -> InvokeResponse:
    """Invoke an AI feature. Provider failures resolve to a fallback answer."""
    result = await system.invoke(_feature(feature), request.payload)
    return _result_to_response(result)


@router.get("/usage", response_model=UsageResponse)
async def usage(system: RideAISystem = Depends(get_system)) -> UsageResponse:
    """Usage counters per provider and feature."""
    totals = system.usage_totals()
    return UsageResponse(
        records=[
            UsageRecordResponse(
                provider_id=r.provider_id,
                feature=r.feature.value,
                request_count=r.request_count,
                total_tokens=r.total_tokens,
                total_cost=str(r.total_cost),
                failed_attempts=r.failed_attempts,
            )
            for r in system.usage()
        ],
        totals=UsageTotalsResponse(
            request_count=totals.request_count,
            total_tokens=totals.total_tokens,
            total_cost=str(totals.total_cost),
            failed_attempts=totals.failed_attempts,
        ),
    )


@router.post("/usage/reset", response_model=ResetResponse)
async def reset_usage(system: RideAISystem = Depends(get_system)) -> ResetResponse:
    system.reset_usage()
    return ResetResponse(success=True)


@router.get("/credentials", response_model=list[CredentialStatusResponse])
async def list_credentials(
    system: RideAISystem = Depends(get_system),
) -> list[CredentialStatusResponse]:
    """Status of every credential-backed provider."""
    stored = {c.provider_id: c for c in system.credential_status()}
    return [
        _credential_to_response(provider_id, stored.get(provider_id))
        for provider_id in sorted(CREDENTIAL_PROVIDERS)
    ]


@router.put("/credentials/{provider_id}", response_model=CredentialStatusResponse)
async def set_credential(
    provider_id: str,
    request: CredentialRequest,
    system: RideAISystem = Depends(get_system),
) -> CredentialStatusResponse:
    """Store a provider secret. Validity resets to unknown."""
    provider_id = _credential_provider(provider_id)
    system.set_credential(provider_id, request.secret)
    stored = {c.provider_id: c for c in system.credential_status()}
    return _credential_to_response(provider_id, stored.get(provider_id))


@router.post("/credentials/{provider_id}/validate", response_model=ValidationResponse)
async def validate_credential(
    provider_id: str,
    system: RideAISystem = Depends(get_system),
) -> ValidationResponse:
    """Probe the provider with the stored secret."""
    provider_id = _credential_provider(provider_id)
    result = await system.validate_credential(provider_id)
    return ValidationResponse(provider_id=provider_id, valid=result.valid, reason=result.reason)


@router.get("/health", response_model=HealthResponse)
async def health(system: RideAISystem = Depends(get_system)) -> HealthResponse:
    """Health check endpoint."""
    report = await system.health()
    return HealthResponse(
        status="ok" if report["status"] == "running" else report["status"],
        instance_id=system.config.instance_id,
        providers={
            name: ProviderHealthResponse(**info)
            for name, info in report.get("providers", {}).items()
        },
        interactions=system.container.memory.count(),
    )
