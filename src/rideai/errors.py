"""Error taxonomy and failure classification.

Adapters raise or catch these internally and convert them to
``ProviderResult`` values. Classification is a pure function of the
HTTP status and the provider's structured error code, never of
message text.
"""

from typing import Optional

import httpx

from .interfaces import ErrorKind, ProviderResult, ResultStatus

# Provider error codes that mean "quota gone", not "slow down"
QUOTA_ERROR_CODES = frozenset({
    "insufficient_quota",
    "billing_hard_limit_reached",
    "quota_exceeded",
})


class RideAIError(Exception):
    """Base class for all RideAI errors."""


class ProviderError(RideAIError):
    """A provider call failed with structured metadata."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        kind: Optional[ErrorKind] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        if kind is not None:
            self.kind = kind


class AuthError(ProviderError):
    kind = ErrorKind.AUTH


class RateLimitError(ProviderError):
    kind = ErrorKind.RATE_LIMIT


class ProviderTimeoutError(ProviderError):
    kind = ErrorKind.TIMEOUT


class MalformedResponseError(ProviderError):
    kind = ErrorKind.MALFORMED_RESPONSE


class QuotaExhaustedError(ProviderError):
    kind = ErrorKind.QUOTA_EXHAUSTED


class MapProviderError(ProviderError):
    """Directions or geocoding lookup failed."""


class NoProviderAvailable(RideAIError):
    """Every provider in the chain was exhausted. Resolved via the fallback value."""


class InvalidInputError(RideAIError):
    """Caller-supplied payload failed basic validation."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


RETRYABLE_KINDS = frozenset({
    ErrorKind.RATE_LIMIT,
    ErrorKind.TIMEOUT,
    ErrorKind.NETWORK,
    ErrorKind.SERVER_ERROR,
})


def classify_http_status(
    status_code: int,
    error_code: Optional[str] = None,
) -> tuple[ResultStatus, ErrorKind]:
    """Classify a non-2xx HTTP response.

    Args:
        status_code: HTTP status returned by the provider
        error_code: Provider error code from the JSON body, if any

    Returns:
        Tuple of (status, error kind)
    """
    code = (error_code or "").lower()
    if status_code in (401, 403):
        return ResultStatus.FATAL_FAILURE, ErrorKind.AUTH
    if status_code == 429:
        if code in QUOTA_ERROR_CODES:
            return ResultStatus.FATAL_FAILURE, ErrorKind.QUOTA_EXHAUSTED
        return ResultStatus.RETRYABLE_FAILURE, ErrorKind.RATE_LIMIT
    if status_code == 408:
        return ResultStatus.RETRYABLE_FAILURE, ErrorKind.TIMEOUT
    if status_code >= 500:
        return ResultStatus.RETRYABLE_FAILURE, ErrorKind.SERVER_ERROR
    return ResultStatus.FATAL_FAILURE, ErrorKind.INVALID_REQUEST


def error_code_from_body(body: object) -> Optional[str]:
    """Pull the structured error code out of an OpenAI or Google error body."""
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        # OpenAI: {"error": {"code": "insufficient_quota"}}
        # Google: {"error": {"status": "RESOURCE_EXHAUSTED", "details": [...]}}
        for key in ("code", "type"):
            code = error.get(key)
            if isinstance(code, str):
                return code
        for detail in error.get("details") or []:
            if isinstance(detail, dict) and detail.get("reason"):
                return str(detail["reason"])
        status = error.get("status")
        if isinstance(status, str):
            return status
    return None


def result_from_response(provider_id: str, response: httpx.Response) -> ProviderResult:
    """Build a failure result from a non-2xx httpx response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    code = error_code_from_body(body)
    status, kind = classify_http_status(response.status_code, code)
    message = f"HTTP {response.status_code}" + (f" ({code})" if code else "")
    return ProviderResult(provider_id=provider_id, status=status, error_kind=kind, message=message)


def result_from_exception(provider_id: str, exc: Exception) -> ProviderResult:
    """Map an adapter-internal exception to a failure result.

    Args:
        provider_id: Provider that raised
        exc: The raised exception

    Returns:
        ProviderResult with RETRYABLE_FAILURE or FATAL_FAILURE status
    """
    if isinstance(exc, ProviderError):
        if exc.status_code is not None and exc.kind == ErrorKind.UNKNOWN:
            status, kind = classify_http_status(exc.status_code, exc.code)
        else:
            kind = exc.kind
            status = (
                ResultStatus.RETRYABLE_FAILURE if kind in RETRYABLE_KINDS
                else ResultStatus.FATAL_FAILURE
            )
        return ProviderResult(provider_id=provider_id, status=status, error_kind=kind, message=str(exc))
    if isinstance(exc, httpx.TimeoutException):
        return ProviderResult.retryable_failure(provider_id, ErrorKind.TIMEOUT, str(exc) or "timeout")
    if isinstance(exc, httpx.RequestError):
        return ProviderResult.retryable_failure(provider_id, ErrorKind.NETWORK, str(exc) or "network error")
    return ProviderResult.fatal_failure(provider_id, ErrorKind.UNKNOWN, f"{type(exc).__name__}: {exc}")
