"""Credential registry: per-provider secrets and their last known validity.

Secrets are session-scoped and only ever sent to the provider they
authenticate. The registry is the only writer of ``Credential.validity``.
"""

import logging
import threading
from typing import Callable, Optional

import httpx

from ..config.providers import ProviderId
from ..interfaces import Credential, ValidationResult, Validity, utcnow

logger = logging.getLogger(__name__)

# Providers that answer without any secret
CREDENTIAL_FREE = frozenset({ProviderId.HEURISTIC.value})

# Values shipped in example .env files; treated as "not configured"
PLACEHOLDER_SECRETS = frozenset({
    "your_openai_api_key_here",
    "your_google_ai_api_key_here",
    "your_gemini_api_key_here",
    "your_mapbox_token_here",
    "your_api_key_here",
    "changeme",
})

KEY_PREFIXES = {
    ProviderId.OPENAI.value: "sk-",
    ProviderId.GEMINI.value: "AIza",
    ProviderId.MAPBOX.value: "pk.",
}

DEFAULT_PROBE_BASES = {
    ProviderId.OPENAI.value: "https://api.openai.com/v1",
    ProviderId.GEMINI.value: "https://generativelanguage.googleapis.com/v1beta",
    ProviderId.MAPBOX.value: "https://api.mapbox.com",
}


def is_placeholder(secret: Optional[str]) -> bool:
    """True for blank secrets and known template values."""
    if secret is None or not secret.strip():
        return True
    value = secret.strip().lower()
    return value in PLACEHOLDER_SECRETS or value.startswith("your_")


class CredentialRegistry:
    """Holds provider credentials and answers "is provider P usable?".

    Usage:
        registry = CredentialRegistry({"openai": "sk-..."})
        if registry.is_available("openai"):
            ...
        result = await registry.validate("openai")
    """

    def __init__(
        self,
        initial: Optional[dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        probe_bases: Optional[dict[str, str]] = None,
        timeout_seconds: float = 10.0,
        clock: Callable = utcnow,
    ):
        self._credentials: dict[str, Credential] = {}
        self._lock = threading.Lock()
        self._client = client
        self._probe_bases = {**DEFAULT_PROBE_BASES, **(probe_bases or {})}
        self._timeout = timeout_seconds
        self._clock = clock
        for provider_id, secret in (initial or {}).items():
            self.set_credential(provider_id, secret)

    def set_credential(self, provider_id: str, secret: Optional[str]) -> None:
        """Store a secret and reset its validity to UNKNOWN.

        Blank or placeholder secrets clear the credential instead.
        """
        if is_placeholder(secret):
            self.clear_credential(provider_id)
            return
        with self._lock:
            self._credentials[provider_id] = Credential(
                provider_id=provider_id,
                secret=secret.strip(),
            )
        logger.info(f"Credential set for {provider_id}")

    def clear_credential(self, provider_id: str) -> bool:
        with self._lock:
            removed = self._credentials.pop(provider_id, None) is not None
        if removed:
            logger.info(f"Credential cleared for {provider_id}")
        return removed

    def clear_all(self) -> None:
        with self._lock:
            self._credentials.clear()

    def get(self, provider_id: str) -> Optional[Credential]:
        with self._lock:
            return self._credentials.get(provider_id)

    def requires_credential(self, provider_id: str) -> bool:
        return provider_id not in CREDENTIAL_FREE

    def is_available(self, provider_id: str) -> bool:
        """A provider is usable if it needs no secret, or has one not known to be invalid."""
        if not self.requires_credential(provider_id):
            return True
        credential = self.get(provider_id)
        return credential is not None and credential.validity != Validity.INVALID

    def secret_for(self, provider_id: str) -> Optional[str]:
        """Raw secret for the adapter that authenticates to ``provider_id``."""
        credential = self.get(provider_id)
        return credential.secret if credential else None

    def status(self) -> list[Credential]:
        """Copies of every stored credential, sorted by provider id."""
        with self._lock:
            rows = [
                Credential(
                    provider_id=c.provider_id,
                    secret=c.secret,
                    validity=c.validity,
                    last_checked_at=c.last_checked_at,
                    reason=c.reason,
                )
                for c in self._credentials.values()
            ]
        return sorted(rows, key=lambda c: c.provider_id)

    async def validate(self, provider_id: str) -> ValidationResult:
        """Check format, then probe the provider with a cheap request.

        Never raises. The stored credential's validity and
        ``last_checked_at`` are updated whatever the outcome.
        """
        if not self.requires_credential(provider_id):
            return ValidationResult(valid=True)

        credential = self.get(provider_id)
        if credential is None:
            return ValidationResult(valid=False, reason="missing")

        prefix = KEY_PREFIXES.get(provider_id)
        if prefix and not credential.secret.startswith(prefix):
            result = ValidationResult(valid=False, reason="format")
        elif provider_id not in self._probe_bases:
            result = ValidationResult(valid=False, reason="unsupported provider")
        else:
            result = await self._probe(provider_id, credential.secret)

        self._store_outcome(provider_id, credential.secret, result)
        return result

    async def validate_all(self) -> dict[str, ValidationResult]:
        """Validate every stored credential, one provider at a time."""
        results = {}
        for credential in self.status():
            results[credential.provider_id] = await self.validate(credential.provider_id)
        return results

    def _store_outcome(self, provider_id: str, secret: str, result: ValidationResult) -> None:
        with self._lock:
            credential = self._credentials.get(provider_id)
            # Secret replaced while the probe was in flight
            if credential is None or credential.secret != secret:
                return
            credential.validity = Validity.VALID if result.valid else Validity.INVALID
            credential.reason = result.reason
            credential.last_checked_at = self._clock()
        logger.info(
            f"Credential for {provider_id} validated: "
            f"{'valid' if result.valid else 'invalid'}"
            + (f" ({result.reason})" if result.reason else "")
        )

    def _probe_request(self, provider_id: str, secret: str) -> tuple[str, dict, dict]:
        base = self._probe_bases[provider_id].rstrip("/")
        if provider_id == ProviderId.OPENAI.value:
            return f"{base}/models", {"Authorization": f"Bearer {secret}"}, {}
        if provider_id == ProviderId.GEMINI.value:
            return f"{base}/models", {"x-goog-api-key": secret}, {"pageSize": 1}
        return (
            f"{base}/geocoding/v5/mapbox.places/test.json",
            {},
            {"access_token": secret, "limit": 1},
        )

    async def _probe(self, provider_id: str, secret: str) -> ValidationResult:
        url, headers, params = self._probe_request(provider_id, secret)
        try:
            if self._client is not None:
                response = await self._client.get(
                    url, headers=headers, params=params, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout)) as client:
                    response = await client.get(url, headers=headers, params=params)
        except httpx.HTTPError as e:
            logger.warning(f"Credential probe for {provider_id} failed: {type(e).__name__}")
            return ValidationResult(valid=False, reason="network")

        status = response.status_code
        # Throttled means the key itself was accepted
        if 200 <= status < 300 or status == 429:
            return ValidationResult(valid=True)
        if status == 401:
            return ValidationResult(valid=False, reason="auth")
        if status == 403:
            return ValidationResult(valid=False, reason="permission")
        return ValidationResult(valid=False, reason=f"status {status}")
