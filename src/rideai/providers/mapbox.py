"""Mapbox directions and geocoding.

Not part of any provider chain: the orchestrator consults it to enrich
route requests with candidate routes before a chain provider ranks them.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from .base import Provider, ProviderHealth, ProviderStatus
from ..config.providers import MapboxConfig, ProviderId
from ..errors import MapProviderError, result_from_exception
from ..interfaces import ErrorKind, ProviderResult, Route
from ..services.credentials import CredentialRegistry
from ..utils import coerce_point

logger = logging.getLogger(__name__)


class MapboxProvider(Provider[MapboxConfig]):
    """Directions v5 and geocoding v5 over httpx."""

    provider_id = ProviderId.MAPBOX.value

    def __init__(
        self,
        config: MapboxConfig,
        credentials: CredentialRegistry,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config)
        self.credentials = credentials
        self._client = client
        self._owns_client = client is None

    async def initialize(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout_seconds))
            self._owns_client = True
        self._initialized = True

    async def shutdown(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._initialized = False

    async def health_check(self) -> ProviderHealth:
        if self._client is None:
            return ProviderHealth(status=ProviderStatus.UNAVAILABLE, message="Client not initialized")
        if not self.credentials.is_available(self.provider_id):
            return ProviderHealth(status=ProviderStatus.DEGRADED, message="No usable token")
        return ProviderHealth(status=ProviderStatus.HEALTHY)

    @property
    def available(self) -> bool:
        return self.credentials.is_available(self.provider_id)

    def _token(self) -> str:
        token = self.credentials.secret_for(self.provider_id)
        if not token:
            raise MapProviderError("Mapbox access token not configured", kind=ErrorKind.AUTH)
        return token

    async def _get(self, url: str, params: dict[str, Any]) -> dict:
        if self._client is None:
            await self.initialize()
        try:
            response = await self._client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise MapProviderError(f"Mapbox request timed out: {e}", kind=ErrorKind.TIMEOUT) from e
        except httpx.RequestError as e:
            raise MapProviderError(f"Mapbox request failed: {e}", kind=ErrorKind.NETWORK) from e

        if response.status_code != 200:
            try:
                body = response.json()
            except ValueError:
                body = None
            message = body.get("message") if isinstance(body, dict) else None
            raise MapProviderError(
                message or f"Mapbox request failed with status {response.status_code}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise MapProviderError("Mapbox returned invalid JSON", kind=ErrorKind.MALFORMED_RESPONSE) from e
        if not isinstance(data, dict):
            raise MapProviderError(
                f"Mapbox returned {type(data).__name__}, expected an object",
                kind=ErrorKind.MALFORMED_RESPONSE,
            )
        return data

    async def get_routes(
        self,
        origin: Any,
        destination: Any,
        profile: Optional[str] = None,
    ) -> list[Route]:
        """Fetch route alternatives between two points.

        Args:
            origin: ``{"lat", "lng"}`` mapping or ``[lng, lat]`` pair
            destination: Same formats as origin
            profile: Routing profile; defaults to the configured one

        Returns:
            Routes as returned by the directions API, primary route first

        Raises:
            MapProviderError: On a missing token, bad coordinates, or a failed request
        """
        start = coerce_point(origin)
        end = coerce_point(destination)
        if start is None or end is None:
            raise MapProviderError("origin and destination must be coordinates", kind=ErrorKind.INVALID_INPUT)

        coordinates = f"{start[1]},{start[0]};{end[1]},{end[0]}"
        url = (
            f"{self.config.api_base.rstrip('/')}/directions/v5/mapbox/"
            f"{profile or self.config.profile}/{coordinates}"
        )
        data = await self._get(url, {
            "access_token": self._token(),
            "geometries": "geojson",
            "overview": "full",
            "steps": "true",
            "alternatives": "true" if self.config.alternatives else "false",
        })

        try:
            return [self._to_route(route) for route in data.get("routes") or []]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise MapProviderError(f"unexpected directions shape: {e}", kind=ErrorKind.MALFORMED_RESPONSE) from e

    @staticmethod
    def _to_route(route: dict) -> Route:
        legs = []
        for leg in route.get("legs") or []:
            legs.append({
                "duration": leg.get("duration"),
                "distance": leg.get("distance"),
                "steps": [
                    {
                        "instruction": (step.get("maneuver") or {}).get("instruction"),
                        "distance": step.get("distance"),
                        "duration": step.get("duration"),
                        "name": step.get("name"),
                    }
                    for step in leg.get("steps") or []
                ],
            })
        return Route(
            distance=float(route["distance"]),
            duration=float(route["duration"]),
            geometry=route.get("geometry") or {},
            legs=legs,
            weight=route.get("weight"),
        )

    async def route_result(self, origin: Any, destination: Any) -> ProviderResult:
        """``get_routes`` as a ProviderResult, for use under the retry policy."""
        try:
            routes = await self.get_routes(origin, destination)
        except MapProviderError as e:
            return result_from_exception(self.provider_id, e)
        return ProviderResult.success(
            self.provider_id, {"routes": [route.to_dict() for route in routes]}
        )

    async def geocode(self, address: str, limit: int = 5) -> list[dict[str, Any]]:
        """Resolve an address to candidate places.

        Returns:
            List of ``{"name", "coordinates": {"lat", "lng"}, "bbox"}`` dicts

        Raises:
            MapProviderError: On a missing token or a failed request
        """
        if not address or not address.strip():
            return []
        url = (
            f"{self.config.api_base.rstrip('/')}/geocoding/v5/mapbox.places/"
            f"{quote(address.strip(), safe='')}.json"
        )
        data = await self._get(url, {"access_token": self._token(), "limit": limit})

        places = []
        for feature in data.get("features") or []:
            if not isinstance(feature, dict):
                continue
            center = feature.get("center") or []
            if not isinstance(center, list) or len(center) != 2:
                continue
            places.append({
                "name": feature.get("place_name"),
                "coordinates": {"lng": center[0], "lat": center[1]},
                "bbox": feature.get("bbox"),
            })
        return places
