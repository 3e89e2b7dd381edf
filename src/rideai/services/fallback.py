"""Input validation and deterministic local fallback values.

``validate_payload`` decides whether a request is worth sending to any
provider. ``empty_value`` is the typed answer for a request that is not.
``fallback_value`` is the answer when every provider in the chain failed.
All three are pure: the same input always yields the same output.
"""

import logging
from typing import Any, Mapping, Optional

from ..config.providers import HeuristicConfig
from ..errors import InvalidInputError
from ..interfaces import Feature
from ..utils import as_number, coerce_point

logger = logging.getLogger(__name__)

NO_DRIVERS_MESSAGE = "No drivers available"
FALLBACK_CONFIDENCE = 0.5

CHAT_SUGGESTIONS = ["Book a ride", "Track my driver", "Cancel trip", "Fare estimate"]

CHAT_REPLIES = {
    "book ride": "I can help you book a ride! Where would you like to go?",
    "cancel trip": "I can help you cancel your trip. Let me find your active bookings.",
    "driver location": "Your driver is on the way. I'll send you live updates.",
    "fare estimate": "I can estimate your fare once I know the pickup and drop-off points.",
}
CHAT_DEFAULT_REPLY = (
    "I'm here to help with your ride needs. "
    "You can ask me about booking, canceling, or tracking rides."
)


def validate_payload(feature: Feature, payload: Mapping[str, Any]) -> None:
    """Reject structurally invalid input before any provider is consulted.

    Raises:
        InvalidInputError: With a short reason when the payload cannot be served
    """
    if feature == Feature.MATCH:
        drivers = payload.get("drivers")
        if not isinstance(drivers, (list, tuple)) or not drivers:
            raise InvalidInputError(NO_DRIVERS_MESSAGE)

    elif feature == Feature.PRICE:
        distance = as_number(payload.get("distance"))
        duration = as_number(payload.get("time"))
        if distance is None or duration is None:
            raise InvalidInputError("distance and time are required")
        if distance < 0 or duration < 0:
            raise InvalidInputError("distance and time must be >= 0")

    elif feature == Feature.ROUTE:
        if coerce_point(payload.get("origin")) is None:
            raise InvalidInputError("origin is not a valid coordinate")
        if coerce_point(payload.get("destination")) is None:
            raise InvalidInputError("destination is not a valid coordinate")

    elif feature == Feature.DEMAND_FORECAST:
        if not payload.get("location"):
            raise InvalidInputError("location is required")

    elif feature == Feature.CHAT:
        message = payload.get("message")
        if not isinstance(message, str) or not message.strip():
            raise InvalidInputError("message is required")


def empty_value(feature: Feature, reason: str) -> dict[str, Any]:
    """Typed empty answer for a request that was never sent to a provider."""
    if feature == Feature.MATCH:
        return {"matches": [], "matched_driver": None, "message": reason}
    if feature == Feature.PRICE:
        return {
            "base_price": 0.0,
            "surge_multiplier": 1.0,
            "final_price": 0.0,
            "price_breakdown": {},
            "message": reason,
        }
    if feature == Feature.ROUTE:
        return {"routes": [], "recommended_route": None, "message": reason}
    if feature == Feature.DEMAND_FORECAST:
        return {"current_demand": 0, "predicted_demand": [], "peak_hours": [], "message": reason}
    if feature == Feature.ANALYTICS:
        return {"insights": [], "metrics": {}, "message": reason}
    return {"response": CHAT_DEFAULT_REPLY, "suggestions": list(CHAT_SUGGESTIONS), "message": reason}


def fallback_value(
    feature: Feature,
    payload: Mapping[str, Any],
    config: Optional[HeuristicConfig] = None,
) -> dict[str, Any]:
    """Conservative locally computed answer used when every provider failed.

    Never raises; a payload the builders cannot read yields ``empty_value``.
    """
    config = config or HeuristicConfig()
    builder = _BUILDERS[feature]
    try:
        value = builder(payload, config)
    except Exception:
        logger.exception(f"Fallback builder for {feature.value} failed")
        return empty_value(feature, "Fallback unavailable")
    value["confidence"] = FALLBACK_CONFIDENCE
    return value


def _match(payload: Mapping[str, Any], config: HeuristicConfig) -> dict[str, Any]:
    drivers = [d for d in payload.get("drivers") or [] if isinstance(d, dict)]
    available = [d for d in drivers if d.get("available", True)]
    if not available:
        return {"matches": [], "matched_driver": None, "message": NO_DRIVERS_MESSAGE}

    # Shortest stated ETA, then best rating; input order breaks ties
    def rank(indexed: tuple[int, dict]) -> tuple:
        index, driver = indexed
        eta = as_number(driver.get("eta"))
        rating = as_number(driver.get("rating")) or 0.0
        return (eta if eta is not None else float("inf"), -rating, index)

    ordered = [d for _, d in sorted(enumerate(available), key=rank)]
    return {
        "matches": [d.get("id") for d in ordered],
        "matched_driver": ordered[0],
        "alternative_drivers": len(ordered) - 1,
        "message": "Matched by availability only",
    }


def _price(payload: Mapping[str, Any], config: HeuristicConfig) -> dict[str, Any]:
    distance = as_number(payload.get("distance")) or 0.0
    minutes = as_number(payload.get("time")) or 0.0
    distance_fare = round(distance * config.per_km_rate, 2)
    time_fare = round(minutes * config.per_minute_rate, 2)
    base = round(config.base_fare + distance_fare + time_fare, 2)
    return {
        "base_price": base,
        "surge_multiplier": 1.0,
        "final_price": base,
        "price_breakdown": {
            "base_fare": config.base_fare,
            "distance_fare": distance_fare,
            "time_fare": time_fare,
            "surge": 0.0,
        },
        "message": "Standard fare without surge",
    }


def _route(payload: Mapping[str, Any], config: HeuristicConfig) -> dict[str, Any]:
    routes = [r for r in payload.get("routes") or [] if isinstance(r, dict)]
    routes.sort(key=lambda r: as_number(r.get("duration")) or float("inf"))
    recommended = routes[0] if routes else None
    return {
        "routes": routes,
        "recommended_route": recommended,
        "estimated_time": (
            round(as_number(recommended.get("duration")) / 60)
            if recommended and as_number(recommended.get("duration")) is not None
            else None
        ),
        "message": "Fastest known route" if recommended else "No route data available",
    }


def _demand(payload: Mapping[str, Any], config: HeuristicConfig) -> dict[str, Any]:
    peaks = sorted(config.peak_hours)
    curve = [
        {"hour": hour, "demand": 80 if hour in peaks else 40, "confidence": FALLBACK_CONFIDENCE}
        for hour in range(24)
    ]
    return {
        "location": payload.get("location"),
        "current_demand": None,
        "predicted_demand": curve,
        "peak_hours": peaks,
        "recommendations": ["Schedule extra drivers around usual peak hours"],
        "message": "Typical daily pattern",
    }


def _analytics(payload: Mapping[str, Any], config: HeuristicConfig) -> dict[str, Any]:
    metrics = payload.get("metrics")
    return {
        "timeframe": payload.get("timeframe", "24h"),
        "metrics": dict(metrics) if isinstance(metrics, Mapping) else {},
        "insights": [],
        "message": "Live analytics unavailable; showing supplied metrics",
    }


def _chat(payload: Mapping[str, Any], config: HeuristicConfig) -> dict[str, Any]:
    text = str(payload.get("message", "")).lower()
    reply = next((r for k, r in CHAT_REPLIES.items() if k in text), CHAT_DEFAULT_REPLY)
    return {"response": reply, "suggestions": list(CHAT_SUGGESTIONS)}


_BUILDERS = {
    Feature.MATCH: _match,
    Feature.PRICE: _price,
    Feature.ROUTE: _route,
    Feature.DEMAND_FORECAST: _demand,
    Feature.ANALYTICS: _analytics,
    Feature.CHAT: _chat,
}
