"""Local heuristic model: the always-available backstop provider.

Every feature has a small deterministic model. Given the same payload and
the same clock reading, the answer is always the same.
"""

import logging
import re
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from .base import FeatureProvider, ProviderHealth, ProviderStatus
from ..config.providers import HeuristicConfig, ProviderId
from ..interfaces import ErrorKind, Feature, ProviderResult, utcnow
from ..services.fallback import NO_DRIVERS_MESSAGE
from ..utils import as_number, coerce_point, haversine_km, parse_hours

logger = logging.getLogger(__name__)

# Matching weights; they sum to 1
PROXIMITY_WEIGHT = 0.4
RATING_WEIGHT = 0.25
VEHICLE_WEIGHT = 0.2
ETA_WEIGHT = 0.15

CITY_SPEED_KMH = 30.0
ROAD_FACTOR = 1.3
PICKUP_OVERHEAD_MIN = 2

DEMAND_FACTORS = {"low": 1.0, "normal": 1.0, "medium": 1.1, "high": 1.3, "very_high": 1.6}
WEATHER_FACTORS = {"rain": 1.1, "storm": 1.25, "snow": 1.2}
PEAK_FACTOR = 1.25

BASE_DEMAND = 30
PEAK_BOOST = 50
SHOULDER_BOOST = 20
NIGHT_DIP = 15

CHAT_INTENTS = [
    (
        ("cancel",),
        "I can help you cancel your trip. Do you want to cancel your current ride?",
        ["Yes, cancel ride", "No, keep ride", "View my trips", "Contact driver"],
    ),
    (
        ("book", "ride"),
        "I can help you book a ride. Please share your pickup location and destination.",
        ["Get fare estimate", "Choose vehicle type", "Schedule for later", "Add stops"],
    ),
    (
        ("driver", "track"),
        "I can show your driver's live location and ETA on the trip screen.",
        ["Call driver", "Share trip", "View route", "Cancel trip"],
    ),
    (
        ("fare", "price", "cost"),
        "Fares combine a base fare, distance and time charges, plus surge during busy periods.",
        ["Book this ride", "Compare prices", "View breakdown", "Choose vehicle type"],
    ),
    (
        ("payment", "card"),
        "You can add, remove or update payment methods in your account settings.",
        ["Add payment method", "Update card", "Payment failed", "View receipts"],
    ),
    (
        ("account", "profile"),
        "You can update your profile, payment methods and preferences in the app settings.",
        ["Update profile", "Change password", "Payment methods", "Notification settings"],
    ),
    (
        ("help", "support"),
        "I can help with booking rides, tracking drivers, fare estimates and managing trips.",
        ["Book a ride", "Track driver", "Payment issues", "Account settings"],
    ),
    (
        ("hello", "hi", "hey"),
        "Hello! I'm your rideshare assistant. What would you like to do?",
        ["Book a ride", "Track my driver", "Fare estimate", "View trip history"],
    ),
]
CHAT_DEFAULT = (
    "I'm here to help with your ride needs: booking rides, tracking drivers, "
    "fare estimates and managing your trips.",
    ["Book a ride", "Track my driver", "Fare estimate", "Get help"],
)


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


class HeuristicProvider(FeatureProvider[HeuristicConfig]):
    """Deterministic per-feature models that need no network or credential."""

    provider_id = ProviderId.HEURISTIC.value
    requires_credential = False

    def __init__(
        self,
        config: Optional[HeuristicConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(config or HeuristicConfig())
        self._clock = clock
        self._handlers = {
            Feature.MATCH: self.match,
            Feature.PRICE: self.price,
            Feature.ROUTE: self.route,
            Feature.DEMAND_FORECAST: self.demand,
            Feature.ANALYTICS: self.analytics,
            Feature.CHAT: self.chat,
        }

    async def initialize(self) -> None:
        self._initialized = True

    async def shutdown(self) -> None:
        self._initialized = False

    async def health_check(self) -> ProviderHealth:
        return ProviderHealth(status=ProviderStatus.HEALTHY, latency_ms=0.0)

    async def call(
        self,
        feature: Feature,
        payload: Mapping[str, Any],
        context: str = "",
    ) -> ProviderResult:
        try:
            value = self._handlers[feature](payload)
        except Exception as e:
            logger.exception(f"Heuristic model failed for {feature.value}")
            return ProviderResult.fatal_failure(
                self.provider_id, ErrorKind.UNKNOWN, f"{type(e).__name__}: {e}"
            )
        value.setdefault("model", "heuristic")
        return ProviderResult.success(self.provider_id, value)

    def _hour(self, payload: Mapping[str, Any]) -> int:
        hour = as_number(payload.get("hour"))
        if hour is not None and 0 <= hour < 24:
            return int(hour)
        return self._clock().hour

    def match(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Score available drivers by proximity, rating, vehicle fit and ETA."""
        passenger = _mapping(payload.get("passenger"))
        preferences = _mapping(payload.get("preferences"))
        pickup = coerce_point(passenger.get("location") or payload.get("pickup"))
        wanted = preferences.get("vehicle_type") or passenger.get("vehicle_type")

        scored = []
        for driver in payload.get("drivers") or []:
            if not isinstance(driver, dict) or not driver.get("available", True):
                continue
            location = coerce_point(driver.get("location"))
            distance = haversine_km(pickup, location) if pickup and location else None

            eta = as_number(driver.get("eta"))
            if eta is None:
                eta = (
                    round(distance * ROAD_FACTOR / CITY_SPEED_KMH * 60) + PICKUP_OVERHEAD_MIN
                    if distance is not None else None
                )

            factors = {
                "proximity": round(1 / (1 + distance / 2), 3) if distance is not None else 0.5,
                "rating": round(min(as_number(driver.get("rating")) or 4.0, 5.0) / 5, 3),
                "vehicle_type": 1.0 if not wanted or driver.get("vehicle_type") == wanted else 0.5,
                "eta": round(1 / (1 + eta / 10), 3) if eta is not None else 0.5,
            }
            score = (
                PROXIMITY_WEIGHT * factors["proximity"]
                + RATING_WEIGHT * factors["rating"]
                + VEHICLE_WEIGHT * factors["vehicle_type"]
                + ETA_WEIGHT * factors["eta"]
            )
            candidate = {**driver, "eta": eta}
            if distance is not None:
                candidate["distance_km"] = round(distance, 2)
            scored.append((round(score, 3), factors, candidate))

        if not scored:
            return {"matches": [], "matched_driver": None, "message": NO_DRIVERS_MESSAGE}

        # Stable sort keeps input order among equal scores
        scored.sort(key=lambda item: item[0], reverse=True)
        best_score, best_factors, best = scored[0]
        return {
            "matched_driver": best,
            "match_score": best_score,
            "matches": [c.get("id") for _, _, c in scored],
            "matching_factors": best_factors,
            "alternative_drivers": len(scored) - 1,
        }

    def price(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Base fare plus distance and time rates, times a bounded surge."""
        distance = as_number(payload.get("distance")) or 0.0
        minutes = as_number(payload.get("time")) or 0.0
        hour = self._hour(payload)
        peak = hour in self.config.peak_hours

        demand_level = str(payload.get("demand_level") or "normal").lower()
        weather = str(payload.get("weather") or "clear").lower()
        surge = (
            (PEAK_FACTOR if peak else 1.0)
            * DEMAND_FACTORS.get(demand_level, 1.0)
            * WEATHER_FACTORS.get(weather, 1.0)
        )
        surge = round(min(max(surge, 1.0), self.config.max_surge), 2)

        distance_fare = round(distance * self.config.per_km_rate, 2)
        time_fare = round(minutes * self.config.per_minute_rate, 2)
        base_price = round(self.config.base_fare + distance_fare + time_fare, 2)
        final_price = round(base_price * surge, 2)

        return {
            "base_price": base_price,
            "surge_multiplier": surge,
            "final_price": final_price,
            "price_breakdown": {
                "base_fare": self.config.base_fare,
                "distance_fare": distance_fare,
                "time_fare": time_fare,
                "surge": round(final_price - base_price, 2),
            },
            "factors": {
                "demand": demand_level,
                "weather": weather,
                "time_of_day": "peak" if peak else "off-peak",
            },
        }

    def route(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Rank directions alternatives, or estimate a straight-line route."""
        preferences = _mapping(payload.get("preferences"))
        by_distance = (
            preferences.get("prioritize") == "distance"
            or preferences.get("prioritize_time") is False
        )
        key = "distance" if by_distance else "duration"
        routes = [r for r in payload.get("routes") or [] if isinstance(r, dict)]

        if routes:
            ranked = sorted(
                range(len(routes)),
                key=lambda i: as_number(routes[i].get(key)) or float("inf"),
            )
            best = routes[ranked[0]]
            return {
                "routes": routes,
                "recommended_index": ranked[0],
                "recommended_route": best,
                "estimated_time": round((as_number(best.get("duration")) or 0) / 60),
                "estimated_distance": round((as_number(best.get("distance")) or 0) / 1000, 2),
                "reasoning": f"Shortest {key} of {len(routes)} alternatives",
            }

        origin = coerce_point(payload.get("origin"))
        destination = coerce_point(payload.get("destination"))
        road_km = haversine_km(origin, destination) * ROAD_FACTOR
        return {
            "routes": [],
            "recommended_index": None,
            "recommended_route": None,
            "estimated_time": round(road_km / CITY_SPEED_KMH * 60),
            "estimated_distance": round(road_km, 2),
            "reasoning": "Straight-line estimate; no directions available",
        }

    def _hourly_demand(self, hour: int) -> int:
        peaks = self.config.peak_hours
        demand = BASE_DEMAND
        if hour in peaks:
            demand += PEAK_BOOST
        elif (hour - 1) % 24 in peaks or (hour + 1) % 24 in peaks:
            demand += SHOULDER_BOOST
        if 0 <= hour < 5:
            demand -= NIGHT_DIP
        return demand

    def demand(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Daily demand curve around configured peak hours."""
        now = self._hour(payload)
        window = min(parse_hours(payload.get("time_range"), default=6), 48)
        forecast = []
        for offset in range(1, window + 1):
            hour = (now + offset) % 24
            forecast.append({
                "hour": hour,
                "demand": self._hourly_demand(hour),
                # Confidence decays with distance into the future
                "confidence": round(max(0.5, 0.9 - 0.01 * offset), 2),
            })

        upcoming = sorted({f["hour"] for f in forecast if f["hour"] in self.config.peak_hours})
        recommendations = (
            [f"Increase driver incentives before {upcoming[0]:02d}:00"]
            if upcoming else ["Demand stays near baseline; keep current driver levels"]
        )
        return {
            "location": payload.get("location"),
            "current_demand": self._hourly_demand(now),
            "predicted_demand": forecast,
            "peak_hours": upcoming,
            "recommendations": recommendations,
        }

    def analytics(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Project revenue and utilization from supplied metrics."""
        timeframe = payload.get("timeframe") or "24h"
        hours = parse_hours(timeframe)
        metrics = payload.get("metrics") or {}

        insights = []
        revenue = as_number(metrics.get("revenue"))
        projection = None
        if revenue is not None:
            per_hour = revenue / hours
            projection = {
                "today": round(per_hour * 24, 2),
                "this_week": round(per_hour * 24 * 7, 2),
                "this_month": round(per_hour * 24 * 30, 2),
            }

        utilization = None
        active = as_number(metrics.get("active_drivers"))
        total = as_number(metrics.get("total_drivers"))
        if active is not None and total:
            utilization = round(active / total, 3)
            if utilization < 0.6:
                insights.append("Driver supply exceeds demand; consider fewer incentives")
            elif utilization > 0.85:
                insights.append("Drivers are near capacity; deploy additional drivers")

        hourly = metrics.get("hourly_rides")
        if isinstance(hourly, list) and hourly:
            busiest = max(range(len(hourly)), key=lambda h: as_number(hourly[h]) or 0)
            insights.append(f"Peak demand observed at {busiest:02d}:00")

        if not insights and projection is None:
            insights.append("Not enough data for insights in this timeframe")

        return {
            "timeframe": timeframe,
            "revenue_projection": projection,
            "driver_utilization": {"current": utilization, "optimal": 0.85},
            "insights": insights,
        }

    def chat(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Keyword intent matching."""
        words = set(re.findall(r"[a-z]+", str(payload.get("message", "")).lower()))
        for keywords, reply, suggestions in CHAT_INTENTS:
            if words.intersection(keywords):
                return {"response": reply, "suggestions": list(suggestions)}
        reply, suggestions = CHAT_DEFAULT
        return {"response": reply, "suggestions": list(suggestions)}
