"""Tests for input validation and local fallback values."""

import pytest

from rideai.errors import InvalidInputError
from rideai.interfaces import Feature
from rideai.services import empty_value, fallback_value, validate_payload
from rideai.services.fallback import FALLBACK_CONFIDENCE, NO_DRIVERS_MESSAGE

ORIGIN = {"lat": 40.7128, "lng": -74.0060}
DESTINATION = {"lat": 40.7580, "lng": -73.9855}


class TestValidatePayload:
    """Structural checks performed before any provider is consulted."""

    @pytest.mark.parametrize("feature,payload", [
        (Feature.MATCH, {"drivers": []}),
        (Feature.MATCH, {}),
        (Feature.PRICE, {"distance": 8.5}),
        (Feature.PRICE, {"distance": -1, "time": 10}),
        (Feature.PRICE, {"distance": "far", "time": 10}),
        (Feature.ROUTE, {"origin": ORIGIN}),
        (Feature.ROUTE, {"origin": {"lat": 91, "lng": 0}, "destination": DESTINATION}),
        (Feature.DEMAND_FORECAST, {}),
        (Feature.CHAT, {"message": "   "}),
    ])
    def test_rejects(self, feature, payload):
        with pytest.raises(InvalidInputError):
            validate_payload(feature, payload)

    @pytest.mark.parametrize("feature,payload", [
        (Feature.MATCH, {"drivers": [{"id": "d1"}]}),
        (Feature.PRICE, {"distance": 0, "time": 0}),
        (Feature.ROUTE, {"origin": ORIGIN, "destination": [-73.9855, 40.7580]}),
        (Feature.DEMAND_FORECAST, {"location": "downtown"}),
        (Feature.ANALYTICS, {}),
        (Feature.CHAT, {"message": "hello"}),
    ])
    def test_accepts(self, feature, payload):
        validate_payload(feature, payload)

    def test_empty_drivers_reason(self):
        with pytest.raises(InvalidInputError, match=NO_DRIVERS_MESSAGE):
            validate_payload(Feature.MATCH, {"drivers": []})


class TestEmptyValue:
    """Typed empty answers."""

    def test_match_shape(self):
        value = empty_value(Feature.MATCH, NO_DRIVERS_MESSAGE)
        assert value["matches"] == []
        assert value["matched_driver"] is None
        assert value["message"] == NO_DRIVERS_MESSAGE

    @pytest.mark.parametrize("feature", list(Feature))
    def test_every_feature_has_a_shape(self, feature):
        assert empty_value(feature, "reason")["message"] == "reason"


class TestFallbackValue:
    """Deterministic answers used when every provider failed."""

    def test_price_is_standard_fare(self):
        value = fallback_value(Feature.PRICE, {"distance": 8.5, "time": 25})
        assert value["base_price"] == 19.95
        assert value["final_price"] == 19.95
        assert value["surge_multiplier"] == 1.0
        assert value["confidence"] == FALLBACK_CONFIDENCE

    def test_match_prefers_shortest_eta_then_rating(self):
        drivers = [
            {"id": "slow", "eta": 9, "rating": 5.0},
            {"id": "fast-low", "eta": 3, "rating": 4.1},
            {"id": "fast-high", "eta": 3, "rating": 4.9},
            {"id": "off", "eta": 1, "available": False},
        ]
        value = fallback_value(Feature.MATCH, {"drivers": drivers})
        assert value["matched_driver"]["id"] == "fast-high"
        assert value["matches"] == ["fast-high", "fast-low", "slow"]

    def test_match_without_available_drivers(self):
        value = fallback_value(Feature.MATCH, {"drivers": [{"id": "d", "available": False}]})
        assert value["matched_driver"] is None
        assert value["message"] == NO_DRIVERS_MESSAGE

    def test_route_picks_fastest(self):
        routes = [{"duration": 900, "distance": 5000}, {"duration": 600, "distance": 7000}]
        value = fallback_value(Feature.ROUTE, {"routes": routes})
        assert value["recommended_route"]["duration"] == 600
        assert value["estimated_time"] == 10

    def test_route_without_routes(self):
        value = fallback_value(Feature.ROUTE, {"origin": ORIGIN, "destination": DESTINATION})
        assert value["recommended_route"] is None

    def test_demand_marks_peak_hours(self):
        value = fallback_value(Feature.DEMAND_FORECAST, {"location": "downtown"})
        by_hour = {p["hour"]: p["demand"] for p in value["predicted_demand"]}
        assert by_hour[8] == 80
        assert by_hour[3] == 40

    def test_chat_keyword_reply(self):
        value = fallback_value(Feature.CHAT, {"message": "I need to cancel trip now"})
        assert "cancel" in value["response"].lower()

    def test_is_deterministic(self):
        payload = {"drivers": [{"id": "a", "eta": 4}, {"id": "b", "eta": 4}]}
        assert fallback_value(Feature.MATCH, payload) == fallback_value(Feature.MATCH, payload)

    def test_analytics_ignores_non_mapping_metrics(self):
        value = fallback_value(Feature.ANALYTICS, {"metrics": 42})
        assert value["metrics"] == {}
