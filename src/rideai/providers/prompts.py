"""Prompt construction for the generative providers.

Prompt wording is opaque to the orchestrator; only the JSON shape each
feature asks for matters to the callers.
"""

import json
from typing import Any, Mapping

from ..errors import MalformedResponseError
from ..interfaces import Feature

PLATFORM_PREAMBLE = (
    "You are an AI assistant for a rideshare operations platform. "
    "Answer concisely and base numbers on the data provided."
)

RESPONSE_SHAPES = {
    Feature.MATCH: (
        '{"matched_driver": {"id": str, "name": str, "eta": int}, "match_score": float, '
        '"matches": [driver ids, best first], "matching_factors": {str: float}, "reasoning": str}'
    ),
    Feature.PRICE: (
        '{"base_price": float, "surge_multiplier": float, "final_price": float, '
        '"price_breakdown": {"base_fare": float, "distance_fare": float, '
        '"time_fare": float, "surge": float}, "factors": {str: str}, "reasoning": str}'
    ),
    Feature.ROUTE: (
        '{"recommended_index": int, "estimated_time": int, "estimated_distance": float, '
        '"traffic_conditions": str, "reasoning": str}'
    ),
    Feature.DEMAND_FORECAST: (
        '{"current_demand": int, "predicted_demand": [{"hour": int, "demand": int, '
        '"confidence": float}], "peak_hours": [int], "recommendations": [str]}'
    ),
    Feature.ANALYTICS: (
        '{"revenue_projection": {"today": float, "this_week": float, "this_month": float}, '
        '"driver_utilization": {"current": float, "predicted": float}, "insights": [str]}'
    ),
}

TASKS = {
    Feature.MATCH: "Pick the best driver for this passenger request.",
    Feature.PRICE: "Calculate a fair dynamic price for this trip.",
    Feature.ROUTE: "Choose the best of these candidate routes for the stated preferences.",
    Feature.DEMAND_FORECAST: "Forecast ride demand for this location.",
    Feature.ANALYTICS: "Summarize business performance and forecast the next period.",
    Feature.CHAT: "Help the user with booking, tracking, fares, trips and payments.",
}


def system_prompt(feature: Feature) -> str:
    shape = RESPONSE_SHAPES.get(feature)
    if shape is None:
        return f"{PLATFORM_PREAMBLE} {TASKS[feature]} Keep it friendly and professional."
    return f"{PLATFORM_PREAMBLE} {TASKS[feature]} Respond with a single JSON object shaped like {shape}."


def user_prompt(feature: Feature, payload: Mapping[str, Any], context: str = "") -> str:
    """Request text: optional interaction history, then the payload."""
    parts = []
    if context:
        parts.append(context.rstrip())
    if feature == Feature.CHAT:
        parts.append(f"User message: {payload.get('message', '')}")
    else:
        body = json.dumps(dict(payload), sort_keys=True, default=str)
        parts.append(f"Request data: {body}")
    return "\n\n".join(parts)


def parse_answer(feature: Feature, payload: Mapping[str, Any], text: str) -> dict[str, Any]:
    """Turn model output into a feature value.

    Raises:
        MalformedResponseError: If a JSON feature answer does not parse to an object
    """
    if feature == Feature.CHAT:
        reply = text.strip()
        if not reply:
            raise MalformedResponseError("empty chat response")
        return {"response": reply, "suggestions": suggestions_for(str(payload.get("message", "")), reply)}

    try:
        value = json.loads(text)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(f"response is not JSON: {e}") from e
    if not isinstance(value, dict):
        raise MalformedResponseError("response JSON is not an object")

    if feature == Feature.ROUTE:
        routes = list(payload.get("routes") or [])
        index = value.get("recommended_index")
        value["routes"] = routes
        value["recommended_route"] = (
            routes[index] if isinstance(index, int) and 0 <= index < len(routes) else None
        )
    return value


def suggestions_for(message: str, response: str = "") -> list[str]:
    """Follow-up suggestions for a chat exchange."""
    asked = message.lower()
    answered = response.lower()
    if "book" in asked or "ride" in asked:
        return ["Get fare estimate", "Choose vehicle type", "Schedule for later", "Add stops"]
    if "track" in asked or "driver" in asked:
        return ["Call driver", "Share trip", "View route", "Cancel trip"]
    if "fare" in asked or "price" in asked:
        return ["Book this ride", "Compare prices", "View breakdown", "Apply promo code"]
    if "cancel" in asked:
        return ["Yes, cancel", "No, keep ride", "Contact support", "View policy"]
    if "payment" in asked or "card" in asked:
        return ["Add payment method", "Update card", "View receipts", "Payment history"]
    if "book" in answered or "ride" in answered:
        return ["Book a ride", "Get fare estimate", "View nearby drivers", "Schedule ride"]
    return ["Book a ride", "Track driver", "Fare estimate", "Help & Support"]
