"""Token pricing for cost accounting."""

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class ModelPrice:
    """USD price per 1K tokens."""
    input_per_1k: Decimal
    output_per_1k: Decimal


MODEL_PRICES: dict[str, ModelPrice] = {
    "gpt-4o": ModelPrice(Decimal("0.005"), Decimal("0.015")),
    "gpt-4o-mini": ModelPrice(Decimal("0.00015"), Decimal("0.0006")),
    "gpt-4": ModelPrice(Decimal("0.03"), Decimal("0.06")),
    "gpt-3.5-turbo": ModelPrice(Decimal("0.0015"), Decimal("0.002")),
    "gemini-2.5-flash": ModelPrice(Decimal("0.0003"), Decimal("0.0025")),
    "gemini-1.5-flash": ModelPrice(Decimal("0.000075"), Decimal("0.0003")),
}


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> Decimal:
    """Estimate the USD cost of a call.

    Args:
        model: Model name as sent to the provider
        prompt_tokens: Input tokens
        completion_tokens: Output tokens

    Returns:
        Cost as a Decimal; models without a price entry cost 0

    Raises:
        ValueError: If token counts are negative
    """
    if prompt_tokens < 0 or completion_tokens < 0:
        raise ValueError("token counts must be >= 0")
    price = MODEL_PRICES.get(model)
    if price is None:
        return Decimal("0")
    cost = (
        Decimal(prompt_tokens) / 1000 * price.input_per_1k
        + Decimal(completion_tokens) / 1000 * price.output_per_1k
    )
    return cost.quantize(Decimal("0.000001"))
