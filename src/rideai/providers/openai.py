"""OpenAI chat completions provider."""

import logging
from typing import Any, Mapping

from .base import HTTPFeatureProvider
from .prompts import parse_answer, system_prompt, user_prompt
from ..config.providers import OpenAIConfig, ProviderId
from ..errors import MalformedResponseError, result_from_response
from ..interfaces import Feature, ProviderResult
from ..services.pricing import estimate_cost

logger = logging.getLogger(__name__)


class OpenAIProvider(HTTPFeatureProvider[OpenAIConfig]):
    """Primary generative provider backed by ``/chat/completions``.

    Non-chat features request a JSON object response. Failures are
    classified from the HTTP status and the ``error.code`` in the body.
    """

    provider_id = ProviderId.OPENAI.value

    def _build_body(self, feature: Feature, payload: Mapping[str, Any], context: str) -> dict:
        body = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt(feature)},
                {"role": "user", "content": user_prompt(feature, payload, context)},
            ],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        if feature != Feature.CHAT:
            body["response_format"] = {"type": "json_object"}
        return body

    async def _request(
        self,
        feature: Feature,
        payload: Mapping[str, Any],
        context: str,
        secret: str,
    ) -> ProviderResult:
        url = f"{self.config.api_base.rstrip('/')}/chat/completions"
        response = await self._client.post(
            url,
            json=self._build_body(feature, payload, context),
            headers={"Authorization": f"Bearer {secret}"},
        )
        if response.status_code != 200:
            result = result_from_response(self.provider_id, response)
            logger.debug(f"OpenAI {feature.value} call failed: {result.message}")
            return result

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(f"unexpected completion shape: {e}") from e

        value = parse_answer(feature, payload, content or "")
        usage = data.get("usage") or {}
        prompt_tokens = int(usage.get("prompt_tokens", 0))
        completion_tokens = int(usage.get("completion_tokens", 0))
        total = int(usage.get("total_tokens", prompt_tokens + completion_tokens))
        value.setdefault("model", data.get("model", self.config.model))

        return ProviderResult.success(
            self.provider_id,
            value,
            tokens_used=total,
            cost=estimate_cost(self.config.model, prompt_tokens, completion_tokens),
        )
