"""Google AI (Gemini) generateContent provider."""

import logging
from typing import Any, Mapping, Optional

import httpx

from .base import HTTPFeatureProvider
from .prompts import parse_answer, system_prompt, user_prompt
from ..config.providers import GeminiConfig, ProviderId
from ..errors import MalformedResponseError, error_code_from_body, result_from_response
from ..interfaces import ErrorKind, Feature, ProviderResult
from ..services.credentials import CredentialRegistry
from ..services.pricing import estimate_cost

logger = logging.getLogger(__name__)

# Google reports a bad key as 400 with this reason
INVALID_KEY_REASON = "API_KEY_INVALID"

MAX_HISTORY_TURNS = 10


class GeminiProvider(HTTPFeatureProvider[GeminiConfig]):
    """Google AI provider.

    Chat keeps a short per-conversation history so follow-up questions
    read naturally; other features are stateless JSON requests.
    """

    provider_id = ProviderId.GEMINI.value

    def __init__(
        self,
        config: GeminiConfig,
        credentials: CredentialRegistry,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config, credentials, client)
        self._history: dict[str, list[dict]] = {}

    def clear_conversation(self, conversation_id: str = "default") -> None:
        self._history.pop(conversation_id, None)

    def clear_all_conversations(self) -> None:
        self._history.clear()

    def _build_body(self, feature: Feature, payload: Mapping[str, Any], context: str) -> dict:
        turn = {"role": "user", "parts": [{"text": user_prompt(feature, payload, context)}]}
        contents = []
        if feature == Feature.CHAT:
            contents.extend(self._history.get(self._conversation_id(payload), []))
        contents.append(turn)

        generation = {
            "temperature": self.config.temperature,
            "maxOutputTokens": self.config.max_output_tokens,
            "topP": 0.8,
            "topK": 40,
        }
        if feature != Feature.CHAT:
            generation["responseMimeType"] = "application/json"

        return {
            "systemInstruction": {"parts": [{"text": system_prompt(feature)}]},
            "contents": contents,
            "generationConfig": generation,
        }

    @staticmethod
    def _conversation_id(payload: Mapping[str, Any]) -> str:
        return str(payload.get("conversation_id") or "default")

    def _remember(self, payload: Mapping[str, Any], question: str, answer: str) -> None:
        history = self._history.setdefault(self._conversation_id(payload), [])
        history.append({"role": "user", "parts": [{"text": question}]})
        history.append({"role": "model", "parts": [{"text": answer}]})
        del history[:-2 * MAX_HISTORY_TURNS]

    async def _request(
        self,
        feature: Feature,
        payload: Mapping[str, Any],
        context: str,
        secret: str,
    ) -> ProviderResult:
        url = f"{self.config.api_base.rstrip('/')}/models/{self.config.model}:generateContent"
        response = await self._client.post(
            url,
            json=self._build_body(feature, payload, context),
            headers={"x-goog-api-key": secret},
        )
        if response.status_code != 200:
            try:
                code = error_code_from_body(response.json())
            except ValueError:
                code = None
            if code == INVALID_KEY_REASON:
                return ProviderResult.fatal_failure(self.provider_id, ErrorKind.AUTH, "API key invalid")
            result = result_from_response(self.provider_id, response)
            logger.debug(f"Gemini {feature.value} call failed: {result.message}")
            return result

        try:
            data = response.json()
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts)
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise MalformedResponseError(f"unexpected generateContent shape: {e}") from e

        value = parse_answer(feature, payload, text)
        value.setdefault("model", self.config.model)
        if feature == Feature.CHAT:
            self._remember(payload, str(payload.get("message", "")), text)

        usage = data.get("usageMetadata") or {}
        prompt_tokens = int(usage.get("promptTokenCount", 0))
        completion_tokens = int(usage.get("candidatesTokenCount", 0))
        total = int(usage.get("totalTokenCount", prompt_tokens + completion_tokens))

        return ProviderResult.success(
            self.provider_id,
            value,
            tokens_used=total,
            cost=estimate_cost(self.config.model, prompt_tokens, completion_tokens),
        )
