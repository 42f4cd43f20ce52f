from typing import List, Optional

import httpx

from aida.logging_config import get_logger
from aida.services.llm.base import LLMError, LLMProvider, LLMResponse

logger = get_logger("llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    name = "openai"

    def __init__(self, api_key: Optional[str], default_model: str = "gpt-4o-mini", **kwargs):
        super().__init__(api_key, default_model, **kwargs)
        self.base_url = "https://api.openai.com/v1/chat/completions"
        self.models_url = "https://api.openai.com/v1/models"

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def complete(self, messages: List[dict], model: Optional[str] = None) -> LLMResponse:
        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(self.base_url, headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            raise LLMError(f"OpenAI request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.text}")
            raise LLMError(f"OpenAI API error: {response.status_code} - {response.text}")

        data = response.json()
        content = ""
        if data.get("choices"):
            content = data["choices"][0].get("message", {}).get("content") or ""
        if not content:
            raise LLMError("OpenAI returned an empty completion")

        usage = data.get("usage") or {}
        return LLMResponse(
            content=content,
            model=data.get("model", model),
            tokens_used=int(usage.get("total_tokens") or 0),
            usage=usage,
        )

    async def is_available(self) -> bool:
        if not self.api_key:
            return False
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(self.models_url, headers=self._headers())
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"OpenAI availability check failed: {e}")
            return False
