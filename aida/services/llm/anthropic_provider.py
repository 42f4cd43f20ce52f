from typing import List, Optional

import httpx

from aida.logging_config import get_logger
from aida.services.llm.base import LLMError, LLMProvider, LLMResponse

logger = get_logger("llm.anthropic")

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(LLMProvider):
    """Anthropic messages API provider. The system prompt travels outside the message list."""

    name = "anthropic"

    def __init__(self, api_key: Optional[str], default_model: str = "claude-3-5-haiku-latest", **kwargs):
        super().__init__(api_key, default_model, **kwargs)
        self.base_url = "https://api.anthropic.com/v1/messages"

    def _headers(self) -> dict:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    async def complete(self, messages: List[dict], model: Optional[str] = None) -> LLMResponse:
        model = model or self.default_model
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        payload = {
            "model": model,
            "system": system,
            "messages": [m for m in messages if m["role"] != "system"],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        logger.debug(f"Anthropic request: model={model}, messages_count={len(payload['messages'])}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(self.base_url, headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            raise LLMError(f"Anthropic request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Anthropic error: {response.text}")
            raise LLMError(f"Anthropic API error: {response.status_code} - {response.text}")

        data = response.json()
        content = "".join(block.get("text", "") for block in data.get("content", []) if block.get("type") == "text")
        if not content:
            raise LLMError("Anthropic returned an empty completion")

        usage = data.get("usage") or {}
        return LLMResponse(
            content=content,
            model=data.get("model", model),
            tokens_used=int(usage.get("input_tokens") or 0) + int(usage.get("output_tokens") or 0),
            usage=usage,
        )

    async def is_available(self) -> bool:
        return bool(self.api_key)
