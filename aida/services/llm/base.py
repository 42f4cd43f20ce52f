import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from aida.logging_config import get_logger

logger = get_logger("llm")

MAX_HISTORY_MESSAGES = 10


@dataclass
class LLMResponse:
    content: str
    model: str
    tokens_used: int = 0
    usage: Optional[dict] = None


class LLMError(Exception):
    """Raised when a provider returns an unusable response."""


def build_messages(
    system_prompt: str,
    context_text: str,
    history: Sequence[Dict[str, str]],
    current_message: str,
) -> List[dict]:
    """Assemble chat messages: system (+ knowledge), recent history, current turn."""
    system_content = system_prompt
    if context_text:
        system_content = f"{system_prompt}\n\n{context_text}"

    messages = [{"role": "system", "content": system_content}]
    for item in list(history)[-MAX_HISTORY_MESSAGES:]:
        if item.get("role") in ("user", "assistant") and item.get("content"):
            messages.append({"role": item["role"], "content": item["content"]})
    messages.append({"role": "user", "content": current_message})
    return messages


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    name = "base"

    def __init__(
        self,
        api_key: Optional[str],
        default_model: str,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        max_retries: int = 3,
        timeout_seconds: float = 20.0,
        retry_backoff_seconds: float = 1.0,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_retries = max(max_retries, 1)
        self.timeout_seconds = timeout_seconds
        self.retry_backoff_seconds = retry_backoff_seconds

    @abstractmethod
    async def complete(self, messages: List[dict], model: Optional[str] = None) -> LLMResponse:
        """Single chat completion call, no retries."""
        pass

    @abstractmethod
    async def is_available(self) -> bool:
        pass

    async def generate(
        self,
        system_prompt: str,
        context_text: str,
        history: Sequence[Dict[str, str]],
        current_message: str,
    ) -> LLMResponse:
        """Generate a reply, retrying with exponential backoff."""
        messages = build_messages(system_prompt, context_text, history, current_message)
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                return await self.complete(messages)
            except LLMError as e:
                last_error = e
                logger.warning(f"Attempt {attempt} failed for provider {self.name}: {e}")
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_backoff_seconds * (2 ** (attempt - 1)))

        raise last_error
