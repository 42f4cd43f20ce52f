from aida.logging_config import get_logger
from aida.services.llm.anthropic_provider import AnthropicProvider
from aida.services.llm.base import LLMError, LLMProvider, LLMResponse, build_messages
from aida.services.llm.openai_provider import OpenAIProvider

logger = get_logger("llm")

PROVIDERS = {
    "openai": (OpenAIProvider, "openai_api_key"),
    "anthropic": (AnthropicProvider, "anthropic_api_key"),
}


def create_llm_provider(settings) -> LLMProvider:
    """Build the configured provider. Unknown names raise ValueError."""
    entry = PROVIDERS.get(settings.llm_provider)
    if entry is None:
        raise ValueError(f"Unsupported LLM provider: {settings.llm_provider}")

    provider_cls, key_field = entry
    api_key = getattr(settings, key_field, None)
    if not api_key:
        logger.warning(f"{key_field.upper()} is not set; {settings.llm_provider} calls will fail")

    return provider_cls(
        api_key,
        settings.llm_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        max_retries=settings.llm_max_retries,
        timeout_seconds=settings.llm_timeout_seconds,
    )


__all__ = [
    "AnthropicProvider",
    "LLMError",
    "LLMProvider",
    "LLMResponse",
    "OpenAIProvider",
    "build_messages",
    "create_llm_provider",
]
