"""Model backends and the uniform request/response contract."""

from switchyard.config import ProviderSettings, normalize_provider_name
from switchyard.llm.base import (
    Capabilities,
    ConversationContext,
    LLMProvider,
    Message,
    ProviderErrorInfo,
    ProviderResponse,
    RequestOptions,
    Snippet,
    ToolCall,
    empty_usage,
)
from switchyard.llm.ollama import OLLAMA_NATIVE_BASE_URL, OllamaProvider
from switchyard.llm.openai_compat import OpenAICompatibleProvider

# Backends that cannot run without a key.
KEY_REQUIRED_PROVIDERS = frozenset({"openai", "anthropic", "gemini"})


def create_provider(
    provider: str,
    settings: ProviderSettings,
    api_key: str | None = None,
) -> LLMProvider:
    """Create a model backend.

    Args:
        provider: Provider name (ollama, openai, anthropic, gemini, or alias)
        settings: Model, base URL and sampling settings
        api_key: Optional API key

    Returns:
        Configured LLMProvider instance
    """
    name = normalize_provider_name(provider)
    if name == "ollama":
        return OllamaProvider(
            model=settings.model,
            base_url=settings.base_url or OLLAMA_NATIVE_BASE_URL,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            api_key=api_key,
            timeout=settings.timeout,
        )
    if name in KEY_REQUIRED_PROVIDERS:
        return OpenAICompatibleProvider(
            name=name,
            model=settings.model,
            base_url=settings.base_url,
            api_key=api_key,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.timeout,
        )
    raise ValueError(f"Provider '{provider}' not supported.")


__all__ = [
    "Capabilities",
    "ConversationContext",
    "KEY_REQUIRED_PROVIDERS",
    "LLMProvider",
    "Message",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "ProviderErrorInfo",
    "ProviderResponse",
    "RequestOptions",
    "Snippet",
    "ToolCall",
    "create_provider",
    "empty_usage",
]
