"""Provider adapters and the adapter selector."""

from __future__ import annotations

from functools import partial
import logging
from typing import TYPE_CHECKING, Any

from switchyard.config import (
    PROVIDER_TYPES,
    VERTEX_PROVIDERS,
    AmazonBedrockConfiguration,
    ProviderDescriptor,
    VertexConfiguration,
)
from switchyard.errors import ConfigurationError
from switchyard.providers.anthropic import (
    AnthropicBedrockModel,
    AnthropicModel,
    AnthropicVertexModel,
)
from switchyard.providers.base import AdapterFactory, LanguageModel
from switchyard.providers.gemini import GeminiModel
from switchyard.providers.openai import OpenAIChatModel, OpenAIResponsesModel

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


def _openai(descriptor: ProviderDescriptor, model_id: str, **options: Any) -> LanguageModel:
    return OpenAIResponsesModel(
        model_id, api_key=descriptor.api_key, base_url=descriptor.base_url
    )


def _openai_compatible(
    descriptor: ProviderDescriptor, model_id: str, **options: Any
) -> LanguageModel:
    return OpenAIChatModel(
        model_id,
        provider=descriptor.provider,
        api_key=descriptor.api_key,
        base_url=descriptor.base_url,
    )


def _anthropic(descriptor: ProviderDescriptor, model_id: str, **options: Any) -> LanguageModel:
    return AnthropicModel(
        model_id,
        api_key=descriptor.api_key,
        base_url=descriptor.base_url,
        cache_control=bool(options.get("cache_control", False)),
    )


def _google(descriptor: ProviderDescriptor, model_id: str, **options: Any) -> LanguageModel:
    return GeminiModel(model_id, api_key=descriptor.api_key, base_url=descriptor.base_url)


def _google_vertex(
    descriptor: ProviderDescriptor, model_id: str, **options: Any
) -> LanguageModel:
    return GeminiModel(model_id, base_url=descriptor.base_url, vertex=descriptor.configuration)


def _anthropic_vertex(
    descriptor: ProviderDescriptor, model_id: str, **options: Any
) -> LanguageModel:
    return AnthropicVertexModel(
        model_id,
        vertex=descriptor.configuration,
        base_url=descriptor.base_url,
        cache_control=bool(options.get("cache_control", False)),
    )


def _amazon_bedrock(
    descriptor: ProviderDescriptor, model_id: str, **options: Any
) -> LanguageModel:
    return AnthropicBedrockModel(
        model_id,
        bedrock=descriptor.configuration,
        base_url=descriptor.base_url,
        cache_control=bool(options.get("cache_control", False)),
    )


_FACTORIES: dict[str, Callable[..., LanguageModel]] = {
    "openai": _openai,
    "anthropic": _anthropic,
    "google": _google,
    "google_vertex": _google_vertex,
    "anthropic_vertex": _anthropic_vertex,
    "amazon_bedrock": _amazon_bedrock,
    "groq": _openai_compatible,
    "mistral": _openai_compatible,
    "xai": _openai_compatible,
    "deepseek": _openai_compatible,
    "perplexity": _openai_compatible,
    "custom": _openai_compatible,
}


def coerce_descriptor(provider: ProviderDescriptor | dict[str, Any]) -> ProviderDescriptor:
    if isinstance(provider, ProviderDescriptor):
        return provider
    if isinstance(provider, dict):
        data = dict(provider)
        if "baseUrl" in data:
            data["base_url"] = data.pop("baseUrl")
        if "apiKey" in data:
            data["api_key"] = data.pop("apiKey")
        try:
            return ProviderDescriptor(**data)
        except TypeError as e:
            raise ConfigurationError(
                f"Invalid provider descriptor: {e}",
                hint="Pass {'provider': ..., 'api_key': ..., 'base_url': ..., 'configuration': ...}.",
            ) from e
    raise ConfigurationError(
        f"Invalid provider descriptor: {type(provider).__name__}",
        hint="Pass a ProviderDescriptor or a dict.",
    )


def _check_credentials(descriptor: ProviderDescriptor) -> None:
    if descriptor.provider in VERTEX_PROVIDERS:
        if not isinstance(descriptor.configuration, VertexConfiguration):
            raise ConfigurationError(
                f"{descriptor.provider} requires a Vertex configuration",
                hint="Pass configuration=VertexConfiguration(project=..., location=...).",
            )
        return
    if descriptor.provider == "amazon_bedrock":
        if not isinstance(descriptor.configuration, AmazonBedrockConfiguration):
            raise ConfigurationError(
                "amazon_bedrock requires an Amazon Bedrock configuration",
                hint="Pass configuration=AmazonBedrockConfiguration(region=...).",
            )
        return
    if not descriptor.api_key:
        raise ConfigurationError(
            f"API key required for {descriptor.provider}",
            hint="Pass ProviderDescriptor(api_key=...) or use ProviderDescriptor.from_env().",
        )
    if descriptor.provider == "custom" and not descriptor.base_url:
        raise ConfigurationError(
            "custom provider requires base_url",
            hint="Pass the OpenAI-compatible endpoint as base_url.",
        )


def resolve_provider(provider: ProviderDescriptor | dict[str, Any]) -> AdapterFactory:
    """Return the adapter factory for *provider*.

    Raises:
        ConfigurationError: Unknown provider, missing API key, a ``custom``
            provider without ``base_url``, or a Vertex/Bedrock provider
            without its configuration.
    """
    descriptor = coerce_descriptor(provider)
    factory = _FACTORIES.get(descriptor.provider)
    if factory is None:
        raise ConfigurationError(
            f"Unknown provider: {descriptor.provider!r}",
            hint=f"Supported providers: {', '.join(PROVIDER_TYPES)}",
        )
    _check_credentials(descriptor)
    logger.debug("Resolved adapter for %s", descriptor)
    return partial(factory, descriptor)


__all__ = [
    "AdapterFactory",
    "AnthropicBedrockModel",
    "AnthropicModel",
    "AnthropicVertexModel",
    "GeminiModel",
    "LanguageModel",
    "OpenAIChatModel",
    "OpenAIResponsesModel",
    "coerce_descriptor",
    "resolve_provider",
]
