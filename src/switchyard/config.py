"""Configuration: provider descriptors and provider-agnostic generation config."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
import os
from typing import Any, Literal, get_args

from dotenv import load_dotenv

from switchyard.errors import ConfigurationError

ProviderType = Literal[
    "openai",
    "anthropic",
    "google",
    "google_vertex",
    "anthropic_vertex",
    "amazon_bedrock",
    "groq",
    "mistral",
    "xai",
    "deepseek",
    "perplexity",
    "custom",
]
PROVIDER_TYPES: tuple[str, ...] = get_args(ProviderType)

#: Providers authenticated through a Google Cloud project instead of an API key.
VERTEX_PROVIDERS: tuple[str, ...] = ("google_vertex", "anthropic_vertex")

ToolChoice = Literal["auto", "required", "none"] | dict[str, Any]

# Provider-specific API key environment variable names
_API_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GEMINI_API_KEY",
    "groq": "GROQ_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "xai": "XAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "perplexity": "PERPLEXITY_API_KEY",
    "custom": "CUSTOM_API_KEY",
}


def _rename_keys(data: dict[str, Any], aliases: dict[str, str]) -> dict[str, Any]:
    return {aliases.get(key, key): value for key, value in data.items()}


def _build(cls: type, data: dict[str, Any], aliases: dict[str, str]) -> Any:
    try:
        return cls(**_rename_keys(data, aliases))
    except TypeError as e:
        raise ConfigurationError(
            f"Invalid {cls.__name__}: {e}",
            hint=f"Supported keys: {', '.join(f.name for f in fields(cls))}",
        ) from e


def _require_text(owner: str, **values: Any) -> None:
    for name, value in values.items():
        if not isinstance(value, str) or not value.strip():
            raise ConfigurationError(f"{owner}.{name} must be a non-empty string")


@dataclass(frozen=True)
class GoogleCredentials:
    """Service-account key used to reach Vertex AI."""

    client_email: str
    private_key: str = field(repr=False)
    private_key_id: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        _require_text(
            "GoogleCredentials",
            client_email=self.client_email,
            private_key=self.private_key,
        )

    def service_account_info(self, project: str) -> dict[str, Any]:
        """Return the key as a service-account JSON mapping."""
        info = {
            "type": "service_account",
            "project_id": project,
            "client_email": self.client_email,
            "private_key": self.private_key,
            "token_uri": "https://oauth2.googleapis.com/token",
        }
        if self.private_key_id:
            info["private_key_id"] = self.private_key_id
        return info


@dataclass(frozen=True)
class VertexConfiguration:
    """Google Cloud project and region for the Vertex providers.

    Without ``google_credentials`` the SDKs fall back to Application Default
    Credentials.

    Example:
        VertexConfiguration(project="my-project", location="us-central1")
    """

    project: str
    location: str
    google_credentials: GoogleCredentials | None = None

    def __post_init__(self) -> None:
        _require_text("VertexConfiguration", project=self.project, location=self.location)
        if isinstance(self.google_credentials, dict):
            object.__setattr__(
                self,
                "google_credentials",
                _build(GoogleCredentials, self.google_credentials, _GOOGLE_CREDENTIAL_ALIASES),
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VertexConfiguration:
        """Build from snake_case or camelCase keys."""
        return _build(cls, data, _VERTEX_ALIASES)


@dataclass(frozen=True)
class AmazonBedrockConfiguration:
    """AWS region and optional static credentials for Amazon Bedrock.

    Without an access key pair, the AWS default credential chain applies.
    """

    region: str
    access_key_id: str | None = field(default=None, repr=False)
    secret_access_key: str | None = field(default=None, repr=False)
    session_token: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        _require_text("AmazonBedrockConfiguration", region=self.region)
        if bool(self.access_key_id) != bool(self.secret_access_key):
            raise ConfigurationError(
                "access_key_id and secret_access_key must be given together",
                hint="Pass both keys, or neither to use the AWS credential chain.",
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AmazonBedrockConfiguration:
        """Build from snake_case or camelCase keys."""
        return _build(cls, data, _BEDROCK_ALIASES)


_GOOGLE_CREDENTIAL_ALIASES = {
    "clientEmail": "client_email",
    "privateKey": "private_key",
    "privateKeyId": "private_key_id",
}
_VERTEX_ALIASES = {"googleCredentials": "google_credentials"}
_BEDROCK_ALIASES = {
    "accessKeyId": "access_key_id",
    "secretAccessKey": "secret_access_key",
    "sessionToken": "session_token",
}

ProviderConfiguration = VertexConfiguration | AmazonBedrockConfiguration


@dataclass(frozen=True)
class ProviderDescriptor:
    """Immutable identity of the provider serving a call.

    The orchestrator never reads credentials from the environment; callers
    pass them here explicitly (or opt into `from_env`). The Vertex and
    Bedrock variants authenticate through ``configuration`` instead of
    ``api_key``.

    Example:
        provider = ProviderDescriptor(provider="openai", api_key="sk-...")
        vertex = ProviderDescriptor(
            provider="google_vertex",
            configuration=VertexConfiguration(project="p", location="us-central1"),
        )
    """

    provider: ProviderType
    api_key: str = ""
    #: Required for ``custom``; overrides the default endpoint otherwise.
    base_url: str | None = None
    configuration: ProviderConfiguration | None = None

    def __post_init__(self) -> None:
        """Validate provider type and credential shape."""
        if self.provider not in PROVIDER_TYPES:
            raise ConfigurationError(
                f"Unknown provider: {self.provider!r}",
                hint=f"Supported providers: {', '.join(PROVIDER_TYPES)}",
            )
        if not isinstance(self.api_key, str):
            raise ConfigurationError(
                "api_key must be a string",
                hint="Pass the provider API key as a plain string.",
            )
        if isinstance(self.configuration, dict):
            if self.provider in VERTEX_PROVIDERS:
                parsed: Any = VertexConfiguration.from_dict(self.configuration)
            elif self.provider == "amazon_bedrock":
                parsed = AmazonBedrockConfiguration.from_dict(self.configuration)
            else:
                raise ConfigurationError(
                    f"{self.provider} takes no configuration",
                    hint="Only the Vertex and Bedrock providers accept configuration.",
                )
            object.__setattr__(self, "configuration", parsed)

    @classmethod
    def from_env(
        cls, provider: ProviderType, *, base_url: str | None = None
    ) -> ProviderDescriptor:
        """Build a descriptor from ``<PROVIDER>_API_KEY`` (and ``.env`` files).

        Vertex providers read ``GOOGLE_VERTEX_PROJECT`` and
        ``GOOGLE_VERTEX_LOCATION``; Bedrock reads ``AWS_REGION`` and the
        optional ``AWS_ACCESS_KEY_ID``/``AWS_SECRET_ACCESS_KEY``/
        ``AWS_SESSION_TOKEN``.

        This is a caller-side convenience; nothing inside the orchestrator
        calls it.
        """
        load_dotenv()
        if provider in VERTEX_PROVIDERS:
            return cls(
                provider=provider,
                base_url=base_url,
                configuration=VertexConfiguration(
                    project=_required_env("GOOGLE_VERTEX_PROJECT", provider),
                    location=_required_env("GOOGLE_VERTEX_LOCATION", provider),
                ),
            )
        if provider == "amazon_bedrock":
            return cls(
                provider=provider,
                base_url=base_url,
                configuration=AmazonBedrockConfiguration(
                    region=_required_env("AWS_REGION", provider),
                    access_key_id=os.environ.get("AWS_ACCESS_KEY_ID") or None,
                    secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY") or None,
                    session_token=os.environ.get("AWS_SESSION_TOKEN") or None,
                ),
            )
        env_var = _API_KEY_ENV_VARS.get(provider)
        if env_var is None:
            raise ConfigurationError(
                f"Unknown provider: {provider!r}",
                hint=f"Supported providers: {', '.join(PROVIDER_TYPES)}",
            )
        api_key = os.environ.get(env_var)
        if not api_key:
            raise ConfigurationError(
                f"API key required for {provider}",
                hint=f"Set {env_var} environment variable or pass api_key=...",
            )
        if base_url is None:
            base_url = os.environ.get(f"{provider.upper()}_BASE_URL") or None
        return cls(provider=provider, api_key=api_key, base_url=base_url)

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"ProviderDescriptor(provider={self.provider!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"base_url={self.base_url!r}, "
            f"configuration={self.configuration!r})"
        )

    __repr__ = __str__


def _required_env(name: str, provider: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise ConfigurationError(
            f"{name} required for {provider}",
            hint=f"Set {name} environment variable or pass configuration=...",
        )
    return value


# camelCase spellings accepted by GenerationConfig.from_dict.
_CAMEL_CASE_ALIASES: dict[str, str] = {
    "topP": "top_p",
    "topK": "top_k",
    "maxTokens": "max_tokens",
    "presencePenalty": "presence_penalty",
    "frequencyPenalty": "frequency_penalty",
    "stopSequences": "stop_sequences",
    "toolChoice": "tool_choice",
    "providerOptions": "provider_options",
    "cacheControl": "cache_control",
}


@dataclass(frozen=True)
class GenerationConfig:
    """Provider-agnostic generation options.

    Only the rule engine rewrites a config (through `dataclasses.replace`);
    the orchestrator passes it along untouched.
    """

    model: str
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    #: Hard limit on generated tokens. Provider-specific semantics.
    max_tokens: int | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    stop_sequences: tuple[str, ...] | None = None
    seed: int | None = None
    #: Tool name → ``{"description": ..., "parameters": <JSON schema>}``.
    tools: dict[str, dict[str, Any]] | None = None
    tool_choice: ToolChoice | None = None
    #: Passed to the provider call, never to the adapter factory.
    provider_options: dict[str, Any] | None = None
    #: Prompt-caching hint; only Anthropic honours it.
    cache_control: bool = False
    schema: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        """Validate option shapes early for clear errors."""
        if not isinstance(self.model, str) or not self.model.strip():
            raise ConfigurationError(
                "model must be a non-empty string",
                hint="Pass GenerationConfig(model='gpt-4o-mini').",
            )
        for name in ("temperature", "top_p", "presence_penalty", "frequency_penalty"):
            value = getattr(self, name)
            if value is not None and (
                isinstance(value, bool) or not isinstance(value, (int, float))
            ):
                raise ConfigurationError(f"{name} must be a number")
        if self.max_tokens is not None and (
            not isinstance(self.max_tokens, int) or self.max_tokens <= 0
        ):
            raise ConfigurationError(
                "max_tokens must be a positive integer",
                hint="Pass max_tokens=1024 or similar.",
            )
        if self.tools is not None and not isinstance(self.tools, dict):
            raise ConfigurationError(
                "tools must be a mapping of tool name to definition",
                hint="Pass tools={'get_weather': {'description': ..., 'parameters': {...}}}.",
            )
        if self.tool_choice is not None and not (
            self.tool_choice in ("auto", "required", "none")
            or (
                isinstance(self.tool_choice, dict)
                and isinstance(self.tool_choice.get("name"), str)
            )
        ):
            raise ConfigurationError(
                "tool_choice must be 'auto', 'required', 'none' or {'name': ...}",
            )
        if self.provider_options is not None and not isinstance(
            self.provider_options, dict
        ):
            raise ConfigurationError("provider_options must be a dict")
        if self.stop_sequences is not None:
            object.__setattr__(self, "stop_sequences", tuple(self.stop_sequences))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenerationConfig:
        """Build a config from snake_case or camelCase keys."""
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _CAMEL_CASE_ALIASES.get(key, key)
            if name not in known:
                raise ConfigurationError(
                    f"Unknown generation config key: {key!r}",
                    hint=f"Supported keys: {', '.join(sorted(known))}",
                )
            kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self, *, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
        """Return set fields as a shallow dict, skipping *exclude*."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in exclude and getattr(self, f.name) is not None
        }

