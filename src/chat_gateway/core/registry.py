"""
Backend registry.

Declares every known backend in priority order and builds, per request,
the adapters whose credentials are available. Nothing here is cached:
callers may bring their own key for the default backend, so the set of
usable backends is recomputed from its inputs every time.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

from .config import ProviderSettings
from .interface import AbstractProvider
from ..adapters import (
    AnthropicAdapter,
    AnthropicVertexAdapter,
    AzureOpenAIAdapter,
    BailianAdapter,
    CohereAdapter,
    GoogleAdapter,
    OllamaAdapter,
    OpenAIAdapter,
)
from ..adapters.azure_openai_adapter import parse_deployment_map
from ..models.response import ModelCard

logger = logging.getLogger(__name__)


@dataclass
class BuildContext:
    """Everything a factory needs to construct one adapter."""
    name: str
    env: Mapping[str, str]
    models: List[str]
    caller_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: Optional[float] = None
    http_client: Optional[httpx.AsyncClient] = None

    @property
    def adapter_kwargs(self) -> Dict[str, object]:
        kwargs = {"http_client": self.http_client}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        return kwargs


Factory = Callable[[BuildContext], AbstractProvider]


@dataclass(frozen=True)
class ProviderDescriptor:
    """
    Static metadata for one backend.

    Attributes:
        name: Unique backend name, published as owned_by
        required_env: Keys that must all be present for the backend to be used
        supported_models: Models served out of the box
        factory: Builds the adapter from resolved configuration
        default: The backend behind the gateway's own API shape; usable with
            a caller-supplied key even when its env key is missing
        models_env: Optional env key holding extra comma-separated model ids
    """
    name: str
    required_env: Tuple[str, ...]
    supported_models: Tuple[str, ...]
    factory: Factory = field(compare=False, repr=False)
    default: bool = False
    models_env: Optional[str] = None

    def is_configured(self, env: Mapping[str, str], caller_key: Optional[str] = None) -> bool:
        if self.default:
            return bool(caller_key) or all(env.get(key) for key in self.required_env)
        return all(key in env for key in self.required_env)

    def models(
        self,
        env: Mapping[str, str],
        settings: Optional[ProviderSettings] = None,
    ) -> List[str]:
        models = list(self.supported_models)
        if self.models_env:
            models.extend(_split_list(env.get(self.models_env)))
        if settings is not None:
            models.extend(settings.models)
        return list(dict.fromkeys(models))


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _openai_compatible(env_key: str, base_url: Optional[str] = None) -> Factory:
    """Factory for backends that speak the OpenAI chat-completions protocol."""

    def build(ctx: BuildContext) -> AbstractProvider:
        return OpenAIAdapter(
            name=ctx.name,
            api_key=ctx.env[env_key],
            supported_models=ctx.models,
            base_url=ctx.base_url or base_url,
            **ctx.adapter_kwargs,
        )

    return build


def _build_openai(ctx: BuildContext) -> AbstractProvider:
    # A caller key replaces the configured one for this backend only
    return OpenAIAdapter(
        name=ctx.name,
        api_key=ctx.caller_key or ctx.env.get("OPENAI_API_KEY", ""),
        supported_models=ctx.models,
        base_url=ctx.base_url or ctx.env.get("OPENAI_BASE_URL"),
        organization=ctx.env.get("OPENAI_ORGANIZATION"),
        **ctx.adapter_kwargs,
    )


def _build_anthropic(ctx: BuildContext) -> AbstractProvider:
    return AnthropicAdapter(
        name=ctx.name,
        api_key=ctx.env["ANTHROPIC_API_KEY"],
        supported_models=ctx.models,
        base_url=ctx.base_url,
        **ctx.adapter_kwargs,
    )


def _build_anthropic_vertex(ctx: BuildContext) -> AbstractProvider:
    return AnthropicVertexAdapter(
        name=ctx.name,
        project_id=ctx.env["GOOGLE_VERTEX_PROJECT"],
        region=ctx.env["GOOGLE_VERTEX_REGION"],
        access_token=ctx.env["GOOGLE_VERTEX_ACCESS_TOKEN"],
        supported_models=ctx.models,
        **ctx.adapter_kwargs,
    )


def _build_google(ctx: BuildContext) -> AbstractProvider:
    return GoogleAdapter(
        name=ctx.name,
        api_key=ctx.env["GOOGLE_GEMINI_API_KEY"],
        supported_models=ctx.models,
        base_url=ctx.base_url,
        **ctx.adapter_kwargs,
    )


def _build_azure(ctx: BuildContext) -> AbstractProvider:
    return AzureOpenAIAdapter(
        name=ctx.name,
        endpoint=ctx.base_url or ctx.env["AZURE_OPENAI_ENDPOINT"],
        api_key=ctx.env["AZURE_OPENAI_API_KEY"],
        supported_models=ctx.models,
        api_version=ctx.env.get("AZURE_OPENAI_API_VERSION"),
        deployment_map=parse_deployment_map(ctx.env.get("AZURE_OPENAI_DEPLOYMENTS")),
        **ctx.adapter_kwargs,
    )


def _build_cohere(ctx: BuildContext) -> AbstractProvider:
    return CohereAdapter(
        name=ctx.name,
        api_key=ctx.env["COHERE_API_KEY"],
        supported_models=ctx.models,
        base_url=ctx.base_url,
        **ctx.adapter_kwargs,
    )


def _build_bailian(ctx: BuildContext) -> AbstractProvider:
    return BailianAdapter(
        name=ctx.name,
        api_key=ctx.env["BAILIAN_API_KEY"],
        supported_models=ctx.models,
        base_url=ctx.base_url,
        **ctx.adapter_kwargs,
    )


def _build_ollama(ctx: BuildContext) -> AbstractProvider:
    return OllamaAdapter(
        name=ctx.name,
        supported_models=ctx.models,
        base_url=ctx.base_url or ctx.env.get("OLLAMA_BASE_URL"),
        keep_alive=ctx.env.get("OLLAMA_KEEP_ALIVE", "5m"),
        **ctx.adapter_kwargs,
    )


# Declaration order is the routing priority when two backends claim a model
PROVIDERS: Tuple[ProviderDescriptor, ...] = (
    ProviderDescriptor(
        name="openai",
        required_env=("OPENAI_API_KEY",),
        supported_models=(
            "gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-4", "gpt-3.5-turbo",
            "o1", "o1-mini", "o3-mini",
            "gpt-4.1", "gpt-4.1-mini", "gpt-4.1-nano", "chatgpt-4o-latest",
        ),
        factory=_build_openai,
        default=True,
    ),
    ProviderDescriptor(
        name="anthropic",
        required_env=("ANTHROPIC_API_KEY",),
        supported_models=(
            "claude-3-5-sonnet-latest", "claude-3-5-sonnet-20241022",
            "claude-3-5-haiku-latest", "claude-3-5-haiku-20241022",
            "claude-3-7-sonnet-latest", "claude-3-7-sonnet-20250219",
            "claude-3-opus-latest",
            "claude-sonnet-4-20250514", "claude-opus-4-20250514",
        ),
        factory=_build_anthropic,
    ),
    ProviderDescriptor(
        name="anthropic-vertex",
        required_env=("GOOGLE_VERTEX_PROJECT", "GOOGLE_VERTEX_REGION", "GOOGLE_VERTEX_ACCESS_TOKEN"),
        supported_models=(
            "claude-3-5-sonnet-v2@20241022", "claude-3-5-haiku@20241022",
            "claude-3-7-sonnet@20250219", "claude-sonnet-4@20250514",
        ),
        factory=_build_anthropic_vertex,
    ),
    ProviderDescriptor(
        name="google",
        required_env=("GOOGLE_GEMINI_API_KEY",),
        supported_models=(
            "gemini-2.5-pro", "gemini-2.5-flash", "gemini-2.0-flash",
            "gemini-2.0-flash-lite", "gemini-1.5-pro", "gemini-1.5-flash",
        ),
        factory=_build_google,
    ),
    ProviderDescriptor(
        name="deepseek",
        required_env=("DEEPSEEK_API_KEY",),
        supported_models=("deepseek-chat", "deepseek-reasoner"),
        factory=_openai_compatible("DEEPSEEK_API_KEY", "https://api.deepseek.com/v1"),
    ),
    ProviderDescriptor(
        name="moonshot",
        required_env=("MOONSHOT_API_KEY",),
        supported_models=("moonshot-v1-8k", "moonshot-v1-32k", "moonshot-v1-128k"),
        factory=_openai_compatible("MOONSHOT_API_KEY", "https://api.moonshot.cn/v1"),
    ),
    ProviderDescriptor(
        name="lingyiwanwu",
        required_env=("LINGYIWANWU_API_KEY",),
        supported_models=("yi-lightning", "yi-large", "yi-medium", "yi-spark", "yi-large-turbo"),
        factory=_openai_compatible("LINGYIWANWU_API_KEY", "https://api.lingyiwanwu.com/v1"),
    ),
    ProviderDescriptor(
        name="groq",
        required_env=("GROQ_API_KEY",),
        supported_models=(
            "llama-3.3-70b-versatile", "llama-3.1-8b-instant",
            "mixtral-8x7b-32768", "gemma2-9b-it",
        ),
        factory=_openai_compatible("GROQ_API_KEY", "https://api.groq.com/openai/v1"),
    ),
    ProviderDescriptor(
        name="azure-openai",
        required_env=("AZURE_OPENAI_API_KEY", "AZURE_OPENAI_ENDPOINT"),
        supported_models=("gpt-4o", "gpt-4o-mini", "gpt-4", "gpt-35-turbo"),
        factory=_build_azure,
    ),
    ProviderDescriptor(
        name="cohere",
        required_env=("COHERE_API_KEY",),
        supported_models=("command-a-03-2025", "command-r-plus", "command-r", "command-r7b-12-2024"),
        factory=_build_cohere,
    ),
    ProviderDescriptor(
        name="bailian",
        required_env=("BAILIAN_API_KEY",),
        supported_models=("qwen-max", "qwen-plus", "qwen-turbo", "qwen-long"),
        factory=_build_bailian,
    ),
    ProviderDescriptor(
        name="ollama",
        required_env=("OLLAMA_MODELS",),
        supported_models=(),
        factory=_build_ollama,
        models_env="OLLAMA_MODELS",
    ),
    ProviderDescriptor(
        name="grok",
        required_env=("XAI_API_KEY",),
        supported_models=("grok-beta", "grok-2-1212", "grok-2-vision-1212", "grok-3", "grok-3-mini"),
        factory=_openai_compatible("XAI_API_KEY", "https://api.x.ai/v1"),
    ),
    ProviderDescriptor(
        name="openrouter",
        required_env=("OPENROUTER_API_KEY",),
        supported_models=(
            "openai/gpt-4o", "anthropic/claude-3.5-sonnet", "google/gemini-2.0-flash-001",
            "meta-llama/llama-3.3-70b-instruct", "deepseek/deepseek-chat",
        ),
        factory=_openai_compatible("OPENROUTER_API_KEY", "https://openrouter.ai/api/v1"),
        models_env="OPENROUTER_MODELS",
    ),
    ProviderDescriptor(
        name="cerebras",
        required_env=("CEREBRAS_API_KEY",),
        supported_models=("llama3.1-8b", "llama-3.3-70b"),
        factory=_openai_compatible("CEREBRAS_API_KEY", "https://api.cerebras.ai/v1"),
    ),
)


def get_descriptor(name: str, providers: Sequence[ProviderDescriptor] = PROVIDERS) -> Optional[ProviderDescriptor]:
    """Look up a backend declaration by name."""
    for descriptor in providers:
        if descriptor.name == name:
            return descriptor
    return None


def list_available(
    env: Mapping[str, str],
    caller_key: Optional[str] = None,
    *,
    settings: Optional[Mapping[str, ProviderSettings]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: Optional[float] = None,
    providers: Sequence[ProviderDescriptor] = PROVIDERS,
) -> List[AbstractProvider]:
    """
    Build adapters for every configured backend, in priority order.

    Args:
        env: Configuration key/value pairs (credentials per backend)
        caller_key: Key from the caller's Authorization header, used for
            the default backend only
        settings: Per-backend overrides from the config file
        http_client: Shared client handed to every adapter
        timeout: Default upstream timeout, overridden per backend by settings
        providers: Backend declarations to consider

    Returns:
        Adapters for the usable backends. Never raises; a backend that
        is not configured, disabled or fails to build is left out.
    """
    settings = settings or {}
    available: List[AbstractProvider] = []

    for descriptor in providers:
        overrides = settings.get(descriptor.name)
        if overrides is not None and not overrides.enabled:
            continue
        if not descriptor.is_configured(env, caller_key):
            continue

        ctx = BuildContext(
            name=descriptor.name,
            env=env,
            models=descriptor.models(env, overrides),
            caller_key=caller_key if descriptor.default else None,
            base_url=overrides.base_url if overrides else None,
            timeout=(overrides.timeout if overrides and overrides.timeout else timeout),
            http_client=http_client,
        )
        try:
            available.append(descriptor.factory(ctx))
        except Exception as e:
            logger.error(f"Failed to build backend {descriptor.name}: {e}")

    return available


def list_model_cards(
    providers: Sequence[AbstractProvider],
    created: Optional[int] = None,
) -> List[ModelCard]:
    """Flatten every backend's models into /v1/models entries."""
    created = int(time.time()) if created is None else created
    cards: List[ModelCard] = []
    for provider in providers:
        cards.extend(provider.model_cards(created))
    return cards
