import logging
from typing import Optional

from ..errors import ProviderNotConfiguredError
from ..storage.models import ProviderConfig
from .anthropic_provider import AnthropicProvider
from .base import CompletionProvider
from .openai_provider import OpenAICompatibleProvider, OpenRouterProvider

logger = logging.getLogger(__name__)

ALL_PROVIDERS = [
    OpenRouterProvider,
    OpenAICompatibleProvider,
    AnthropicProvider,
]

_PROVIDER_CLASS_MAP: dict[str, type[CompletionProvider]] = {
    cls.name: cls for cls in ALL_PROVIDERS
}
# Local servers speak the OpenAI protocol at a user-supplied base_url
_PROVIDER_CLASS_MAP["local"] = OpenAICompatibleProvider

_providers: dict[tuple[str, str, str], CompletionProvider] = {}


def check_config(config: Optional[ProviderConfig]) -> ProviderConfig:
    if config is None:
        raise ProviderNotConfiguredError(
            "No AI provider configured. Add one in Settings."
        )
    if not config.model:
        raise ProviderNotConfiguredError(f"Provider config '{config.name}' has no model")
    if config.provider == "local":
        if not config.base_url:
            raise ProviderNotConfiguredError(
                f"Provider config '{config.name}' needs a base_url for a local server"
            )
    elif not config.api_key:
        raise ProviderNotConfiguredError(
            f"Provider config '{config.name}' has no API key"
        )
    if config.provider not in _PROVIDER_CLASS_MAP:
        raise ProviderNotConfiguredError(f"Unknown provider '{config.provider}'")
    return config


def get_provider(config: Optional[ProviderConfig]) -> CompletionProvider:
    config = check_config(config)
    key = (config.provider, config.api_key, config.base_url)
    if key not in _providers:
        provider_cls = _PROVIDER_CLASS_MAP[config.provider]
        _providers[key] = provider_cls(config.api_key, config.base_url)
        logger.info("Initialized %s provider", config.provider)
    return _providers[key]


def reset_providers() -> None:
    _providers.clear()
