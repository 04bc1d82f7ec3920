"""Wires the store and every service on top of it for one data directory."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Union

from .catalog import Catalog
from .chat import ChatService
from .config import ConfigManager
from .crypto import SecretBox
from .llm.base import CompletionProvider
from .llm.registry import get_provider
from .presets import PresetRegistry
from .prompt_library import PromptLibrary
from .prompts.composer import PromptComposer
from .session.dialogs import DialogService
from .session.manager import DialogSessionManager
from .settings import ProviderSettings
from .storage.models import ProviderConfig
from .storage.store import PersistentStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: ConfigManager
    store: PersistentStore
    catalog: Catalog
    composer: PromptComposer
    presets: PresetRegistry
    settings: ProviderSettings
    dialogs: DialogService
    session: DialogSessionManager
    chat: ChatService
    prompt_library: PromptLibrary

    async def open(self) -> None:
        await self.store.open()

    def close(self) -> None:
        self.store.close()


def build_services(
    data_dir: Union[str, Path, None] = None,
    provider_factory: Callable[[ProviderConfig], CompletionProvider] = get_provider,
) -> Services:
    config = ConfigManager(data_dir)
    app_config = config.get()
    store = PersistentStore(config.data_dir)
    catalog = Catalog(store)
    composer = PromptComposer(catalog)
    composer.current_prompt = app_config.default_system_prompt
    dialogs = DialogService(store)
    session = DialogSessionManager(
        dialogs,
        default_system_prompt=app_config.default_system_prompt,
        name_length=app_config.dialog_name_length,
    )
    settings = ProviderSettings(store, config, SecretBox(config.data_dir))
    chat = ChatService(session, settings, composer, provider_factory)
    logger.debug("Services built for %s", config.data_dir)
    return Services(
        config=config,
        store=store,
        catalog=catalog,
        composer=composer,
        presets=PresetRegistry(store),
        settings=settings,
        dialogs=dialogs,
        session=session,
        chat=chat,
        prompt_library=PromptLibrary(app_config.prompt_library_url),
    )
