import logging
from typing import Optional

from .config import ConfigManager
from .crypto import SecretBox, is_encrypted
from .errors import NotFoundError
from .storage.models import ProviderConfig
from .storage.store import PersistentStore

logger = logging.getLogger(__name__)

COLLECTION = "provider_configs"


class ProviderSettings:
    """CRUD over provider configurations plus the single active selection.

    Credentials are encrypted in the store and decrypted on the way out.  The
    active id is kept in config.json, outside the records themselves.
    """

    def __init__(
        self, store: PersistentStore, config: ConfigManager, secrets: SecretBox
    ) -> None:
        self._store = store
        self._config = config
        self._secrets = secrets

    def _seal(self, cfg: ProviderConfig) -> dict:
        data = cfg.model_dump(exclude={"id"})
        data["api_key"] = self._secrets.encrypt(cfg.api_key)
        return data

    def _unseal(self, cfg: ProviderConfig) -> ProviderConfig:
        return cfg.model_copy(update={"api_key": self._secrets.decrypt(cfg.api_key)})

    # ---- CRUD ----

    async def list(self) -> list[ProviderConfig]:
        configs = await self._store.all(COLLECTION)
        for cfg in configs:
            if cfg.api_key and not is_encrypted(cfg.api_key):
                logger.info("Encrypting plaintext credential of provider config %s", cfg.id)
                await self._store.update(
                    COLLECTION, cfg.id, {"api_key": self._secrets.encrypt(cfg.api_key)}
                )
        return [self._unseal(c) for c in configs]

    async def get(self, config_id: int) -> Optional[ProviderConfig]:
        cfg = await self._store.get(COLLECTION, config_id)
        return self._unseal(cfg) if cfg is not None else None

    async def add(self, cfg: ProviderConfig) -> ProviderConfig:
        new_id = await self._store.add(COLLECTION, self._seal(cfg))
        if self.active_id is None:
            self._set_active_id(new_id)
        return cfg.model_copy(update={"id": new_id})

    async def update(self, cfg: ProviderConfig) -> ProviderConfig:
        if cfg.id is None:
            raise ValueError("Provider config ID is required for update")
        await self._store.update(COLLECTION, cfg.id, self._seal(cfg))
        return cfg

    async def delete(self, config_id: int) -> Optional[int]:
        """Delete a configuration; returns the active id afterwards."""
        await self._store.delete(COLLECTION, config_id)
        if self.active_id == config_id:
            remaining = await self._store.all(COLLECTION)
            fallback = remaining[0].id if remaining else None
            logger.info(
                "Active provider config %s deleted, falling back to %s",
                config_id,
                fallback,
            )
            self._set_active_id(fallback)
        return self.active_id

    # ---- Active selection ----

    @property
    def active_id(self) -> Optional[int]:
        return self._config.get().active_provider_id

    def _set_active_id(self, config_id: Optional[int]) -> None:
        if self.active_id == config_id:
            return
        config = self._config.get().model_copy(update={"active_provider_id": config_id})
        self._config.update(config)

    async def set_active(self, config_id: Optional[int]) -> Optional[ProviderConfig]:
        if config_id is None:
            self._set_active_id(None)
            return None
        cfg = await self.get(config_id)
        if cfg is None:
            raise NotFoundError(COLLECTION, config_id)
        self._set_active_id(config_id)
        return cfg

    async def get_active(self) -> Optional[ProviderConfig]:
        """Return the active configuration, repairing a dangling selection."""
        active_id = self.active_id
        if active_id is not None:
            cfg = await self.get(active_id)
            if cfg is not None:
                return cfg
            logger.warning("Active provider config %s no longer exists", active_id)
        configs = await self.list()
        fallback = configs[0] if configs else None
        self._set_active_id(fallback.id if fallback else None)
        return fallback
