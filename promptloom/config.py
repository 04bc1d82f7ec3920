import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field

from .crypto import set_strict_permissions
from .prompts.composer import DEFAULT_SYSTEM_PROMPT

logger = logging.getLogger(__name__)


class AppConfig(BaseModel):
    active_provider_id: Optional[int] = None
    default_system_prompt: str = DEFAULT_SYSTEM_PROMPT
    dialog_name_length: int = Field(default=50, gt=0)
    prompt_library_url: str = ""  # JSON array of {Id, Title, DisplayCategory, DisplayText}
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8765


def default_data_dir() -> Path:
    return Path(os.environ.get("PROMPTLOOM_DATA_DIR", Path.home() / ".promptloom"))


class ConfigManager:
    """Loads and saves AppConfig as config.json inside the data directory."""

    def __init__(self, data_dir: Union[str, Path, None] = None) -> None:
        self._data_dir = Path(data_dir) if data_dir else default_data_dir()
        self._config_file = self._data_dir / "config.json"
        self._current: Optional[AppConfig] = None

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def _ensure_data_dir(self) -> None:
        self._data_dir.mkdir(parents=True, exist_ok=True)

    def load(self) -> AppConfig:
        self._ensure_data_dir()
        if self._config_file.exists():
            try:
                data = json.loads(self._config_file.read_text(encoding="utf-8"))
                return AppConfig(**data)
            except (json.JSONDecodeError, OSError, ValueError):
                logger.warning("Failed to load config.json, using defaults")
        return AppConfig()

    def save(self, config: AppConfig) -> None:
        self._ensure_data_dir()
        self._config_file.write_text(
            config.model_dump_json(indent=2),
            encoding="utf-8",
        )
        set_strict_permissions(self._config_file)

    def get(self) -> AppConfig:
        if self._current is None:
            self._current = self.load()
        return self._current

    def update(self, config: AppConfig) -> AppConfig:
        self.save(config)
        self._current = config
        return self._current
