"""
Configuration management for notebook-ctl.

Server settings come from the environment; the user configuration is a
JSON document in the config directory.
"""

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field

from notebook_ctl.models import UserConfig
from notebook_ctl.utils import atomic_write

logger = logging.getLogger(__name__)


def default_config_dir() -> Path:
    return Path.home() / ".notebook_ctl"


class ServerSettings(BaseModel):
    root: Path = Field(default_factory=Path.cwd)
    config_dir: Path = Field(default_factory=default_config_dir)
    host: str = "127.0.0.1"
    port: int = 2718

    @classmethod
    def from_env(cls, **overrides) -> "ServerSettings":
        """
        Build settings from ``NOTEBOOK_CTL_*`` environment variables.

        Explicit keyword overrides that are not None win over the environment.
        """
        values = {}
        env = {
            "root": "NOTEBOOK_CTL_ROOT",
            "config_dir": "NOTEBOOK_CTL_CONFIG_DIR",
            "host": "NOTEBOOK_CTL_HOST",
            "port": "NOTEBOOK_CTL_PORT",
        }
        for key, var in env.items():
            if os.environ.get(var):
                values[key] = os.environ[var]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)

    @property
    def user_config_path(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def recent_files_path(self) -> Path:
        return self.config_dir / "recent.json"


def load_user_config(path: Path) -> UserConfig:
    """Load the user config, returning defaults if missing or unreadable."""
    if not path.exists():
        return UserConfig()
    try:
        return UserConfig.model_validate_json(path.read_text())
    except ValueError as e:
        logger.warning("Ignoring invalid user config %s: %s", path, e)
        return UserConfig()


def save_user_config(path: Path, config: UserConfig):
    """Persist the user config as JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    atomic_write(path, (json.dumps(config.model_dump(), indent=2) + "\n").encode("utf-8"))
