"""
ClawBox configuration — ``<home>/config.yaml`` loaded into pydantic models.

Example config.yaml:

    actor_type: ai
    actor_id: build-agent
    auto_lock_seconds: 900
    audit_limit: 50
    sync:
      backend: local
      local_path: /Volumes/USB/clawbox
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from . import CLAWBOX_HOME
from .models import Actor, make_actor
from .sync.models import SyncBackendConfig

logger = logging.getLogger("clawbox.config")

CONFIG_FILE = "config.yaml"
PASSWORD_ENV = "CLAWBOX_PASSWORD"


class ClawBoxConfig(BaseModel):
    """Settings for a vault home directory."""

    actor_type: str = "human"
    actor_id: Optional[str] = None
    auto_lock_seconds: Optional[int] = Field(default=None, ge=1)
    audit_limit: int = 50
    sync: SyncBackendConfig = Field(default_factory=SyncBackendConfig)

    def actor(self) -> Actor:
        return make_actor(self.actor_type, self.actor_id)


def vault_home(path: Optional[os.PathLike] = None) -> Path:
    """Resolve the vault directory (explicit path, $CLAWBOX_HOME, or ~/.clawbox)."""
    return Path(path or CLAWBOX_HOME).expanduser()


def load_config(home: Path) -> ClawBoxConfig:
    """Load config.yaml from a vault home, falling back to defaults.

    Args:
        home: Vault home directory.

    Returns:
        ClawBoxConfig: Parsed config, or defaults if missing/invalid.
    """
    config_file = home / CONFIG_FILE
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return ClawBoxConfig(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load config %s: %s", config_file, exc)
    return ClawBoxConfig()


def save_config(home: Path, config: ClawBoxConfig) -> Path:
    """Persist a config to ``<home>/config.yaml``."""
    home.mkdir(parents=True, exist_ok=True)
    config_file = home / CONFIG_FILE
    data = config.model_dump(mode="json", exclude_none=True)
    config_file.write_text(
        yaml.dump(data, default_flow_style=False), encoding="utf-8"
    )
    return config_file
