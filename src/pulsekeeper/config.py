"""Daemon configuration.

Loaded from ``~/.pulsekeeper/config.yaml``. Every field is optional; a
missing or unreadable file means defaults. Example:

    heartbeat_interval_s: 60
    think_interval_s: 3600
    owner_chat_id: "123456789"
    service_url: https://my-service.example.com/health
    process_name: my-worker
    wake_command: ["my-agent", "wake", "{text}"]
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "PULSEKEEPER_TELEGRAM_BOT_TOKEN"


def get_config_dir() -> Path:
    """Get the pulsekeeper home directory."""
    return Path.home() / ".pulsekeeper"


def get_config_path() -> Path:
    return get_config_dir() / "config.yaml"


class LoopConfig(BaseModel):
    """Settings for the heartbeat daemon."""
    enabled: bool = True
    heartbeat_interval_s: float = Field(60.0, gt=0)
    think_interval_s: float = Field(3600.0, ge=0)  # 0 disables periodic thinking
    owner_chat_id: str = ""
    service_url: str | None = None
    process_name: str | None = None
    data_dir: Path = Field(default_factory=get_config_dir)
    wake_command: list[str] | None = None  # argv; "{text}" is replaced by the wake text
    telegram_bot_token: str | None = None
    ledger_newest_first: bool = False
    health_interval_ticks: int = Field(5, ge=1)
    process_interval_ticks: int = Field(5, ge=1)


def load_config(path: Path | None = None) -> LoopConfig:
    """Load config from YAML, falling back to defaults on any problem."""
    config_path = Path(path) if path else get_config_path()
    raw: dict[str, Any] = {}
    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"expected a mapping, got {type(raw).__name__}")
    except FileNotFoundError:
        raw = {}
    except (OSError, yaml.YAMLError, ValueError) as e:
        logger.warning(f"Could not read config {config_path}, using defaults: {e}")
        raw = {}

    try:
        config = LoopConfig(**raw)
    except ValidationError as e:
        logger.warning(f"Invalid config {config_path}, using defaults: {e}")
        config = LoopConfig()

    env_token = os.environ.get(TOKEN_ENV_VAR)
    if env_token:
        config.telegram_bot_token = env_token
    return config
