"""chatsync configuration.

Loads settings from two YAML files:
  * chatsync.settings.yaml  : non-secret configuration
  * chatsync.secrets.yaml   : the user token (never committed)

Both files are optional; missing files fall back to model defaults.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .errors import ConfigError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chatsync.settings.yaml")
SECRETS_FILE  = Path("chatsync.secrets.yaml")

# Third-party loggers that are chatty at DEBUG/INFO.
NOISY_LOGGERS = ("paho", "paho.mqtt", "httpx", "httpcore")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {path} must be a mapping")
    return data


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class Secrets(BaseModel):
    user_token: Optional[str] = None


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ApiSettings(BaseModel):
    base_url:        str   = "https://api.qiscus.com"
    app_id:          str   = ""
    timeout_seconds: float = 15.0


class RealtimeSettings(BaseModel):
    """Broker connection and inbound filtering options."""
    broker_url:       str  = "wss://mqtt.qiscus.com:1886/mqtt"
    keepalive:        int  = 60
    client_id_prefix: str  = "chatsync"
    # Presence payloads whose timestamp text is longer than this are dropped.
    # None disables the check.
    presence_timestamp_max_length: Optional[int] = 13
    suppress_self_typing: bool = True

    @field_validator("presence_timestamp_max_length")
    @classmethod
    def _positive_length(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 1:
            raise ValueError("presence_timestamp_max_length must be >= 1 or null")
        return value


class LoggingSettings(BaseModel):
    level: str = "info"


class AppSettings(BaseModel):
    api:      ApiSettings      = Field(default_factory=ApiSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_path: Path = SETTINGS_FILE,
    secrets_path: Path = SECRETS_FILE,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_data = _load_yaml(Path(settings_path))
    secrets_data  = _load_yaml(Path(secrets_path))

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (api=%s, broker=%s, presence_limit=%s)",
        app_settings.api.base_url,
        app_settings.realtime.broker_url,
        app_settings.realtime.presence_timestamp_max_length,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def reset_config() -> None:
    """Forget the cached settings (used by tests)."""
    global _config
    _config = None


def configure_logging(settings: AppSettings) -> None:
    """Apply the configured level to the chatsync logger tree.

    An unknown level name is reported and otherwise ignored.
    """
    level = getattr(logging, settings.logging.level.upper(), None)
    if not isinstance(level, int):
        logger.warning("Unknown log level %r, keeping current level", settings.logging.level)
        return
    logging.getLogger("chatsync").setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logger.debug("chatsync log level set to %s", settings.logging.level.upper())
