"""Pickup client configuration.

Loads settings from ``pickup.settings.yaml``:
  * backend      : REST base URL and request timeout
  * realtime     : Socket.IO endpoint and reconnection policy
  * chat         : optimistic-send matching window, message length limit
  * credentials  : secure store TTL
  * logging      : root log level

A missing file yields the defaults below.  ``PICKUP_BACKEND_URL`` overrides
``backend.base_url`` for quick pointing at another backend.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("pickup.settings.yaml")
BACKEND_URL_ENV = "PICKUP_BACKEND_URL"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class BackendSettings(BaseModel):
    base_url:                str   = "http://10.0.0.58:3000"
    request_timeout_seconds: float = 10.0

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class RealtimeSettings(BaseModel):
    """Socket.IO channel settings.  ``url`` falls back to the backend URL."""
    url:                     Optional[str] = None
    socketio_path:           str   = "socket.io"
    reconnection:            bool  = True
    reconnection_attempts:   int   = 0      # 0 = retry forever
    reconnection_delay:      float = 1.0
    reconnection_delay_max:  float = 5.0
    connect_timeout_seconds: float = 10.0


class ChatSettings(BaseModel):
    match_window_seconds: float = Field(default=10.0, gt=0)
    max_message_length:   int   = Field(default=500, gt=0)


class CredentialSettings(BaseModel):
    ttl_seconds: int = 30 * 24 * 3600


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    backend:     BackendSettings    = Field(default_factory=BackendSettings)
    realtime:    RealtimeSettings   = Field(default_factory=RealtimeSettings)
    chat:        ChatSettings       = Field(default_factory=ChatSettings)
    credentials: CredentialSettings = Field(default_factory=CredentialSettings)
    logging:     LoggingSettings    = Field(default_factory=LoggingSettings)

    @property
    def realtime_url(self) -> str:
        return self.realtime.url or self.backend.base_url


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load *settings_path* (default ``pickup.settings.yaml``) into an *AppConfig*."""
    data = _load_yaml(Path(settings_path) if settings_path else SETTINGS_FILE)

    override = os.environ.get(BACKEND_URL_ENV)
    if override:
        data.setdefault("backend", {})["base_url"] = override
        logger.info("Backend URL overridden from %s", BACKEND_URL_ENV)

    config = AppConfig(**data)
    logger.info(
        "Settings loaded (backend=%s, realtime=%s, match_window=%ss)",
        config.backend.base_url,
        config.realtime_url,
        config.chat.match_window_seconds,
    )
    return config


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Process-wide config, loaded once from the default settings file."""
    return load_config()
