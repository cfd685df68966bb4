"""
config/settings.py — Ember Runtime Settings

Merges config.yaml (defaults/structure) with .env and environment variables
(secrets). Pydantic-powered — all fields are validated and typed.

  - GatewayConfig rejects non-WebSocket URLs and unknown capability tags
  - BriefingConfig rejects delivery times that are not HH:mm
  - ChatConfig validates the provider name
  - validate_all() performs cross-field startup validation and raises
    ConfigError listing every problem found
  - load_settings() respects EMBER_CONFIG as a fallback when no explicit
    config_path argument is given
"""

from __future__ import annotations

import os
import re
import threading
from pathlib import Path
from typing import Any, List, Optional
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

KNOWN_CAPABILITIES = frozenset({"inbox", "memory", "briefing", "push", "streaming"})
DEFAULT_CAPABILITIES = ["inbox", "memory", "briefing", "push"]

_VALID_PROVIDERS = {"gateway", "claude"}
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def is_websocket_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("ws", "wss") and bool(parsed.hostname)


def is_hhmm(value: str) -> bool:
    return bool(_HHMM.match(value))


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class GatewayConfig(BaseModel):
    url: str = "ws://localhost:3000"
    client_id: str = "ember-python"
    client_version: str = "1.0"
    capabilities: List[str] = Field(default_factory=lambda: list(DEFAULT_CAPABILITIES))
    chat_capabilities: List[str] = Field(default_factory=lambda: ["streaming"])
    keepalive_interval_seconds: float = 30.0
    open_timeout_seconds: float = 10.0
    pong_timeout_seconds: float = 10.0
    max_frame_bytes: int = 2**20

    @field_validator("url")
    @classmethod
    def _websocket_url(cls, v: str) -> str:
        if not is_websocket_url(v):
            raise ValueError(
                f"gateway.url must be a ws:// or wss:// URL with a host, got '{v}'"
            )
        return v

    @field_validator("capabilities", "chat_capabilities")
    @classmethod
    def _known_capabilities(cls, v: list[str]) -> list[str]:
        bad = [c for c in v if c not in KNOWN_CAPABILITIES]
        if bad:
            raise ValueError(
                f"gateway capabilities contain unknown tags: {bad}. "
                f"Known: {sorted(KNOWN_CAPABILITIES)}"
            )
        return v

    @field_validator(
        "keepalive_interval_seconds", "open_timeout_seconds", "pong_timeout_seconds"
    )
    @classmethod
    def _positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("gateway timeouts and intervals must be > 0")
        return v


class ChatConfig(BaseModel):
    provider: str = "claude"
    model: str = "claude-sonnet-4-20250514"
    api_url: str = "https://api.anthropic.com/v1/messages"
    anthropic_version: str = "2023-06-01"
    max_tokens: int = 4096
    request_timeout_seconds: float = 60.0
    max_error_body_chars: int = 2000
    max_sse_buffer_chars: int = 1_000_000

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, v: str) -> str:
        if v not in _VALID_PROVIDERS:
            raise ValueError(
                f"chat.provider '{v}' is not supported. Supported: {sorted(_VALID_PROVIDERS)}"
            )
        return v

    @field_validator("max_tokens")
    @classmethod
    def _positive_tokens(cls, v: int) -> int:
        if v < 1:
            raise ValueError("chat.max_tokens must be >= 1")
        return v

    @field_validator("api_url")
    @classmethod
    def _https_url(cls, v: str) -> str:
        if urlparse(v).scheme not in ("http", "https"):
            raise ValueError(f"chat.api_url must be an http(s) URL, got '{v}'")
        return v


class InboxConfig(BaseModel):
    enabled: bool = True
    vips: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)


class MemoryConfig(BaseModel):
    enabled: bool = True


class BriefingConfig(BaseModel):
    enabled: bool = False
    time: str = "07:00"
    timezone: str = "UTC"
    sources: List[str] = Field(default_factory=lambda: ["iMessage", "slack", "teams"])

    @field_validator("time")
    @classmethod
    def _valid_time(cls, v: str) -> str:
        if not is_hhmm(v):
            raise ValueError(f"briefing.time must be HH:mm (24h), got '{v}'")
        return v


class PushConfig(BaseModel):
    device_token: Optional[str] = None
    platform: str = "ios"


class StorageConfig(BaseModel):
    data_dir: str = "./data/ember"
    briefing_retention_days: int = 30

    @field_validator("briefing_retention_days")
    @classmethod
    def _positive_retention(cls, v: int) -> int:
        if v < 1:
            raise ValueError("storage.briefing_retention_days must be >= 1")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 10
    backup_count: int = 5
    console_output: bool = False
    json_format: Optional[bool] = None

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    Ember runtime settings.

    Priority (highest to lowest):
      1. config.yaml (load_settings passes its sections as init kwargs)
      2. Environment variables, e.g. GATEWAY__URL
      3. .env file
      4. Field defaults

    An environment override only takes effect for keys config.yaml does
    not set.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")

    # -- Structured config (from config.yaml) --------------------------------
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    inbox: InboxConfig = Field(default_factory=InboxConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    briefing: BriefingConfig = Field(default_factory=BriefingConfig)
    push: PushConfig = Field(default_factory=PushConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def data_dir(self) -> Path:
        return Path(self.storage.data_dir).expanduser()

    def validate_all(self, *, require_chat_credentials: bool = True) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches cross-field problems (credential presence for the chosen
        provider, briefing settings that only matter when enabled).
        """
        errors: list[str] = []

        if (
            require_chat_credentials
            and self.chat.provider == "claude"
            and not (self.anthropic_api_key or "").strip()
        ):
            errors.append(
                "chat.provider 'claude' requires ANTHROPIC_API_KEY to be set "
                "in your environment or .env file."
            )

        if self.briefing.enabled:
            if not self.briefing.timezone.strip():
                errors.append("briefing.timezone must not be empty when briefings are enabled.")
            if not self.briefing.sources:
                errors.append("briefing.sources must list at least one source when enabled.")

        if self.push.device_token is not None and not self.push.device_token.strip():
            errors.append("push.device_token is set but empty. Remove it or set a real token.")

        if not self.storage.data_dir.strip():
            errors.append("storage.data_dir must not be empty.")

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nEmber startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_KNOWN_SECTIONS = {
    "gateway", "chat", "inbox", "memory", "briefing", "push", "storage", "logging",
}

_singleton: Optional[Settings] = None
_singleton_lock = threading.Lock()


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. EMBER_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("EMBER_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """Return the global Settings singleton, loading defaults on first use."""
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        needs_load = _singleton is None
    if needs_load:
        load_settings()
    return _singleton  # type: ignore[return-value]
