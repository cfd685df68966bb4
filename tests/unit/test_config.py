"""
tests/unit/test_config.py — Config Validation Tests

Covers:
  - Defaults load cleanly
  - Gateway URL, capability tags and timeouts are validated at parse time
  - Briefing time must be HH:mm
  - Unknown chat provider and log level are rejected
  - validate_all() raises ConfigError with a numbered list
  - validate_all() catches a missing API key only when chat credentials matter
  - EMBER_CONFIG env var is respected by load_settings()
  - Explicit config_path argument takes priority over env var
"""

from __future__ import annotations

import os
import textwrap
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from ember.config.settings import (
    BriefingConfig,
    ChatConfig,
    ConfigError,
    GatewayConfig,
    LoggingConfig,
    Settings,
    StorageConfig,
    _resolve_config_path,
    get_settings,
    load_settings,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _make_settings(**overrides):
    """Build a Settings object from keyword overrides (no YAML file needed)."""
    return Settings(**overrides)


# ── GatewayConfig ─────────────────────────────────────────────────────────────

class TestGatewayConfig:
    def test_defaults(self):
        cfg = GatewayConfig()
        assert cfg.url == "ws://localhost:3000"
        assert cfg.capabilities == ["inbox", "memory", "briefing", "push"]
        assert cfg.chat_capabilities == ["streaming"]

    @pytest.mark.parametrize("url", ["ws://gw.local:3000", "wss://gateway.example/ws"])
    def test_websocket_urls_accepted(self, url):
        assert GatewayConfig(url=url).url == url

    @pytest.mark.parametrize("url", ["http://gw.local", "https://gw.local", "gw.local", "wss://", ""])
    def test_non_websocket_urls_rejected(self, url):
        with pytest.raises(ValidationError):
            GatewayConfig(url=url)

    def test_unknown_capability_rejected(self):
        with pytest.raises(ValidationError):
            GatewayConfig(capabilities=["inbox", "telepathy"])

    def test_zero_keepalive_rejected(self):
        with pytest.raises(ValidationError):
            GatewayConfig(keepalive_interval_seconds=0)


# ── ChatConfig / BriefingConfig / LoggingConfig / StorageConfig ───────────────

class TestChatConfig:
    def test_default_provider_is_claude(self):
        assert ChatConfig().provider == "claude"

    def test_gateway_provider(self):
        assert ChatConfig(provider="gateway").provider == "gateway"

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValidationError):
            ChatConfig(provider="openai")

    def test_zero_max_tokens_rejected(self):
        with pytest.raises(ValidationError):
            ChatConfig(max_tokens=0)

    def test_non_http_api_url_rejected(self):
        with pytest.raises(ValidationError):
            ChatConfig(api_url="ftp://api.example")


class TestBriefingConfig:
    @pytest.mark.parametrize("value", ["00:00", "07:30", "23:59"])
    def test_valid_times(self, value):
        assert BriefingConfig(time=value).time == value

    @pytest.mark.parametrize("value", ["7:30", "24:00", "12:60", "0730", "morning"])
    def test_invalid_times(self, value):
        with pytest.raises(ValidationError):
            BriefingConfig(time=value)


class TestLoggingAndStorageConfig:
    def test_level_normalised_to_upper(self):
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_invalid_level_rejected(self):
        with pytest.raises(ValidationError):
            LoggingConfig(level="VERBOSE")

    def test_retention_must_be_positive(self):
        with pytest.raises(ValidationError):
            StorageConfig(briefing_retention_days=0)


# ── validate_all() ────────────────────────────────────────────────────────────

class TestValidateAll:
    def test_claude_without_key_fails(self):
        s = _make_settings()
        with pytest.raises(ConfigError) as exc_info:
            s.validate_all()
        msg = str(exc_info.value)
        assert "ANTHROPIC_API_KEY" in msg
        assert "1." in msg

    def test_claude_with_key_passes(self):
        _make_settings(ANTHROPIC_API_KEY="sk-ant-test").validate_all()

    def test_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-env")
        s = _make_settings()
        assert s.anthropic_api_key == "sk-ant-env"
        s.validate_all()

    def test_missing_key_ignored_when_chat_not_needed(self):
        _make_settings().validate_all(require_chat_credentials=False)

    def test_gateway_provider_needs_no_key(self):
        _make_settings(chat={"provider": "gateway"}).validate_all()

    def test_blank_device_token(self):
        s = _make_settings(chat={"provider": "gateway"}, push={"device_token": "  "})
        with pytest.raises(ConfigError, match="device_token"):
            s.validate_all()

    def test_enabled_briefing_needs_sources(self):
        s = _make_settings(
            chat={"provider": "gateway"},
            briefing={"enabled": True, "sources": []},
        )
        with pytest.raises(ConfigError, match="briefing.sources"):
            s.validate_all()

    def test_disabled_briefing_sources_not_checked(self):
        s = _make_settings(chat={"provider": "gateway"}, briefing={"enabled": False, "sources": []})
        s.validate_all()

    def test_multiple_problems_numbered(self):
        s = _make_settings(
            push={"device_token": ""},
            storage={"data_dir": " "},
        )
        with pytest.raises(ConfigError) as exc_info:
            s.validate_all()
        msg = str(exc_info.value)
        assert "1." in msg and "2." in msg and "3." in msg

    def test_nested_env_override(self, monkeypatch):
        monkeypatch.setenv("GATEWAY__URL", "wss://from-env.example")
        assert _make_settings().gateway.url == "wss://from-env.example"


# ── Loading ───────────────────────────────────────────────────────────────────

class TestLoadSettings:
    def test_explicit_path_beats_env_var(self, tmp_path):
        cfg_file = tmp_path / "explicit.yaml"
        env_file = tmp_path / "env_config.yaml"
        with patch.dict(os.environ, {"EMBER_CONFIG": str(env_file)}):
            resolved = _resolve_config_path(str(cfg_file))
        assert resolved == Path(str(cfg_file))

    def test_env_var_used_when_no_explicit_path(self, tmp_path):
        env_file = tmp_path / "env_config.yaml"
        with patch.dict(os.environ, {"EMBER_CONFIG": str(env_file)}):
            resolved = _resolve_config_path(None)
        assert resolved == Path(str(env_file))

    def test_default_path_when_no_arg_no_env(self):
        assert _resolve_config_path(None) == Path("config/config.yaml")

    def test_load_settings_from_file(self, tmp_path):
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text(textwrap.dedent("""
            gateway:
              url: "wss://gateway.example"
              client_id: "ember-test"
            chat:
              provider: gateway
              model: "claude-haiku"
            briefing:
              enabled: true
              time: "06:30"
            unknown_section:
              ignored: true
        """))
        s = load_settings(cfg_file)
        assert s.gateway.url == "wss://gateway.example"
        assert s.gateway.client_id == "ember-test"
        assert s.chat.provider == "gateway"
        assert s.briefing.time == "06:30"
        assert get_settings() is s

    def test_yaml_value_beats_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GATEWAY__URL", "wss://from-env.example")
        monkeypatch.setenv("CHAT__MODEL", "model-from-env")
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text("gateway:\n  url: \"wss://from-yaml.example\"\n")
        s = load_settings(cfg_file)
        assert s.gateway.url == "wss://from-yaml.example"
        assert s.chat.model == "model-from-env"

    def test_missing_file_gives_defaults(self, tmp_path):
        s = load_settings(tmp_path / "nope.yaml")
        assert s.gateway.url == "ws://localhost:3000"

    def test_empty_file_gives_defaults(self, tmp_path):
        cfg_file = tmp_path / "empty.yaml"
        cfg_file.write_text("")
        assert load_settings(cfg_file).chat.provider == "claude"

    def test_invalid_yaml_value_raises(self, tmp_path):
        cfg_file = tmp_path / "bad.yaml"
        cfg_file.write_text("gateway:\n  url: http://not-a-socket\n")
        with pytest.raises(ValidationError):
            load_settings(cfg_file)

    def test_data_dir_expands_user(self):
        s = _make_settings(storage={"data_dir": "~/ember-data"})
        assert s.data_dir == Path("~/ember-data").expanduser()
