"""
Unit test conftest — isolate credential and config environment variables so
that Settings tests are not affected by a developer's shell, .env file or
EMBER_CONFIG.
"""
import pytest

_ENV_VARS = [
    "ANTHROPIC_API_KEY",
    "EMBER_CONFIG",
]


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Remove credential/config env vars for every test and disable .env
    loading, so Settings() behaves as if nothing is configured unless the
    test explicitly provides it."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import ember.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    monkeypatch.setattr(settings_module, "_singleton", None)
