"""
storage/secrets.py — Secret-store port

Chat clients read credentials through a SecretStore instead of reaching
into the environment directly, so tests and alternate front ends can supply
keys without touching os.environ.
"""

from __future__ import annotations

import os
from typing import Mapping, Optional, Protocol

ANTHROPIC_API_KEY = "ANTHROPIC_API_KEY"


class SecretStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...


class EnvSecretStore:
    """
    Environment-backed secrets. Falls back to values already loaded into
    Settings (which include the .env file) when the variable is unset.
    """

    def __init__(self, fallback: Optional[Mapping[str, Optional[str]]] = None) -> None:
        self._fallback = dict(fallback or {})

    @classmethod
    def from_settings(cls, settings) -> "EnvSecretStore":
        return cls({ANTHROPIC_API_KEY: settings.anthropic_api_key})

    def get(self, key: str) -> Optional[str]:
        value = os.environ.get(key)
        if value:
            return value
        return self._fallback.get(key)


class MemorySecretStore:
    """In-process secrets, for tests and embedding."""

    def __init__(self, values: Optional[Mapping[str, str]] = None) -> None:
        self._values = dict(values or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)
