from ember.storage.json_store import BriefingFileStore, JsonFileStore, Store
from ember.storage.secrets import (
    ANTHROPIC_API_KEY,
    EnvSecretStore,
    MemorySecretStore,
    SecretStore,
)

__all__ = [
    "ANTHROPIC_API_KEY",
    "BriefingFileStore",
    "EnvSecretStore",
    "JsonFileStore",
    "MemorySecretStore",
    "SecretStore",
    "Store",
]
