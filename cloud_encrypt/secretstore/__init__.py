"""Secret store: payload codec, storage contract and backends."""

from .config import SecretConfig
from .storage import (
    SecretRecord,
    SecretStorage,
    InMemorySecretStorage,
    create_secret_storage,
    register_secret_storage,
)
from .codec import SecretPayloadCodec

__all__ = [
    "SecretConfig",
    "SecretRecord",
    "SecretStorage",
    "InMemorySecretStorage",
    "create_secret_storage",
    "register_secret_storage",
    "SecretPayloadCodec",
]
