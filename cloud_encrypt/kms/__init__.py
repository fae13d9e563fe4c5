"""KMS: value encryption, provider registry and envelope file encryption."""

from .config import KmsConfig, ProviderConfig, ConfigBuilder
from .providers import (
    Encryptor,
    Decryptor,
    ProviderRegistry,
    default_registry,
)
from .client import KmsClient, wrap, unwrap, is_wrapped
from .envelope import FileEnvelopeMetadata
from .file_service import EnvelopeFileService

__all__ = [
    "KmsConfig",
    "ProviderConfig",
    "ConfigBuilder",
    "Encryptor",
    "Decryptor",
    "ProviderRegistry",
    "default_registry",
    "KmsClient",
    "wrap",
    "unwrap",
    "is_wrapped",
    "FileEnvelopeMetadata",
    "EnvelopeFileService",
]
