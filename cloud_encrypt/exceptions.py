"""
Cloud Encrypt exceptions.

Every error raised by the package derives from ``CloudEncryptError``.
Configuration and format problems also derive from ``ValueError`` and a
missing secret from ``KeyError``, so callers that only know the builtin
types keep working. Filesystem problems use the builtin ``OSError`` family.
"""


class CloudEncryptError(Exception):
    """Base class for cloud_encrypt errors."""


class ConfigurationError(CloudEncryptError, ValueError):
    """Unsupported provider, missing setting or provider mismatch."""


class FormatError(CloudEncryptError, ValueError):
    """Malformed envelope header/body or corrupt secret payload."""


class IntegrityError(CloudEncryptError):
    """Authentication tag verification failed."""


class ProviderError(CloudEncryptError):
    """A KMS or secret-store backend call failed."""


class SecretNotFoundError(CloudEncryptError, KeyError):
    """Secret name is absent from the backing store."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Secret not found: {self.name}"
