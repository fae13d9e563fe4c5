"""
KMS Value Client: encrypt and decrypt short secrets, with the ENC(...) convention.

A wrapped value is the literal ``ENC(`` + ciphertext + ``)``. Unwrapping
accepts the ``ENC(`` prefix in any letter case but never alters the
payload, and leaves values without the wrapper untouched.
"""
import logging
from typing import Optional

from .config import KmsConfig
from .providers import ProviderRegistry, default_registry

logger = logging.getLogger("cloud_encrypt.kms")

WRAP_PREFIX = "ENC("
WRAP_SUFFIX = ")"


def wrap(ciphertext: str) -> str:
    return f"{WRAP_PREFIX}{ciphertext}{WRAP_SUFFIX}"


def is_wrapped(value: str) -> bool:
    trimmed = value.strip()
    return (
        trimmed[:len(WRAP_PREFIX)].upper() == WRAP_PREFIX
        and trimmed.endswith(WRAP_SUFFIX)
    )


def unwrap(value: str) -> str:
    """Return the ciphertext inside ``ENC(...)``, or the trimmed value."""
    trimmed = value.strip()
    if is_wrapped(trimmed):
        return trimmed[len(WRAP_PREFIX):-len(WRAP_SUFFIX)]
    return trimmed


class KmsClient:
    """Encrypts and decrypts single values with the configured provider."""

    def __init__(self, providers: Optional[ProviderRegistry] = None):
        self._providers = providers

    @property
    def providers(self) -> ProviderRegistry:
        if self._providers is None:
            self._providers = default_registry()
        return self._providers

    def encrypt_value(
        self, config: KmsConfig, plaintext: str, wrap_output: bool = True
    ) -> str:
        """Encrypt ``plaintext``, returning ``ENC(...)`` unless ``wrap_output`` is False."""
        if plaintext is None:
            raise TypeError("plaintext must not be None")
        with self.providers.encryptor(config.provider, config.settings) as encryptor:
            ciphertext = encryptor.encrypt(plaintext)
        logger.debug("Encrypted value with provider=%s", config.provider)
        return wrap(ciphertext) if wrap_output else ciphertext

    def decrypt_value(self, config: KmsConfig, ciphertext: str) -> str:
        """Decrypt a value that may be wrapped in ``ENC(...)``."""
        if ciphertext is None:
            raise TypeError("ciphertext must not be None")
        payload = unwrap(ciphertext)
        with self.providers.decryptor(config.provider, config.settings) as decryptor:
            plaintext = decryptor.decrypt(payload)
        logger.debug("Decrypted value with provider=%s", config.provider)
        return plaintext
