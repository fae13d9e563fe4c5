"""
Provider Capability: the two operations every KMS backend must offer.

An ``Encryptor`` turns text into opaque ciphertext text and a ``Decryptor``
reverses it. Binary data is base64-encoded by the caller before it reaches
``encrypt``. Backends may hold network clients; if they expose ``close()``
the registry context managers call it on every exit path.

Backends are looked up by provider name in a ``ProviderRegistry``. The
default registry knows ``aws``, ``gcp`` and ``azure``; tests and
applications register their own factories on a registry instance.
"""
import logging
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any, Optional, Protocol, runtime_checkable

from ..exceptions import ConfigurationError

logger = logging.getLogger("cloud_encrypt.kms")


@runtime_checkable
class Encryptor(Protocol):
    def encrypt(self, plaintext: str) -> str:
        ...


@runtime_checkable
class Decryptor(Protocol):
    def decrypt(self, ciphertext: str) -> str:
        ...


EncryptorFactory = Callable[[dict[str, str]], Encryptor]
DecryptorFactory = Callable[[dict[str, str]], Decryptor]


def release(capability: Any) -> None:
    """Close a backend client if the capability holds one."""
    close = getattr(capability, "close", None)
    if callable(close):
        close()


class ProviderRegistry:
    """Maps provider names to encryptor/decryptor factories."""

    def __init__(self):
        self._encryptors: dict[str, EncryptorFactory] = {}
        self._decryptors: dict[str, DecryptorFactory] = {}

    def register(
        self,
        name: str,
        encryptor: Optional[EncryptorFactory] = None,
        decryptor: Optional[DecryptorFactory] = None,
    ) -> None:
        """Register factories for a provider, replacing any previous ones."""
        key = name.strip().lower()
        if encryptor is not None:
            self._encryptors[key] = encryptor
        if decryptor is not None:
            self._decryptors[key] = decryptor
        logger.debug("Registered KMS provider %s", key)

    def providers(self) -> list[str]:
        return sorted(set(self._encryptors) | set(self._decryptors))

    def supports(self, name: str) -> bool:
        return (name or "").strip().lower() in self.providers()

    def _lookup(self, table: dict, name: Optional[str], role: str):
        key = (name or "").strip().lower()
        try:
            return table[key]
        except KeyError:
            raise ConfigurationError(
                f"Unsupported provider: {name!r} (no {role} registered; "
                f"available: {self.providers()})"
            ) from None

    def create_encryptor(
        self, provider: str, settings: Optional[Mapping[str, str]] = None
    ) -> Encryptor:
        factory = self._lookup(self._encryptors, provider, "encryptor")
        return factory(dict(settings or {}))

    def create_decryptor(
        self, provider: str, settings: Optional[Mapping[str, str]] = None
    ) -> Decryptor:
        factory = self._lookup(self._decryptors, provider, "decryptor")
        return factory(dict(settings or {}))

    @contextmanager
    def encryptor(
        self, provider: str, settings: Optional[Mapping[str, str]] = None
    ) -> Iterator[Encryptor]:
        """Yield an encryptor and close it afterwards."""
        enc = self.create_encryptor(provider, settings)
        try:
            yield enc
        finally:
            release(enc)

    @contextmanager
    def decryptor(
        self, provider: str, settings: Optional[Mapping[str, str]] = None
    ) -> Iterator[Decryptor]:
        """Yield a decryptor and close it afterwards."""
        dec = self.create_decryptor(provider, settings)
        try:
            yield dec
        finally:
            release(dec)


_DEFAULT_REGISTRY: Optional[ProviderRegistry] = None


def default_registry() -> ProviderRegistry:
    """Return the process-wide registry with the built-in cloud backends."""
    global _DEFAULT_REGISTRY
    if _DEFAULT_REGISTRY is None:
        from .backends import register_builtin_providers
        registry = ProviderRegistry()
        register_builtin_providers(registry)
        _DEFAULT_REGISTRY = registry
    return _DEFAULT_REGISTRY
