"""
Secret Storage: put/get/delete named secrets in a cloud secret manager.

Every backend implements ``SecretStorage``. ``create_secret_storage`` picks
one by provider name:

    aws, amazon    AWS Secrets Manager (``region`` setting)
    gcp, google    Google Secret Manager (``project`` setting)
    azure          Azure Key Vault secrets (``vaultUrl`` setting)
    oci, oracle    OCI Vault (``compartmentId``, ``vaultId``, ``keyId``)
    memory, local  process-local dictionary, for tests and development

Other backends are added with ``register_secret_storage``.

Security Note:
    Never log secret data or metadata values, only secret names.
"""
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Mapping, Optional

from ..exceptions import ConfigurationError, SecretNotFoundError
from .config import SecretConfig

logger = logging.getLogger("cloud_encrypt.secretstore")


class SecretRecord:
    """Secret bytes plus string metadata.

    Both are copied when the record is built and ``metadata`` is copied
    again on every access, so callers never share state with the record.
    """

    __slots__ = ("_data", "_metadata")

    def __init__(
        self,
        data: Optional[bytes] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ):
        self._data = bytes(data) if data is not None else b""
        self._metadata = dict(metadata) if metadata is not None else {}

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def metadata(self) -> dict[str, str]:
        return dict(self._metadata)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SecretRecord):
            return NotImplemented
        return self._data == other._data and self._metadata == other._metadata

    def __repr__(self) -> str:
        return (
            f"<SecretRecord [{len(self._data)} bytes] "
            f"metadata={sorted(self._metadata)}>"
        )


class SecretStorage(ABC):
    """Contract for secret manager backends."""

    @abstractmethod
    def put_secret(
        self,
        name: str,
        data: bytes,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Create the secret, or add a new value if it exists."""

    @abstractmethod
    def get_secret(self, name: str) -> SecretRecord:
        """Return the current value.

        Raises:
            SecretNotFoundError: If no secret has this name.
        """

    @abstractmethod
    def delete_secret(self, name: str) -> None:
        """Delete the secret. Deleting a missing secret is not an error."""

    def get_secret_bytes(self, name: str) -> bytes:
        return self.get_secret(name).data

    def close(self) -> None:
        """Release backend clients."""

    def __enter__(self) -> "SecretStorage":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class InMemorySecretStorage(SecretStorage):
    """Dictionary-backed storage; all access is serialized by a lock."""

    def __init__(self):
        self._store: dict[str, SecretRecord] = {}
        self._lock = threading.Lock()

    def put_secret(self, name, data, metadata=None) -> None:
        if name is None:
            raise TypeError("name must not be None")
        if data is None:
            raise TypeError("data must not be None")
        record = SecretRecord(data, metadata or {})
        with self._lock:
            self._store[name] = record
        logger.debug("Stored secret %s in memory", name)

    def get_secret(self, name) -> SecretRecord:
        with self._lock:
            record = self._store.get(name)
        if record is None:
            raise SecretNotFoundError(name)
        return record

    def delete_secret(self, name) -> None:
        with self._lock:
            self._store.pop(name, None)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._store)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

StorageFactory = Callable[[SecretConfig], SecretStorage]

_FACTORIES: dict[str, StorageFactory] = {}


def register_secret_storage(
    name: str, factory: StorageFactory, *aliases: str
) -> None:
    """Register a backend factory under ``name`` and any aliases."""
    for key in (name, *aliases):
        _FACTORIES[key.strip().lower()] = factory


def _create_aws(config: SecretConfig) -> SecretStorage:
    from .aws import AwsSecretStorage
    return AwsSecretStorage(region=config.get_required("region"))


def _create_gcp(config: SecretConfig) -> SecretStorage:
    from .gcp import GcpSecretStorage
    return GcpSecretStorage(project=config.get_required("project"))


def _create_azure(config: SecretConfig) -> SecretStorage:
    from .azure import AzureSecretStorage
    return AzureSecretStorage(vault_url=config.get_required("vaultUrl"))


def _create_oci(config: SecretConfig) -> SecretStorage:
    from .oci import OciSecretStorage
    return OciSecretStorage(config.to_settings())


def _create_memory(config: SecretConfig) -> SecretStorage:
    return InMemorySecretStorage()


register_secret_storage("aws", _create_aws, "amazon")
register_secret_storage("gcp", _create_gcp, "google")
register_secret_storage("azure", _create_azure)
register_secret_storage("oci", _create_oci, "oracle")
register_secret_storage("memory", _create_memory, "local")


def create_secret_storage(config: SecretConfig) -> SecretStorage:
    """Instantiate the backend named by ``config.provider``.

    Raises:
        ConfigurationError: If the provider is unknown or a required
            setting is missing.
    """
    if config is None:
        raise TypeError("config must not be None")
    factory = _FACTORIES.get(config.provider)
    if factory is None:
        raise ConfigurationError(
            f"Unsupported secret storage provider: {config.provider}"
        )
    return factory(config)
