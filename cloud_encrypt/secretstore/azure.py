"""
Azure Key Vault secret storage.

The ``SecretPayloadCodec`` JSON is stored as the secret value and the
metadata as tags. ``set_secret`` creates a new version on every put.
Deletion waits for the soft delete to finish and then purges the secret,
so the name can be reused at once.
"""
import logging
from typing import Any, Mapping, Optional

from ..exceptions import ProviderError, SecretNotFoundError
from ..kms.backends import import_sdk
from .codec import SecretPayloadCodec
from .storage import SecretRecord, SecretStorage

logger = logging.getLogger("cloud_encrypt.secretstore")


class AzureSecretStorage(SecretStorage):

    def __init__(self, vault_url: str, client: Any = None, not_found: Optional[type] = None):
        self._credential = None
        if not_found is None:
            not_found = import_sdk("azure.core.exceptions", "azure").ResourceNotFoundError
        self._not_found = not_found
        if client is None:
            secrets = import_sdk("azure.keyvault.secrets", "azure")
            identity = import_sdk("azure.identity", "azure")
            self._credential = identity.DefaultAzureCredential()
            client = secrets.SecretClient(vault_url=vault_url, credential=self._credential)
        self._client = client

    def put_secret(
        self,
        name: str,
        data: bytes,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> None:
        payload = SecretPayloadCodec.encode(data, metadata).decode("utf-8")
        try:
            self._client.set_secret(name, payload, tags=dict(metadata) if metadata else None)
        except Exception as err:
            raise ProviderError(f"Azure Key Vault put failed for {name}: {err}") from err
        logger.debug("Stored Azure secret %s", name)

    def get_secret(self, name: str) -> SecretRecord:
        try:
            secret = self._client.get_secret(name)
        except self._not_found as err:
            raise SecretNotFoundError(name) from err
        if secret is None or secret.value is None:
            return SecretRecord(b"", {})
        return SecretPayloadCodec.decode(secret.value.encode("utf-8"))

    def delete_secret(self, name: str) -> None:
        try:
            self._client.begin_delete_secret(name).wait()
        except self._not_found:
            logger.debug("Azure secret %s already deleted", name)
            return
        self._client.purge_deleted_secret(name)

    def close(self) -> None:
        self._client.close()
        if self._credential is not None:
            self._credential.close()
