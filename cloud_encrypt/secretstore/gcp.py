"""
Google Secret Manager storage.

Each put adds a new secret version holding the ``SecretPayloadCodec`` JSON.
The secret itself is created on first use, with automatic replication and
the metadata as labels. Reads always return the ``latest`` version.
"""
import logging
from typing import Any, Mapping, Optional

from ..exceptions import ProviderError, SecretNotFoundError
from ..kms.backends import import_sdk
from .codec import SecretPayloadCodec
from .storage import SecretRecord, SecretStorage

logger = logging.getLogger("cloud_encrypt.secretstore")


class GcpSecretStorage(SecretStorage):
    """Secret Manager storage scoped to one project.

    Args:
        project: GCP project id.
        client: ``SecretManagerServiceClient``; built with default
            credentials when omitted.
        not_found: Exception type the client raises for missing secrets,
            ``google.api_core.exceptions.NotFound`` unless given.
    """

    def __init__(self, project: str, client: Any = None, not_found: Optional[type] = None):
        self._project = project
        if not_found is None:
            not_found = import_sdk("google.api_core.exceptions", "gcp").NotFound
        self._not_found = not_found
        if client is None:
            secretmanager = import_sdk("google.cloud.secretmanager", "gcp")
            client = secretmanager.SecretManagerServiceClient()
        self._client = client

    def _secret_path(self, name: str) -> str:
        return f"projects/{self._project}/secrets/{name}"

    def put_secret(
        self,
        name: str,
        data: bytes,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> None:
        path = self._secret_path(name)
        payload = SecretPayloadCodec.encode(data, metadata)
        try:
            self._ensure_secret(name, path, metadata)
            self._client.add_secret_version(
                request={"parent": path, "payload": {"data": payload}}
            )
        except Exception as err:
            raise ProviderError(f"Secret Manager put failed for {name}: {err}") from err
        logger.debug("Added Secret Manager version for %s", name)

    def _ensure_secret(
        self, name: str, path: str, metadata: Optional[Mapping[str, str]]
    ) -> None:
        try:
            self._client.get_secret(request={"name": path})
        except self._not_found:
            self._client.create_secret(
                request={
                    "parent": f"projects/{self._project}",
                    "secret_id": name,
                    "secret": {
                        "replication": {"automatic": {}},
                        "labels": dict(metadata or {}),
                    },
                }
            )
            logger.debug("Created Secret Manager secret %s", name)

    def get_secret(self, name: str) -> SecretRecord:
        try:
            response = self._client.access_secret_version(
                request={"name": f"{self._secret_path(name)}/versions/latest"}
            )
        except self._not_found as err:
            raise SecretNotFoundError(name) from err
        return SecretPayloadCodec.decode(bytes(response.payload.data))

    def delete_secret(self, name: str) -> None:
        try:
            self._client.delete_secret(request={"name": self._secret_path(name)})
        except self._not_found:
            logger.debug("Secret Manager secret %s already deleted", name)

    def close(self) -> None:
        self._client.transport.close()
