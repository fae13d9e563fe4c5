"""
AWS Secrets Manager storage.

Secrets are stored as the JSON payload of ``SecretPayloadCodec`` in
``SecretString``. On first creation the metadata is also attached as tags.

``put_secret`` describes the secret and then either puts a new value or
creates it. The two calls are not atomic: a secret created by someone else
between them makes ``create_secret`` fail with ``ResourceExistsException``,
which is surfaced as ``ProviderError``.
"""
import logging
from typing import Any, Mapping, Optional

from ..exceptions import ConfigurationError, ProviderError, SecretNotFoundError
from .codec import SecretPayloadCodec
from .storage import SecretRecord, SecretStorage

logger = logging.getLogger("cloud_encrypt.secretstore")


class AwsSecretStorage(SecretStorage):

    def __init__(self, region: Optional[str] = None, client: Any = None):
        if client is None:
            try:
                import boto3
            except ImportError as err:
                raise ConfigurationError(
                    "boto3 is required for the aws secret storage; "
                    "install it with: pip install cloud-encrypt[aws]"
                ) from err
            client = boto3.client("secretsmanager", region_name=region)
        self._client = client

    def put_secret(
        self,
        name: str,
        data: bytes,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> None:
        payload = SecretPayloadCodec.encode(data, metadata).decode("utf-8")
        try:
            self._client.describe_secret(SecretId=name)
        except self._client.exceptions.ResourceNotFoundException:
            self._create(name, payload, metadata)
            return
        try:
            self._client.put_secret_value(SecretId=name, SecretString=payload)
        except Exception as err:
            raise ProviderError(f"AWS Secrets Manager put failed for {name}: {err}") from err
        logger.debug("Updated AWS secret %s", name)

    def _create(
        self, name: str, payload: str, metadata: Optional[Mapping[str, str]]
    ) -> None:
        request = {"Name": name, "SecretString": payload}
        if metadata:
            request["Tags"] = [
                {"Key": key, "Value": value} for key, value in metadata.items()
            ]
        try:
            response = self._client.create_secret(**request)
        except Exception as err:
            raise ProviderError(f"AWS Secrets Manager create failed for {name}: {err}") from err
        if not response.get("ARN"):
            raise ProviderError(f"AWS Secrets Manager failed to create secret: {name}")
        logger.debug("Created AWS secret %s", name)

    def get_secret(self, name: str) -> SecretRecord:
        try:
            response = self._client.get_secret_value(SecretId=name)
        except self._client.exceptions.ResourceNotFoundException as err:
            raise SecretNotFoundError(name) from err
        if response.get("SecretString") is not None:
            return SecretPayloadCodec.decode(response["SecretString"].encode("utf-8"))
        binary = response.get("SecretBinary")
        if binary is None:
            return SecretRecord(b"", {})
        return SecretPayloadCodec.decode(binary)

    def delete_secret(self, name: str) -> None:
        try:
            self._client.delete_secret(
                SecretId=name, ForceDeleteWithoutRecovery=True,
            )
        except self._client.exceptions.ResourceNotFoundException:
            logger.debug("AWS secret %s already deleted", name)

    def close(self) -> None:
        self._client.close()
