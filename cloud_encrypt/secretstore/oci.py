"""
OCI Vault secret storage.

Secrets are looked up by name inside one compartment and vault. The
``SecretPayloadCodec`` JSON is stored base64-encoded as the current secret
content, with the metadata as freeform tags.

Settings:
    compartmentId, vaultId  always required
    keyId                   required to create a secret
    configFile, profile, region
                            SDK configuration, see ``load_oci_config``

OCI never deletes a secret immediately: ``delete_secret`` schedules the
deletion at the earliest time the service accepts.
"""
import base64
import binascii
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from ..exceptions import ConfigurationError, FormatError, ProviderError, SecretNotFoundError
from ..kms.backends import import_sdk, load_oci_config
from .codec import SecretPayloadCodec
from .storage import SecretRecord, SecretStorage

logger = logging.getLogger("cloud_encrypt.secretstore")

DELETION_DELAY = timedelta(days=1, minutes=5)
DESCRIPTION = "Managed by cloud-encrypt"


class OciSecretStorage(SecretStorage):

    def __init__(
        self,
        settings: Mapping[str, str],
        vaults_client: Any = None,
        secrets_client: Any = None,
        models: Any = None,
    ):
        self._settings = dict(settings)
        self._require("compartmentId")
        self._require("vaultId")
        if models is None:
            models = import_sdk("oci.vault.models", "oci")
        self._models = models
        if vaults_client is None or secrets_client is None:
            config = load_oci_config(self._settings)
            if vaults_client is None:
                vaults_client = import_sdk("oci.vault", "oci").VaultsClient(config)
            if secrets_client is None:
                secrets_client = import_sdk("oci.secrets", "oci").SecretsClient(config)
        self._vaults = vaults_client
        self._secrets = secrets_client

    def _require(self, key: str) -> str:
        value = self._settings.get(key)
        if value is None or not value.strip():
            raise ConfigurationError(f"Missing OCI secret configuration: {key}")
        return value

    def _find_secret_id(self, name: str) -> Optional[str]:
        response = self._vaults.list_secrets(
            self._require("compartmentId"),
            name=name,
            vault_id=self._require("vaultId"),
            limit=1,
        )
        items = response.data or []
        return items[0].id if items else None

    def _content(self, data: bytes, metadata: Optional[Mapping[str, str]]) -> Any:
        payload = SecretPayloadCodec.encode(data, metadata)
        return self._models.Base64SecretContentDetails(
            content_type="BASE64",
            content=base64.b64encode(payload).decode("ascii"),
            stage="CURRENT",
        )

    def put_secret(
        self,
        name: str,
        data: bytes,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> None:
        content = self._content(data, metadata)
        tags = dict(metadata or {})
        try:
            secret_id = self._find_secret_id(name)
            if secret_id is None:
                details = self._models.CreateSecretDetails(
                    compartment_id=self._require("compartmentId"),
                    secret_name=name,
                    vault_id=self._require("vaultId"),
                    key_id=self._require("keyId"),
                    description=DESCRIPTION,
                    secret_content=content,
                    freeform_tags=tags,
                )
                self._vaults.create_secret(details)
                logger.debug("Created OCI secret %s", name)
            else:
                details = self._models.UpdateSecretDetails(
                    secret_content=content, freeform_tags=tags,
                )
                self._vaults.update_secret(secret_id, details)
                logger.debug("Updated OCI secret %s", name)
        except ConfigurationError:
            raise
        except Exception as err:
            raise ProviderError(f"OCI Vault put failed for {name}: {err}") from err

    def get_secret(self, name: str) -> SecretRecord:
        secret_id = self._find_secret_id(name)
        if secret_id is None:
            raise SecretNotFoundError(name)
        response = self._secrets.get_secret_bundle(secret_id, stage="CURRENT")
        bundle = response.data
        content = getattr(bundle, "secret_bundle_content", None)
        if content is None or getattr(content, "content_type", None) != "BASE64":
            return SecretRecord(b"", {})
        try:
            raw = base64.b64decode(content.content, validate=True)
        except (binascii.Error, ValueError) as err:
            raise FormatError(f"OCI secret {name} content is not valid base64") from err
        return SecretPayloadCodec.decode(raw)

    def delete_secret(self, name: str) -> None:
        secret_id = self._find_secret_id(name)
        if secret_id is None:
            return
        details = self._models.ScheduleSecretDeletionDetails(
            time_of_deletion=datetime.now(timezone.utc) + DELETION_DELAY,
        )
        try:
            self._vaults.schedule_secret_deletion(secret_id, details)
        except Exception as err:
            raise ProviderError(
                f"Failed to schedule deletion for OCI secret {name}: {err}"
            ) from err
        logger.debug("Scheduled deletion of OCI secret %s", name)
