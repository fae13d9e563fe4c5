"""
KMS Backends: AWS KMS, Google Cloud KMS, Azure Key Vault and OCI Vault adapters.

Each adapter implements both capability operations on text:
    encrypt: UTF-8 plaintext -> provider ciphertext -> base64 text
    decrypt: base64 text -> provider ciphertext -> UTF-8 plaintext

SDKs are imported when a backend is constructed so that installing only
the extras for the providers in use is enough. Backend failures are
re-raised as ``ProviderError`` with the SDK error chained.

Security Note:
    Never log plaintext or ciphertext values.
"""
import base64
import binascii
import importlib
import logging
from typing import Any, Optional

from ..exceptions import ConfigurationError, FormatError, ProviderError
from .providers import ProviderRegistry

logger = logging.getLogger("cloud_encrypt.kms")

AWS_DEFAULT_REGION = "us-west-2"
OCI_DEFAULT_PROFILE = "DEFAULT"


def import_sdk(module: str, extra: str) -> Any:
    try:
        return importlib.import_module(module)
    except ImportError as err:
        raise ConfigurationError(
            f"{module} is required for the {extra} provider; "
            f"install it with: pip install cloud-encrypt[{extra}]"
        ) from err


def _require(settings: dict[str, str], key: str, provider: str) -> str:
    value = settings.get(key)
    if value is None or not value.strip():
        raise ConfigurationError(f"{provider} setting '{key}' is required")
    return value


def _b64decode(ciphertext: str, provider: str) -> bytes:
    try:
        return base64.b64decode(ciphertext, validate=True)
    except (binascii.Error, ValueError) as err:
        raise FormatError(f"{provider} ciphertext is not valid base64") from err


def _b64encode(blob: bytes) -> str:
    return base64.b64encode(blob).decode("ascii")


class AwsKms:
    """AWS KMS symmetric key.

    ``keyId`` (key ARN, id or ``alias/...``) is needed to encrypt; AWS
    resolves the key from the ciphertext blob on decrypt.
    """

    def __init__(
        self,
        settings: dict[str, str],
        client: Any = None,
        require_key_id: bool = False,
    ):
        self._key_id: Optional[str] = settings.get("keyId") or None
        if require_key_id:
            self._key_id = _require(settings, "keyId", "aws")
        if client is None:
            boto3 = import_sdk("boto3", "aws")
            region = settings.get("region") or AWS_DEFAULT_REGION
            client = boto3.client("kms", region_name=region)
        self._client = client

    def encrypt(self, plaintext: str) -> str:
        try:
            response = self._client.encrypt(
                KeyId=self._key_id,
                Plaintext=plaintext.encode("utf-8"),
            )
        except Exception as err:
            raise ProviderError(f"AWS KMS encrypt failed: {err}") from err
        return _b64encode(response["CiphertextBlob"])

    def decrypt(self, ciphertext: str) -> str:
        blob = _b64decode(ciphertext, "aws")
        request = {"CiphertextBlob": blob}
        if self._key_id:
            request["KeyId"] = self._key_id
        try:
            response = self._client.decrypt(**request)
        except Exception as err:
            raise ProviderError(f"AWS KMS decrypt failed: {err}") from err
        return response["Plaintext"].decode("utf-8")

    def close(self) -> None:
        self._client.close()


class GcpKms:
    """Google Cloud KMS crypto key addressed by project/location/keyRing/key."""

    def __init__(self, settings: dict[str, str], client: Any = None):
        project = _require(settings, "project", "gcp")
        location = _require(settings, "location", "gcp")
        key_ring = _require(settings, "keyRing", "gcp")
        key = _require(settings, "key", "gcp")
        self._key_name = (
            f"projects/{project}/locations/{location}"
            f"/keyRings/{key_ring}/cryptoKeys/{key}"
        )
        if client is None:
            kms = import_sdk("google.cloud.kms", "gcp")
            client = kms.KeyManagementServiceClient()
        self._client = client

    @property
    def key_name(self) -> str:
        return self._key_name

    def encrypt(self, plaintext: str) -> str:
        try:
            response = self._client.encrypt(
                request={"name": self._key_name, "plaintext": plaintext.encode("utf-8")}
            )
        except Exception as err:
            raise ProviderError(f"GCP KMS encrypt failed: {err}") from err
        return _b64encode(response.ciphertext)

    def decrypt(self, ciphertext: str) -> str:
        blob = _b64decode(ciphertext, "gcp")
        try:
            response = self._client.decrypt(
                request={"name": self._key_name, "ciphertext": blob}
            )
        except Exception as err:
            raise ProviderError(f"GCP KMS decrypt failed: {err}") from err
        return response.plaintext.decode("utf-8")

    def close(self) -> None:
        self._client.transport.close()


class AzureKeyVault:
    """Azure Key Vault key used with RSA-OAEP.

    ``keyId`` is the full key identifier,
    ``https://<vault>.vault.azure.net/keys/<name>[/<version>]``.
    """

    def __init__(self, settings: dict[str, str], client: Any = None):
        key_id = _require(settings, "keyId", "azure")
        self._credential = None
        crypto = import_sdk("azure.keyvault.keys.crypto", "azure")
        self._algorithm = crypto.EncryptionAlgorithm.rsa_oaep
        if client is None:
            identity = import_sdk("azure.identity", "azure")
            self._credential = identity.DefaultAzureCredential()
            client = crypto.CryptographyClient(key_id, credential=self._credential)
        self._client = client

    def encrypt(self, plaintext: str) -> str:
        try:
            result = self._client.encrypt(self._algorithm, plaintext.encode("utf-8"))
        except Exception as err:
            raise ProviderError(f"Azure Key Vault encrypt failed: {err}") from err
        return _b64encode(result.ciphertext)

    def decrypt(self, ciphertext: str) -> str:
        blob = _b64decode(ciphertext, "azure")
        try:
            result = self._client.decrypt(self._algorithm, blob)
        except Exception as err:
            raise ProviderError(f"Azure Key Vault decrypt failed: {err}") from err
        return result.plaintext.decode("utf-8")

    def close(self) -> None:
        self._client.close()
        if self._credential is not None:
            self._credential.close()


def load_oci_config(settings: dict[str, str]) -> dict:
    """Read the OCI SDK config file named by ``configFile``/``profile``.

    A ``region`` setting overrides the region from the file.
    """
    oci_config = import_sdk("oci.config", "oci")
    profile = settings.get("profile") or OCI_DEFAULT_PROFILE
    location = settings.get("configFile") or oci_config.DEFAULT_LOCATION
    try:
        config = oci_config.from_file(file_location=location, profile_name=profile)
    except Exception as err:
        raise ConfigurationError(
            f"Unable to load OCI configuration from {location}: {err}"
        ) from err
    region = (settings.get("region") or "").strip()
    if region:
        config["region"] = region.lower()
    return config


def oci_kms_endpoint(settings: dict[str, str]) -> str:
    """Return ``endpoint``, or build the crypto endpoint from region and vault."""
    endpoint = (settings.get("endpoint") or "").strip()
    if endpoint:
        return endpoint
    region = (settings.get("region") or "").strip()
    vault = (settings.get("vault") or settings.get("vaultName") or "").strip()
    if region and vault:
        return f"https://{vault}-crypto.kms.{region.lower()}.oraclecloud.com"
    raise ConfigurationError(
        "OCI KMS endpoint not configured. Set endpoint or provide region and vault."
    )


class OciKms:
    """OCI Vault master encryption key, called through its crypto endpoint.

    The SDK takes and returns base64 text: plaintext is sent as
    ``base64(utf-8)`` and the ciphertext string is returned unchanged.
    """

    def __init__(self, settings: dict[str, str], client: Any = None, models: Any = None):
        self._key_id = _require(settings, "keyId", "oci")
        endpoint = oci_kms_endpoint(settings)
        if models is None:
            models = import_sdk("oci.key_management.models", "oci")
        self._models = models
        if client is None:
            key_management = import_sdk("oci.key_management", "oci")
            client = key_management.KmsCryptoClient(
                load_oci_config(settings), service_endpoint=endpoint,
            )
        self._client = client

    def encrypt(self, plaintext: str) -> str:
        details = self._models.EncryptDataDetails(
            key_id=self._key_id,
            plaintext=_b64encode(plaintext.encode("utf-8")),
        )
        try:
            response = self._client.encrypt(details)
        except Exception as err:
            raise ProviderError(f"OCI KMS encrypt failed: {err}") from err
        return response.data.ciphertext

    def decrypt(self, ciphertext: str) -> str:
        details = self._models.DecryptDataDetails(
            key_id=self._key_id, ciphertext=ciphertext,
        )
        try:
            response = self._client.decrypt(details)
        except Exception as err:
            raise ProviderError(f"OCI KMS decrypt failed: {err}") from err
        return _b64decode(response.data.plaintext, "oci").decode("utf-8")


def register_builtin_providers(registry: ProviderRegistry) -> None:
    """Register the cloud backends shipped with cloud_encrypt."""
    registry.register(
        "aws",
        encryptor=lambda settings: AwsKms(settings, require_key_id=True),
        decryptor=AwsKms,
    )
    registry.register("gcp", encryptor=GcpKms, decryptor=GcpKms)
    registry.register("azure", encryptor=AzureKeyVault, decryptor=AzureKeyVault)
    registry.register("oci", encryptor=OciKms, decryptor=OciKms)
