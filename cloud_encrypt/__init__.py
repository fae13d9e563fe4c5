"""Cloud Encrypt.

Protect configuration values, whole files and stored secrets with cloud KMS
providers through one provider-agnostic API.

Security Note (Threat Model):
    Plaintext secrets and data keys exist in process memory while a value
    or file is being processed. Envelope headers are not authenticated;
    the body is protected by the AES-GCM tag and the data key by the KMS.
"""
from .version import __version__
from .exceptions import (
    CloudEncryptError,
    ConfigurationError,
    FormatError,
    IntegrityError,
    ProviderError,
    SecretNotFoundError,
)
from .kms import (
    KmsConfig,
    KmsClient,
    ProviderRegistry,
    EnvelopeFileService,
    FileEnvelopeMetadata,
    wrap,
    unwrap,
)
from .secretstore import (
    SecretConfig,
    SecretRecord,
    SecretStorage,
    SecretPayloadCodec,
    create_secret_storage,
)
from .scan import ScanResult, process_lines, process_file

__all__ = [
    "__version__",
    "CloudEncryptError",
    "ConfigurationError",
    "FormatError",
    "IntegrityError",
    "ProviderError",
    "SecretNotFoundError",
    "KmsConfig",
    "KmsClient",
    "ProviderRegistry",
    "EnvelopeFileService",
    "FileEnvelopeMetadata",
    "wrap",
    "unwrap",
    "SecretConfig",
    "SecretRecord",
    "SecretStorage",
    "SecretPayloadCodec",
    "create_secret_storage",
    "ScanResult",
    "process_lines",
    "process_file",
]
