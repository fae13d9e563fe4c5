"""Secret store configuration."""
from ..kms.config import ProviderConfig


class SecretConfig(ProviderConfig):
    """Provider name and settings for a secret store backend.

    Settings by provider:
        aws:    ``region``
        gcp:    ``project``
        azure:  ``vaultUrl``
        oci:    ``compartmentId``, ``vaultId``, ``keyId``, optional
                ``configFile``, ``profile``, ``region``
        memory: none
    """
