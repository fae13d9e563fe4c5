"""Shared fixtures: fake KMS providers registered on a private registry."""
import pytest

from cloud_encrypt.kms.config import KmsConfig
from cloud_encrypt.kms.providers import ProviderRegistry


class FakeCipher:
    """Reversible stand-in for a cloud KMS: ``enc:<plaintext>``."""

    def __init__(self, settings: dict, journal: dict):
        self.settings = settings
        self.journal = journal
        journal["created"] += 1

    def encrypt(self, plaintext: str) -> str:
        self.journal["encrypted"].append(plaintext)
        return "enc:" + plaintext

    def decrypt(self, ciphertext: str) -> str:
        self.journal["decrypted"].append(ciphertext)
        assert ciphertext.startswith("enc:")
        return ciphertext[4:]

    def close(self) -> None:
        self.journal["closed"] += 1


@pytest.fixture
def journal():
    """Records every call made to the fake providers."""
    return {"created": 0, "closed": 0, "encrypted": [], "decrypted": []}


@pytest.fixture
def registry(journal):
    """Registry with the fake cipher registered as ``aws`` and ``fake``."""
    reg = ProviderRegistry()
    for name in ("aws", "fake"):
        reg.register(
            name,
            encryptor=lambda settings: FakeCipher(settings, journal),
            decryptor=lambda settings: FakeCipher(settings, journal),
        )
    return reg


@pytest.fixture
def aws_config():
    return (
        KmsConfig.builder("aws")
        .with_setting("region", "us-west-2")
        .with_setting("keyId", "alias/test")
        .build()
    )
