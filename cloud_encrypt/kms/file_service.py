"""
Envelope File Service: per-file data keys protected by a cloud KMS.

Each ``encrypt_file`` call draws a fresh 32-byte data key and 12-byte nonce,
sends only ``base64(data_key)`` through the provider, and encrypts the file
body locally with AES-256-GCM. ``decrypt_file`` reverses it after checking
that the header names the configured provider.

Security Note:
    Never log data keys, plaintext or ciphertext. Only provider names
    and paths are logged.
"""
import base64
import logging
import os
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Optional, Union

from ..exceptions import ConfigurationError, FormatError
from .config import KmsConfig
from .envelope import (
    ALGORITHM,
    DATA_KEY_SIZE,
    NONCE_SIZE,
    FileEnvelopeMetadata,
    decode_field,
    decrypt_body,
    encrypt_stream,
    format_header,
    read_envelope,
)
from .providers import ProviderRegistry, default_registry

logger = logging.getLogger("cloud_encrypt.kms")

PathLike = Union[str, os.PathLike]


def _ensure_regular_file(path: Path) -> None:
    if not path.exists():
        raise FileNotFoundError(f"File does not exist: {path}")
    if not path.is_file():
        raise IsADirectoryError(f"File is not a regular file: {path}")


@contextmanager
def _replace_on_success(path: Path) -> Iterator[BinaryIO]:
    """Yield a temp file beside ``path``; it replaces ``path`` only on success.

    A failure leaves an existing ``path`` untouched and removes the temp file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=path.parent,
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            yield fh
        os.replace(temp_name, path)
    except BaseException:
        os.unlink(temp_name)
        raise


class EnvelopeFileService:
    """Encrypts and decrypts whole files with envelope encryption.

    Args:
        providers: Registry used to obtain encryptors and decryptors.
            Defaults to the built-in cloud registry.
        random_bytes: Source of key and nonce bytes, ``os.urandom`` unless
            a test injects something else.
    """

    def __init__(
        self,
        providers: Optional[ProviderRegistry] = None,
        random_bytes: Callable[[int], bytes] = os.urandom,
    ):
        self._providers = providers
        self._random_bytes = random_bytes

    @property
    def providers(self) -> ProviderRegistry:
        if self._providers is None:
            self._providers = default_registry()
        return self._providers

    def encrypt_file(
        self, input: PathLike, output: PathLike, config: KmsConfig
    ) -> None:
        """Encrypt ``input`` and write the envelope file to ``output``."""
        source = Path(input)
        target = Path(output)
        _ensure_regular_file(source)

        data_key = self._random_bytes(DATA_KEY_SIZE)
        nonce = self._random_bytes(NONCE_SIZE)

        with self.providers.encryptor(config.provider, config.settings) as encryptor:
            encrypted_key = encryptor.encrypt(
                base64.b64encode(data_key).decode("ascii")
            )

        with source.open("rb") as fin, _replace_on_success(target) as fout:
            fout.write(format_header(config.provider, encrypted_key, nonce))
            size = encrypt_stream(fin, fout, data_key, nonce)

        logger.info(
            "Encrypted %s -> %s (provider=%s, %d bytes)",
            source, target, config.provider, size,
        )

    def decrypt_file(
        self, input: PathLike, output: PathLike, config: KmsConfig
    ) -> None:
        """Decrypt an envelope file produced by ``encrypt_file``.

        Raises:
            ConfigurationError: If the file was encrypted for another provider.
            FormatError: If the header or body is malformed.
            IntegrityError: If the authentication tag does not verify.
        """
        source = Path(input)
        target = Path(output)
        _ensure_regular_file(source)

        with source.open("rb") as fin:
            metadata, ciphertext = read_envelope(fin, with_body=True)

        if metadata.provider != config.provider:
            raise ConfigurationError(
                f"File encrypted with provider '{metadata.provider}' "
                f"but config targeted '{config.provider}'"
            )
        if metadata.algorithm != ALGORITHM:
            raise FormatError(
                f"Unsupported envelope algorithm: {metadata.algorithm}"
            )
        nonce = decode_field(metadata.iv, "iv", NONCE_SIZE)

        with self.providers.decryptor(metadata.provider, config.settings) as decryptor:
            data_key_b64 = decryptor.decrypt(metadata.encrypted_key)
        data_key = decode_field(data_key_b64, "data key", DATA_KEY_SIZE)

        plaintext = decrypt_body(ciphertext, data_key, nonce)

        with _replace_on_success(target) as fout:
            fout.write(plaintext)
        logger.info(
            "Decrypted %s -> %s (provider=%s)", source, target, metadata.provider,
        )

    def inspect(self, path: PathLike) -> FileEnvelopeMetadata:
        """Return header metadata without reading the body or calling a KMS."""
        source = Path(path)
        _ensure_regular_file(source)
        with source.open("rb") as fin:
            metadata, _ = read_envelope(fin, with_body=False)
        return FileEnvelopeMetadata(
            provider=metadata.provider,
            algorithm=metadata.algorithm,
            encrypted_key=metadata.encrypted_key,
        )
