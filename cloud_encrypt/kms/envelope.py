"""
Envelope Format: file header, header parser and the AES-256-GCM body cipher.

An envelope file is an ASCII header followed by the base64 ciphertext:

    DSCOPE-KMS-FILE-ENC-v1
    provider:<provider>
    encKey:<provider-wrapped base64 data key>
    iv:<base64 nonce>
    algo:AES/GCM/NoPadding
    ----
    <MIME base64 of ciphertext || 16-byte GCM tag>

The body is written in 76-character lines separated by CRLF, without a
trailing line break. Readers strip every CR and LF before decoding.

Security Note:
    The header is not authenticated. Tampering with the body or the iv
    is caught by the GCM tag; tampering with ``encKey`` fails at the KMS.
"""
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import FormatError, IntegrityError

logger = logging.getLogger("cloud_encrypt.kms")

MAGIC = "DSCOPE-KMS-FILE-ENC-v1"
DELIMITER = "----"
ALGORITHM = "AES/GCM/NoPadding"

DATA_KEY_SIZE = 32  # AES-256
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # 128-bit tag

MIME_LINE_BYTES = 57  # 57 raw bytes -> 76 base64 characters
MIME_SEPARATOR = b"\r\n"
CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class EnvelopeMetadata:
    """Parsed envelope header. Only ``parse_header`` builds these."""

    provider: str
    encrypted_key: str
    iv: str
    algorithm: str


@dataclass(frozen=True)
class FileEnvelopeMetadata:
    """Public view of an envelope header."""

    provider: str
    algorithm: str
    encrypted_key: str


# ---------------------------------------------------------------------------
# Header
# ---------------------------------------------------------------------------

def format_header(provider: str, encrypted_key: str, iv: bytes) -> bytes:
    lines = [
        MAGIC,
        f"provider:{provider}",
        f"encKey:{encrypted_key}",
        f"iv:{base64.b64encode(iv).decode('ascii')}",
        f"algo:{ALGORITHM}",
        DELIMITER,
    ]
    return ("\n".join(lines) + "\n").encode("utf-8")


def parse_header(lines: Iterable[str]) -> EnvelopeMetadata:
    """Parse header lines (magic line first, delimiter excluded).

    Raises:
        FormatError: If the magic line or a required field is missing.
    """
    lines = list(lines)
    if not lines or lines[0] != MAGIC:
        raise FormatError(f"File is not a {MAGIC} encrypted payload")

    values: dict[str, str] = {}
    for line in lines[1:]:
        key, sep, value = line.partition(":")
        if not sep or not key:
            continue
        values[key.strip().lower()] = value.strip()

    missing = [
        field for field in ("provider", "enckey", "iv")
        if not values.get(field)
    ]
    if missing:
        raise FormatError(
            f"Envelope header missing required metadata: {', '.join(missing)}"
        )
    return EnvelopeMetadata(
        provider=values["provider"],
        encrypted_key=values["enckey"],
        iv=values["iv"],
        algorithm=values.get("algo") or ALGORITHM,
    )


def read_envelope(
    stream: BinaryIO, with_body: bool = True
) -> tuple[EnvelopeMetadata, Optional[bytes]]:
    """Read the header from ``stream`` and, optionally, the decoded body.

    Reading stops at the delimiter line when ``with_body`` is False, so the
    ciphertext is never loaded.
    """
    header: list[str] = []
    found = False
    for raw in stream:
        try:
            line = raw.decode("utf-8")
        except UnicodeDecodeError as err:
            raise FormatError("Envelope header is not valid UTF-8") from err
        line = line.replace("\r", "").rstrip("\n")
        if line == DELIMITER and raw.endswith(b"\n"):
            found = True
            break
        header.append(line)
    if not found:
        if header and header[0] != MAGIC:
            raise FormatError(f"File is not a {MAGIC} encrypted payload")
        raise FormatError("File does not contain the envelope header delimiter")

    metadata = parse_header(header)
    if not with_body:
        return metadata, None
    return metadata, decode_body(stream.read())


def decode_body(body: bytes) -> bytes:
    """Decode the MIME base64 body, rejecting anything that is not base64."""
    compact = body.replace(b"\r", b"").replace(b"\n", b"")
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as err:
        raise FormatError("Envelope body is not valid base64") from err


def decode_field(value: str, name: str, size: int) -> bytes:
    """Decode a base64 header/key field that must have ``size`` bytes."""
    try:
        raw = base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError) as err:
        raise FormatError(f"Envelope {name} is not valid base64") from err
    if len(raw) != size:
        raise FormatError(
            f"Envelope {name} must be {size} bytes, got {len(raw)}"
        )
    return raw


# ---------------------------------------------------------------------------
# Body cipher
# ---------------------------------------------------------------------------

class _MimeWriter:
    """Writes base64 in 76-character lines joined by CRLF."""

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._pending = b""
        self._first = True

    def write(self, data: bytes) -> None:
        self._pending += data
        usable = len(self._pending) - len(self._pending) % MIME_LINE_BYTES
        for start in range(0, usable, MIME_LINE_BYTES):
            self._emit(self._pending[start:start + MIME_LINE_BYTES])
        self._pending = self._pending[usable:]

    def flush(self) -> None:
        if self._pending:
            self._emit(self._pending)
            self._pending = b""

    def _emit(self, chunk: bytes) -> None:
        if not self._first:
            self._stream.write(MIME_SEPARATOR)
        self._stream.write(base64.b64encode(chunk))
        self._first = False


def encrypt_stream(
    source: BinaryIO, sink: BinaryIO, data_key: bytes, nonce: bytes
) -> int:
    """Encrypt ``source`` into ``sink`` as MIME base64, tag appended.

    Returns:
        Number of plaintext bytes read.
    """
    encryptor = Cipher(algorithms.AES(data_key), modes.GCM(nonce)).encryptor()
    writer = _MimeWriter(sink)
    total = 0
    while True:
        chunk = source.read(CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        writer.write(encryptor.update(chunk))
    writer.write(encryptor.finalize())
    writer.write(encryptor.tag)
    writer.flush()
    return total


def decrypt_body(ciphertext: bytes, data_key: bytes, nonce: bytes) -> bytes:
    """Decrypt and authenticate ``ciphertext || tag`` in one call.

    Raises:
        IntegrityError: If the tag does not verify.
    """
    if len(ciphertext) < TAG_SIZE:
        raise FormatError(
            f"Envelope body too short: {len(ciphertext)} bytes "
            f"(minimum {TAG_SIZE})"
        )
    try:
        return AESGCM(data_key).decrypt(nonce, ciphertext, None)
    except InvalidTag as err:
        raise IntegrityError(
            "Envelope authentication failed: ciphertext or iv was modified, "
            "or the data key is wrong"
        ) from err
