"""
Tests for envelope file encryption.

Tests cover:
- Round trips for text, binary and empty files
- Header layout and MIME body wrapping
- inspect() without any decryptor
- Provider mismatch, tampering, malformed headers and bodies
- Capability cleanup on every exit path
- Outputs replaced only after a complete write
"""
import base64
import os

import pytest

from cloud_encrypt.exceptions import ConfigurationError, FormatError, IntegrityError
from cloud_encrypt.kms.config import KmsConfig
from cloud_encrypt.kms.envelope import CHUNK_SIZE, parse_header
from cloud_encrypt.kms.file_service import EnvelopeFileService
from cloud_encrypt.kms.providers import ProviderRegistry

from conftest import FakeCipher


@pytest.fixture
def service(registry):
    return EnvelopeFileService(providers=registry)


@pytest.fixture
def plaintext_file(tmp_path):
    path = tmp_path / "input.txt"
    path.write_bytes(b"hello kms")
    return path


def _split(path):
    content = path.read_bytes()
    header, body = content.split(b"\n----\n", 1)
    return header, body


class TestRoundTrip:
    """Tests for encrypt_file followed by decrypt_file."""

    def test_encrypts_and_decrypts(self, service, plaintext_file, tmp_path, aws_config, journal):
        """Test the basic round trip and the key handed to the KMS."""
        encrypted = tmp_path / "output.kms"
        decrypted = tmp_path / "output.txt"

        service.encrypt_file(plaintext_file, encrypted, aws_config)
        assert encrypted.exists()

        metadata = service.inspect(encrypted)
        assert metadata.provider == "aws"
        assert metadata.algorithm == "AES/GCM/NoPadding"
        assert metadata.encrypted_key == "enc:" + journal["encrypted"][0]

        service.decrypt_file(encrypted, decrypted, aws_config)
        assert decrypted.read_bytes() == b"hello kms"

    @pytest.mark.parametrize("payload", [
        b"",
        b"\x00\xff\xfe\x80binary\x00",
        os.urandom(5000),
        "unicode ✓ ñ".encode("utf-8"),
    ])
    def test_round_trip_payloads(self, service, tmp_path, aws_config, payload):
        """Test empty, binary and unicode payloads."""
        source = tmp_path / "in.bin"
        source.write_bytes(payload)
        service.encrypt_file(source, tmp_path / "enc.kms", aws_config)
        service.decrypt_file(tmp_path / "enc.kms", tmp_path / "out.bin", aws_config)
        assert (tmp_path / "out.bin").read_bytes() == payload

    def test_data_key_is_32_bytes(self, service, plaintext_file, tmp_path, aws_config, journal):
        service.encrypt_file(plaintext_file, tmp_path / "enc.kms", aws_config)
        assert len(base64.b64decode(journal["encrypted"][0])) == 32

    def test_fresh_key_and_iv_per_call(self, service, plaintext_file, tmp_path, aws_config):
        """Test re-encrypting the same file never reuses key or nonce."""
        service.encrypt_file(plaintext_file, tmp_path / "a.kms", aws_config)
        service.encrypt_file(plaintext_file, tmp_path / "b.kms", aws_config)
        header_a, body_a = _split(tmp_path / "a.kms")
        header_b, body_b = _split(tmp_path / "b.kms")
        assert header_a != header_b
        assert body_a != body_b

    def test_creates_parent_directories(self, service, plaintext_file, tmp_path, aws_config):
        target = tmp_path / "nested" / "dir" / "out.kms"
        service.encrypt_file(plaintext_file, target, aws_config)
        restored = tmp_path / "other" / "plain.txt"
        service.decrypt_file(target, restored, aws_config)
        assert restored.read_bytes() == b"hello kms"

    def test_truncates_existing_output(self, service, plaintext_file, tmp_path, aws_config):
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(plaintext_file, encrypted, aws_config)
        restored = tmp_path / "plain.txt"
        restored.write_bytes(b"x" * 1000)
        service.decrypt_file(encrypted, restored, aws_config)
        assert restored.read_bytes() == b"hello kms"

    def test_capabilities_closed(self, service, plaintext_file, tmp_path, aws_config, journal):
        service.encrypt_file(plaintext_file, tmp_path / "enc.kms", aws_config)
        service.decrypt_file(tmp_path / "enc.kms", tmp_path / "out", aws_config)
        assert journal["created"] == journal["closed"] == 2


class TestFileFormat:
    """Tests for the on-disk layout."""

    def test_header_layout(self, registry, plaintext_file, tmp_path, aws_config):
        """Test the exact header lines in order."""
        service = EnvelopeFileService(providers=registry, random_bytes=lambda n: b"\x01" * n)
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(plaintext_file, encrypted, aws_config)

        key_b64 = base64.b64encode(b"\x01" * 32).decode("ascii")
        iv_b64 = base64.b64encode(b"\x01" * 12).decode("ascii")
        expected = (
            "DSCOPE-KMS-FILE-ENC-v1\n"
            "provider:aws\n"
            f"encKey:enc:{key_b64}\n"
            f"iv:{iv_b64}\n"
            "algo:AES/GCM/NoPadding\n"
            "----\n"
        ).encode("ascii")
        assert encrypted.read_bytes().startswith(expected)

    def test_body_is_mime_wrapped(self, service, tmp_path, aws_config):
        """Test 76-character lines joined by CRLF, no trailing newline."""
        source = tmp_path / "big.bin"
        source.write_bytes(os.urandom(1000))
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(source, encrypted, aws_config)

        _, body = _split(encrypted)
        lines = body.split(b"\r\n")
        assert len(lines) > 1
        assert all(len(line) == 76 for line in lines[:-1])
        assert 0 < len(lines[-1]) <= 76
        assert not body.endswith(b"\n")
        assert len(base64.b64decode(b"".join(lines))) == 1000 + 16

    def test_multi_chunk_body(self, service, tmp_path, aws_config):
        """Test a payload spanning several read chunks.

        The size is not a multiple of 57, so chunk boundaries fall inside
        a base64 line and every line but the last must still be full.
        """
        size = CHUNK_SIZE * 2 + 1000
        assert size % 57 != 0
        payload = os.urandom(size)
        source = tmp_path / "large.bin"
        source.write_bytes(payload)
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(source, encrypted, aws_config)

        _, body = _split(encrypted)
        lines = body.split(b"\r\n")
        assert all(len(line) == 76 for line in lines[:-1])
        assert 0 < len(lines[-1]) <= 76
        assert len(base64.b64decode(b"".join(lines))) == size + 16

        restored = tmp_path / "restored.bin"
        service.decrypt_file(encrypted, restored, aws_config)
        assert restored.read_bytes() == payload

    def test_empty_file_has_tag_only(self, service, tmp_path, aws_config):
        source = tmp_path / "empty"
        source.write_bytes(b"")
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(source, encrypted, aws_config)
        _, body = _split(encrypted)
        assert len(base64.b64decode(body)) == 16

    def test_crlf_header_is_accepted(self, service, plaintext_file, tmp_path, aws_config):
        """Test files whose header lines end with CRLF still decrypt."""
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(plaintext_file, encrypted, aws_config)
        header, body = _split(encrypted)
        encrypted.write_bytes(header.replace(b"\n", b"\r\n") + b"\r\n----\r\n" + body)
        service.decrypt_file(encrypted, tmp_path / "out", aws_config)
        assert (tmp_path / "out").read_bytes() == b"hello kms"

    def test_missing_algo_defaults(self, service, plaintext_file, tmp_path, aws_config):
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(plaintext_file, encrypted, aws_config)
        header, body = _split(encrypted)
        header = b"\n".join(
            line for line in header.split(b"\n") if not line.startswith(b"algo:")
        )
        encrypted.write_bytes(header + b"\n----\n" + body)
        assert service.inspect(encrypted).algorithm == "AES/GCM/NoPadding"
        service.decrypt_file(encrypted, tmp_path / "out", aws_config)
        assert (tmp_path / "out").read_bytes() == b"hello kms"

    def test_parse_header_keys_case_insensitive(self):
        metadata = parse_header([
            "DSCOPE-KMS-FILE-ENC-v1",
            " Provider : gcp ",
            "ENCKEY:abc",
            "IV: xyz",
            "no colon here",
        ])
        assert metadata.provider == "gcp"
        assert metadata.encrypted_key == "abc"
        assert metadata.iv == "xyz"
        assert metadata.algorithm == "AES/GCM/NoPadding"


class TestInspect:
    """Tests for header-only inspection."""

    def test_inspect_never_decrypts(self, journal, plaintext_file, tmp_path, aws_config):
        """Test inspect works with no decryptor registered at all."""
        enc_only = ProviderRegistry()
        enc_only.register("aws", encryptor=lambda settings: FakeCipher(settings, journal))
        service = EnvelopeFileService(providers=enc_only)
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(plaintext_file, encrypted, aws_config)

        metadata = service.inspect(encrypted)
        assert metadata.provider == "aws"
        assert journal["decrypted"] == []

    def test_inspect_ignores_garbled_body(self, service, plaintext_file, tmp_path, aws_config):
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(plaintext_file, encrypted, aws_config)
        header, _ = _split(encrypted)
        encrypted.write_bytes(header + b"\n----\n" + b"\x00\xff not base64")
        assert service.inspect(encrypted).provider == "aws"

    def test_inspect_missing_file(self, service, tmp_path):
        with pytest.raises(FileNotFoundError):
            service.inspect(tmp_path / "missing.kms")


class TestFailures:
    """Tests for rejected inputs."""

    def test_missing_input(self, service, tmp_path, aws_config):
        with pytest.raises(FileNotFoundError):
            service.encrypt_file(tmp_path / "missing", tmp_path / "out", aws_config)

    def test_directory_input(self, service, tmp_path, aws_config):
        with pytest.raises(OSError):
            service.encrypt_file(tmp_path, tmp_path / "out", aws_config)

    def test_provider_mismatch_before_decryptor(self, service, plaintext_file, tmp_path, aws_config, journal):
        """Test the mismatch is reported without creating a decryptor."""
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(plaintext_file, encrypted, aws_config)
        created = journal["created"]

        with pytest.raises(ConfigurationError, match="'aws'.*'fake'"):
            service.decrypt_file(encrypted, tmp_path / "out", KmsConfig.of("fake", {}))
        assert journal["created"] == created
        assert journal["decrypted"] == []
        assert not (tmp_path / "out").exists()

    def test_provider_mismatch_with_unreachable_backend(self, journal, plaintext_file, tmp_path, aws_config):
        """Test mismatch detection even if the target backend would fail."""
        def unreachable(settings):
            raise AssertionError("backend must not be contacted")

        reg = ProviderRegistry()
        reg.register("aws", encryptor=lambda s: FakeCipher(s, journal), decryptor=unreachable)
        reg.register("gcp", encryptor=unreachable, decryptor=unreachable)
        service = EnvelopeFileService(providers=reg)
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(plaintext_file, encrypted, aws_config)
        with pytest.raises(ConfigurationError):
            service.decrypt_file(encrypted, tmp_path / "out", KmsConfig.of("gcp", {"project": "p"}))

    def test_tampered_body_fails_integrity(self, service, plaintext_file, tmp_path, aws_config, journal):
        """Test a flipped ciphertext byte raises and writes nothing."""
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(plaintext_file, encrypted, aws_config)
        header, body = _split(encrypted)
        raw = bytearray(base64.b64decode(body))
        raw[0] ^= 0x01
        encrypted.write_bytes(header + b"\n----\n" + base64.b64encode(bytes(raw)))

        output = tmp_path / "out"
        with pytest.raises(IntegrityError):
            service.decrypt_file(encrypted, output, aws_config)
        assert not output.exists()
        assert journal["created"] == journal["closed"]

    def test_tampered_iv_fails_integrity(self, service, plaintext_file, tmp_path, aws_config):
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(plaintext_file, encrypted, aws_config)
        header, body = _split(encrypted)
        lines = header.split(b"\n")
        lines = [
            b"iv:" + base64.b64encode(b"\x02" * 12) if line.startswith(b"iv:") else line
            for line in lines
        ]
        encrypted.write_bytes(b"\n".join(lines) + b"\n----\n" + body)
        with pytest.raises(IntegrityError):
            service.decrypt_file(encrypted, tmp_path / "out", aws_config)

    def test_garbled_body_is_format_error(self, service, plaintext_file, tmp_path, aws_config):
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(plaintext_file, encrypted, aws_config)
        header, _ = _split(encrypted)
        encrypted.write_bytes(header + b"\n----\n" + b"!!!not*base64!!!")
        with pytest.raises(FormatError):
            service.decrypt_file(encrypted, tmp_path / "out", aws_config)

    def test_truncated_body_is_rejected(self, service, plaintext_file, tmp_path, aws_config):
        """Test a cut-off body never yields plaintext."""
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(plaintext_file, encrypted, aws_config)
        header, body = _split(encrypted)
        encrypted.write_bytes(header + b"\n----\n" + body[:-4])
        with pytest.raises((FormatError, IntegrityError)):
            service.decrypt_file(encrypted, tmp_path / "out", aws_config)
        assert not (tmp_path / "out").exists()

    def test_missing_delimiter(self, service, tmp_path, aws_config):
        path = tmp_path / "bad.kms"
        path.write_text("DSCOPE-KMS-FILE-ENC-v1\nprovider:aws\nencKey:x\niv:y\n")
        with pytest.raises(FormatError, match="delimiter"):
            service.decrypt_file(path, tmp_path / "out", aws_config)
        with pytest.raises(FormatError):
            service.inspect(path)

    def test_wrong_magic(self, service, tmp_path, aws_config):
        path = tmp_path / "bad.kms"
        path.write_text("SOMETHING-ELSE\nprovider:aws\nencKey:x\niv:y\n----\nAAAA")
        with pytest.raises(FormatError, match="not a"):
            service.inspect(path)

    def test_plain_text_file_is_rejected(self, service, plaintext_file):
        with pytest.raises(FormatError):
            service.inspect(plaintext_file)

    def test_missing_required_field(self, service, tmp_path, aws_config):
        path = tmp_path / "bad.kms"
        path.write_text("DSCOPE-KMS-FILE-ENC-v1\nprovider:aws\nencKey:x\n----\nAAAA")
        with pytest.raises(FormatError, match="iv"):
            service.inspect(path)

    def test_unsupported_algorithm(self, service, plaintext_file, tmp_path, aws_config):
        encrypted = tmp_path / "enc.kms"
        service.encrypt_file(plaintext_file, encrypted, aws_config)
        content = encrypted.read_bytes().replace(b"algo:AES/GCM/NoPadding", b"algo:AES/CBC/PKCS5Padding")
        encrypted.write_bytes(content)
        with pytest.raises(FormatError, match="algorithm"):
            service.decrypt_file(encrypted, tmp_path / "out", aws_config)


class TestAtomicOutput:
    """Tests for output files written through a temp file."""

    @pytest.fixture
    def failing_stream(self, monkeypatch):
        def fail_midway(source, sink, data_key, nonce):
            sink.write(b"partial-body")
            raise OSError("disk full")

        monkeypatch.setattr(
            "cloud_encrypt.kms.file_service.encrypt_stream", fail_midway,
        )

    def test_failed_encrypt_leaves_no_output(self, service, plaintext_file, tmp_path, aws_config, failing_stream):
        target = tmp_path / "out" / "enc.kms"
        with pytest.raises(OSError, match="disk full"):
            service.encrypt_file(plaintext_file, target, aws_config)
        assert not target.exists()
        assert list(target.parent.iterdir()) == []

    def test_failed_encrypt_keeps_previous_output(self, service, plaintext_file, tmp_path, aws_config, failing_stream):
        target = tmp_path / "enc.kms"
        target.write_bytes(b"previous envelope")
        with pytest.raises(OSError):
            service.encrypt_file(plaintext_file, target, aws_config)
        assert target.read_bytes() == b"previous envelope"
        assert not list(tmp_path.glob("*.tmp"))
        assert not list(tmp_path.glob(".enc.kms.*"))

    def test_successful_write_leaves_no_temp_files(self, service, plaintext_file, tmp_path, aws_config):
        out_dir = tmp_path / "out"
        service.encrypt_file(plaintext_file, out_dir / "enc.kms", aws_config)
        service.decrypt_file(out_dir / "enc.kms", out_dir / "plain.txt", aws_config)
        assert sorted(p.name for p in out_dir.iterdir()) == ["enc.kms", "plain.txt"]
