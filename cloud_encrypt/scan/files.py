"""
Scan Files: run the scan engine over a configuration file on disk.

Files are read as UTF-8 and split only on ``\\r\\n``, ``\\r`` and ``\\n``.
Other Unicode separators (U+2028, form feed, ...) stay inside the value.
"""
import logging
import os
import re
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from ..exceptions import FormatError
from ..kms.config import KmsConfig
from ..kms.providers import ProviderRegistry, default_registry
from .engine import ScanResult, process_lines

logger = logging.getLogger("cloud_encrypt.scan")

LINE_BREAK = re.compile(r"\r\n|\r|\n")


def split_lines(text: str) -> list[str]:
    """Split on line terminators, dropping the empty piece after a final one."""
    lines = LINE_BREAK.split(text)
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def read_lines(path: Union[str, os.PathLike]) -> list[str]:
    """Read a UTF-8 text file as lines.

    Raises:
        FormatError: If the file is not valid UTF-8.
    """
    target = Path(path)
    try:
        text = target.read_bytes().decode("utf-8")
    except UnicodeDecodeError as err:
        raise FormatError(
            f"{target} is not valid UTF-8 (byte offset {err.start})"
        ) from err
    return split_lines(text)


@dataclass
class FileReport:
    file: str
    provider: str
    mode: str
    dry_run: bool
    changed: int
    unencrypted: int
    keys: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "file": self.file,
            "provider": self.provider,
            "mode": self.mode,
            "dryRun": self.dry_run,
            "changed": self.changed,
            "unencrypted": self.unencrypted,
            "keys": list(self.keys),
        }


def scan_mode(decrypt_mode: bool, check_mode: bool) -> str:
    if check_mode:
        return "check"
    return "decrypt" if decrypt_mode else "encrypt"


def process_file(
    path: Union[str, os.PathLike],
    config: KmsConfig,
    dry_run: bool = False,
    decrypt_mode: bool = False,
    check_mode: bool = False,
    providers: Optional[ProviderRegistry] = None,
) -> FileReport:
    """Scan one file and rewrite it in place when values changed.

    The file is left untouched in check mode, in dry runs and when nothing
    changed. A provider capability is opened only when values may be
    transformed, and is closed before this function returns.
    """
    target = Path(path)
    lines = read_lines(target)

    with ExitStack() as stack:
        encrypt_fn = decrypt_fn = None
        if not check_mode and not dry_run:
            registry = providers or default_registry()
            if decrypt_mode:
                decryptor = stack.enter_context(
                    registry.decryptor(config.provider, config.settings)
                )
                decrypt_fn = decryptor.decrypt
            else:
                encryptor = stack.enter_context(
                    registry.encryptor(config.provider, config.settings)
                )
                encrypt_fn = encryptor.encrypt
        result: ScanResult = process_lines(
            lines, dry_run, decrypt_mode, check_mode, encrypt_fn, decrypt_fn,
        )

    if not check_mode and not dry_run and result.changed_count > 0:
        target.write_text(
            "".join(f"{line}\n" for line in result.output_lines),
            encoding="utf-8",
        )
        logger.info(
            "Rewrote %s (%s): %d value(s) changed", target,
            scan_mode(decrypt_mode, check_mode), result.changed_count,
        )

    return FileReport(
        file=str(target),
        provider=config.provider,
        mode=scan_mode(decrypt_mode, check_mode),
        dry_run=dry_run,
        changed=result.changed_count,
        unencrypted=result.unencrypted_count,
        keys=list(result.affected_keys),
    )


def upsert_property(lines: list[str], key: str, value: str) -> list[str]:
    """Replace the first ``key=...`` line, or append one."""
    if key is None or value is None:
        raise TypeError("key and value must not be None")
    updated: list[str] = []
    replaced = False
    for line in lines:
        if not replaced and line.strip().startswith(f"{key}="):
            updated.append(f"{key}={value}")
            replaced = True
        else:
            updated.append(line)
    if not replaced:
        updated.append(f"{key}={value}")
    return updated
