"""
Scan Engine: find and transform sensitive ``key=value`` lines.

``process_lines`` is pure. It never touches files or providers itself; the
encrypt/decrypt callables are supplied by the caller, and the caller decides
whether to persist ``ScanResult.output_lines``.

A key is sensitive when its lower-cased name contains ``password``,
``secret``, ``token`` or ``key`` anywhere, so ``keyboard_layout`` matches
too. The heuristic is kept as it is.
"""
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Optional

from ..kms.client import WRAP_PREFIX, unwrap, wrap

SENSITIVE_PATTERN = re.compile(r"password|secret|token|key")

Transform = Callable[[str], str]


@dataclass
class ScanResult:
    output_lines: list[str] = field(default_factory=list)
    changed_count: int = 0
    unencrypted_count: int = 0
    affected_keys: list[str] = field(default_factory=list)


def is_sensitive(key: str) -> bool:
    return SENSITIVE_PATTERN.search(key.lower()) is not None


def process_lines(
    lines: Sequence[str],
    dry_run: bool = False,
    decrypt_mode: bool = False,
    check_mode: bool = False,
    encrypt_fn: Optional[Transform] = None,
    decrypt_fn: Optional[Transform] = None,
) -> ScanResult:
    """Apply encrypt, decrypt or check mode to each line.

    Check mode wins over decrypt mode, which wins over encrypt mode. In
    check mode and in dry runs the output lines equal the input lines.
    """
    result = ScanResult()
    for line in lines:
        result.output_lines.append(
            _process_line(
                line, result, dry_run, decrypt_mode, check_mode,
                encrypt_fn, decrypt_fn,
            )
        )
    return result


def _process_line(
    line: str,
    result: ScanResult,
    dry_run: bool,
    decrypt_mode: bool,
    check_mode: bool,
    encrypt_fn: Optional[Transform],
    decrypt_fn: Optional[Transform],
) -> str:
    trimmed = line.strip()
    if not trimmed or trimmed.startswith("#"):
        return line
    raw_key, sep, raw_value = line.partition("=")
    if not sep:
        return line

    key = raw_key.strip()
    value = raw_value.strip()
    wrapped = value.startswith(WRAP_PREFIX)

    if check_mode:
        if is_sensitive(key) and not wrapped:
            result.unencrypted_count += 1
            result.affected_keys.append(key)
        return line

    if decrypt_mode:
        if not wrapped:
            return line
        result.changed_count += 1
        result.affected_keys.append(key)
        if dry_run or decrypt_fn is None:
            return line
        return f"{key}={decrypt_fn(unwrap(value))}"

    if is_sensitive(key) and not wrapped:
        result.changed_count += 1
        result.affected_keys.append(key)
        if dry_run or encrypt_fn is None:
            return line
        return f"{key}={wrap(encrypt_fn(value))}"
    return line
