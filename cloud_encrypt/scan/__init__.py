"""Scan: detect and encrypt/decrypt secrets in key=value configuration files."""

from .engine import ScanResult, process_lines, is_sensitive
from .files import FileReport, process_file, upsert_property

__all__ = [
    "ScanResult",
    "process_lines",
    "is_sensitive",
    "FileReport",
    "process_file",
    "upsert_property",
]
