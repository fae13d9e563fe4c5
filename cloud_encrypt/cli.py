"""
cloud-encrypt command line.

    cloud-encrypt scan [TARGET ...] [--dry-run] [--decrypt] [--check] [--json]
    cloud-encrypt init [--provider P]
    cloud-encrypt store [SECRET] [--provider P] [--no-wrap] [--stdin]
                        [--output FILE] [--name KEY] [--set KEY=VALUE ...]
    cloud-encrypt encrypt-file INPUT OUTPUT [--provider P]
    cloud-encrypt decrypt-file INPUT OUTPUT [--provider P]
    cloud-encrypt inspect FILE
"""
import argparse
import fnmatch
import glob
import logging
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

import orjson

from .exceptions import CloudEncryptError, ConfigurationError
from .kms.client import KmsClient
from .kms.config import KmsConfig
from .kms.file_service import EnvelopeFileService
from .kms.providers import ProviderRegistry
from .scan.files import process_file, read_lines, scan_mode, upsert_property
from .settings import CONFIG_FILENAME, ToolSettings, write_starter
from .version import __version__

logger = logging.getLogger("cloud_encrypt.cli")

SCANNABLE_SUFFIXES = (".properties", ".env", ".yml", ".yaml")
GLOB_CHARS = "*?["

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

# (provider, login check command, whether stdout must be non-empty)
_DETECTION_COMMANDS = (
    ("aws", ["aws", "sts", "get-caller-identity"], False),
    ("azure", ["az", "account", "show"], False),
    (
        "gcp",
        ["gcloud", "auth", "list", "--filter=status:ACTIVE", "--format=value(account)"],
        True,
    ),
    ("oci", ["oci", "session", "validate"], False),
)


@dataclass
class Context:
    settings: ToolSettings
    providers: Optional[ProviderRegistry] = None


def _dump(data) -> str:
    return orjson.dumps(data, option=orjson.OPT_INDENT_2).decode("utf-8")


def detect_provider() -> Optional[str]:
    """Guess the provider from whichever cloud CLI has an active login."""
    for provider, command, needs_output in _DETECTION_COMMANDS:
        try:
            completed = subprocess.run(
                command, capture_output=True, text=True, timeout=15,
            )
        except (OSError, subprocess.SubprocessError) as err:
            logger.debug("Provider check %s failed: %s", command[0], err)
            continue
        if completed.returncode == 0 and (not needs_output or completed.stdout.strip()):
            logger.info("Detected provider %s", provider)
            return provider
    return None


def resolve_provider(override: Optional[str], settings: ToolSettings) -> str:
    if override and override.strip():
        return override.strip().lower()
    if settings.provider:
        return settings.provider
    if settings.auto_detect:
        detected = detect_provider()
        if detected:
            return detected
    raise ConfigurationError(
        f"Unable to determine provider. Set provider in {CONFIG_FILENAME} "
        "or pass --provider."
    )


def build_kms_config(
    provider: str,
    base: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
) -> KmsConfig:
    """Merge config-file settings with overrides; blank results are dropped."""
    merged = {**(base or {}), **(overrides or {})}
    return KmsConfig.builder(provider).with_settings(merged).build()


def parse_override(pair: str) -> tuple[str, str]:
    key, sep, value = pair.partition("=")
    if not sep or not key.strip():
        raise ConfigurationError(f"--set expects key=value but was: {pair}")
    return key.strip(), value.strip()


def _is_excluded(path: Path, excludes: Sequence[str]) -> bool:
    normalized = path.as_posix()
    return any(fnmatch.fnmatch(normalized, pattern) for pattern in excludes)


def resolve_files(target: str, excludes: Sequence[str] = ()) -> list[Path]:
    """Expand a file, directory or glob pattern into files to scan."""
    path = Path(target)
    if path.is_dir():
        candidates = sorted(
            p for p in path.rglob("*")
            if p.is_file() and p.name.endswith(SCANNABLE_SUFFIXES)
        )
    elif any(ch in target for ch in GLOB_CHARS):
        candidates = sorted(
            Path(p) for p in glob.glob(target, recursive=True) if Path(p).is_file()
        )
    elif path.exists():
        candidates = [path]
    else:
        candidates = []
    return [p for p in candidates if not _is_excluded(p, excludes)]


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_scan(args: argparse.Namespace, ctx: Context) -> int:
    settings = ctx.settings
    decrypt_mode = args.decrypt or settings.default_mode == "decrypt"
    check_mode = args.check or settings.default_mode == "check"
    json_mode = args.json or settings.json_output

    files: dict[Path, None] = {}
    for target in args.targets or settings.include:
        for path in resolve_files(target, settings.exclude):
            files[path] = None
    if not files:
        print("No target files matched. Provide a path or configure includes.")
        return EXIT_USAGE

    try:
        provider = resolve_provider(None, settings)
    except ConfigurationError:
        if not check_mode:
            raise
        provider = "unknown"
    config = build_kms_config(provider, settings.kms)

    reports = []
    insecure = []
    for path in files:
        report = process_file(
            path, config,
            dry_run=args.dry_run,
            decrypt_mode=decrypt_mode,
            check_mode=check_mode,
            providers=ctx.providers,
        )
        reports.append(report)
        if report.unencrypted > 0:
            insecure.append(report.file)

    if json_mode:
        print(_dump({
            "provider": provider,
            "fileCount": len(files),
            "results": [r.as_dict() for r in reports],
            "mode": scan_mode(decrypt_mode, check_mode),
            "insecureFiles": insecure,
        }))
    else:
        print(f"Provider: {provider}")
        print(f"Processed {len(files)} file(s)")
        if check_mode and insecure:
            print("Found unencrypted secrets in:")
            for name in insecure:
                print(f"  - {name}")
        elif check_mode:
            print("All secrets are encrypted.")
    return EXIT_FAILURE if check_mode and insecure else EXIT_OK


def cmd_init(args: argparse.Namespace, ctx: Context) -> int:
    provider = args.provider or detect_provider() or "aws"
    if write_starter(Path(CONFIG_FILENAME), provider.lower()):
        print(f"Created {CONFIG_FILENAME} with defaults.")
    else:
        print(f"{CONFIG_FILENAME} already exists. Skipping creation.")
    return EXIT_OK


def cmd_store(args: argparse.Namespace, ctx: Context) -> int:
    name = args.name
    plaintext = args.secret
    if plaintext is not None and name is None and "=" in plaintext:
        name, plaintext = plaintext.split("=", 1)
    if args.stdin:
        from_stdin = sys.stdin.read().strip()
        if from_stdin:
            plaintext = from_stdin
    if plaintext is None or not plaintext.strip():
        raise ConfigurationError(
            "Provide a secret value to store (argument or --stdin)."
        )

    overrides = dict(parse_override(pair) for pair in args.overrides)
    provider = resolve_provider(args.provider, ctx.settings)
    config = build_kms_config(provider, ctx.settings.kms, overrides)

    ciphertext = KmsClient(ctx.providers).encrypt_value(
        config, plaintext, wrap_output=args.wrap,
    )
    print(ciphertext)

    if args.output:
        path = Path(args.output)
        path.parent.mkdir(parents=True, exist_ok=True)
        if name:
            lines = read_lines(path) if path.exists() else []
            updated = upsert_property(lines, name, ciphertext)
            path.write_text(
                "".join(f"{line}\n" for line in updated), encoding="utf-8",
            )
            print(f"Stored {name} in {path}")
        else:
            with path.open("a", encoding="utf-8") as fh:
                fh.write(f"{ciphertext}\n")
            print(f"Appended ciphertext to {path}")
    return EXIT_OK


def _file_service(ctx: Context) -> EnvelopeFileService:
    return EnvelopeFileService(providers=ctx.providers)


def cmd_encrypt_file(args: argparse.Namespace, ctx: Context) -> int:
    provider = resolve_provider(args.provider, ctx.settings)
    config = build_kms_config(provider, ctx.settings.kms)
    _file_service(ctx).encrypt_file(args.input, args.output, config)
    print(f"Encrypted {args.input} -> {args.output}")
    return EXIT_OK


def cmd_decrypt_file(args: argparse.Namespace, ctx: Context) -> int:
    service = _file_service(ctx)
    provider = args.provider or ctx.settings.provider
    if not provider:
        provider = service.inspect(args.input).provider
    config = build_kms_config(provider, ctx.settings.kms)
    service.decrypt_file(args.input, args.output, config)
    print(f"Decrypted {args.input} -> {args.output}")
    return EXIT_OK


def cmd_inspect(args: argparse.Namespace, ctx: Context) -> int:
    metadata = _file_service(ctx).inspect(args.file)
    print(_dump({
        "provider": metadata.provider,
        "algorithm": metadata.algorithm,
        "encryptedKey": metadata.encrypted_key,
    }))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="cloud-encrypt",
        description="Encrypt, decrypt, and audit configuration files across AWS, Azure, GCP and OCI.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("scan", help="Encrypt, decrypt or audit key=value files")
    sp.add_argument("targets", nargs="*", metavar="TARGET", help="File, directory, or glob to process")
    sp.add_argument("--dry-run", action="store_true", help="Preview changes without writing files")
    sp.add_argument("--decrypt", action="store_true", help="Decrypt ENC(...) values")
    sp.add_argument("--check", action="store_true", help="Fail if plaintext secrets are found")
    sp.add_argument("--json", action="store_true", help="Emit machine-readable JSON summary")
    sp.set_defaults(func=cmd_scan)

    sp = sub.add_parser("init", help=f"Create a starter {CONFIG_FILENAME}")
    sp.add_argument("--provider", default=None)
    sp.set_defaults(func=cmd_init)

    sp = sub.add_parser("store", help="Encrypt a secret and optionally write it to a file")
    sp.add_argument("secret", nargs="?", default=None, metavar="SECRET", help="Secret value or KEY=VALUE pair")
    sp.add_argument("--provider", default=None, help="Override cloud provider (aws|azure|gcp|oci)")
    sp.add_argument("--wrap", action=argparse.BooleanOptionalAction, default=True, help="Wrap ciphertext in ENC(...)")
    sp.add_argument("--stdin", action="store_true", help="Read plaintext from STDIN")
    sp.add_argument("--output", default=None, metavar="FILE", help="Write ciphertext to FILE")
    sp.add_argument("--name", default=None, metavar="KEY", help="Property key when writing KEY=VALUE to --output")
    sp.add_argument("--set", dest="overrides", action="append", default=[], metavar="KEY=VALUE", help="Override provider setting (repeatable)")
    sp.set_defaults(func=cmd_store)

    sp = sub.add_parser("encrypt-file", help="Envelope-encrypt a whole file")
    sp.add_argument("input")
    sp.add_argument("output")
    sp.add_argument("--provider", default=None)
    sp.set_defaults(func=cmd_encrypt_file)

    sp = sub.add_parser("decrypt-file", help="Decrypt an envelope-encrypted file")
    sp.add_argument("input")
    sp.add_argument("output")
    sp.add_argument("--provider", default=None)
    sp.set_defaults(func=cmd_decrypt_file)

    sp = sub.add_parser("inspect", help="Show envelope header metadata")
    sp.add_argument("file")
    sp.set_defaults(func=cmd_inspect)

    return p


def main(
    argv: Optional[Sequence[str]] = None,
    settings: Optional[ToolSettings] = None,
    providers: Optional[ProviderRegistry] = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx = Context(settings=settings or ToolSettings.load(), providers=providers)
    try:
        return args.func(args, ctx)
    except (CloudEncryptError, OSError) as err:
        print(f"error: {err}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
