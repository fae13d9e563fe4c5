"""
Tool Settings: ``.cloudencrypt.yml`` loading and starter file generation.

Looked up in the working directory first, then the home directory. The
first file that parses wins; files that cannot be read or validated are
logged and skipped.

Example::

    provider: aws
    defaultMode: encrypt
    include:
      - config/*.properties
    exclude:
      - build/*
    json: false
    autoDetect: true
    kms:
      region: us-west-2
      keyId: alias/app-secrets
"""
import logging
import os
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("cloud_encrypt.cli")

CONFIG_FILENAME = ".cloudencrypt.yml"
MODES = ("encrypt", "decrypt", "check")

STARTER_KMS = {
    "aws": {"region": "us-west-2", "keyId": "alias/your-key-alias"},
    "azure": {"keyId": "https://<key-vault-name>.vault.azure.net/keys/<key-name>"},
    "gcp": {
        "project": "your-gcp-project",
        "location": "us-central1",
        "keyRing": "app-secrets",
        "key": "primary",
    },
    "oci": {
        "configFile": str(Path.home() / ".oci" / "config"),
        "profile": "DEFAULT",
        "endpoint": "https://<vault>-crypto.kms.<region>.oraclecloud.com",
        "region": "us-ashburn-1",
        "vault": "<vault>",
        "keyId": "ocid1.key.oc1..<uniqueId>",
    },
}


def default_locations() -> list[Path]:
    return [Path(CONFIG_FILENAME), Path.home() / CONFIG_FILENAME]


class ToolSettings(BaseModel):
    """Validated ``.cloudencrypt.yml`` contents."""

    provider: Optional[str] = None
    default_mode: str = Field(default="encrypt", alias="defaultMode")
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    json_output: bool = Field(default=False, alias="json")
    auto_detect: bool = Field(default=True, alias="autoDetect")
    kms: dict[str, str] = Field(default_factory=dict)
    source: Optional[Path] = Field(default=None, exclude=True)

    model_config = {"populate_by_name": True}

    @field_validator("provider", mode="before")
    @classmethod
    def normalize_provider(cls, v: Any) -> Optional[str]:
        if v is None or not str(v).strip():
            return None
        return str(v).strip().lower()

    @field_validator("default_mode", mode="before")
    @classmethod
    def validate_mode(cls, v: Any) -> str:
        mode = str(v or "encrypt").strip().lower()
        if mode not in MODES:
            raise ValueError(f"defaultMode must be one of {MODES}, got {v!r}")
        return mode

    @field_validator("include", "exclude", mode="before")
    @classmethod
    def coerce_patterns(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(item) for item in v if item is not None]

    @field_validator("kms", mode="before")
    @classmethod
    def coerce_kms(cls, v: Any) -> dict[str, str]:
        """YAML scalars such as numbers are kept as their text form."""
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("kms must be a mapping")
        return {
            str(key): str(value) for key, value in v.items()
            if key is not None and value is not None
        }

    @classmethod
    def load(cls, locations: Optional[Iterable[Path]] = None) -> "ToolSettings":
        """Return settings from the first usable config file, or defaults."""
        for location in locations or default_locations():
            location = Path(location)
            if not location.is_file():
                continue
            try:
                with location.open("r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh)
                if data is None:
                    continue
                if not isinstance(data, dict):
                    raise ValueError("top-level YAML value must be a mapping")
                settings = cls.model_validate({**data, "source": location})
            except (OSError, yaml.YAMLError, ValueError) as err:
                logger.warning("Failed to load config %s: %s", location, err)
                continue
            logger.info("Loaded config from %s", location)
            return settings
        return cls()


def starter_settings(provider: str) -> dict[str, Any]:
    return {
        "provider": provider,
        "defaultMode": "encrypt",
        "include": [
            "config/*.properties",
            "config/*.yml",
            "config/*.env",
        ],
        "exclude": [
            "build/*",
            "dist/*",
            "node_modules/*",
            ".git/*",
        ],
        "json": False,
        "autoDetect": True,
        "kms": dict(STARTER_KMS.get(provider, {"keyId": "replace-with-your-key-id"})),
    }


def write_starter(path: os.PathLike, provider: str) -> bool:
    """Write a starter config unless ``path`` exists. Returns True if written."""
    target = Path(path)
    if target.exists():
        return False
    with target.open("w", encoding="utf-8") as fh:
        yaml.safe_dump(
            starter_settings(provider), fh,
            default_flow_style=False, sort_keys=False,
        )
    return True
