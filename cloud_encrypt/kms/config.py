"""
KMS Configuration: provider name plus a read-only bag of provider settings.

Settings are plain strings as found in ``.cloudencrypt.yml`` or passed with
``--set key=value``. Blank values are never stored: a builder call with an
empty or whitespace-only value is ignored, so a later layer can only add
or overwrite real values.

Security Note:
    Settings hold key identifiers, never key material.
"""
from types import MappingProxyType
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..exceptions import ConfigurationError


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class ProviderConfig(BaseModel):
    """Immutable provider name and settings."""

    provider: str
    settings: Mapping[str, str] = Field(default_factory=dict, validate_default=True)

    model_config = {"frozen": True}

    @field_validator("provider", mode="before")
    @classmethod
    def normalize_provider(cls, v: Any) -> str:
        """Provider names are canonical in lower case."""
        if _is_blank(v):
            raise ValueError("provider is required")
        return str(v).strip().lower()

    @field_validator("settings", mode="before")
    @classmethod
    def drop_blank_settings(cls, v: Any) -> dict:
        """Discard entries with a missing key or a blank value."""
        if v is None:
            return {}
        return {
            key: value for key, value in dict(v).items()
            if key is not None and not _is_blank(value)
        }

    @field_validator("settings")
    @classmethod
    def freeze_settings(cls, v: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(v))

    def to_settings(self) -> dict[str, str]:
        """Return a mutable copy of the settings."""
        return dict(self.settings)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.settings.get(key, default)

    def get_required(self, key: str) -> str:
        """Return a setting, failing when it is absent.

        Raises:
            ConfigurationError: If the setting is missing or blank.
        """
        value = self.settings.get(key)
        if _is_blank(value):
            raise ConfigurationError(
                f"Missing required {self.provider} setting: {key}"
            )
        return value

    @classmethod
    def of(cls, provider: Optional[str], settings: Optional[Mapping[str, str]] = None):
        """Create a config, reporting invalid input as ConfigurationError."""
        try:
            return cls(provider=provider, settings=settings or {})
        except ValidationError as err:
            detail = "; ".join(e["msg"] for e in err.errors())
            raise ConfigurationError(
                f"Invalid {cls.__name__}: {detail}"
            ) from err

    @classmethod
    def builder(cls, provider: Optional[str]) -> "ConfigBuilder":
        return ConfigBuilder(cls, provider)


class ConfigBuilder:
    """Fluent builder that silently drops blank values."""

    def __init__(self, config_cls: type, provider: Optional[str]):
        self._config_cls = config_cls
        self._provider = provider
        self._values: dict[str, str] = {}

    def with_setting(self, key: Optional[str], value: Optional[str]) -> "ConfigBuilder":
        if key is not None and not _is_blank(value):
            self._values[key] = value
        return self

    def with_settings(self, settings: Optional[Mapping[str, str]]) -> "ConfigBuilder":
        for key, value in (settings or {}).items():
            self.with_setting(key, value)
        return self

    def build(self):
        return self._config_cls.of(self._provider, self._values)


class KmsConfig(ProviderConfig):
    """Configuration for a KMS provider used to encrypt values and data keys."""

    @classmethod
    def for_aws(cls, region: str, key_id: str) -> "KmsConfig":
        return (
            cls.builder("aws")
            .with_setting("region", region)
            .with_setting("keyId", key_id)
            .build()
        )

    @classmethod
    def for_azure(cls, key_identifier: str) -> "KmsConfig":
        return cls.builder("azure").with_setting("keyId", key_identifier).build()

    @classmethod
    def for_gcp(
        cls, project: str, location: str, key_ring: str, key: str
    ) -> "KmsConfig":
        return (
            cls.builder("gcp")
            .with_setting("project", project)
            .with_setting("location", location)
            .with_setting("keyRing", key_ring)
            .with_setting("key", key)
            .build()
        )
