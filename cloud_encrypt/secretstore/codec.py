"""
Secret Payload Codec: deterministic JSON for (bytes, metadata) pairs.

Wire format, keys sorted lexicographically at every level:

    {"data":"<base64>","metadata":{"a":"1","b":"2"}}

Decoding is lenient about the fields: a missing or malformed ``data``
becomes ``b""`` and a missing ``metadata`` becomes ``{}``. Text that is not
JSON, or a JSON value that is not an object, is a ``FormatError``.
"""
import base64
import binascii
from typing import Any, Mapping, Optional, Union

import orjson

from ..exceptions import FormatError
from .storage import SecretRecord


class SecretPayloadCodec:
    """Encodes secret payloads for backends that store a single string."""

    @staticmethod
    def encode(data: bytes, metadata: Optional[Mapping[str, str]] = None) -> bytes:
        if data is None:
            raise TypeError("data must not be None")
        payload = {
            "data": base64.b64encode(bytes(data)).decode("ascii"),
            "metadata": {str(k): str(v) for k, v in (metadata or {}).items()},
        }
        return orjson.dumps(payload, option=orjson.OPT_SORT_KEYS)

    @staticmethod
    def decode(payload: Union[bytes, str]) -> SecretRecord:
        if payload is None:
            raise TypeError("payload must not be None")
        try:
            parsed: Any = orjson.loads(payload)
        except orjson.JSONDecodeError as err:
            raise FormatError(f"Secret payload is not valid JSON: {err}") from err
        if parsed is None:
            return SecretRecord(b"", {})
        if not isinstance(parsed, dict):
            raise FormatError(
                f"Secret payload must be a JSON object, got {type(parsed).__name__}"
            )
        return SecretRecord(
            _decode_data(parsed.get("data")),
            _decode_metadata(parsed.get("metadata")),
        )


def _decode_data(value: Any) -> bytes:
    if not isinstance(value, str):
        return b""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return b""


def _decode_metadata(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if v is not None}
