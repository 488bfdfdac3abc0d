"""Payload codecs for events published to the sink.

Two formats share one field set (the lexicon field names of the event):

- ``cbor`` — compact binary; bytes stay native, CID links use tag 42
- ``json`` — deterministic text; bytes become ``{"$bytes": ...}`` and CID
  links ``{"$link": ...}`` following the AT Protocol JSON conventions

Unknown codec names fall back to ``cbor``.
"""

from __future__ import annotations

import base64
import json
from enum import StrEnum
from typing import Any

import cbor2
import structlog

from broadsky.errors import DecodeError, EncodeError
from broadsky.sources.base import (
    CID_TAG,
    CidLink,
    CommitEvent,
    StreamEvent,
    cid_tag_hook,
)

logger = structlog.get_logger()


class Codec(StrEnum):
    """Supported publish payload encodings."""

    CBOR = "cbor"
    JSON = "json"


def resolve_codec(name: str | Codec) -> Codec:
    """Map a codec name to a ``Codec``; unknown names mean ``cbor``."""
    try:
        return Codec(str(name).lower())
    except ValueError:
        logger.warning("codec.unknown", requested=name, using=Codec.CBOR.value)
        return Codec.CBOR


def _json_default(value: Any) -> Any:
    if isinstance(value, CidLink):
        return {"$link": str(value)}
    if isinstance(value, bytes | bytearray):
        return {"$bytes": base64.b64encode(value).decode("ascii").rstrip("=")}
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)


def _json_object_hook(obj: dict[str, Any]) -> Any:
    if len(obj) == 1:
        if "$link" in obj:
            return CidLink.from_string(obj["$link"])
        if "$bytes" in obj:
            raw = obj["$bytes"]
            return base64.b64decode(raw + "=" * (-len(raw) % 4))
    return obj


def _cbor_default(encoder: cbor2.CBOREncoder, value: Any) -> None:
    if isinstance(value, CidLink):
        encoder.encode(cbor2.CBORTag(CID_TAG, value.tag_value()))
        return
    msg = f"Cannot serialize type {type(value).__name__}"
    raise cbor2.CBOREncodeTypeError(msg)


def encode(codec: str | Codec, event: StreamEvent) -> bytes:
    """Serialize *event* with *codec*.  Raises ``EncodeError`` on failure."""
    resolved = codec if isinstance(codec, Codec) else resolve_codec(codec)
    try:
        data = event.to_dict()
        if resolved == Codec.JSON:
            return json.dumps(
                data,
                default=_json_default,
                sort_keys=True,
                separators=(",", ":"),
                allow_nan=False,
            ).encode("utf-8")
        return cbor2.dumps(data, default=_cbor_default, canonical=True)
    except (cbor2.CBOREncodeError, TypeError, ValueError) as exc:
        msg = f"Cannot encode {type(event).__name__} as {resolved}: {exc}"
        raise EncodeError(msg) from exc


def decode(codec: str | Codec, payload: bytes) -> dict[str, Any]:
    """Inverse of ``encode``: restore bytes and CID links from *payload*."""
    resolved = codec if isinstance(codec, Codec) else resolve_codec(codec)
    try:
        if resolved == Codec.JSON:
            data = json.loads(payload, object_hook=_json_object_hook)
        else:
            data = cbor2.loads(payload, tag_hook=cid_tag_hook)
    except (cbor2.CBORDecodeError, EOFError, ValueError) as exc:
        msg = f"Cannot decode {len(payload)}-byte {resolved} payload: {exc}"
        raise DecodeError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Expected a map at top level, got {type(data).__name__}"
        raise DecodeError(msg)
    return data


def render_debug(event: StreamEvent) -> str:
    """Human-readable JSON line; commit blocks shrink to a size marker."""
    data = event.to_dict()
    if isinstance(event, CommitEvent):
        data["blocks"] = f"[{len(event.blocks)} bytes]"
    return json.dumps(data, default=_json_default)
