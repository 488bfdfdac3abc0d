"""Event-stream frame decoder for ``subscribeRepos``.

Each WebSocket binary message carries two concatenated DAG-CBOR objects:

- header — ``{"op": 1, "t": "#commit"}`` for messages,
  ``{"op": -1}`` for error frames
- body   — the message payload, or ``{"error": ..., "message": ...}``

Reference: https://atproto.com/specs/event-stream
"""

from __future__ import annotations

import io
from typing import Any

import cbor2
import structlog

from broadsky.errors import FrameDecodeError, StreamErrorFrame
from broadsky.sources.base import (
    Action,
    CidLink,
    CommitEvent,
    HandleEvent,
    InfoEvent,
    Operation,
    StreamEvent,
    cid_tag_hook,
)

logger = structlog.get_logger()

OP_MESSAGE = 1
OP_ERROR = -1


def _link(value: Any) -> CidLink | None:
    if value is None or isinstance(value, CidLink):
        return value
    msg = f"Expected CID link, got {type(value).__name__}"
    raise FrameDecodeError(msg)


def _commit(body: dict[str, Any]) -> CommitEvent:
    ops = [
        Operation(
            action=Action(op["action"]),
            path=op["path"],
            cid=_link(op.get("cid")),
        )
        for op in body.get("ops") or []
    ]
    return CommitEvent(
        seq=body["seq"],
        repo=body["repo"],
        commit=_link(body.get("commit")),
        ops=ops,
        blocks=bytes(body.get("blocks") or b""),
        rev=body.get("rev", ""),
        since=body.get("since"),
        blobs=[_link(b) for b in body.get("blobs") or []],
        time=body.get("time", ""),
        too_big=bool(body.get("tooBig", False)),
        rebase=bool(body.get("rebase", False)),
        prev=_link(body.get("prev")),
    )


def _handle(body: dict[str, Any]) -> HandleEvent:
    return HandleEvent(
        seq=body["seq"],
        did=body["did"],
        handle=body["handle"],
        time=body.get("time", ""),
    )


def _info(body: dict[str, Any]) -> InfoEvent:
    return InfoEvent(name=body["name"], message=body.get("message"))


_BUILDERS = {
    "#commit": _commit,
    "#handle": _handle,
    "#info": _info,
}


def decode_frame(data: bytes) -> StreamEvent | None:
    """Decode one binary frame.

    Returns ``None`` for message types the bridge does not route (identity,
    account, tombstone, ...).  Raises ``StreamErrorFrame`` for upstream error
    frames and ``FrameDecodeError`` for anything that cannot be decoded.
    """
    decoder = cbor2.CBORDecoder(io.BytesIO(data), tag_hook=cid_tag_hook)
    try:
        header = decoder.decode()
        body = decoder.decode()
    except (cbor2.CBORDecodeError, EOFError, ValueError) as exc:
        msg = f"Undecodable frame ({len(data)} bytes): {exc}"
        raise FrameDecodeError(msg) from exc

    if not isinstance(header, dict) or not isinstance(body, dict):
        msg = "Frame header and body must both be maps"
        raise FrameDecodeError(msg)

    op = header.get("op")
    if op == OP_ERROR:
        raise StreamErrorFrame(str(body.get("error", "unknown")), body.get("message"))
    if op != OP_MESSAGE:
        msg = f"Unknown frame op {op!r}"
        raise FrameDecodeError(msg)

    msg_type = header.get("t")
    builder = _BUILDERS.get(msg_type)
    if builder is None:
        logger.debug("firehose.frame_ignored", type=msg_type)
        return None
    try:
        return builder(body)
    except (KeyError, TypeError, ValueError) as exc:
        msg = f"Malformed {msg_type} body: {exc!r}"
        raise FrameDecodeError(msg) from exc
