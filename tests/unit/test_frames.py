"""Unit tests for the subscribeRepos frame decoder."""

from __future__ import annotations

from typing import Any

import cbor2
import pytest

from broadsky.errors import FrameDecodeError, StreamEndedError, StreamErrorFrame
from broadsky.sources.base import Action, CommitEvent, HandleEvent, InfoEvent
from broadsky.sources.frames import decode_frame

from .fakes import CID

LINK = cbor2.CBORTag(42, b"\x00" + CID.raw)


def _frame(header: dict[str, Any], body: Any) -> bytes:
    return cbor2.dumps(header) + cbor2.dumps(body)


def _commit_body(**overrides: Any) -> dict[str, Any]:
    body = {
        "seq": 101,
        "rebase": False,
        "tooBig": False,
        "repo": "did:plc:alice",
        "commit": LINK,
        "prev": None,
        "rev": "3k2arev",
        "since": "3k2aprev",
        "blocks": b"\x01\x02\x03",
        "ops": [
            {"action": "create", "path": "app.bsky.feed.post/3k2a", "cid": LINK},
            {"action": "delete", "path": "app.bsky.feed.like/3k2b", "cid": None},
        ],
        "blobs": [],
        "time": "2024-01-01T00:00:00.000Z",
    }
    body.update(overrides)
    return body


class TestDecodeFrame:
    def test_commit(self):
        event = decode_frame(_frame({"op": 1, "t": "#commit"}, _commit_body()))

        assert isinstance(event, CommitEvent)
        assert event.seq == 101
        assert event.repo == "did:plc:alice"
        assert event.commit == CID
        assert event.since == "3k2aprev"
        assert event.blocks == b"\x01\x02\x03"
        assert [(op.action, op.collection) for op in event.ops] == [
            (Action.CREATE, "app.bsky.feed.post"),
            (Action.DELETE, "app.bsky.feed.like"),
        ]
        assert event.ops[0].cid == CID
        assert event.ops[1].cid is None

    def test_handle(self):
        body = {"seq": 5, "did": "did:plc:bob", "handle": "bob.test", "time": "t"}
        event = decode_frame(_frame({"op": 1, "t": "#handle"}, body))

        assert event == HandleEvent(
            seq=5, did="did:plc:bob", handle="bob.test", time="t"
        )

    def test_info(self):
        body = {"name": "OutdatedCursor", "message": "too old"}
        event = decode_frame(_frame({"op": 1, "t": "#info"}, body))

        assert event == InfoEvent(name="OutdatedCursor", message="too old")

    def test_unrouted_message_type_is_ignored(self):
        body = {"seq": 9, "did": "did:plc:bob", "time": "t"}
        assert decode_frame(_frame({"op": 1, "t": "#identity"}, body)) is None

    def test_error_frame(self):
        frame = _frame({"op": -1}, {"error": "FutureCursor", "message": "nope"})
        with pytest.raises(StreamErrorFrame) as exc_info:
            decode_frame(frame)

        assert exc_info.value.error == "FutureCursor"
        assert exc_info.value.message == "nope"
        assert isinstance(exc_info.value, StreamEndedError)

    def test_truncated_frame(self):
        with pytest.raises(FrameDecodeError):
            decode_frame(cbor2.dumps({"op": 1, "t": "#commit"}))

    def test_unknown_op(self):
        with pytest.raises(FrameDecodeError, match="op"):
            decode_frame(_frame({"op": 7}, {}))

    def test_missing_required_field(self):
        body = _commit_body()
        del body["repo"]
        with pytest.raises(FrameDecodeError, match="#commit"):
            decode_frame(_frame({"op": 1, "t": "#commit"}, body))

    def test_unknown_action(self):
        body = _commit_body(ops=[{"action": "upsert", "path": "a.b/c", "cid": None}])
        with pytest.raises(FrameDecodeError):
            decode_frame(_frame({"op": 1, "t": "#commit"}, body))

    def test_non_map_body(self):
        with pytest.raises(FrameDecodeError, match="maps"):
            decode_frame(_frame({"op": 1, "t": "#info"}, [1, 2]))

    def test_malformed_link(self):
        body = _commit_body(commit=cbor2.CBORTag(42, b"\x01not-a-cid"))
        with pytest.raises(FrameDecodeError, match="Undecodable frame"):
            decode_frame(_frame({"op": 1, "t": "#commit"}, body))
