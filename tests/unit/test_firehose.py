"""Tests for the firehose WebSocket client against a local server."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import cbor2
import pytest
from websockets.asyncio.server import ServerConnection, serve

from broadsky.errors import BridgeConnectionError, StreamEndedError, StreamErrorFrame
from broadsky.sources.base import CommitEvent, EventSource, InfoEvent
from broadsky.sources.firehose import FirehoseSource

Handler = Callable[[ServerConnection], Awaitable[None]]


def _commit_frame(seq: int) -> bytes:
    body = {
        "seq": seq,
        "repo": "did:plc:alice",
        "commit": None,
        "rev": f"rev{seq}",
        "blocks": b"\x00" * seq,
        "ops": [{"action": "create", "path": f"app.bsky.feed.post/{seq}", "cid": None}],
        "blobs": [],
        "time": "2024-01-01T00:00:00.000Z",
        "tooBig": False,
        "rebase": False,
    }
    return cbor2.dumps({"op": 1, "t": "#commit"}) + cbor2.dumps(body)


def _frame(header: dict[str, Any], body: dict[str, Any]) -> bytes:
    return cbor2.dumps(header) + cbor2.dumps(body)


async def _collect(source: FirehoseSource) -> list[Any]:
    return [event async for event in source.events()]


async def _run_against(handler: Handler, check) -> None:
    async with serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        source = FirehoseSource(
            f"ws://127.0.0.1:{port}/xrpc/com.atproto.sync.subscribeRepos"
        )
        await source.connect()
        try:
            await check(source)
        finally:
            await source.close()


def test_satisfies_protocol():
    assert isinstance(FirehoseSource("wss://x"), EventSource)


async def test_yields_events_in_order():
    async def handler(ws: ServerConnection) -> None:
        for seq in range(1, 4):
            await ws.send(_commit_frame(seq))
        await ws.send("text frames are ignored")
        await ws.send(_frame({"op": 1, "t": "#identity"}, {"seq": 4, "did": "d"}))
        await ws.send(_frame({"op": 1, "t": "#info"}, {"name": "OutdatedCursor"}))
        await ws.close()

    async def check(source: FirehoseSource) -> None:
        events = await asyncio.wait_for(_collect(source), timeout=5.0)
        assert [type(e) for e in events] == [
            CommitEvent,
            CommitEvent,
            CommitEvent,
            InfoEvent,
        ]
        assert [e.seq for e in events[:3]] == [1, 2, 3]
        assert events[2].blocks == b"\x00" * 3

    await _run_against(handler, check)


async def test_error_frame_raises():
    async def handler(ws: ServerConnection) -> None:
        await ws.send(_frame({"op": -1}, {"error": "FutureCursor"}))
        await ws.wait_closed()

    async def check(source: FirehoseSource) -> None:
        with pytest.raises(StreamErrorFrame, match="FutureCursor"):
            await asyncio.wait_for(_collect(source), timeout=5.0)

    await _run_against(handler, check)


async def test_abnormal_close_raises_stream_ended():
    async def handler(ws: ServerConnection) -> None:
        await ws.send(_commit_frame(1))
        await ws.close(code=1011, reason="relay overloaded")

    async def check(source: FirehoseSource) -> None:
        received: list[Any] = []
        with pytest.raises(StreamEndedError, match="abnormally"):
            async for event in source.events():
                received.append(event)
        assert len(received) == 1

    await _run_against(handler, check)


async def test_close_unblocks_pending_read():
    async def handler(ws: ServerConnection) -> None:
        await ws.wait_closed()

    async def check(source: FirehoseSource) -> None:
        task = asyncio.create_task(_collect(source))
        await asyncio.sleep(0.05)
        await source.close()
        assert await asyncio.wait_for(task, timeout=5.0) == []

    await _run_against(handler, check)


async def test_connect_refused():
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()

    source = FirehoseSource(f"ws://127.0.0.1:{port}", open_timeout=2.0)
    with pytest.raises(BridgeConnectionError, match="ws dial failure"):
        await source.connect()


async def test_events_before_connect():
    with pytest.raises(RuntimeError, match="not connected"):
        await _collect(FirehoseSource("wss://x"))
