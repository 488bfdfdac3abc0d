"""WebSocket client for the repository firehose."""

from __future__ import annotations

from collections.abc import AsyncIterator

import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosedError, InvalidHandshake, InvalidURI

from broadsky.errors import BridgeConnectionError, StreamEndedError
from broadsky.sources.base import StreamEvent
from broadsky.sources.frames import decode_frame

logger = structlog.get_logger()


class FirehoseSource:
    """Reads ``subscribeRepos`` frames and yields typed events in order."""

    def __init__(
        self,
        url: str,
        *,
        open_timeout: float = 10.0,
        max_frame_bytes: int | None = None,
    ) -> None:
        self._url = url
        self._open_timeout = open_timeout
        self._max_frame_bytes = max_frame_bytes
        self._ws: ClientConnection | None = None
        self._closing = False

    @property
    def url(self) -> str:
        return self._url

    async def connect(self) -> None:
        logger.info("firehose.dialing", url=self._url)
        try:
            self._ws = await connect(
                self._url,
                open_timeout=self._open_timeout,
                max_size=self._max_frame_bytes,
            )
        except (InvalidURI, InvalidHandshake, OSError, TimeoutError) as exc:
            raise BridgeConnectionError(self._url, f"ws dial failure: {exc}") from exc
        logger.info("firehose.connected", url=self._url)

    async def events(self) -> AsyncIterator[StreamEvent]:
        if self._ws is None:
            msg = "FirehoseSource not connected — call connect() first"
            raise RuntimeError(msg)
        try:
            async for message in self._ws:
                if isinstance(message, str):
                    logger.debug("firehose.text_frame_ignored", size=len(message))
                    continue
                event = decode_frame(message)
                if event is not None:
                    yield event
        except ConnectionClosedError as exc:
            if self._closing:
                return
            msg = f"connection closed abnormally: {exc}"
            raise StreamEndedError(msg) from exc
        logger.info("firehose.stream_ended", url=self._url)

    async def close(self) -> None:
        if self._ws is None or self._closing:
            return
        self._closing = True
        await self._ws.close()
        logger.info("firehose.closed", url=self._url)
