"""Bridge session — firehose source → dispatcher → NATS sink lifecycle."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from enum import StrEnum

import structlog

from broadsky.codec import resolve_codec
from broadsky.config.models import BridgeConfig
from broadsky.errors import BridgeConnectionError, StreamEndedError
from broadsky.observability.http_metrics import MetricsServer, parse_listen
from broadsky.observability.metrics import BridgeMetrics, render_exposition
from broadsky.pipeline.dispatcher import Echo, StreamDispatcher
from broadsky.sinks.base import MessageSink
from broadsky.sinks.nats import NatsSink
from broadsky.sources.base import EventSource, StreamEvent
from broadsky.sources.firehose import FirehoseSource
from broadsky.sources.naming import normalize_source_url

logger = structlog.get_logger()


class SessionState(StrEnum):
    CONNECTING = "connecting"
    RUNNING = "running"
    DRAINING = "draining"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class _StreamEnd:
    """Queue sentinel pushed by the reader when the stream is over."""

    reason: str
    error: Exception | None = None


class BridgeSession:
    """Owns the upstream connection and the sink for one bridge run.

    A reader task pumps decoded events into a bounded queue; the session
    loop is its only consumer and dispatches one event at a time, which
    keeps publishes in receive order.  ``stop()`` is cooperative: it only
    closes the upstream connection, and events already received are still
    dispatched before the session closes.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        source: EventSource | None = None,
        sink: MessageSink | None = None,
        metrics: BridgeMetrics | None = None,
        echo: Echo | None = None,
        on_started: Callable[[], None] | None = None,
    ) -> None:
        self._config = config
        self._on_started = on_started
        self._url = normalize_source_url(config.source.repo, config.source.cursor)
        self._source: EventSource = source or FirehoseSource(
            self._url,
            open_timeout=config.source.open_timeout_seconds,
            max_frame_bytes=config.source.max_frame_bytes,
        )
        self._sink: MessageSink = sink or NatsSink(config.sink)
        self._metrics = metrics or BridgeMetrics()
        self._dispatcher = StreamDispatcher(
            self._sink,
            self._metrics,
            subject=config.sink.subject,
            codec=resolve_codec(config.sink.codec),
            debug=config.debug,
            echo=echo,
        )
        self._state = SessionState.CONNECTING
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_requested = False
        self._connect_task: asyncio.Task[None] | None = None
        self._close_task: asyncio.Task[None] | None = None
        self._metrics_server: MetricsServer | None = None
        self._dropped = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def url(self) -> str:
        return self._url

    @property
    def metrics(self) -> BridgeMetrics:
        return self._metrics

    @property
    def metrics_server(self) -> MetricsServer | None:
        return self._metrics_server

    @property
    def dropped(self) -> int:
        """Events received but not dispatched because of a fatal error."""
        return self._dropped

    def render_metrics(self) -> str:
        return render_exposition(
            self._metrics.snapshot(),
            self._url,
            namespace=self._config.metrics.namespace,
            server=self._config.metrics.server_label,
        )

    async def run(self) -> None:
        """Run until the stream ends, ``stop()`` is called or a fatal error.

        Raises ``BridgeConnectionError``, ``EncodeError`` or ``PublishError``
        after the session has reached ``CLOSED``.  A ``stop()`` while still
        connecting abandons the dials and returns without raising.
        """
        self._loop = asyncio.get_running_loop()
        if self._stop_requested:
            await self._release()
            self._set_state(SessionState.CLOSED)
            logger.info("bridge.exited", source=self._url, reason="cancelled")
            return

        self._connect_task = asyncio.create_task(self._connect())
        try:
            await self._connect_task
        except asyncio.CancelledError:
            await self._release()
            self._set_state(SessionState.CLOSED)
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.info("bridge.exited", source=self._url, reason="cancelled")
            return
        except BaseException:
            await self._release()
            self._set_state(SessionState.CLOSED)
            raise
        finally:
            self._connect_task = None

        queue: asyncio.Queue[StreamEvent | _StreamEnd] = asyncio.Queue(
            maxsize=self._config.source.queue_size
        )
        self._set_state(SessionState.RUNNING)
        logger.info(
            "bridge.started",
            source=self._url,
            target=self._sink.target,
            subject=self._dispatcher.commit_subject,
        )
        if self._stop_requested:
            await self._close_source()

        reader = asyncio.create_task(self._pump(queue))
        failure: Exception | None = None
        try:
            if self._on_started is not None:
                self._on_started()
            failure = await self._consume(queue)
        finally:
            self._set_state(SessionState.DRAINING)
            await self._close_source()
            if self._close_task is not None:
                await self._close_task
            reader.cancel()
            with suppress(asyncio.CancelledError):
                await reader
            self._discard(queue, failure)
            await self._release()
            self._set_state(SessionState.CLOSED)
            logger.info("bridge.exited", source=self._url)

        if failure is not None:
            raise failure

    def stop(self) -> None:
        """Request shutdown.  Safe to call from any thread or signal handler."""
        if self._loop is None:
            self._stop_requested = True
            return
        self._loop.call_soon_threadsafe(self._request_stop)

    def _request_stop(self) -> None:
        if self._stop_requested:
            return
        self._stop_requested = True
        logger.info("bridge.stop_requested", state=str(self._state))
        if self._state == SessionState.CONNECTING and self._connect_task is not None:
            self._connect_task.cancel()
        elif self._state == SessionState.RUNNING:
            self._close_task = asyncio.create_task(self._close_source())

    async def _connect(self) -> None:
        metrics_cfg = self._config.metrics
        if metrics_cfg.enabled:
            host, port = parse_listen(metrics_cfg.listen)
            self._metrics_server = MetricsServer(host, port, self.render_metrics)
            try:
                await self._metrics_server.start()
            except OSError as exc:
                raise BridgeConnectionError(
                    metrics_cfg.listen, f"metrics listen failure: {exc}"
                ) from exc
        await self._sink.connect()
        await self._source.connect()

    async def _pump(self, queue: asyncio.Queue[StreamEvent | _StreamEnd]) -> None:
        end = _StreamEnd("stream closed")
        try:
            async for event in self._source.events():
                await queue.put(event)
            if self._stop_requested:
                end = _StreamEnd("cancelled")
        except StreamEndedError as exc:
            logger.warning("bridge.stream_ended", reason=str(exc))
            end = _StreamEnd(str(exc))
        except Exception as exc:
            logger.error("bridge.reader_failed", error=str(exc))
            end = _StreamEnd("reader failed", error=exc)
        await queue.put(end)

    async def _consume(
        self, queue: asyncio.Queue[StreamEvent | _StreamEnd]
    ) -> Exception | None:
        while True:
            item = await queue.get()
            if isinstance(item, _StreamEnd):
                logger.info("bridge.stream_closed", reason=item.reason)
                return item.error
            result = await self._dispatcher.dispatch(item)
            if result.fatal:
                return result.error

    def _discard(
        self,
        queue: asyncio.Queue[StreamEvent | _StreamEnd],
        failure: Exception | None,
    ) -> None:
        dropped = 0
        while not queue.empty():
            if not isinstance(queue.get_nowait(), _StreamEnd):
                dropped += 1
        if dropped:
            self._dropped += dropped
            logger.warning(
                "bridge.events_dropped",
                count=dropped,
                reason=str(failure) if failure else "session closed",
            )

    async def _close_source(self) -> None:
        try:
            await self._source.close()
        except Exception as exc:
            logger.warning("bridge.source_close_failed", error=str(exc))

    async def _release(self) -> None:
        await self._close_source()
        await self._sink.drain()
        if self._metrics_server is not None:
            await self._metrics_server.stop()

    def _set_state(self, state: SessionState) -> None:
        logger.debug("bridge.state", previous=str(self._state), state=str(state))
        self._state = state
