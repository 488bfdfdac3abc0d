"""Per-event routing: codec → publish → metrics, or the debug echo.

The dispatcher is driven by a single consumer (the session loop), one event
at a time, so commits reach the sink in the order they were received.  Each
handler returns a ``DispatchResult`` instead of raising; only ``FATAL``
results stop the session.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

import structlog
from rich.console import Console

from broadsky.codec import Codec, encode, render_debug
from broadsky.errors import EncodeError, PublishError
from broadsky.observability.metrics import BridgeMetrics
from broadsky.sinks.base import MessageSink
from broadsky.sources.base import CommitEvent, HandleEvent, InfoEvent, StreamEvent

logger = structlog.get_logger()

Echo = Callable[[str], None]

_stdout = Console(highlight=False, soft_wrap=True)


class Outcome(StrEnum):
    PUBLISHED = "published"
    SKIPPED = "skipped"
    FATAL = "fatal"


@dataclass(frozen=True, slots=True)
class DispatchResult:
    outcome: Outcome
    error: EncodeError | PublishError | None = None

    @property
    def fatal(self) -> bool:
        return self.outcome == Outcome.FATAL


_PUBLISHED = DispatchResult(Outcome.PUBLISHED)
_SKIPPED = DispatchResult(Outcome.SKIPPED)


class StreamDispatcher:
    """Routes decoded firehose events to the sink, metrics and echo."""

    def __init__(
        self,
        sink: MessageSink,
        metrics: BridgeMetrics,
        *,
        subject: str,
        codec: Codec,
        debug: bool = False,
        echo: Echo | None = None,
    ) -> None:
        self._sink = sink
        self._metrics = metrics
        self._commit_subject = f"{subject}.commit"
        self._codec = codec
        self._debug = debug
        self._echo = echo or _stdout.out

    @property
    def commit_subject(self) -> str:
        return self._commit_subject

    async def dispatch(self, event: StreamEvent) -> DispatchResult:
        if isinstance(event, CommitEvent):
            return await self.on_commit(event)
        if isinstance(event, HandleEvent):
            return self.on_handle(event)
        return self.on_info(event)

    async def on_commit(self, event: CommitEvent) -> DispatchResult:
        try:
            payload = encode(self._codec, event)
            await self._sink.publish(self._commit_subject, payload)
        except (EncodeError, PublishError) as exc:
            logger.error(
                "dispatcher.commit_failed",
                seq=event.seq,
                repo=event.repo,
                error=str(exc),
            )
            return DispatchResult(Outcome.FATAL, exc)

        try:
            self._metrics.record(event.ops)
        except Exception as exc:
            logger.warning("dispatcher.metrics_failed", seq=event.seq, error=str(exc))

        if self._debug:
            self._emit(event)
        return _PUBLISHED

    def on_handle(self, event: HandleEvent) -> DispatchResult:
        if self._debug:
            self._emit(event)
        return _SKIPPED

    def on_info(self, event: InfoEvent) -> DispatchResult:
        self._emit(event)
        return _SKIPPED

    def _emit(self, event: StreamEvent) -> None:
        try:
            self._echo(render_debug(event))
        except Exception as exc:
            logger.warning(
                "dispatcher.echo_failed",
                event_type=type(event).__name__,
                error=str(exc),
            )
