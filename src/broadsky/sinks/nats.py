"""NATS message sink."""

from __future__ import annotations

import asyncio

import structlog
from nats.aio.client import Client as NatsClient
from nats.errors import Error as NatsError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from broadsky.config.models import NatsSinkConfig
from broadsky.errors import BridgeConnectionError, PublishError

logger = structlog.get_logger()


class NatsSink:
    """Publishes encoded events to a NATS server."""

    def __init__(self, config: NatsSinkConfig) -> None:
        self._config = config
        self._nc: NatsClient | None = None

    @property
    def target(self) -> str:
        return self._config.url

    async def connect(self) -> None:
        """Dial the server, giving up after ``connect_timeout_seconds``.

        The client keeps its reconnect policy for drops after this returns.
        """
        logger.info("nats_sink.dialing", url=self._config.url)
        timeout = self._config.connect_timeout_seconds
        nc = NatsClient()
        try:
            await asyncio.wait_for(
                nc.connect(
                    servers=[self._config.url],
                    connect_timeout=timeout,
                    drain_timeout=self._config.drain_timeout_seconds,
                    error_cb=self._on_error,
                    disconnected_cb=self._on_disconnected,
                    reconnected_cb=self._on_reconnected,
                ),
                timeout=timeout,
            )
        except TimeoutError as exc:
            await self._abandon(nc)
            raise BridgeConnectionError(
                self._config.url, f"NATS dial failure: no server within {timeout}s"
            ) from exc
        except (NatsError, OSError) as exc:
            raise BridgeConnectionError(
                self._config.url, f"NATS dial failure: {exc}"
            ) from exc
        except asyncio.CancelledError:
            await self._abandon(nc)
            raise
        self._nc = nc
        logger.info(
            "nats_sink.connected",
            url=self._config.url,
            subject=self._config.subject,
        )

    async def publish(self, subject: str, payload: bytes) -> None:
        if self._nc is None:
            msg = "NatsSink not connected — call connect() first"
            raise RuntimeError(msg)

        retry_cfg = self._config.retry

        @retry(
            stop=stop_after_attempt(retry_cfg.max_attempts),
            wait=wait_exponential_jitter(
                initial=retry_cfg.initial_wait_seconds,
                max=retry_cfg.max_wait_seconds,
                jitter=retry_cfg.initial_wait_seconds if retry_cfg.jitter else 0,
            ),
            retry=retry_if_exception_type(NatsError),
            reraise=True,
        )
        async def _send() -> None:
            await self._nc.publish(subject, payload)

        try:
            await _send()
        except NatsError as exc:
            raise PublishError(subject, str(exc) or type(exc).__name__) from exc

    async def drain(self) -> None:
        if self._nc is None:
            return
        nc, self._nc = self._nc, None
        if nc.is_closed:
            return
        try:
            await nc.drain()
            logger.info("nats_sink.drained", url=self._config.url)
        except (NatsError, TimeoutError) as exc:
            logger.warning(
                "nats_sink.drain_failed", url=self._config.url, error=str(exc)
            )
            await nc.close()

    async def _abandon(self, nc: NatsClient) -> None:
        if nc.is_closed:
            return
        try:
            await nc.close()
        except (NatsError, OSError) as exc:
            logger.debug(
                "nats_sink.close_failed", url=self._config.url, error=str(exc)
            )

    async def _on_error(self, exc: Exception) -> None:
        logger.warning("nats_sink.error", url=self._config.url, error=str(exc))

    async def _on_disconnected(self) -> None:
        logger.warning("nats_sink.disconnected", url=self._config.url)

    async def _on_reconnected(self) -> None:
        logger.info("nats_sink.reconnected", url=self._config.url)
