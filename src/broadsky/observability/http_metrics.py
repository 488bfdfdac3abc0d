"""Lightweight async HTTP server exposing ``/_metrics``.

Zero-dependency implementation using ``asyncio.start_server``.  Only reads
the metrics snapshot through the supplied render callable.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import suppress

import structlog

logger = structlog.get_logger()

METRICS_PATH = "/_metrics"

RenderMetrics = Callable[[], str]


def parse_listen(listen: str) -> tuple[str, int]:
    """Split ``host:port``; an empty host means all interfaces."""
    host, sep, port = listen.rpartition(":")
    if not sep or not port.isdigit():
        msg = f"Expected host:port, got '{listen}'"
        raise ValueError(msg)
    return host.strip("[]") or "0.0.0.0", int(port)  # noqa: S104


class MetricsServer:
    """Async TCP server that answers plain-text metrics scrapes.

    Parameters
    ----------
    host, port:
        Listen address.  Port ``0`` picks a free port (see ``port``).
    render:
        Callable returning the exposition text for one scrape.
    """

    def __init__(self, host: str, port: int, render: RenderMetrics) -> None:
        self._host = host
        self._port = port
        self._render = render
        self._server: asyncio.Server | None = None

    @property
    def port(self) -> int:
        if self._server is not None and self._server.sockets:
            return int(self._server.sockets[0].getsockname()[1])
        return self._port

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self._handle, host=self._host, port=self._port
        )
        logger.info(
            "metrics.server_started",
            url=f"http://{self._host}:{self.port}{METRICS_PATH}",
        )

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("metrics.server_stopped")

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        try:
            request_line = await asyncio.wait_for(reader.readline(), timeout=5.0)
            method, path = self._parse_request(request_line)
            logger.debug("metrics.request", method=method, path=path)

            if path == METRICS_PATH:
                await self._respond(writer, 200, self._render())
            else:
                await self._respond(writer, 404, "Not Found\n")
        except Exception:
            logger.debug("metrics.request_error", exc_info=True)
            with suppress(Exception):
                await self._respond(writer, 500, "Internal Server Error\n")
        finally:
            with suppress(Exception):
                writer.close()
                await writer.wait_closed()

    @staticmethod
    def _parse_request(request_line: bytes) -> tuple[str, str]:
        parts = request_line.decode("utf-8", errors="replace").strip().split()
        if len(parts) >= 2:
            return parts[0], parts[1].split("?", 1)[0]
        return "", ""

    @staticmethod
    async def _respond(writer: asyncio.StreamWriter, status: int, body: str) -> None:
        reasons = {
            200: "OK",
            404: "Not Found",
            500: "Internal Server Error",
        }
        reason = reasons.get(status, "Unknown")
        payload = body.encode()
        header = (
            f"HTTP/1.1 {status} {reason}\r\n"
            f"Content-Type: text/plain; charset=utf-8\r\n"
            f"Content-Length: {len(payload)}\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(header.encode() + payload)
        await writer.drain()
