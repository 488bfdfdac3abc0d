"""Message sink protocol.

The session and dispatcher only talk to the message bus through this
interface, so tests and alternative buses can plug in without touching
the pipeline.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class MessageSink(Protocol):
    """Protocol every downstream message sink must satisfy."""

    @property
    def target(self) -> str:
        """Address of the message bus."""
        ...

    async def connect(self) -> None:
        """Open the connection.  Raises ``BridgeConnectionError``."""
        ...

    async def publish(self, subject: str, payload: bytes) -> None:
        """Publish one payload.  Raises ``PublishError``."""
        ...

    async def drain(self) -> None:
        """Flush pending publishes and close (best effort)."""
        ...
