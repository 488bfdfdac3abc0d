"""Error hierarchy for the bridge.

Fatal errors (connection, encode, publish) stop the session and make the
CLI exit non-zero.  ``StreamEndedError`` marks the normal end of a session
and is never escalated as a crash.
"""

from __future__ import annotations


class BroadskyError(Exception):
    """Base class for all bridge errors."""


class BridgeConnectionError(BroadskyError):
    """Opening the upstream source or the downstream sink failed."""

    def __init__(self, target: str, reason: str) -> None:
        self.target = target
        self.reason = reason
        super().__init__(f"{target}: {reason}")


class EncodeError(BroadskyError):
    """An event could not be serialized with the selected codec."""


class DecodeError(BroadskyError):
    """A payload could not be decoded with the selected codec."""


class PublishError(BroadskyError):
    """The sink rejected a publish."""

    def __init__(self, subject: str, reason: str) -> None:
        self.subject = subject
        self.reason = reason
        super().__init__(f"publish to {subject!r} failed: {reason}")


class StreamEndedError(BroadskyError):
    """The upstream stream ended, cleanly or with a protocol error."""


class StreamErrorFrame(StreamEndedError):
    """The upstream sent an error frame (``op == -1``)."""

    def __init__(self, error: str, message: str | None = None) -> None:
        self.error = error
        self.message = message
        detail = f"{error}: {message}" if message else error
        super().__init__(f"upstream error frame: {detail}")


class FrameDecodeError(StreamEndedError):
    """An upstream frame could not be decoded."""
