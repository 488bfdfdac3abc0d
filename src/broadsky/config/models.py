"""Pydantic configuration models for the bridge."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

DEFAULT_NATS_URL = "nats://127.0.0.1:4222"
DEFAULT_SUBJECT = "broadsky.stream.test"
DEFAULT_METRICS_LISTEN = "127.0.0.1:5212"


class SourceConfig(BaseModel):
    """Upstream firehose settings."""

    # Relay address; normalised to a subscribeRepos WebSocket URL at startup.
    repo: str = ""
    cursor: str | None = None
    # Bound of the reader → dispatcher channel.
    queue_size: int = Field(default=1000, ge=1)
    open_timeout_seconds: float = Field(default=10.0, gt=0)
    # None disables the frame size limit (commits can be large).
    max_frame_bytes: int | None = Field(default=None, ge=1)


class RetryConfig(BaseModel):
    """Retry / backoff configuration for sink publishes.

    ``max_attempts=1`` disables retries: the first failure is fatal.
    """

    max_attempts: int = Field(default=1, ge=1)
    initial_wait_seconds: float = Field(default=0.1, gt=0)
    max_wait_seconds: float = Field(default=5.0, gt=0)
    jitter: bool = True


class NatsSinkConfig(BaseModel):
    """NATS target settings."""

    url: str = DEFAULT_NATS_URL
    subject: str = Field(default=DEFAULT_SUBJECT, min_length=1)
    # Unknown names fall back to cbor when the codec is resolved.
    codec: str = "cbor"
    connect_timeout_seconds: float = Field(default=2.0, gt=0)
    drain_timeout_seconds: float = Field(default=30.0, gt=0)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("subject")
    @classmethod
    def validate_subject(cls, v: str) -> str:
        if any(c.isspace() for c in v) or v.startswith(".") or v.endswith("."):
            msg = f"Invalid NATS subject '{v}'"
            raise ValueError(msg)
        return v


class MetricsConfig(BaseModel):
    """Metrics exposition endpoint settings."""

    enabled: bool = False
    listen: str = DEFAULT_METRICS_LISTEN
    # Collections under this NSID prefix get a per-type line.
    namespace: str = "app.bsky"
    server_label: str = "nil"

    @field_validator("listen")
    @classmethod
    def validate_listen(cls, v: str) -> str:
        _host, sep, port = v.rpartition(":")
        if not sep or not port.isdigit() or not 0 <= int(port) <= 65535:
            msg = f"metrics listen address must be host:port, got '{v}'"
            raise ValueError(msg)
        return v


class BridgeConfig(BaseModel):
    """Top-level bridge configuration."""

    source: SourceConfig = Field(default_factory=SourceConfig)
    sink: NatsSinkConfig = Field(default_factory=NatsSinkConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    # Echo every event to stdout as JSON.
    debug: bool = False
