"""broadsky — bridge the AT Protocol repository firehose to NATS."""

__version__ = "0.2.0"
