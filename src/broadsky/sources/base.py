"""Firehose event model and the event source protocol.

Defines the typed records decoded from ``com.atproto.sync.subscribeRepos``
frames (commit, handle, info) and ``EventSource``, the narrow interface the
bridge session consumes them through.
"""

from __future__ import annotations

import base64
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

CID_TAG = 42


class Action(StrEnum):
    """Record-level operation kinds carried by a commit."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class CidLink:
    """IPLD CID link (DAG-CBOR tag 42), holding the binary CID."""

    raw: bytes

    def __str__(self) -> str:
        # base32 multibase, lowercase, unpadded ("b" prefix)
        encoded = base64.b32encode(self.raw).decode("ascii").lower().rstrip("=")
        return f"b{encoded}"

    @classmethod
    def from_string(cls, value: str) -> CidLink:
        if not value.startswith("b"):
            msg = f"Unsupported CID multibase prefix in {value!r}"
            raise ValueError(msg)
        body = value[1:].upper()
        body += "=" * (-len(body) % 8)
        return cls(base64.b32decode(body))

    @classmethod
    def from_tag_value(cls, value: Any) -> CidLink:
        # DAG-CBOR links carry a leading 0x00 (identity multibase) byte
        if not isinstance(value, bytes) or value[:1] != b"\x00":
            msg = f"Malformed CID link: {value!r}"
            raise ValueError(msg)
        return cls(value[1:])

    def tag_value(self) -> bytes:
        return b"\x00" + self.raw


def cid_tag_hook(decoder: Any, tag: Any) -> Any:
    """cbor2 ``tag_hook``: tag 42 becomes a ``CidLink``, other tags pass through.

    Raises ``ValueError`` for a tag 42 whose payload is not a CID link.
    """
    if tag.tag != CID_TAG:
        return tag
    return CidLink.from_tag_value(tag.value)


@dataclass(slots=True)
class Operation:
    """A single record operation inside a commit."""

    action: Action
    path: str
    cid: CidLink | None = None

    @property
    def collection(self) -> str:
        """Namespaced record type, i.e. the first path segment."""
        return self.path.split("/", 1)[0]

    def to_dict(self) -> dict[str, Any]:
        return {"action": str(self.action), "path": self.path, "cid": self.cid}


@dataclass(slots=True)
class CommitEvent:
    """``#commit``: a batch of operations applied to one repository."""

    seq: int
    repo: str
    commit: CidLink | None
    ops: list[Operation] = field(default_factory=list)
    blocks: bytes = field(default=b"", repr=False)
    rev: str = ""
    since: str | None = None
    blobs: list[CidLink] = field(default_factory=list)
    time: str = ""
    too_big: bool = False
    rebase: bool = False
    prev: CidLink | None = None

    def to_dict(self) -> dict[str, Any]:
        """Lexicon-named fields; bytes and CID links are left typed."""
        return {
            "seq": self.seq,
            "rebase": self.rebase,
            "tooBig": self.too_big,
            "repo": self.repo,
            "commit": self.commit,
            "prev": self.prev,
            "rev": self.rev,
            "since": self.since,
            "blocks": self.blocks,
            "ops": [op.to_dict() for op in self.ops],
            "blobs": list(self.blobs),
            "time": self.time,
        }


@dataclass(slots=True)
class HandleEvent:
    """``#handle``: a repository's handle changed."""

    seq: int
    did: str
    handle: str
    time: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "did": self.did,
            "handle": self.handle,
            "time": self.time,
        }


@dataclass(slots=True)
class InfoEvent:
    """``#info``: informational message from the upstream relay."""

    name: str
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "message": self.message}


StreamEvent = CommitEvent | HandleEvent | InfoEvent


@runtime_checkable
class EventSource(Protocol):
    """Protocol every upstream event source must satisfy.

    ``events()`` must yield in receive order; the session relies on it to
    publish commits in the same order.
    """

    @property
    def url(self) -> str:
        """Address the source is connected to."""
        ...

    async def connect(self) -> None:
        """Open the upstream connection."""
        ...

    def events(self) -> AsyncIterator[StreamEvent]:
        """Yield decoded events until the stream ends."""
        ...

    async def close(self) -> None:
        """Close the upstream connection, unblocking any pending read."""
        ...
