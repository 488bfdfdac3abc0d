"""Firehose endpoint address normalisation."""

from __future__ import annotations

from urllib.parse import quote

SUBSCRIBE_REPOS_PATH = "/xrpc/com.atproto.sync.subscribeRepos"

_SCHEME_MAP = {"ws": "ws", "wss": "wss", "http": "ws", "https": "wss"}


def normalize_source_url(repo: str, cursor: str | None = None) -> str:
    """Turn a relay address into a ``subscribeRepos`` WebSocket URL.

    ``"bsky.social"`` becomes
    ``"wss://bsky.social/xrpc/com.atproto.sync.subscribeRepos"``; a non-empty
    *cursor* is appended as the ``cursor`` query parameter.
    """
    address = repo.strip()
    if not address:
        msg = "Please provide repo source, for example: wss://bsky.social"
        raise ValueError(msg)

    if "subscribeRepos" not in address:
        address = address.rstrip("/") + SUBSCRIBE_REPOS_PATH

    scheme, sep, rest = address.partition("://")
    if sep:
        mapped = _SCHEME_MAP.get(scheme.lower())
        if mapped is None:
            msg = f"Unsupported scheme '{scheme}' in repo source '{repo}'"
            raise ValueError(msg)
        address = f"{mapped}://{rest}"
    else:
        address = f"wss://{address}"

    if cursor:
        joiner = "&" if "?" in address else "?"
        address = f"{address}{joiner}cursor={quote(cursor, safe='')}"
    return address
