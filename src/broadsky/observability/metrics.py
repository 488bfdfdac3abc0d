"""Operation counters for the bridge.

``BridgeMetrics`` is written by the dispatcher and read by the metrics
endpoint; both sides go through one lock held only for the update or the
copy.  Operations are counted, not events: a commit with N operations adds
N to the total.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field

from broadsky.sources.base import Operation

MetricKey = tuple[str, str]  # (action, collection)


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time copy of the counters."""

    total: int = 0
    counts: dict[MetricKey, int] = field(default_factory=dict)


class BridgeMetrics:
    """Thread-safe counters keyed by ``(action, collection)``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = 0
        self._counts: dict[MetricKey, int] = {}

    def record(self, operations: Iterable[Operation]) -> None:
        keys = [(str(op.action), op.collection) for op in operations]
        if not keys:
            return
        with self._lock:
            for key in keys:
                self._total += 1
                self._counts[key] = self._counts.get(key, 0) + 1

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(total=self._total, counts=dict(self._counts))


def _record_type(collection: str, namespace: str) -> str | None:
    """Return the type below *namespace*, e.g. ``feed.post`` for
    ``app.bsky.feed.post`` in ``app.bsky``; ``None`` when outside it."""
    prefix = namespace.split(".")
    segments = collection.split(".")
    if len(segments) <= len(prefix) or segments[: len(prefix)] != prefix:
        return None
    if not all(segments):
        return None
    return ".".join(segments[len(prefix) :])


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def render_exposition(
    snapshot: MetricsSnapshot,
    repo: str,
    *,
    namespace: str = "app.bsky",
    server: str = "nil",
) -> str:
    """Render *snapshot* as plain-text exposition lines.

    Keys outside *namespace* get no line of their own; their sum is
    reported as ``broadsky_bridge_events_unrouted``.
    """
    labels = f'server="{_escape(server)}",repo="{_escape(repo)}"'
    lines = [f"broadsky_bridge_events_total{{{labels}}} {snapshot.total}"]
    unrouted = 0
    for (action, collection), count in sorted(snapshot.counts.items()):
        record_type = _record_type(collection, namespace)
        if record_type is None:
            unrouted += count
            continue
        lines.append(
            f"broadsky_bridge_events{{{labels},action=\"{_escape(action)}\","
            f"type=\"{_escape(record_type)}\"}} {count}"
        )
    if unrouted:
        lines.append(f"broadsky_bridge_events_unrouted{{{labels}}} {unrouted}")
    return "\n".join(lines) + "\n"
