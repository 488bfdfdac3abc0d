"""Typer CLI for broadsky."""

from __future__ import annotations

import asyncio
import signal
from contextlib import suppress
from datetime import UTC, datetime
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape

from broadsky import __version__
from broadsky.config.loader import load_bridge_config
from broadsky.config.models import BridgeConfig
from broadsky.errors import BroadskyError
from broadsky.observability.log import configure_logging
from broadsky.pipeline.session import BridgeSession

console = Console(stderr=True)
app = typer.Typer(
    name="broadsky",
    help="bridge Streaming Wire Protocol (v0) to NATS and other protocols",
    no_args_is_help=True,
)
bridge_app = typer.Typer(name="bridge", help="Run a bridge", no_args_is_help=True)
app.add_typer(bridge_app)
app.add_typer(bridge_app, name="b", hidden=True)

BANNER = (
    " _ )  _ \\   _ \\     \\    _ \\    __|  |  / \\ \\  / \n"
    " _ \\    /  (   |   _ \\   |  | \\__ \\  . <   \\  / \n"
    "___/ _|_\\ \\___/  _/  _\\ ___/  ____/ _|\\_\\   _|  \n"
)


def _set(section: dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        section[key] = value


def _build_overrides(
    options: dict[str, Any],
    repo: str | None,
    target: str | None,
    subject: str | None,
    codec: str | None,
) -> dict[str, Any]:
    source: dict[str, Any] = {}
    sink: dict[str, Any] = {}
    metrics: dict[str, Any] = {}
    overrides: dict[str, Any] = {}

    _set(source, "repo", repo or None)
    _set(source, "cursor", options.get("cursor") or None)
    _set(sink, "url", target or None)
    _set(sink, "subject", subject or None)
    _set(sink, "codec", codec)
    _set(metrics, "enabled", options.get("metrics"))
    _set(metrics, "listen", options.get("metrics_listen"))
    _set(overrides, "debug", options.get("debug"))

    for name, section in (("source", source), ("sink", sink), ("metrics", metrics)):
        if section:
            overrides[name] = section
    return overrides


def _load(options: dict[str, Any], overrides: dict[str, Any]) -> BridgeConfig:
    try:
        return load_bridge_config(options.get("config_path"), overrides)
    except (FileNotFoundError, TypeError, ValueError) as exc:
        console.print(f"[red]Config error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc


def _announce_started(config: BridgeConfig) -> None:
    console.print(f"using base subject: {config.sink.subject}", markup=False)
    if config.metrics.enabled:
        console.print(
            f"Metrics endpoint active: http://{config.metrics.listen}/_metrics",
            markup=False,
        )
    console.print("\n" + BANNER, markup=False, highlight=False)
    console.print(f"Bridge Started {datetime.now(UTC).isoformat()}", markup=False)


async def _run_session(session: BridgeSession) -> None:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, session.stop)
            installed.append(sig)
    try:
        await session.run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


@bridge_app.callback()
def bridge(
    ctx: typer.Context,
    cursor: str | None = typer.Option(
        None,
        "--cursor",
        help="Cursor for source repo",
        rich_help_panel="Input options",
    ),
    debug: bool | None = typer.Option(
        None, "--debug/--no-debug", help="Show messages in JSON (for debugging)"
    ),
    metrics: bool | None = typer.Option(
        None, "--metrics/--no-metrics", help="Metrics HTTP endpoint /_metrics"
    ),
    metrics_listen: str | None = typer.Option(
        None,
        "--metrics-listen",
        help="Metrics host and port (default 127.0.0.1:5212)",
    ),
    config_path: str | None = typer.Option(
        None, "--config", "-c", help="Bridge YAML (flags override it)"
    ),
) -> None:
    """Run a bridge."""
    ctx.obj = {
        "cursor": cursor,
        "debug": debug,
        "metrics": metrics,
        "metrics_listen": metrics_listen,
        "config_path": config_path,
    }


@bridge_app.command("nats")
def bridge_nats(
    ctx: typer.Context,
    repo: str = typer.Argument("", help="Repo source, e.g. wss://bsky.social"),
    target: str | None = typer.Argument(
        None, help="NATS URL (default nats://127.0.0.1:4222)"
    ),
    subject: str | None = typer.Argument(
        None, help="Base subject (default broadsky.stream.test)"
    ),
    codec: str | None = typer.Option(
        None, "--codec", help="Specify output codec: cbor, json (default cbor)"
    ),
) -> None:
    """Bridge to NATS."""
    options: dict[str, Any] = ctx.obj or {}
    config = _load(options, _build_overrides(options, repo, target, subject, codec))
    if not config.source.repo:
        console.print(
            "[red]Please provide repo source, for example: wss://bsky.social[/red]"
        )
        raise typer.Exit(1)

    configure_logging(config.debug)
    try:
        session = BridgeSession(config, on_started=lambda: _announce_started(config))
    except ValueError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(1) from exc

    console.print(f"dialing NATS target: {config.sink.url}", markup=False)
    console.print(f"dialing websocket source: {session.url}", markup=False)

    try:
        asyncio.run(_run_session(session))
    except BroadskyError as exc:
        console.print(f"[red]Bridge failed:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc
    finally:
        console.print(f"Bridge Exited {datetime.now(UTC).isoformat()}", markup=False)


@app.command()
def version() -> None:
    """Print the broadsky version."""
    console.print(f"broadsky {__version__}", markup=False)
