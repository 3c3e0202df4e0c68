"""Switchboard entry point — runs the channel relay."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer

from switchboard.config import settings
from switchboard.server import RelayStartupError, is_relay_running, run_relay_server

log = logging.getLogger("switchboard")

app = typer.Typer(name="switchboard", help="WebSocket channel relay", add_completion=False)


def _setup_logging(level: str) -> None:
    # stderr only; stdout may belong to a stdio host process
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)-7s %(name)s — %(message)s",
    )


async def start() -> None:
    if await is_relay_running(settings.port):
        log.info("Relay already running on port %d, not starting another", settings.port)
        return
    await run_relay_server(settings)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Interface to bind"),
    port: Optional[int] = typer.Option(None, help="Port to listen on (default 3055)"),
    log_level: Optional[str] = typer.Option(None, help="Logging level"),
):
    """Start the relay server."""
    if host is not None:
        settings.host = host
    if port is not None:
        settings.port = port
    if log_level is not None:
        settings.log_level = log_level
    _setup_logging(settings.log_level)

    try:
        asyncio.run(start())
    except RelayStartupError as exc:
        log.error("Failed to start relay server: %s", exc)
        raise typer.Exit(1)


@app.command()
def check(
    port: Optional[int] = typer.Option(None, help="Port to probe (default 3055)"),
    host: str = typer.Option("localhost", help="Host to probe"),
):
    """Exit 0 if a relay answers on the given port, 1 otherwise."""
    port = settings.port if port is None else port
    if asyncio.run(is_relay_running(port, host)):
        typer.echo(f"Relay running on {host}:{port}")
        return
    typer.echo(f"No relay on {host}:{port}", err=True)
    raise typer.Exit(1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
