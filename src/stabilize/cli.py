"""Typer CLI entry point for stabilize.

Exit codes: 0 when the target became stable, 1 when the time budget ran out
or the configuration is invalid, 2 when a check failed outright.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stabilize import __version__
from stabilize.config import Settings, format_validation_error
from stabilize.exceptions import NormalizedFailure, ProbeError, describe
from stabilize.logging import configure_logging, poll_logging_context
from stabilize.poller import DebouncedPoller
from stabilize.probes import Probe, http_probe, tcp_probe

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="stabilize",
    help="Wait for eventually-consistent endpoints to become stable.",
    no_args_is_help=True,
)

EXIT_STABLE = 0
EXIT_TIMEOUT = 1
EXIT_FAILURE = 2


# ---------------------------------------------------------------------------
# Shared options
# ---------------------------------------------------------------------------

TimeoutOption = Annotated[
    float | None,
    typer.Option("--timeout", "-t", help="Total time budget in seconds."),
]
DebounceOption = Annotated[
    int | None,
    typer.Option(
        "--debounce",
        "-d",
        min=0,
        help="Extra consecutive successful checks required before success.",
    ),
]
PauseOption = Annotated[
    float | None,
    typer.Option("--pause", help="Seconds between two checks."),
]
ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to a YAML config file."),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Log every check."),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings(
    config_path: Path | None = None,
    **overrides: Any,
) -> Settings:
    """Load settings with error handling and user-friendly messages."""
    from pydantic import ValidationError

    try:
        return Settings.load(config_path=config_path, **overrides)
    except ValidationError as exc:
        err_console.print(
            Panel(
                format_validation_error(exc),
                title="Configuration Error",
                border_style="red",
            )
        )
        raise typer.Exit(code=1) from exc


def _poller_overrides(
    timeout: float | None, debounce: int | None, pause: float | None
) -> dict[str, Any]:
    poller: dict[str, Any] = {}
    if timeout is not None:
        poller["timeout_seconds"] = timeout
    if debounce is not None:
        poller["debounce"] = debounce
    if pause is not None:
        poller["pause_seconds"] = pause
    return {"poller": poller} if poller else {}


def _display_failure(target: str, failure: NormalizedFailure) -> None:
    """Render a normalized failure with its cause chain."""
    details = describe(failure)
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Target", target)
    table.add_row("Kind", str(details["kind"]))
    table.add_row("Error", f"{details['type']}: {details['message']}")
    for cause in details["causes"]:
        table.add_row("Caused by", cause)
    err_console.print(Panel(table, title="Check Failed", border_style="red"))


def _run_poll(
    target: str,
    build_probe: Callable[[Settings], Probe],
    config_path: Path | None,
    timeout: float | None,
    debounce: int | None,
    pause: float | None,
    verbose: bool,
) -> None:
    """Poll the probe built by *build_probe* and exit with the outcome."""
    settings = _load_settings(
        config_path, **_poller_overrides(timeout, debounce, pause)
    )
    configure_logging(
        level="DEBUG" if verbose else settings.logging.level,
        fmt=settings.logging.format,
        log_file=settings.logging.file,
    )

    try:
        probe: Probe = build_probe(settings)
    except ProbeError as exc:
        err_console.print(f"[red]Invalid target:[/red] {exc}")
        raise typer.Exit(code=EXIT_FAILURE) from exc

    poller = DebouncedPoller.from_settings(settings.poller)
    poller_settings = settings.poller

    async def _poll() -> bool:
        with poll_logging_context(target, debounce=poller_settings.debounce) as log:
            stable = await poller.poll(
                probe,
                timeout=poller_settings.timeout_seconds,
                debounce=poller_settings.debounce,
            )
            log.info("poll_result", stable=stable)
            return stable

    try:
        stable = asyncio.run(_poll())
    except NormalizedFailure as failure:
        _display_failure(target, failure)
        raise typer.Exit(code=EXIT_FAILURE) from failure

    if stable:
        console.print(f"[green]Stable:[/green] {target}")
        raise typer.Exit(code=EXIT_STABLE)
    err_console.print(
        f"[yellow]Timed out:[/yellow] {target} was not stable within "
        f"{poller_settings.timeout_seconds:g}s"
    )
    raise typer.Exit(code=EXIT_TIMEOUT)


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]stabilize[/bold] {__version__}")
        raise typer.Exit


@app.callback()
def common(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Stabilize global options."""


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def http(
    url: Annotated[str, typer.Argument(help="Absolute http(s) URL to check.")],
    timeout: TimeoutOption = None,
    debounce: DebounceOption = None,
    pause: PauseOption = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Wait until URL answers with a 2xx status on consecutive checks."""
    _run_poll(
        url,
        lambda settings: http_probe(
            url, timeout=settings.probes.request_timeout_seconds
        ),
        config,
        timeout,
        debounce,
        pause,
        verbose,
    )


@app.command()
def tcp(
    host: Annotated[str, typer.Argument(help="Host name or address.")],
    port: Annotated[int, typer.Argument(help="TCP port.")],
    timeout: TimeoutOption = None,
    debounce: DebounceOption = None,
    pause: PauseOption = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Wait until HOST:PORT accepts TCP connections on consecutive checks."""
    _run_poll(
        f"{host}:{port}",
        lambda settings: tcp_probe(
            host, port, timeout=settings.probes.request_timeout_seconds
        ),
        config,
        timeout,
        debounce,
        pause,
        verbose,
    )


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
