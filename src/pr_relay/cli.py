"""Typer CLI entry point for pr-relay."""

from __future__ import annotations

import asyncio
import contextlib
import signal
from pathlib import Path
from typing import Annotated, Any

import httpx
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pr_relay import __version__
from pr_relay.config import Settings, format_validation_error
from pr_relay.exceptions import FatalSchedulerError, GitHubAPIError, ResolutionError
from pr_relay.github import GitHubClient
from pr_relay.logging import configure_logging, generate_run_id
from pr_relay.resolver import resolve_url
from pr_relay.service import run_relay

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="pr-relay",
    help="Relay pull request activity to chat and prepare forks after merges.",
    no_args_is_help=True,
)


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


async def _watch(settings: Settings, max_ticks: int | None = None) -> bool:
    """Run the relay; return True if it was stopped by a signal."""
    task = asyncio.current_task()
    loop = asyncio.get_running_loop()
    if task is not None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, task.cancel)

    try:
        await run_relay(settings, max_ticks=max_ticks)
    except asyncio.CancelledError:
        return True
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)
    return False


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]pr-relay[/bold] {__version__}")
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
    """pr-relay global options."""


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def watch(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config YAML file."),
    ] = None,
    webhook_url: Annotated[
        str | None,
        typer.Option("--webhook-url", "-w", help="Chat webhook to announce to."),
    ] = None,
    interval: Annotated[
        float | None,
        typer.Option("--interval", "-i", help="Seconds between feed polls."),
    ] = None,
    no_setup: Annotated[
        bool,
        typer.Option("--no-setup", help="Announce merges without forking."),
    ] = False,
    json_logs: Annotated[
        bool,
        typer.Option("--json-logs", help="Emit JSON log lines."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Poll the notification feed and relay pull request activity."""
    overrides: dict[str, Any] = {}
    if webhook_url is not None:
        overrides["webhook"] = {"url": webhook_url}
    if interval is not None:
        overrides["polling"] = {"interval_seconds": interval}
    if no_setup:
        overrides["setup"] = {"enabled": False}
    logging_overrides: dict[str, Any] = {}
    if verbose:
        logging_overrides["level"] = "DEBUG"
    if json_logs:
        logging_overrides["format"] = "json"
    if logging_overrides:
        overrides["logging"] = logging_overrides

    settings = _load_settings(config, **overrides)

    missing = settings.missing_for_watch()
    if missing:
        err_console.print(
            Panel(
                "Missing required settings:\n"
                + "\n".join(f"  {name}" for name in missing)
                + "\n\nSet them in config.yaml or as PR_RELAY_* environment "
                "variables (e.g. PR_RELAY_GITHUB__TOKEN).",
                title="Configuration Error",
                border_style="red",
            )
        )
        raise typer.Exit(code=1)

    configure_logging(
        level=settings.logging.level,
        fmt=settings.logging.format,
        log_file=settings.logging.file,
        run_id=generate_run_id(),
    )

    console.print("Listening for Pull Request activity...")
    try:
        interrupted = asyncio.run(_watch(settings))
    except FatalSchedulerError as exc:
        err_console.print(f"[red]Feed unavailable:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    if interrupted:
        console.print("[yellow]Stopped.[/yellow]")


@app.command()
def resolve(
    url: Annotated[str, typer.Argument(help="Notification subject or comment URL.")],
) -> None:
    """Show which pull request a notification URL resolves to."""
    try:
        ref = resolve_url(url)
    except ResolutionError as exc:
        err_console.print(f"[red]Cannot resolve:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    console.print(f"{ref}  {ref.html_url}")


@app.command()
def check(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config YAML file."),
    ] = None,
) -> None:
    """Verify the GitHub token and show the effective configuration."""
    settings = _load_settings(config)

    table = Table(title="pr-relay configuration", show_lines=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("github.api_url", settings.github.api_url)
    table.add_row("github.username", settings.github.username or "-")
    table.add_row("github.token", "set" if settings.github.token else "[red]missing[/red]")
    table.add_row("webhook.url", settings.webhook.url or "[red]missing[/red]")
    table.add_row("polling.interval_seconds", f"{settings.polling.interval_seconds:g}")
    table.add_row("polling.overlap_seconds", f"{settings.polling.overlap_seconds:g}")
    table.add_row("setup.enabled", str(settings.setup.enabled))
    table.add_row("setup.branch_name", settings.setup.branch_name)
    console.print(table)

    if settings.github.token is None:
        raise typer.Exit(code=1)

    async def _login() -> str:
        async with GitHubClient.from_settings(settings.github) as client:
            return await client.get_authenticated_login()

    try:
        login = asyncio.run(_login())
    except (GitHubAPIError, httpx.HTTPError) as exc:
        err_console.print(f"[red]GitHub token check failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    console.print(f"[green]Authenticated as[/green] {login}")
    if settings.github.username and settings.github.username != login:
        err_console.print(
            f"[yellow]github.username is {settings.github.username!r} but the "
            f"token belongs to {login!r}; forks are created under {login!r}.[/yellow]"
        )


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
