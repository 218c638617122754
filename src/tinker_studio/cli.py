"""Tinker Studio CLI.

Commands:
    serve: Run the HTTP API with uvicorn.
    probe: Check that the worker interpreter can be invoked.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel

from tinker_studio import __version__
from tinker_studio.core.config import StudioConfig
from tinker_studio.core.errors import DependencyUnavailableError
from tinker_studio.core.logging import configure_logging
from tinker_studio.training.registry import JobRegistry
from tinker_studio.training.supervisor import ProcessSupervisor

console = Console()

app = typer.Typer(
    name="tinker-studio",
    help="Launch and stream Tinker training jobs",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Tinker Studio v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Tinker Studio: run generated training programs and stream their progress."""


def _load_config(config_file: Path | None) -> StudioConfig:
    if config_file is not None:
        if not config_file.exists():
            console.print(f"[red]Error:[/red] Config file not found: {config_file}")
            raise typer.Exit(1)
        return StudioConfig.from_yaml(config_file)
    return StudioConfig.from_env()


@app.command()
def serve(
    port: Annotated[
        int | None, typer.Option("--port", "-p", help="Port to bind to")
    ] = None,
    host: Annotated[
        str | None, typer.Option("--host", help="Host to bind to")
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="YAML configuration file"),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="TINKER_STUDIO_LOG_LEVEL",
        ),
    ] = None,
) -> None:
    """Start the Tinker Studio API server.

    Examples:
        tinker-studio serve                      # Start on localhost:8000
        tinker-studio serve --port 9000          # Custom port
        tinker-studio serve -c studio.yaml       # Settings from a file
    """
    import uvicorn

    from tinker_studio.dashboard import create_app

    config = _load_config(config_file)
    overrides: dict[str, object] = {}
    if port is not None:
        overrides["port"] = port
    if host is not None:
        overrides["host"] = host
    if log_level is not None:
        overrides["log_level"] = log_level.upper()
    if overrides:
        config = StudioConfig.model_validate({**config.model_dump(), **overrides})

    configure_logging(config.log_level, config.log_format, config.log_file)
    fastapi_app = create_app(config)

    console.print(
        Panel(
            f"[bold]Tinker Studio[/bold] v{__version__}\n\n"
            f"API: http://{config.host}:{config.port}\n"
            f"Docs: http://{config.host}:{config.port}/docs\n"
            f"Worker interpreter: {config.python_executable}\n"
            f"Workspace: {config.workspace_root}\n\n"
            f"[dim]Press Ctrl+C to stop[/dim]",
            title="Starting Server",
        )
    )

    try:
        uvicorn.run(
            fastapi_app,
            host=config.host,
            port=config.port,
            log_config=None,
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped.[/yellow]")


@app.command()
def probe(
    python: Annotated[
        str | None,
        typer.Option("--python", help="Interpreter to check (defaults to the configured one)"),
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="YAML configuration file"),
    ] = None,
) -> None:
    """Check that the worker interpreter can be invoked."""
    config = _load_config(config_file)
    supervisor = ProcessSupervisor(
        JobRegistry(),
        workspace_root=Path(config.workspace_root),
        python_executable=python or config.python_executable,
        probe_timeout_seconds=config.probe_timeout_seconds,
    )
    try:
        version = asyncio.run(supervisor.check_available())
    except DependencyUnavailableError as e:
        console.print(f"[red]✗[/red] {supervisor.python_executable} is not usable")
        console.print(f"[dim]{e.message}[/dim]")
        raise typer.Exit(1) from None
    console.print(f"[green]✓[/green] {supervisor.python_executable}: {version}")


if __name__ == "__main__":
    app()
