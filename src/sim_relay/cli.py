"""Command-line interface for sim-relay.

Commands:
- `sim-relay serve`: run the relay server
- `sim-relay view`: attach a terminal viewer to a running relay
- `sim-relay verify`: validate a configuration file

Example:
    $ sim-relay serve --config sim-relay.yaml
    $ sim-relay serve --command "./bin/medical_kernel --seed 7" --port 8080
    $ sim-relay view --url ws://127.0.0.1:8080/ws
"""

import asyncio
import logging
import shlex
from pathlib import Path

import typer
import websockets
from rich.console import Console
from rich.markup import escape

from sim_relay.core.config import DEFAULT_CONFIG_FILE, RelayConfig, load_config, with_overrides
from sim_relay.core.exceptions import ConfigError
from sim_relay.core.log_setup import configure_logging

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2

app = typer.Typer(
    name="sim-relay",
    help="Relay a simulation kernel's live output to remote viewers",
    no_args_is_help=True,
)

# Shared console for output
console = Console()


def _load(config: Path | None) -> RelayConfig:
    """Load config from an explicit path, ./sim-relay.yaml, or defaults."""
    if config is None:
        default_path = Path(DEFAULT_CONFIG_FILE)
        config = default_path if default_path.is_file() else None
    try:
        return load_config(config)
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {escape(str(e))}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from None


@app.command(name="serve")
def serve_command(
    config: Path = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to config file (default: ./{DEFAULT_CONFIG_FILE} if present)",
    ),
    host: str = typer.Option(None, "--host", help="Interface to bind"),
    port: int = typer.Option(None, "--port", "-p", help="Port to bind"),
    command: str = typer.Option(None, "--command", help="Kernel command line"),
    log_level: str = typer.Option(None, "--log-level", help="Log level (DEBUG, INFO, ...)"),
) -> None:
    """Run the relay server.

    Each viewer connection gets its own kernel process, which is stopped
    when the viewer disconnects.
    """
    from sim_relay.bridge.server import run_server

    relay_config = _load(config)
    try:
        relay_config = with_overrides(relay_config, "server", host=host, port=port)
        if command:
            relay_config = with_overrides(relay_config, "kernel", command=shlex.split(command))
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {escape(str(e))}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from None

    if log_level:
        relay_config = relay_config.model_copy(update={"log_level": log_level.upper()})

    configure_logging(relay_config.log_level)
    console.print(
        f"Relay running at [bold]ws://{relay_config.server.host}:{relay_config.server.port}"
        f"{relay_config.server.path}[/bold] (kernel: {' '.join(relay_config.kernel.command)})"
    )
    run_server(relay_config)


@app.command(name="view")
def view_command(
    url: str = typer.Option(None, "--url", "-u", help="Relay WebSocket URL"),
    config: Path = typer.Option(None, "--config", "-c", help="Path to config file"),
    rows: int = typer.Option(20, "--rows", min=1, help="Visible log rows"),
) -> None:
    """Attach a terminal viewer to a running relay.

    Type a key and press Enter: p pause, r resume, s stop, g start,
    k/j scroll, q quit.
    """
    from sim_relay.client.viewer import Viewer

    relay_config = _load(config)
    configure_logging(logging.WARNING)

    server = relay_config.server
    target = url or f"ws://{server.host}:{server.port}{server.path}"
    viewer = Viewer(target, config=relay_config.client, console=console, viewport_height=rows)

    try:
        asyncio.run(viewer.run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")
        raise typer.Exit(code=130) from None
    except (OSError, websockets.exceptions.WebSocketException) as e:
        console.print(f"[red]Error:[/red] cannot connect to {target}: {escape(str(e))}")
        raise typer.Exit(code=EXIT_ERROR) from None


@app.command(name="verify")
def verify_command(
    config: Path = typer.Argument(
        None,
        help=f"Path to config file (default: ./{DEFAULT_CONFIG_FILE})",
    ),
) -> None:
    """Verify a configuration file.

    Exits with code 0 if valid, 2 if the file is missing or invalid.
    """
    config_path = (config or Path(DEFAULT_CONFIG_FILE)).resolve()

    try:
        relay_config = load_config(config_path)
    except ConfigError as e:
        console.print(f"[red][ERR][/red] {escape(str(e))}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from None

    server = relay_config.server
    console.print(f"[green][OK][/green] {config_path}")
    console.print(f"  listen: ws://{server.host}:{server.port}{server.path}")
    console.print(f"  kernel: {' '.join(relay_config.kernel.command)}")
    console.print(
        f"  pause buffer: {relay_config.client.pause_buffer_limit} "
        f"(drop {relay_config.client.pause_buffer_policy})"
    )
    raise typer.Exit(code=EXIT_SUCCESS)
