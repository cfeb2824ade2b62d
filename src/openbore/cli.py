"""open-bore CLI - Command line interface."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time

import click
import structlog
from rich.console import Console
from rich.panel import Panel

from openbore.core.bandwidth import SpeedSample

console = Console()

_shutdown_requested = False

BANNER = """
  ___  _ __   ___ _ __        | |__   ___  _ __ ___
 / _ \\| '_ \\ / _ \\ '_ \\ _____ | '_ \\ / _ \\| '__/ _ \\
| (_) | |_) |  __/ | | |_____|| |_) | (_) | | |  __/
 \\___/| .__/ \\___|_| |_|      |_.__/ \\___/|_|  \\___|
      |_|   Expose localhost through a relay
"""


def _format_speed(bits_per_second: float) -> str:
    """Format bits per second with a human unit."""
    for unit in ("bps", "Kbps", "Mbps"):
        if bits_per_second < 1000:
            return f"{bits_per_second:.2f} {unit}"
        bits_per_second /= 1000
    return f"{bits_per_second:.2f} Gbps"


def _configure_logging(log_level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
    )


@click.group(invoke_without_command=True)
@click.option("--subdomain", "-s", help="Subdomain to use")
@click.option("--port", "-p", type=int, default=3000, show_default=True, help="Local port to forward")
@click.option("--showspeed", is_flag=True, default=False, help="Show speed stats")
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to an INI, TOML or YAML file with a [common] section",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="info",
    help="Log level (default: info, use --verbose for debug)",
)
@click.pass_context
def main(
    ctx: click.Context,
    subdomain: str | None,
    port: int,
    showspeed: bool,
    config_file: str | None,
    verbose: bool,
    log_level: str,
):
    """open-bore - Expose a local port at a public subdomain.

    The relay is read from OPEN_BORE_SERVER_ADDR, OPEN_BORE_SERVER_PORT and
    OPEN_BORE_TOKEN, or from the [common] section of ./open-bore.ini.

    Examples:

        openbore --subdomain myapp

        openbore -s myapp -p 8000 --showspeed

        openbore -s myapp --config ./relay.ini
    """
    if ctx.invoked_subcommand is not None:
        return

    if not subdomain:
        console.print(BANNER, style="cyan")
        console.print("Usage: openbore --subdomain myapp", style="yellow")
        console.print("       openbore -s myapp -p 8000 --showspeed", style="yellow")
        console.print("\nCommands:", style="bold")
        console.print("  openbore version  Show version information", style="dim")
        return

    _configure_logging("debug" if verbose else log_level)
    _run_tunnel_with_signal_handling(subdomain, port, showspeed, config_file)


def _build_client(subdomain: str, port: int, config_file: str | None):
    """Create the client, exiting with a red panel on a configuration error."""
    from pydantic import ValidationError

    from openbore.client.tunnel import TunnelClient
    from openbore.core.config import ClientConfig
    from openbore.core.exceptions import ConfigError

    try:
        client_config = ClientConfig(subdomain=subdomain, local_port=port)
        return TunnelClient(client_config, server_config=config_file)
    except ConfigError as e:
        console.print(Panel(f"[red]{e.message}[/red]", title=f"Error: {e.code}", border_style="red"))
        sys.exit(1)
    except ValidationError as e:
        console.print(Panel(f"[red]{e}[/red]", title="Invalid arguments", border_style="red"))
        sys.exit(1)


def _run_tunnel_with_signal_handling(
    subdomain: str,
    port: int,
    showspeed: bool,
    config_file: str | None,
) -> None:
    """Run tunnel with proper signal handling for clean Ctrl+C shutdown."""
    global _shutdown_requested
    _shutdown_requested = False

    client = _build_client(subdomain, port, config_file)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    main_task = loop.create_task(start_tunnel(client, showspeed))

    def signal_handler(sig: int, frame: object) -> None:
        """Handle Ctrl+C signal."""
        global _shutdown_requested
        if _shutdown_requested:
            console.print("\n[red]Force shutdown![/red]")
            sys.exit(1)
        _shutdown_requested = True
        console.print("\n[yellow]Shutting down gracefully...[/yellow]")
        main_task.cancel()

    signal.signal(signal.SIGINT, signal_handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, signal_handler)

    try:
        loop.run_until_complete(main_task)
    except asyncio.CancelledError:
        pass
    except KeyboardInterrupt:
        pass
    finally:
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()


async def start_tunnel(client, showspeed: bool = False) -> None:
    """Run the tunnel until cancelled, printing lifecycle events.

    Args:
        client: Configured TunnelClient
        showspeed: Print throughput about once per second
    """
    from openbore.client.tunnel import TunnelObserver

    class ConsoleObserver(TunnelObserver):
        def __init__(self, showspeed: bool) -> None:
            self._showspeed = showspeed
            self._last_speed = 0.0

        def on_connected(self, tunnel) -> None:
            console.print(
                Panel(
                    f"[green]Tunnel established![/green]\n\n"
                    f"[bold]Public URL:[/bold] [cyan]{tunnel.public_url}[/cyan]\n"
                    f"[bold]Forwarding:[/bold] 127.0.0.1:{tunnel.config.local_port}",
                    title="open-bore",
                    border_style="green",
                )
            )

        def on_disconnected(self) -> None:
            console.print("[yellow]Disconnected, retrying...[/yellow]")

        def on_speed(self, sample: SpeedSample) -> None:
            now = time.monotonic()
            if not self._showspeed or now - self._last_speed < 1.0:
                return
            self._last_speed = now
            console.print(
                f"Current speed: Upload - {_format_speed(sample.tx)}, "
                f"Download - {_format_speed(sample.rx)}",
                style="dim",
            )

    observer = ConsoleObserver(showspeed)

    console.print(BANNER, style="cyan")
    console.print(
        f"Starting tunnel for 127.0.0.1:{client.config.local_port} via "
        f"{client.server_config.server_addr}:{client.server_config.server_port}...",
        style="yellow",
    )
    console.print("\nPress Ctrl+C to stop.\n", style="dim")

    client.add_observer(observer)
    try:
        await client.run()
    except asyncio.CancelledError:
        console.print("[green]Tunnel closed.[/green]")
        raise


@main.command()
def version():
    """Show version information."""
    from openbore import __version__

    console.print(BANNER, style="cyan")
    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


if __name__ == "__main__":
    main()
