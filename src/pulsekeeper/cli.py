"""CLI interface for pulsekeeper.

Settings come from ~/.pulsekeeper/config.yaml (override with --config).

Quick start:
    pulsekeeper run                          # Heartbeat in the foreground
    pulsekeeper serve --port 8765            # Heartbeat + HTTP API
    pulsekeeper status                       # Resource status
    pulsekeeper ledger --count 20            # Recent transactions
    pulsekeeper reward 50000 "weekly report" # Credit an owner reward
    pulsekeeper decisions                    # Recent agent decisions
    pulsekeeper tasks                        # Registered heartbeat tasks
"""

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from pulsekeeper import __version__
from pulsekeeper.commands import record_reward
from pulsekeeper.config import LoopConfig, load_config
from pulsekeeper.service import LoopService, build_runtime, is_daemon_running

app = typer.Typer(
    name="pulsekeeper",
    help="Heartbeat daemon that keeps a resource ledger and wakes an agent when it matters",
    no_args_is_help=True,
)

console = Console()

_state: dict[str, Path | None] = {"config_path": None}


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _config() -> LoopConfig:
    return load_config(_state["config_path"])


def _service() -> LoopService:
    config = _config()
    return LoopService(config, build_runtime(config))


@app.callback()
def main(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Config file (default: ~/.pulsekeeper/config.yaml)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    _state["config_path"] = config
    _setup_logging(verbose)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"pulsekeeper v{__version__}")


@app.command()
def run() -> None:
    """Run the heartbeat in the foreground until Ctrl+C."""
    service = _service()
    cfg = service.config
    console.print(Panel(
        f"[bold cyan]Heartbeat[/bold cyan] every {cfg.heartbeat_interval_s:g}s\n\n"
        f"  📁 Data: {cfg.data_dir}\n"
        f"  🧩 Tasks: {', '.join(t.name for t in service.list_tasks())}\n\n"
        "[dim]Press Ctrl+C to stop[/dim]",
        title="💓 pulsekeeper",
        border_style="cyan",
    ))
    asyncio.run(service.run_forever())


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8765, "--port", "-p", help="Port"),
) -> None:
    """Run the heartbeat together with the HTTP API."""
    import uvicorn

    from pulsekeeper.web import create_app

    web_app = create_app(_service())
    console.print(f"[green]Serving on http://{host}:{port}[/green]")
    uvicorn.run(web_app, host=host, port=port, log_level="warning")


@app.command()
def status() -> None:
    """Show resource status."""
    service = _service()
    service.ledger.load()
    console.print(Panel(
        escape(service.ledger.status_report()),
        title="Resources",
        border_style="cyan",
    ))


@app.command()
def ledger(
    count: int = typer.Option(10, "--count", "-n", min=1, help="Number of entries"),
) -> None:
    """Show recent ledger entries."""
    service = _service()
    service.ledger.load()
    entries = service.ledger.recent_entries(count)
    if not entries:
        console.print("[dim]No transactions yet.[/dim]")
        return

    table = Table(title=f"Last {len(entries)} transactions")
    table.add_column("Time", style="cyan", width=12)
    table.add_column("Kind", width=18)
    table.add_column("Amount", justify="right")
    table.add_column("Description", max_width=50)

    for e in entries:
        income = e.direction.value == "income"
        color = "green" if income else "red"
        amount = f"{e.amount:,}" if e.unit.value == "token" else f"${e.amount:.4f}"
        table.add_row(
            e.timestamp[5:16],
            e.kind.value,
            f"[{color}]{'+' if income else '-'}{amount}[/{color}]",
            escape(e.description),
        )
    console.print(table)


@app.command()
def reward(
    amount: str = typer.Argument(..., help="Tokens to credit"),
    description: list[str] | None = typer.Argument(None, help="What the reward is for"),
) -> None:
    """Credit an owner reward.

    Refused while a daemon owns the same data directory, since its next
    save would overwrite this one. Use POST /reward on `pulsekeeper serve`.
    """
    service = _service()
    if is_daemon_running(service.config.data_dir):
        console.print(
            "[red]pulsekeeper is running on this data directory.[/red]\n"
            "[dim]Send the reward with POST /reward (pulsekeeper serve), "
            "or stop the daemon first.[/dim]")
        raise typer.Exit(1)
    service.ledger.load()
    result = record_reward(service.ledger, amount, " ".join(description or []))
    if not result.ok:
        console.print(f"[red]{escape(result.text)}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]{escape(result.text)}[/green]")


@app.command()
def decisions(
    count: int = typer.Option(10, "--count", "-n", min=1, help="Number of decisions"),
) -> None:
    """Show recent decisions reported by the agent."""
    service = _service()
    console.print(escape(service.decisions.get_report(count)))


@app.command()
def tasks() -> None:
    """List heartbeat tasks enabled by the current config."""
    service = _service()
    infos = service.list_tasks()
    if not infos:
        console.print("[dim]No tasks configured.[/dim]")
        return

    table = Table(title="Heartbeat Tasks")
    table.add_column("Name", style="cyan")
    table.add_column("Every (ticks)", justify="right")
    table.add_column("Status")
    for t in infos:
        table.add_row(t.name, str(t.interval_ticks), t.status)
    console.print(table)


if __name__ == "__main__":
    app()
