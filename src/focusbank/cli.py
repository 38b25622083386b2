#!/usr/bin/env python3
"""focusbank command line.

Usage:
    focusbank serve                  # Run the local API server
    focusbank status                 # Timers on the running server
    focusbank energy                 # Energy level, limits and recent transactions
    focusbank adjust -- -10 "meeting"  # Manual energy adjustment
    focusbank logs --limit 20        # Recent server logs
"""

from __future__ import annotations

import sys

import click
import requests
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .config import load_settings
from .errors import ConfigError

console = Console()

WARNING_STYLES = {
    "none": "green",
    "caution": "yellow",
    "warning": "bold yellow",
    "critical": "bold red",
}

STATE_STYLES = {
    "running": "green",
    "paused": "yellow",
    "stopped": "dim",
    "idle": "white",
}


def _format_elapsed(seconds: int) -> str:
    hours, rem = divmod(int(seconds), 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:d}:{minutes:02d}:{secs:02d}"


def _api(ctx: click.Context, method: str, path: str, **kwargs) -> dict:
    url = f"{ctx.obj['url']}{path}"
    try:
        response = requests.request(method, url, timeout=5, **kwargs)
        response.raise_for_status()
        return response.json()
    except requests.exceptions.ConnectionError:
        console.print(f"[red]Cannot reach focusbank at {ctx.obj['url']}. Is `focusbank serve` running?[/red]")
    except requests.exceptions.Timeout:
        console.print(f"[red]Request to {url} timed out[/red]")
    except requests.exceptions.HTTPError as e:
        console.print(f"[red]{e}[/red]")
    sys.exit(1)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--url", default=None, help="Server base URL (default from settings)")
@click.pass_context
def cli(ctx, url):
    """focusbank - time tracking and energy accounting."""
    try:
        settings = load_settings()
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["url"] = (url or f"http://{settings.host}:{settings.port}").rstrip("/")


@cli.command()
@click.option("--host", default=None, help="Bind address")
@click.option("--port", type=int, default=None, help="Port")
@click.pass_context
def serve(ctx, host, port):
    """Run the local API server."""
    import uvicorn

    settings = ctx.obj["settings"]
    uvicorn.run("focusbank.api:app", host=host or settings.host, port=port or settings.port)


@cli.command()
@click.pass_context
def status(ctx):
    """Show timers on the running server."""
    data = _api(ctx, "GET", "/api/timers")
    timers = data.get("timers", [])
    if not timers:
        console.print("[yellow]No timers.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan", box=None)
    table.add_column("Task", overflow="fold")
    table.add_column("State", width=8)
    table.add_column("Elapsed", justify="right")
    table.add_column("Earned", justify="right")

    for timer in timers:
        state = timer["state"]
        title = timer["task"].get("title") or timer["task_id"]
        table.add_row(
            title,
            Text(state, style=STATE_STYLES.get(state, "white")),
            _format_elapsed(timer["elapsed_seconds"]),
            f"${timer['session_earnings']:.2f}",
        )

    console.print(table)
    console.print(
        f"\n[dim]Active: {data['total_active_timers']} | Total earned: ${data['total_earnings']:.2f}[/dim]"
    )


@cli.command()
@click.option("--transactions", "-n", default=10, help="Recent transactions to show")
@click.pass_context
def energy(ctx, transactions):
    """Show energy level, daily limits and recent transactions."""
    data = _api(ctx, "GET", "/api/energy")
    state, limits = data["state"], data["limits"]
    level = limits["warning_level"]
    style = WARNING_STYLES.get(level, "white")

    console.print(
        f"[bold]Energy:[/bold] {state['current_energy']:g}/{state['max_energy']:g}  "
        f"[bold]Today:[/bold] {state['daily_expenditure']:g} spent  "
        f"[bold]Streak:[/bold] {state['streak_days']}d"
    )
    console.print(f"[{style}]{limits['recommendation']}[/{style}]")

    if transactions <= 0:
        return
    recent = _api(ctx, "GET", "/api/energy/transactions", params={"limit": transactions})["transactions"]
    if not recent:
        return

    table = Table(show_header=True, header_style="bold cyan", box=None)
    table.add_column("Time", style="dim", width=8)
    table.add_column("Type")
    table.add_column("Delta", justify="right")
    table.add_column("Task", overflow="fold")
    for tx in recent:
        delta = tx["energy_delta"]
        table.add_row(
            tx["timestamp"][11:19],
            tx["type"],
            Text(f"{delta:+g}", style="green" if delta > 0 else "red" if delta < 0 else "dim"),
            tx["metadata"].get("task_title") or tx.get("task_id") or "",
        )
    console.print(table)


@cli.command()
@click.argument("amount", type=float)
@click.argument("reason", required=False)
@click.pass_context
def adjust(ctx, amount, reason):
    """Add (positive AMOUNT) or subtract (negative AMOUNT) energy."""
    data = _api(ctx, "POST", "/api/energy/adjust", json={"amount": amount, "reason": reason})
    console.print(f"[green]Energy now {data['state']['current_energy']:g}/{data['state']['max_energy']:g}[/green]")


@cli.command()
@click.option("--limit", default=20, help="Number of log lines")
@click.pass_context
def logs(ctx, limit):
    """Show recent server logs."""
    data = _api(ctx, "GET", "/api/logs/recent", params={"limit": limit})
    for entry in data["logs"]:
        level = entry["level"]
        level_style = {"ERROR": "bold red", "WARNING": "yellow", "INFO": "green"}.get(level, "dim")
        console.print(
            f"[dim]{entry['timestamp']}[/dim] [{level_style}]{level:<7}[/{level_style}] {entry['message']}"
        )


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
