"""Maintenance CLI commands."""

import asyncio

import typer
from rich.console import Console

from clarity.tasks import queue
from clarity.tasks.maintenance import MAINTENANCE_TIMEOUT_SECONDS

console = Console()
app = typer.Typer(help="Maintenance and cleanup commands")


@app.command("sweep-challenges")
def sweep_challenges(
    background: bool = typer.Option(False, "--background", "-b", help="Run in background worker"),
):
    """Delete expired and consumed sign-in challenges."""

    async def _sweep():
        if background:
            job = await queue.enqueue("sweep_expired_challenges", timeout=MAINTENANCE_TIMEOUT_SECONDS)
            console.print(f"[green]Queued sweep job:[/green] {job.id if job else 'unknown'}")
            return

        from clarity.tasks.maintenance import sweep_expired_challenges

        result = await sweep_expired_challenges(ctx={})
        if not result.get("success"):
            console.print(f"[red]Error:[/red] {result.get('error')}")
            raise typer.Exit(1)
        console.print(f"[green]Removed {result['challenges_removed']} challenge(s)[/green]")

    asyncio.run(_sweep())


@app.command("prune-tokens")
def prune_tokens(
    background: bool = typer.Option(False, "--background", "-b", help="Run in background worker"),
):
    """Delete long-expired refresh tokens."""

    async def _prune():
        if background:
            job = await queue.enqueue("prune_refresh_tokens", timeout=MAINTENANCE_TIMEOUT_SECONDS)
            console.print(f"[green]Queued prune job:[/green] {job.id if job else 'unknown'}")
            return

        from clarity.tasks.maintenance import prune_refresh_tokens

        result = await prune_refresh_tokens(ctx={})
        if not result.get("success"):
            console.print(f"[red]Error:[/red] {result.get('error')}")
            raise typer.Exit(1)
        console.print(f"[green]Removed {result['tokens_removed']} token(s)[/green]")

    asyncio.run(_prune())
