"""User management CLI commands."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table
from sqlmodel import select

from clarity.database import get_session_context
from clarity.models import User
from clarity.services.auth import get_session_service, normalize_email
from clarity.services.errors import InvalidInput, RateLimited

console = Console()
app = typer.Typer(help="User management commands")


@app.command("list")
def list_users():
    """List all users."""

    async def _list():
        async with get_session_context() as session:
            result = await session.execute(select(User).order_by(User.email))
            users = result.scalars().all()

        table = Table(title="Users")
        table.add_column("ID", style="cyan")
        table.add_column("Email", style="green")
        table.add_column("Name")
        table.add_column("Created", style="dim")

        for user in users:
            created = user.created_at.strftime("%Y-%m-%d") if user.created_at else "-"
            table.add_row(user.id, user.email, user.name or "-", created)

        console.print(table)

    asyncio.run(_list())


@app.command("issue-code")
def issue_code(email: str = typer.Argument(..., help="User email")):
    """Issue a sign-in code for an email and print it (support and local testing).

    The code is also delivered through the configured notifier.
    """

    async def _issue():
        service = get_session_service()
        try:
            code = await service.otp.issue(normalize_email(email))
        except InvalidInput as e:
            console.print(f"[red]Error:[/red] {e.message}")
            raise typer.Exit(1) from e
        except RateLimited as e:
            console.print(f"[yellow]Rate limited:[/yellow] retry in {e.retry_after}s")
            raise typer.Exit(1) from e

        console.print(f"[green]Code:[/green] {code}")
        console.print(f"[dim]Expires in {service.otp.ttl.total_seconds():.0f}s[/dim]")

    asyncio.run(_issue())
