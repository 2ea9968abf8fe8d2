"""
CLI interface for Chat Relay.

Operator access to the relay store and the HTTP server.
"""

import sys
from typing import Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table

from chat_relay.config.loader import RelayConfig, load_relay_config
from chat_relay.config.settings import Settings, get_settings
from chat_relay.core.errors import RelayError
from chat_relay.core.quota import Unbounded
from chat_relay.log import setup_logging
from chat_relay.storage.repository import (
    SessionRepository,
    UserRepository,
    initialize_schema,
)

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1


def _load() -> Tuple[Settings, RelayConfig]:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    return settings, load_relay_config(settings.config_path)


def _user_repository() -> UserRepository:
    settings, config = _load()
    initialize_schema(settings.db_path)
    return UserRepository(config.levels, settings.db_path)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Chat Relay CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Chat Relay - Use --help to see available commands")


@app.command()
def status():
    """Show the database in use and the configured levels."""
    try:
        settings, config = _load()
    except (OSError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"Database: {settings.db_path}")
    console.print(f"Session cap: {config.max_session_messages} messages")

    table = Table(title="Levels")
    table.add_column("Level")
    table.add_column("Requests/day", justify="right")
    table.add_column("Model")
    for name, level in config.levels.levels.items():
        if isinstance(level.allowance, Unbounded):
            allowance = "unlimited"
        else:
            allowance = str(level.allowance.requests_per_day)
        marker = " (default)" if name == config.levels.default_level else ""
        table.add_row(f"{name}{marker}", allowance, level.model)
    console.print(table)


@app.command()
def init():
    """Initialize the Chat Relay database."""
    try:
        settings = get_settings()
        initialize_schema(settings.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_OK)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on")
):
    """Run the HTTP server."""
    import uvicorn

    settings = get_settings()
    if not settings.openai_api_key:
        console.print("[red]Error:[/] OPENAI_API_KEY is not set")
        sys.exit(EXIT_CODE_FAIL)

    uvicorn.run(
        "chat_relay.api.app:create_app",
        factory=True,
        host=host or settings.host,
        port=port or settings.port,
    )


@app.command("reset-usage")
def reset_usage():
    """
    Reset every user's daily usage counter.

    Levels and bonus balances are left untouched. Safe to run from cron
    while the server is live.
    """
    try:
        count = _user_repository().bulk_reset_usage()
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Usage reset for {count} user(s)")


@app.command("set-level")
def set_level(
    user_id: str = typer.Argument(..., help="User to update"),
    level: Optional[str] = typer.Option(None, "--level", "-l", help="New level"),
    bonus: Optional[int] = typer.Option(None, "--bonus", "-b", help="New bonus request balance")
):
    """Update a user's level and/or bonus balance."""
    if level is None and bonus is None:
        console.print("[yellow]Nothing to update:[/] pass --level and/or --bonus")
        sys.exit(EXIT_CODE_FAIL)
    try:
        user = _user_repository().update_level(user_id, level=level, bonus_requests=bonus)
    except RelayError as e:
        console.print(f"[red]Error:[/] {e.message}")
        sys.exit(EXIT_CODE_FAIL)
    _display_user(user)


@app.command("show-user")
def show_user(user_id: str = typer.Argument(..., help="User to show")):
    """Show a user's level, bonus balance and usage."""
    user = _user_repository().get_user(user_id)
    if user is None:
        console.print(f"[yellow]No such user:[/] {user_id}")
        sys.exit(EXIT_CODE_FAIL)
    _display_user(user)


@app.command()
def history(user_id: str = typer.Argument(..., help="User whose session to print")):
    """Print a user's stored conversation."""
    settings, config = _load()
    initialize_schema(settings.db_path)
    messages = SessionRepository(settings.db_path, config.max_session_messages).read(user_id)
    if not messages:
        console.print(f"[dim]No history for {user_id}[/]")
        return
    for message in messages:
        console.print(f"[bold]{message.role.value}[/] [dim]{message.timestamp.isoformat()}[/]")
        console.print(message.content, markup=False)


def _display_user(user):
    """Display a user record."""
    console.print(f"\n[bold]User:[/bold] {user.user_id}")
    console.print(f"Level: {user.level}")
    console.print(f"Bonus requests: {user.bonus_requests}")
    console.print(f"Usage: {user.usage.count} on {user.usage.date.isoformat()}")


if __name__ == "__main__":
    app()
