"""authgateway CLI - inspect and drive the stored OAuth session."""

import asyncio
import json
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="authgateway",
    help="OAuth2 bearer session gateway - session status, login, refresh and requests",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Configure logging before any command runs."""
    from .log_config import configure_logging

    configure_logging("DEBUG" if verbose else _get_settings().log_level)


def _get_settings():
    from .config import GatewaySettings

    return GatewaySettings()


def _get_session():
    from .auth import TokenSession
    from .oauth import FileStore

    settings = _get_settings()
    return TokenSession(FileStore(settings.session_file), settings.token_storage_key)


def _build_gateway():
    """Gateway for CLI use; invalidation raises so commands can exit cleanly."""
    from .auth import AuthGateway

    settings = _get_settings().model_copy(update={"reject_on_invalidation": True})
    return AuthGateway(settings)


def _output_result(result: Any) -> None:
    if isinstance(result, (dict, list)):
        console.print_json(json.dumps(result, default=str))
    else:
        console.print(result)


def _parse_headers(values: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for item in values:
        if ":" not in item:
            raise typer.BadParameter(f"Expected 'Name: value', got {item!r}")
        name, value = item.split(":", 1)
        headers[name.strip()] = value.strip()
    return headers


# ============================================================================
# Session Commands
# ============================================================================


@app.command("status")
def status():
    """Show the stored session and gateway configuration."""
    settings = _get_settings()
    record = _get_session().load()

    table = Table(title="Session Status")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    if record:
        table.add_row("Session", "[green]Authenticated[/green]")
        table.add_row("Token type", record.token_type or "N/A")
        table.add_row("Scope", record.scope or "N/A")
        table.add_row("User ID", str(record.user_id) if record.user_id else "N/A")
        table.add_row("Expires in", f"{record.expires_in}s" if record.expires_in else "N/A")
        table.add_row(
            "Refresh token",
            "Stored" if record.can_refresh else "[yellow]Missing[/yellow]",
        )
    else:
        table.add_row("Session", "[red]Not authenticated[/red]")

    table.add_row("Base URL", settings.base_url)
    table.add_row("Client ID", settings.client_id or "[red]Not set[/red]")
    table.add_row("Login URL", settings.redirect_url)
    table.add_row("Session file", str(settings.session_file))

    console.print(table)


@app.command("login")
def login(
    access_token: str = typer.Option(..., "--access-token", "-a", help="Access token"),
    refresh_token: str = typer.Option(None, "--refresh-token", "-r", help="Refresh token"),
    expires_in: int = typer.Option(None, "--expires-in", help="Token lifetime in seconds"),
    token_type: str = typer.Option("bearer", "--token-type", help="Token type"),
    scope: str = typer.Option(None, "--scope", help="Granted scope"),
    user_id: str = typer.Option(None, "--user-id", help="User ID"),
):
    """Store a token pair obtained from an external login flow."""
    payload = {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "expires_in": expires_in,
        "token_type": token_type,
        "scope": scope,
        "user_id": user_id,
    }

    try:
        _get_session().start(payload)
    except ValueError as e:
        console.print(f"[red]Invalid token: {e}[/red]")
        raise typer.Exit(1)

    console.print("[green]Session stored.[/green]")
    if not refresh_token:
        console.print("[dim]No refresh token given; the session ends on the first 401.[/dim]")


@app.command("refresh")
def refresh():
    """Exchange the stored refresh token for a new access token now."""

    async def _refresh():
        async with _build_gateway() as gateway:
            return await gateway.refresh_session()

    if not _get_session().exists:
        console.print("[red]No session to refresh. Run 'authgateway login' first.[/red]")
        raise typer.Exit(1)

    console.print("[dim]Refreshing token...[/dim]")
    record = asyncio.run(_refresh())

    if record is None:
        console.print(
            f"[red]Refresh failed. Session cleared; log in again at {_get_settings().redirect_url}[/red]"
        )
        raise typer.Exit(1)

    console.print("[green]Token refreshed![/green]")
    if record.expires_in:
        console.print(f"[dim]Valid for {record.expires_in // 60}m[/dim]")


@app.command("logout")
def logout(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Clear the stored session."""
    if not force:
        if not typer.confirm("Clear the stored session?"):
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)

    _get_session().clear()
    console.print("[green]Session cleared[/green]")


# ============================================================================
# Request Commands
# ============================================================================


@app.command("request")
def request(
    method: str = typer.Argument(..., help="GET, POST, PUT, PATCH or DELETE"),
    path: str = typer.Argument(..., help="API path, e.g. /items"),
    data: str = typer.Option(None, "--data", "-d", help="JSON body (query params for GET/DELETE)"),
    header: list[str] = typer.Option([], "--header", "-H", help="Extra header 'Name: value'"),
):
    """Make an authenticated API request and print the result."""
    from .api import GatewayError
    from .auth import SessionInvalidatedError

    try:
        payload = json.loads(data) if data else None
    except json.JSONDecodeError as e:
        console.print(f"[red]--data is not valid JSON: {e}[/red]")
        raise typer.Exit(1)
    headers = _parse_headers(header)

    async def _request():
        async with _build_gateway() as gateway:
            return await gateway.request(method, path, payload, headers)

    try:
        result = asyncio.run(_request())
    except SessionInvalidatedError as e:
        console.print(
            Panel(
                "[bold red]Session expired and could not be refreshed.[/bold red]\n\n"
                f"Log in again at: {e.redirect_url}",
                title="Authentication Required",
            )
        )
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except GatewayError as e:
        console.print(f"[red]{e.message}[/red]")
        if e.response:
            _output_result(e.response)
        raise typer.Exit(1)

    _output_result(result)


@app.command()
def version():
    """Show version information."""
    from . import __version__

    console.print(f"authgateway v{__version__}")


if __name__ == "__main__":
    app()
