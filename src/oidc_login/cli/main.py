"""CLI entry point."""

import asyncio
import json
import sys

import typer
from loguru import logger
from rich.console import Console
from rich.json import JSON
from rich.table import Table

from oidc_login.settings import settings

app = typer.Typer(name="oidc-login", help="OAuth 2.0 / OIDC login service CLI")
console = Console()


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


@app.command()
def serve(
    host: str = typer.Option(settings.api_host, help="API server host"),
    port: int = typer.Option(settings.api_port, help="API server port"),
    reload: bool = typer.Option(False, help="Auto-reload on code changes"),
) -> None:
    """Start the login API server.

    Examples:
        oidc-login serve
        oidc-login serve --reload
        oidc-login serve --host 127.0.0.1 --port 8080
    """
    import uvicorn

    configure_logging(settings.log_level)

    console.print(f"[green]Starting oidc-login API server on {host}:{port}[/green]")
    console.print(f"[dim]Login:[/dim] http://{host}:{port}/oauth/start")
    console.print(f"[dim]Callback URL:[/dim] {settings.callback_url}")
    console.print(f"[dim]Docs:[/dim] http://{host}:{port}/docs")

    uvicorn.run(
        "oidc_login.api.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def discover(
    url: str = typer.Argument(..., help="Issuer or discovery URL"),
    output_json: bool = typer.Option(False, "--json", help="Output raw JSON"),
) -> None:
    """Fetch a provider's OIDC discovery document.

    Prints the endpoints to copy into OIDC_LOGIN_PROVIDER__* settings.

    Examples:
        oidc-login discover https://idp.example.com
        oidc-login discover https://idp.example.com/.well-known/openid-configuration --json
    """
    from oidc_login.auth.client import OAuthClient
    from oidc_login.auth.errors import DiscoveryError

    configure_logging(settings.log_level)
    client = OAuthClient(settings.provider, settings.callback_url)

    try:
        document = asyncio.run(client.discover(url))
    except DiscoveryError as e:
        console.print(f"[red]Discovery failed:[/red] {e.message}")
        raise typer.Exit(code=1)

    if output_json:
        console.print(JSON(json.dumps(document.model_dump())))
        return

    table = Table(title=f"Discovery: {document.issuer or url}")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in document.provider_updates().items():
        table.add_row(f"OIDC_LOGIN_PROVIDER__{key.upper()}", value)
    console.print(table)

    if document.scopes_supported:
        console.print(f"[dim]Scopes:[/dim] {' '.join(document.scopes_supported)}")
    if document.token_endpoint_auth_methods_supported:
        methods = ", ".join(document.token_endpoint_auth_methods_supported)
        console.print(f"[dim]Token auth methods:[/dim] {methods}")


@app.command()
def version() -> None:
    """Show version information."""
    from oidc_login import __version__

    typer.echo(f"oidc-login v{__version__}")


if __name__ == "__main__":
    app()
