"""
qbapi CLI: command-line helpers around the QuickBooks API client.

Usage:
    qbapi discover --environment production
    qbapi auth-url --redirect-uri https://myapp.com/callback --state xyz
    qbapi exchange AUTH_CODE --redirect-uri https://myapp.com/callback
    qbapi refresh --refresh-token RT
    qbapi get customer/1 -p minorversion=65
    qbapi post customer --data '{"DisplayName": "Acme"}'

Settings come from a YAML file (``--config``) and QBAPI_* environment
variables. Tokens are printed as JSON; storing them is up to you.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from qbapi import __version__
from qbapi.auth.discovery import EndpointDiscovery
from qbapi.client import QuickBooksAPI
from qbapi.config import QuickBooksConfig
from qbapi.exceptions import ApiError, QuickBooksError

app = typer.Typer(
    name="qbapi",
    help="QuickBooks Online API client",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

_CONFIG_OPTION = typer.Option(
    "qbapi.yaml",
    "--config",
    "-c",
    help="Path to config file",
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold]qbapi[/bold] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log HTTP activity",
    ),
) -> None:
    """QuickBooks Online API client."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


def _load_config(config: str, **overrides: Any) -> QuickBooksConfig:
    config_path = config if Path(config).exists() else None
    try:
        return QuickBooksConfig.load(config_path, **overrides)
    except ValueError as e:
        # Unknown environment names and invalid settings surface as usage errors
        raise typer.BadParameter(str(e), param_hint="--environment / --config") from e


def _build_client(config: str, **overrides: Any) -> QuickBooksAPI:
    return QuickBooksAPI.from_config(_load_config(config, **overrides))


def _fail(error: QuickBooksError) -> NoReturn:
    console.print(f"[red]Error:[/red] {escape(str(error))}")
    if isinstance(error, ApiError) and error.code:
        console.print(f"[dim]QBO error code {error.code}[/dim]")
    raise typer.Exit(1)


def _parse_params(pairs: list[str]) -> dict[str, str]:
    params: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got '{pair}'", param_hint="--param")
        params[key] = value
    return params


@app.command()
def discover(
    config: str = _CONFIG_OPTION,
    environment: str = typer.Option(
        None,
        "--environment",
        "-e",
        help="sandbox or production",
    ),
) -> None:
    """Show the OAuth endpoints advertised for an environment."""
    settings = _load_config(config, environment=environment)
    discovery = EndpointDiscovery(timeout=settings.timeout, verify_tls=settings.verify_tls)
    try:
        endpoints = discovery.discover(settings.environment)
    except QuickBooksError as e:
        _fail(e)
    finally:
        discovery.close()

    table = Table(title=f"OAuth endpoints ({settings.environment.value})")
    table.add_column("Endpoint", style="bold cyan")
    table.add_column("URL")
    table.add_row("authorization", endpoints.authorization_endpoint)
    table.add_row("token", endpoints.token_endpoint)
    table.add_row("api", settings.environment.api_url)
    console.print(table)


@app.command("auth-url")
def auth_url(
    config: str = _CONFIG_OPTION,
    redirect_uri: str = typer.Option(
        None,
        "--redirect-uri",
        "-r",
        help="Registered redirect URI (defaults to config)",
    ),
    state: str = typer.Option(
        None,
        "--state",
        help="CSRF state value",
    ),
    scope: str = typer.Option(
        None,
        "--scope",
        help="Space-separated scopes",
    ),
) -> None:
    """Print the URL a user visits to authorize the app."""
    settings = _load_config(config, redirect_uri=redirect_uri)
    uri = _require_redirect_uri(settings)
    try:
        with QuickBooksAPI.from_config(settings) as api:
            url = api.authorization_url(uri, state=state, scope=scope)
    except QuickBooksError as e:
        _fail(e)
    console.print(url, soft_wrap=True)


def _require_redirect_uri(settings: QuickBooksConfig) -> str:
    if not settings.redirect_uri:
        raise typer.BadParameter("No redirect URI configured", param_hint="--redirect-uri")
    return settings.redirect_uri


@app.command()
def exchange(
    code: str = typer.Argument(..., help="Authorization code from the callback"),
    config: str = _CONFIG_OPTION,
    redirect_uri: str = typer.Option(
        None,
        "--redirect-uri",
        "-r",
        help="Redirect URI used for the authorization request",
    ),
) -> None:
    """Exchange an authorization code for tokens."""
    settings = _load_config(config, redirect_uri=redirect_uri)
    uri = _require_redirect_uri(settings)
    try:
        with QuickBooksAPI.from_config(settings) as api:
            token = api.exchange_code(code, uri)
    except QuickBooksError as e:
        _fail(e)
    console.print_json(data=token.to_dict())


@app.command()
def refresh(
    config: str = _CONFIG_OPTION,
    refresh_token: str = typer.Option(
        None,
        "--refresh-token",
        help="Refresh token (defaults to config / QBAPI_REFRESH_TOKEN)",
    ),
) -> None:
    """Obtain a new access token from a refresh token."""
    try:
        with _build_client(config) as api:
            token = api.refresh_token(refresh_token)
    except QuickBooksError as e:
        _fail(e)
    console.print_json(data=token.to_dict())


@app.command()
def get(
    path: str = typer.Argument(..., help="Resource path, e.g. customer/1"),
    config: str = _CONFIG_OPTION,
    param: list[str] = typer.Option(
        [],
        "--param",
        "-p",
        help="Query parameter as key=value (repeatable)",
    ),
) -> None:
    """GET a company resource."""
    params = _parse_params(param)
    try:
        with _build_client(config) as api:
            result = api.get(path, params or None)
    except QuickBooksError as e:
        _fail(e)
    console.print_json(data=result)


@app.command()
def post(
    path: str = typer.Argument(..., help="Resource path, e.g. customer"),
    config: str = _CONFIG_OPTION,
    data: str = typer.Option(
        ...,
        "--data",
        "-d",
        help="JSON payload",
    ),
) -> None:
    """POST a JSON payload to a company resource."""
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"Invalid JSON: {e}", param_hint="--data") from e

    try:
        with _build_client(config) as api:
            result = api.post(payload, path)
    except QuickBooksError as e:
        _fail(e)
    console.print_json(data=result)


if __name__ == "__main__":
    app()
