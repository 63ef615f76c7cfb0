"""sqltunnel CLI.

Usage:
    sqltunnel serve                          # Run the endpoint server
    sqltunnel serve --port 8080 --reload     # Custom port, auto-reload
    sqltunnel query "SELECT 1 AS x"          # Run one query through the endpoint
    sqltunnel query -t affecting "DELETE FROM t WHERE id = ?" -b 7
    sqltunnel keygen                         # Print a new base64 encryption key
    sqltunnel health --url http://localhost:8000

Server and client settings come from ``SQLTUNNEL_*`` environment variables.
"""

from __future__ import annotations

import json
import logging
import sys

import click
import httpx

from . import __version__
from .config import ClientConfig
from .encryption import generate_key
from .errors import RemoteDatabaseError
from .protocol.envelope import QueryType

LOG_LEVELS = ["debug", "info", "warning", "error"]


def _parse_binding(value: str) -> object:
    """Interpret a command-line binding as JSON, falling back to the raw string."""
    try:
        return json.loads(value)
    except ValueError:
        return value


@click.group()
@click.version_option(__version__, prog_name="sqltunnel")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="warning",
    help="Logging level (written to stderr)",
)
def main(log_level: str) -> None:
    """sqltunnel - SQL over an encrypted HTTP channel."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@main.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8000, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(host: str, port: int, reload: bool) -> None:
    """Run the remote database endpoint."""
    import uvicorn

    click.echo(f"Starting sqltunnel endpoint on http://{host}:{port}", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    uvicorn.run(
        "sqltunnel.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@main.command()
@click.argument("sql")
@click.option("-b", "--binding", "bindings", multiple=True, help="Positional binding (repeatable)")
@click.option(
    "-t",
    "--type",
    "query_type",
    type=click.Choice([t.value for t in QueryType]),
    default=QueryType.SELECT.value,
    help="Execution mode",
)
def query(sql: str, bindings: tuple[str, ...], query_type: str) -> None:
    """Run SQL on the remote endpoint and print the JSON result."""
    from .sdk import RemoteDatabaseClient

    try:
        config = ClientConfig.from_env()
        with RemoteDatabaseClient(config) as client:
            result = client.send(sql, [_parse_binding(b) for b in bindings], query_type)
    except RemoteDatabaseError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(json.dumps(result.to_wire(), indent=2, default=str))


@main.command()
def keygen() -> None:
    """Print a new random 32-byte key, base64 encoded."""
    click.echo(generate_key())


@main.command()
@click.option("--url", default="http://localhost:8000", help="Server base URL")
def health(url: str) -> None:
    """Check server health."""
    try:
        response = httpx.get(f"{url.rstrip('/')}/health")
    except httpx.ConnectError:
        click.echo(f"Cannot connect to server at {url}", err=True)
        sys.exit(1)

    if response.status_code != 200:
        click.echo(f"Server returned {response.status_code}", err=True)
        sys.exit(1)
    click.echo(f"Server is healthy: {response.json()}")


if __name__ == "__main__":
    main()
