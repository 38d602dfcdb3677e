"""
Command-line interface for the pgvector provider.

Provides diagnostic and collection management commands against the
configured Postgres server.

Usage:
    vdb ping                                  # Check the server is reachable
    vdb collections                           # List vector collections
    vdb create-collection docs --dimension 768
    vdb drop-collection docs
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from typing import Any

import click

from src.config.settings import get_settings
from src.observability.logging import setup_logging
from src.vectorstore.exceptions import VectorDbError
from src.vectorstore.schemas import RecoverableWarning, SimilarityMetric

_database_option = click.option(
    "--database", default=None, help="Database to use (defaults to the configured one)"
)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """pgvector provider - vector collections on Postgres."""
    settings = get_settings()
    setup_logging(settings, level="DEBUG" if debug else None)

    # Initialize tracing once per process if enabled
    if settings.tracing_enabled:
        from src.observability.tracing import is_tracing_enabled, setup_tracing

        if is_tracing_enabled():
            return
        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


def _run(operation: Callable[[Any], Awaitable[Any]]) -> Any:
    """Run an async operation against a fresh provider, exiting 1 on fatal errors."""
    from src.vectorstore.registry import get_provider

    async def run():
        provider = get_provider()
        try:
            return await operation(provider)
        finally:
            await provider.close()

    try:
        return asyncio.run(run())
    except (VectorDbError, ValueError) as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


def _report(warning: RecoverableWarning | None, success: str) -> None:
    if warning is None:
        click.echo(click.style(success, fg="green"))
    elif warning.benign:
        click.echo(click.style(f"Nothing to do: {warning.message}", fg="yellow"))
    else:
        click.echo(click.style(f"Warning: {warning.message}", fg="yellow"))


@main.command()
@_database_option
def ping(database: str | None) -> None:
    """Check that the Postgres server answers."""
    alive = _run(lambda provider: provider.ping(database=database))

    if alive:
        click.echo(click.style("✓ postgres: reachable", fg="green"))
        sys.exit(0)
    click.echo(click.style("✗ postgres: unreachable", fg="red"))
    sys.exit(1)


@main.command()
@_database_option
def collections(database: str | None) -> None:
    """List vector collections."""
    names = _run(lambda provider: provider.get_collections(database=database))

    if not names:
        click.echo("No collections found.")
        return

    for name in names:
        click.echo(f"  {name}")
    click.echo(f"\n{len(names)} collection(s)")


@main.command("create-collection")
@click.argument("name")
@click.option("--dimension", required=True, type=click.IntRange(min=1), help="Vector dimension")
@click.option(
    "--metric",
    type=click.Choice([m.value for m in SimilarityMetric]),
    default=None,
    help="Similarity metric (defaults to the configured one)",
)
@_database_option
def create_collection(
    name: str,
    dimension: int,
    metric: str | None,
    database: str | None,
) -> None:
    """Create a vector collection."""
    warning = _run(
        lambda provider: provider.create_collection(
            name,
            dimension=dimension,
            metric=SimilarityMetric(metric) if metric else None,
            database=database,
        )
    )
    _report(warning, f"Created collection {name}")


@main.command("drop-collection")
@click.argument("name")
@_database_option
def drop_collection(name: str, database: str | None) -> None:
    """Drop a vector collection and its side tables."""
    warning = _run(lambda provider: provider.drop_collection(name, database=database))
    _report(warning, f"Dropped collection {name}")


if __name__ == "__main__":
    main()
