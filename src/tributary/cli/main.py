"""
Main CLI entry point.

Every connector command writes protocol messages to stdout, one JSON object
per line. ``create_app`` builds the application for a given source; the
``tributary`` console script finds the source from ``--source
module:attr`` or the ``TRIBUTARY_SOURCE`` environment variable.
"""

import asyncio
import importlib
from collections.abc import AsyncIterator
from contextlib import aclosing
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from tributary import __version__
from tributary.config.loader import load_catalog_file, load_config_file, load_document
from tributary.core.dependencies import DependencyGraph
from tributary.core.source import Source
from tributary.exceptions import ConfigurationError
from tributary.protocol import ConnectionStatus, ConnectionStatusMessage, Message, MessageWriter, TraceMessage
from tributary.utils.logging import get_logger, setup_logging_from_config

logger = get_logger("tributary.cli")


def version_callback(value: bool):
    """Callback to display version and exit."""
    if value:
        typer.echo(f"tributary version {__version__}")
        raise typer.Exit()


def load_source(reference: str) -> Source:
    """
    Load a source from a ``module:attr`` reference.

    ``attr`` may be a ``Source`` instance, a ``Source`` subclass, or a
    callable taking no arguments that returns a source.
    """
    module_name, _, attr = reference.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Source reference must look like 'module:attr', got {reference!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Could not import source module '{module_name}': {e}") from e
    try:
        target = getattr(module, attr)
    except AttributeError as e:
        raise ConfigurationError(f"Module '{module_name}' has no attribute '{attr}'") from e

    source = target if isinstance(target, Source) else target() if callable(target) else None
    if not isinstance(source, Source):
        raise ConfigurationError(f"'{reference}' does not resolve to a Source")
    return source


async def _emit(messages: AsyncIterator[Message], writer: MessageWriter) -> None:
    async with aclosing(messages):
        async for message in messages:
            writer.write(message)


def create_app(source: Source | None = None) -> typer.Typer:
    """
    Build the connector CLI.

    Args:
        source: Source served by the application. When None, the source is
            loaded from ``--source`` (or ``TRIBUTARY_SOURCE``) on first use.

    Returns:
        Typer application with spec, spec-pretty, check, discover and read commands
    """
    app = typer.Typer(
        name="tributary",
        help="Tributary - run a source connector",
        add_completion=False,
    )

    @app.callback(invoke_without_command=True)
    def entrypoint(
        ctx: typer.Context,
        source_ref: str | None = typer.Option(
            None,
            "--source",
            "-s",
            envvar="TRIBUTARY_SOURCE",
            help="Source to run, as module:attr.",
        ),
        version: bool = typer.Option(
            False,
            "--version",
            "-v",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ):
        """
        Tributary - run a source connector.

        Run 'tributary <command> --help' for help on a specific command.
        """
        ctx.obj = source_ref
        if ctx.invoked_subcommand is None:
            typer.echo(ctx.get_help())
            raise typer.Exit()

    def get_source(ctx: typer.Context) -> Source:
        if source is not None:
            return source
        reference = ctx.find_root().obj
        if not reference:
            typer.echo("Error: no source given; use --source module:attr or set TRIBUTARY_SOURCE", err=True)
            raise typer.Exit(2)
        try:
            return load_source(reference)
        except ConfigurationError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(2) from e

    @app.command("spec")
    def spec(ctx: typer.Context) -> None:
        """Emit the connector's SPEC message."""
        MessageWriter().write(get_source(ctx).spec())

    @app.command("spec-pretty")
    def spec_pretty(ctx: typer.Context) -> None:
        """Show the connector's configuration properties as a table."""
        specification = get_source(ctx).spec().connection_specification
        required = set(specification.get("required") or [])

        table = Table(title="Configuration", show_header=True)
        table.add_column("Property", style="cyan", no_wrap=True)
        table.add_column("Type", style="green")
        table.add_column("Required", style="yellow")
        table.add_column("Secret", style="red")
        table.add_column("Description", style="dim")
        for name, prop in (specification.get("properties") or {}).items():
            table.add_row(
                name,
                str(prop.get("type", "")),
                "yes" if name in required else "",
                "yes" if prop.get("airbyte_secret") else "",
                prop.get("description", ""),
            )
        Console().print(table)

    @app.command("check")
    def check(
        ctx: typer.Context,
        config: Path = typer.Option(..., "--config", "-c", help="Connector configuration file"),
    ) -> None:
        """Emit a CONNECTION_STATUS message for the configuration."""
        writer = MessageWriter()
        connector = get_source(ctx)
        try:
            config_data = load_config_file(config).data
        except ConfigurationError as e:
            writer.write(ConnectionStatusMessage(status=ConnectionStatus.FAILED, message=e.message))
            return
        setup_logging_from_config(config_data, protocol_writer=writer)
        writer.write(asyncio.run(connector.check(config_data)))

    @app.command("discover")
    def discover(
        ctx: typer.Context,
        config: Path = typer.Option(..., "--config", "-c", help="Connector configuration file"),
        graph: bool = typer.Option(False, "--graph", help="Show stream dependency layers instead of the catalog"),
    ) -> None:
        """Emit the CATALOG of streams the connector can read."""
        writer = MessageWriter()
        connector = get_source(ctx)
        try:
            config_data = load_config_file(config).data
            if graph:
                definitions = [stream.definition for stream in connector.streams(config_data)]
                typer.echo(DependencyGraph.from_definitions(definitions).visualize_layers())
                return
            writer.write(connector.discover(config_data))
        except Exception as e:
            writer.write(TraceMessage.from_exception(e))
            raise typer.Exit(1) from e

    @app.command("read")
    def read(
        ctx: typer.Context,
        config: Path = typer.Option(..., "--config", "-c", help="Connector configuration file"),
        catalog: Path = typer.Option(..., "--catalog", help="Configured catalog file"),
        state: Path | None = typer.Option(None, "--state", help="State file from a previous run"),
    ) -> None:
        """Sync the streams of the configured catalog, emitting RECORD and STATE messages."""
        writer = MessageWriter()
        connector = get_source(ctx)
        try:
            config_data: dict[str, Any] = load_config_file(config).data
            setup_logging_from_config(config_data, protocol_writer=writer)
            configured_catalog = load_catalog_file(catalog)
            prior_state = load_document(state) if state else None
            asyncio.run(_emit(connector.read(config_data, configured_catalog, prior_state), writer))
        except Exception as e:
            logger.error(f"Read failed: {e}")
            writer.write(TraceMessage.from_exception(e))
            raise typer.Exit(1) from e

    return app


app = create_app()


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
