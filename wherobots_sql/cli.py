"""Command-line interface for running SQL on a Wherobots session.

Provides an ``execute`` command that provisions a session, runs one
statement and prints the resulting rows.

Usage::

    wherobots-sql --runtime sedona execute "SHOW SCHEMAS IN wherobots_open_data"
    wherobots-sql -r TINY --format json execute "SELECT 1 AS one"

The API key is read from ``--api-key`` or ``WHEROBOTS_API_KEY``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated

import pyarrow as pa
import typer

from wherobots_sql.connection import Connection
from wherobots_sql.constants import DEFAULT_PROTOCOL_VERSION, GeometryRepresentation, Region, Runtime
from wherobots_sql.errors import ExecutionError, SessionError, WherobotsError
from wherobots_sql.logging_utils import configure_logging

# ---------------------------------------------------------------------------
# Option enums
# ---------------------------------------------------------------------------


class OutputFormat(StrEnum):
    """Output format for query results."""

    auto = "auto"
    json = "json"
    table = "table"


class LogFormat(StrEnum):
    """Format of ``--verbose`` log output."""

    text = "text"
    json = "json"


# ---------------------------------------------------------------------------
# CLI config
# ---------------------------------------------------------------------------


@dataclass
class _CliConfig:
    """Holds resolved CLI options."""

    runtime: Runtime
    region: Region = Region.AWS_US_WEST_2
    api_key: str | None = None
    api_url: str | None = None
    geometry: GeometryRepresentation = GeometryRepresentation.EWKT
    protocol_version: str = DEFAULT_PROTOCOL_VERSION
    format: OutputFormat = OutputFormat.auto
    verbose: bool = False
    log_format: LogFormat = LogFormat.text


app = typer.Typer(
    name="wherobots-sql",
    help="Run spatial SQL on Wherobots.",
    add_completion=False,
    no_args_is_help=True,
)


def _parse_runtime(value: str) -> Runtime:
    """Accept a runtime by name (``sedona``) or by wire value (``TINY``)."""
    try:
        return Runtime[value.upper().replace("-", "_")]
    except KeyError:
        pass
    try:
        return Runtime(value)
    except ValueError:
        names = ", ".join(r.name.lower() for r in Runtime)
        raise typer.BadParameter(f"Unknown runtime '{value}'. Available: {names}") from None


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def _main(
    ctx: typer.Context,
    runtime: Annotated[str, typer.Option("--runtime", "-r", help="Runtime name or size")] = "sedona",
    region: Annotated[Region, typer.Option("--region", help="Region to provision in")] = Region.AWS_US_WEST_2,
    api_key: Annotated[str | None, typer.Option("--api-key", help="API key (default: $WHEROBOTS_API_KEY)")] = None,
    api_url: Annotated[str | None, typer.Option("--api-url", help="Session service URL", hidden=True)] = None,
    geometry: Annotated[
        GeometryRepresentation, typer.Option("--geometry", "-g", help="Geometry representation")
    ] = GeometryRepresentation.EWKT,
    protocol_version: Annotated[
        str, typer.Option("--protocol-version", help="Channel protocol version")
    ] = DEFAULT_PROTOCOL_VERSION,
    fmt: Annotated[OutputFormat, typer.Option("--format", "-f", help="Output format")] = OutputFormat.auto,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log driver activity on stderr")] = False,
    log_format: Annotated[LogFormat, typer.Option("--log-format", help="Log output format")] = LogFormat.text,
) -> None:
    """Configure connection and output options."""
    ctx.obj = _CliConfig(
        runtime=_parse_runtime(runtime),
        region=region,
        api_key=api_key,
        api_url=api_url,
        geometry=geometry,
        protocol_version=protocol_version,
        format=fmt,
        verbose=verbose,
        log_format=log_format,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _format_table(rows: list[dict[str, object]]) -> str:
    """Format rows as a simple column-aligned text table.

    Args:
        rows: List of dicts (all with the same keys).

    Returns:
        A formatted table string.

    """
    if not rows:
        return "(empty)"
    columns = list(rows[0].keys())
    widths = {col: len(col) for col in columns}
    cells: list[dict[str, str]] = []
    for row in rows:
        rendered = {col: "" if row.get(col) is None else str(row[col]) for col in columns}
        for col, text in rendered.items():
            widths[col] = max(widths[col], len(text))
        cells.append(rendered)

    lines = ["  ".join(col.ljust(widths[col]) for col in columns)]
    lines.append("  ".join("-" * widths[col] for col in columns))
    lines.extend("  ".join(row[col].ljust(widths[col]) for col in columns) for row in cells)
    return "\n".join(lines)


def _print_json(data: object) -> None:
    """Print JSON to stdout."""
    typer.echo(json.dumps(data, default=str))


def _emit_error(e: WherobotsError) -> None:
    """Write a driver error to stderr as JSON."""
    err: dict[str, object] = {"type": type(e).__name__, "message": str(e)}
    if isinstance(e, SessionError):
        err["session_id"] = e.session_id
        err["status"] = e.status
    elif isinstance(e, ExecutionError):
        err["execution_id"] = e.execution_id
    typer.echo(json.dumps({"error": err}, default=str), err=True)


def _print_rows(table: pa.Table, config: _CliConfig) -> None:
    rows = table.to_pylist()
    if config.format == OutputFormat.table or (config.format == OutputFormat.auto and sys.stdout.isatty()):
        typer.echo(_format_table(rows))
    else:
        _print_json(rows)


async def _run(statement: str, config: _CliConfig) -> pa.Table:
    conn = await Connection.connect(
        api_key=config.api_key,
        api_url=config.api_url,
        runtime=config.runtime,
        region=config.region,
        geometry_representation=config.geometry,
        protocol_version=config.protocol_version,
    )
    async with conn:
        return await conn.execute(statement)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def execute(
    ctx: typer.Context,
    statement: Annotated[str, typer.Argument(help="SQL statement to execute")],
) -> None:
    """Provision a session, execute STATEMENT and print the rows."""
    config: _CliConfig = ctx.obj
    handler: logging.Handler | None = None
    if config.verbose:
        handler = configure_logging(verbose=True, fmt=config.log_format.value)
    try:
        table = asyncio.run(_run(statement, config))
    except WherobotsError as e:
        _emit_error(e)
        raise typer.Exit(1) from None
    finally:
        if handler is not None:
            logging.getLogger("wherobots_sql").removeHandler(handler)
    _print_rows(table, config)


def main() -> None:
    """Entry point for the ``wherobots-sql`` console script."""
    app()
