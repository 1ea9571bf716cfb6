"""Common CLI option factories and helpers.

This module centralizes reusable CLI options and provides:
- `run_async_command`: Unified async execution with error handling for CLI commands
- `sync_services`: Token manager, API client and orchestrator wired together
- `print_summary`: Text rendering of a sync summary
"""

from __future__ import annotations

import asyncio
import getpass
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Annotated, Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from roster_sync.clever import CleverClient, TokenManager
from roster_sync.db import dispose_engine, get_session_factory
from roster_sync.sync import OutputFormat, SyncOrchestrator

# Shared console instance for CLI output
console = Console()

T = TypeVar("T")


def run_async_command(
    coro: Coroutine[object, object, T],
    *,
    error_prefix: str = "Error",
) -> T:
    """Execute async code from synchronous CLI command with unified error handling.

    Uses asyncio.run() for clean event loop management. Catches exceptions,
    prints user-friendly error messages, and exits with code 1.

    Args:
        coro: Async coroutine to execute
        error_prefix: Prefix for error messages (default: "Error")

    Returns:
        Result from the coroutine

    Raises:
        typer.Exit: Re-raised from deliberate exits, or raised with code 1 on error
    """
    try:
        return asyncio.run(coro)
    except typer.Exit:
        # Re-raise deliberate exits (e.g., from validation helpers)
        raise
    except Exception as e:
        console.print(f"[red]{error_prefix}:[/red] {e}")
        raise typer.Exit(1) from None


@asynccontextmanager
async def sync_services() -> AsyncIterator[SyncOrchestrator]:
    """Yield an orchestrator backed by the configured database and API.

    The HTTP clients and the engine are closed on exit.
    """
    try:
        async with TokenManager() as tokens, CleverClient(tokens) as client:
            yield SyncOrchestrator(get_session_factory(), client)
    finally:
        await dispose_engine()


def current_user() -> str:
    """Login name recorded as the initiator of CLI runs."""
    try:
        return getpass.getuser()
    except OSError:
        return "cli"


def print_summary(result: dict[str, Any]) -> None:
    """Render a ManualSyncResponse dict as text."""
    outcome = result.get("outcome", "failure")
    color = {"success": "green", "partial": "yellow"}.get(outcome, "red")
    console.print(f"[bold {color}]{outcome.upper()}[/bold {color}] {result.get('scope')}: {result.get('message')}")

    schools = result.get("schools", [])
    if schools:
        table = Table(show_header=True, header_style="bold")
        table.add_column("School")
        table.add_column("Mode")
        table.add_column("Status")
        table.add_column("Processed", justify="right")
        table.add_column("Created", justify="right")
        table.add_column("Updated", justify="right")
        table.add_column("Deleted", justify="right")
        table.add_column("Failed", justify="right")
        for school in schools:
            table.add_row(
                school.get("name") or school.get("external_id") or str(school.get("school_id")),
                school.get("mode") or "-",
                school.get("status", "?"),
                str(school.get("processed", 0)),
                str(school.get("created", 0)),
                str(school.get("updated", 0)),
                str(school.get("deleted", 0)),
                str(school.get("failed", 0)),
            )
        console.print(table)

    stats = result.get("stats", {})
    console.print(
        f"  Schools: {stats.get('successful_children', 0)} succeeded, "
        f"{stats.get('failed_children', 0)} failed"
    )
    console.print(f"  Duration: {stats.get('duration_seconds', 0):.1f}s")

    for error in result.get("errors", []):
        console.print(f"  [red]Error:[/red] {error}")
    for school in schools:
        if school.get("error"):
            console.print(f"  [red]{school.get('external_id') or school.get('school_id')}:[/red] {school['error']}")


# Typer requires function calls as default arguments, which triggers B008.
# Using Annotated with a centralized type alias keeps the noqa in one place.

OutputFormatOption = Annotated[
    OutputFormat,
    typer.Option(
        "--format",
        "-f",
        help="Output format",
    ),
]
"""Output format option type for CLI commands.

Usage:
    def command(output_format: OutputFormatOption = OutputFormat.TEXT):
"""

SchoolOption = Annotated[
    int | None,
    typer.Option(
        "--school",
        "-s",
        help="Local school id",
    ),
]
"""Optional school id option."""

DistrictOption = Annotated[
    int | None,
    typer.Option(
        "--district",
        "-d",
        help="Local district id",
    ),
]
"""Optional district id option."""
