"""Sync lock administration commands."""

import json

import typer
from rich.table import Table

from roster_sync.cli.common import OutputFormatOption, console, run_async_command
from roster_sync.db import dispose_engine, get_session_factory
from roster_sync.schemas import LockInfoRead
from roster_sync.sync import OutputFormat, SyncLock

app = typer.Typer(help="Inspect and manage sync locks")


@app.command("list")
def list_locks(output_format: OutputFormatOption = OutputFormat.TEXT) -> None:
    """List locks that have not expired."""

    async def _list() -> list[LockInfoRead]:
        try:
            entries = await SyncLock(get_session_factory()).list_active()
            return LockInfoRead.from_orm_list(entries)
        finally:
            await dispose_engine()

    locks = run_async_command(_list(), error_prefix="Lock query failed")

    if output_format == OutputFormat.JSON:
        console.print_json(json.dumps([lock.model_dump(mode="json") for lock in locks]))
        return

    if not locks:
        console.print("[dim]No active locks[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Scope")
    table.add_column("Holder")
    table.add_column("Initiated by")
    table.add_column("Acquired")
    table.add_column("Expires")
    for lock in locks:
        table.add_row(
            lock.scope,
            lock.holder_id,
            lock.initiated_by or "-",
            lock.acquired_at.strftime("%Y-%m-%d %H:%M:%S"),
            lock.expires_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@app.command("cleanup")
def cleanup_locks() -> None:
    """Delete expired locks."""

    async def _cleanup() -> int:
        try:
            return await SyncLock(get_session_factory()).cleanup_expired()
        finally:
            await dispose_engine()

    removed = run_async_command(_cleanup(), error_prefix="Lock cleanup failed")
    console.print(f"Removed {removed} expired lock(s)")


@app.command("release")
def release_lock(
    scope: str = typer.Argument(..., help="Lock scope, e.g. school:4"),
    holder: str | None = typer.Argument(None, help="Holder id; omit to force release"),
) -> None:
    """Release a lock held by HOLDER, or force-release it.

    Examples:
        rostersync locks release school:4 host:1234:abcd1234
        rostersync locks release district:1
    """

    async def _release() -> bool:
        try:
            lock = SyncLock(get_session_factory())
            if holder is None:
                return await lock.force_release(scope)
            return await lock.release(scope, holder)
        finally:
            await dispose_engine()

    released = run_async_command(_release(), error_prefix="Lock release failed")
    if not released:
        console.print(f"[yellow]No lock on {scope} was released[/yellow]")
        raise typer.Exit(1)
    console.print(f"Released lock on {scope}")
