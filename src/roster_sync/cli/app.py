"""Main CLI application for Roster Sync."""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from roster_sync import __version__
from roster_sync.cli import clever as clever_cmd
from roster_sync.cli import locks as locks_cmd
from roster_sync.cli import sync as sync_cmd
from roster_sync.cli.common import run_async_command
from roster_sync.config import get_settings
from roster_sync.db import create_tables, dispose_engine
from roster_sync.logging import setup_logging

app = typer.Typer(
    name="rostersync",
    help="Replicate Clever roster data into per-school stores.",
    add_completion=False,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"rostersync version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress non-error output (WARNING level).",
        ),
    ] = False,
) -> None:
    """Roster Sync - keep school rosters aligned with Clever."""
    settings = get_settings()
    log_config = settings.logging

    setup_logging(
        level=settings.log_level,
        verbose=verbose,
        quiet=quiet,
        log_file=Path(log_config.log_file) if log_config.log_file else None,
        rotation=log_config.rotation,
        retention=log_config.retention,
        serialize=log_config.serialize,
    )


@app.command("init-db")
def init_db() -> None:
    """Create any missing tables in the configured database."""

    async def _init() -> None:
        try:
            await create_tables()
        finally:
            await dispose_engine()

    run_async_command(_init(), error_prefix="Database setup failed")
    console.print(f"[green]Database ready:[/green] {get_settings().database_url}")


# Register subcommands
app.add_typer(sync_cmd.app, name="sync")
app.add_typer(locks_cmd.app, name="locks")
app.add_typer(clever_cmd.app, name="clever")


if __name__ == "__main__":
    app()
