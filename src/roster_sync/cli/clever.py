"""Clever API verification commands."""

import typer
from rich.table import Table

from roster_sync.cli.common import console, run_async_command
from roster_sync.clever import (
    AuthenticationFailedError,
    CleverClient,
    CleverClientError,
    TokenManager,
)
from roster_sync.schemas import CleverSchool

app = typer.Typer(help="Clever API commands")


@app.command("check")
def check_connection(
    limit: int = typer.Option(10, "--limit", "-n", help="Schools to list"),
) -> None:
    """Test credentials and list the schools visible to the district token.

    Examples:
        rostersync clever check
        rostersync clever check --limit 50
    """

    async def _check() -> list[CleverSchool]:
        try:
            async with TokenManager() as tokens, CleverClient(tokens) as client:
                console.print("[bold]Requesting token...[/bold]")
                token = await tokens.get_valid_token()
                if token.is_non_expiring:
                    console.print("  Token acquired (non-expiring)")
                else:
                    remaining = token.time_until_expiration()
                    console.print(f"  Token acquired (expires in {int(remaining.total_seconds())}s)")

                console.print("[bold]Listing schools...[/bold]")
                schools: list[CleverSchool] = []
                async for school in client.iter_schools():
                    schools.append(school)
                    if len(schools) >= limit:
                        break
                return schools
        except AuthenticationFailedError as e:
            console.print(f"[red]Authentication failed:[/red] {e}")
            raise typer.Exit(1) from None
        except CleverClientError as e:
            console.print(f"[red]API error:[/red] {e}")
            raise typer.Exit(1) from None

    schools = run_async_command(_check(), error_prefix="Clever check failed")

    if not schools:
        console.print("[yellow]No schools visible to this token[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("District")
    for school in schools:
        table.add_row(school.id, school.name, school.district or "-")
    console.print(table)
    console.print("[green]Clever API connection OK[/green]")
