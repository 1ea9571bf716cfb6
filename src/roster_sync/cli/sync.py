"""Sync commands for Roster Sync."""

import json
from typing import Any

import typer
from rich.table import Table

from roster_sync.cli.common import (
    DistrictOption,
    OutputFormatOption,
    SchoolOption,
    console,
    current_user,
    print_summary,
    run_async_command,
    sync_services,
)
from roster_sync.db import (
    SyncMode,
    SyncRunRepository,
    TriggerSource,
    dispose_engine,
    get_session,
    get_session_factory,
)
from roster_sync.schemas import SyncRunRead
from roster_sync.sync import (
    ManualScope,
    ManualSyncRequest,
    ManualTrigger,
    OutputFormat,
    ScheduledTrigger,
    ScheduleService,
)

app = typer.Typer(help="Sync roster data from Clever")


def _emit(result: dict[str, Any], output_format: OutputFormat) -> None:
    if output_format == OutputFormat.JSON:
        console.print_json(json.dumps(result, default=str))
    else:
        print_summary(result)
    if not result.get("success") and result.get("outcome") == "failure":
        raise typer.Exit(1)


@app.command("run")
def sync_run(
    school: SchoolOption = None,
    district: DistrictOption = None,
    all_districts: bool = typer.Option(
        False,
        "--all",
        "-a",
        help="Sync every district",
    ),
    full: bool = typer.Option(
        False,
        "--full",
        help="Force a full fetch and reconciliation",
    ),
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Sync a school, a district, or everything.

    Examples:
        rostersync sync run --school 4
        rostersync sync run --district 1 --full
        rostersync sync run --all --format json
    """
    chosen = [flag for flag, value in (("--school", school), ("--district", district)) if value is not None]
    if all_districts:
        chosen.append("--all")
    if len(chosen) != 1:
        console.print("[red]Error:[/red] Specify exactly one of --school, --district or --all")
        raise typer.Exit(1)

    if school is not None:
        request = ManualSyncRequest(scope=ManualScope.SCHOOL, id=school, force_full_sync=full)
    elif district is not None:
        request = ManualSyncRequest(scope=ManualScope.DISTRICT, id=district, force_full_sync=full)
    else:
        request = ManualSyncRequest(scope=ManualScope.ALL, force_full_sync=full)

    async def _sync() -> dict[str, Any]:
        async with sync_services() as orchestrator:
            trigger = ManualTrigger(orchestrator, source=TriggerSource.CLI)
            response = await trigger.trigger(request, initiated_by=current_user())
            return response.model_dump(mode="json")

    result = run_async_command(_sync(), error_prefix="Sync failed")
    _emit(result, output_format)


@app.command("reconcile")
def sync_reconcile(
    school_id: int = typer.Argument(..., help="Local school id"),
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Run a full fetch and reconciliation for one school.

    Records missing from the source are permanently deleted.

    Examples:
        rostersync sync reconcile 4
    """
    request = ManualSyncRequest(scope=ManualScope.SCHOOL, id=school_id, mode=SyncMode.RECONCILIATION)

    async def _reconcile() -> dict[str, Any]:
        async with sync_services() as orchestrator:
            trigger = ManualTrigger(orchestrator, source=TriggerSource.CLI)
            response = await trigger.trigger(request, initiated_by=current_user())
            return response.model_dump(mode="json")

    result = run_async_command(_reconcile(), error_prefix="Reconciliation failed")
    _emit(result, output_format)


@app.command("scheduled")
def sync_scheduled(
    once: bool = typer.Option(
        False,
        "--once",
        help="Process due schedules once and exit",
    ),
    interval: float | None = typer.Option(
        None,
        "--interval",
        help="Seconds between schedule checks (default from settings)",
    ),
) -> None:
    """Run the schedule-driven trigger.

    Examples:
        rostersync sync scheduled --once
        rostersync sync scheduled --interval 30
    """

    async def _run() -> int:
        async with sync_services() as orchestrator:
            trigger = ScheduledTrigger(orchestrator, ScheduleService(get_session_factory()))
            if once:
                summaries = await trigger.run_once()
                for summary in summaries:
                    console.print(f"{summary.scope}: [bold]{summary.outcome.value}[/bold]")
                return len(summaries)
            await trigger.run_forever(interval)
            return 0

    try:
        count = run_async_command(_run(), error_prefix="Scheduler failed")
    except KeyboardInterrupt:
        console.print("[dim]Scheduler interrupted[/dim]")
        return
    if once and count == 0:
        console.print("[dim]No schedules due[/dim]")


@app.command("history")
def sync_history(
    school: SchoolOption = None,
    district: DistrictOption = None,
    mode: SyncMode | None = typer.Option(  # noqa: B008
        None,
        "--mode",
        "-m",
        help="Filter by sync mode",
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum runs to show"),
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Show recent sync runs, newest first.

    Examples:
        rostersync sync history --school 4
        rostersync sync history --mode full --limit 5 --format json
    """
    scope = None
    if school is not None:
        scope = f"school:{school}"
    elif district is not None:
        scope = f"district:{district}"

    async def _history() -> list[SyncRunRead]:
        try:
            async with get_session() as session:
                runs = await SyncRunRepository(session).recent(scope=scope, mode=mode, limit=limit)
                return SyncRunRead.from_orm_list(runs)
        finally:
            await dispose_engine()

    runs = run_async_command(_history(), error_prefix="History query failed")

    if output_format == OutputFormat.JSON:
        console.print_json(json.dumps([r.model_dump(mode="json") for r in runs]))
        return

    if not runs:
        console.print("[dim]No sync runs recorded[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Scope")
    table.add_column("Mode")
    table.add_column("Trigger")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Processed", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Cursor")
    for run in runs:
        table.add_row(
            str(run.id),
            run.scope,
            run.mode.value if run.mode else "-",
            run.trigger.value,
            run.status.value,
            run.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(run.records_processed),
            str(run.records_failed),
            run.last_cursor or "-",
        )
    console.print(table)
