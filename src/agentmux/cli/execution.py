"""Execution, revert and checkpoint CLI commands.

These are registered as top-level commands on the main application.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from agentmux.database.connection import init_db
from agentmux.orchestrator.executor import (
    ExecutionOutcome,
    ProjectExecutionOutcome,
    RevertOutcome,
)

console = Console()

OUTCOME_COLORS = {
    "success": "green",
    "failed": "yellow",
    "failed_no_fix": "red",
}


def _render_execution(outcome: ExecutionOutcome) -> None:
    if outcome.success:
        body = f"[green]Task {outcome.task_id} executed successfully[/green]\n\n"
    else:
        kind = outcome.error_kind.value if outcome.error_kind else "unknown"
        body = f"[red]Task {outcome.task_id} did not complete[/red] ({kind})\n\n"
        body += f"[bold]Reason:[/bold] {outcome.error}\n"
    body += (
        f"[bold]Project:[/bold] {outcome.project_id or '-'}\n"
        f"[bold]Attempt:[/bold] {outcome.attempt_id if outcome.attempt_id is not None else '-'}\n"
        f"[bold]Snapshot:[/bold] {outcome.snapshot_ref or '-'}\n"
        f"[bold]Iterations:[/bold] {len(outcome.iterations)}"
    )
    if outcome.lock_holder:
        body += f"\n[bold]Lock holder:[/bold] {outcome.lock_holder} ({outcome.lock_age_seconds or 0:.0f}s)"
    if outcome.quota_info and outcome.quota_info.retry_after_seconds is not None:
        body += f"\n[bold]Retry after:[/bold] {outcome.quota_info.retry_after_seconds}s"
    console.print(
        Panel(
            body,
            title="Execution",
            border_style="green" if outcome.success else "red",
        )
    )
    if outcome.output:
        console.print(Panel(Text(outcome.output), title="Agent output", border_style="dim"))


def _render_revert(outcome: RevertOutcome) -> None:
    if outcome.success:
        body = (
            f"[green]Reverted to checkpoint[/green] {outcome.snapshot_ref}\n\n"
            f"[bold]Attempts reverted:[/bold] {len(outcome.reverted_attempt_ids)}\n"
            f"[bold]Tasks reset to pending:[/bold] "
            f"{', '.join(str(t) for t in outcome.reverted_task_ids) or '-'}"
        )
    else:
        kind = outcome.error_kind.value if outcome.error_kind else "unknown"
        body = f"[red]Revert failed[/red] ({kind})\n\n[bold]Reason:[/bold] {outcome.error}"
    console.print(
        Panel(body, title="Revert", border_style="green" if outcome.success else "red")
    )


def init_db_command() -> None:
    """Create the database tables."""
    from agentmux.main import get_app_context, run_async

    ctx = get_app_context()

    async def _init():
        await init_db(ctx.engine)

    try:
        run_async(ctx, _init)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/red] {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]Database initialized:[/green] {ctx.config.database.url}")


def run(
    task_id: Annotated[int, typer.Argument(help="Task id")],
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", "-t", help="Agent timeout per run, in seconds"),
    ] = None,
    max_iterations: Annotated[
        Optional[int],
        typer.Option("--max-iterations", "-n", min=1, help="Attempts including fix retries"),
    ] = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (panel or json)"),
    ] = "panel",
) -> None:
    """Execute a task through the agent, retrying with suggested fixes."""
    from agentmux.main import get_app_context, run_async

    ctx = get_app_context()
    service = ctx.build_service()

    async def _run():
        sweeper = ctx.build_sweeper()
        await sweeper.start()
        try:
            return await service.execute_task(task_id, timeout=timeout, max_iterations=max_iterations)
        finally:
            await sweeper.stop()
            ctx.lock.release_all()

    outcome = run_async(ctx, _run)
    if format == "json":
        console.print_json(outcome.model_dump_json())
    else:
        _render_execution(outcome)
    if not outcome.success:
        raise typer.Exit(code=1)


def run_project(
    project_id: Annotated[str, typer.Argument(help="Project id")],
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", "-t", help="Agent timeout per task, in seconds"),
    ] = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """Execute every task of a project once, under a single checkpoint."""
    from agentmux.main import get_app_context, run_async

    ctx = get_app_context()
    service = ctx.build_service()

    async def _run() -> ProjectExecutionOutcome:
        sweeper = ctx.build_sweeper()
        await sweeper.start()
        try:
            return await service.execute_project(project_id, timeout=timeout)
        finally:
            await sweeper.stop()
            ctx.lock.release_all()

    outcome = run_async(ctx, _run)
    if format == "json":
        console.print_json(outcome.model_dump_json())
    elif outcome.tasks:
        table = Table(title=f"Project {project_id} (snapshot {outcome.snapshot_ref or '-'})")
        table.add_column("Task", style="cyan", justify="right")
        table.add_column("Attempt", style="dim", justify="right")
        table.add_column("Result")
        table.add_column("Reason", style="dim")
        for t in outcome.tasks:
            if t.success:
                result = "[green]success[/green]"
            else:
                result = f"[red]{t.error_kind.value if t.error_kind else 'failed'}[/red]"
            table.add_row(str(t.task_id), str(t.attempt_id or "-"), result, t.error or "")
        console.print(table)
    else:
        kind = outcome.error_kind.value if outcome.error_kind else "unknown"
        console.print(f"[red]Project run did not start[/red] ({kind}): {outcome.error}")
    if not outcome.success:
        raise typer.Exit(code=1)


def revert(
    task_id: Annotated[int, typer.Argument(help="Task id")],
) -> None:
    """Restore the checkpoint taken before a task's latest execution."""
    from agentmux.main import get_app_context, run_async

    ctx = get_app_context()
    service = ctx.build_service()
    outcome = run_async(ctx, lambda: service.revert_task(task_id))
    _render_revert(outcome)
    if not outcome.success:
        raise typer.Exit(code=1)


def revert_project(
    project_id: Annotated[str, typer.Argument(help="Project id")],
) -> None:
    """Restore the newest project checkpoint and reset its tasks to pending."""
    from agentmux.main import get_app_context, run_async

    ctx = get_app_context()
    service = ctx.build_service()
    outcome = run_async(ctx, lambda: service.revert_project(project_id))
    _render_revert(outcome)
    if not outcome.success:
        raise typer.Exit(code=1)


def can_revert(
    task_id: Annotated[int, typer.Argument(help="Task id")],
) -> None:
    """Show whether a task's latest execution can be reverted."""
    from agentmux.main import get_app_context, run_async

    ctx = get_app_context()
    service = ctx.build_service()
    status = run_async(ctx, lambda: service.can_revert(task_id))
    console.print_json(status.model_dump_json())


def iterations(
    task_id: Annotated[int, typer.Argument(help="Task id")],
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List the recorded iterations of a task."""
    from agentmux.main import get_app_context, run_async

    ctx = get_app_context()
    service = ctx.build_service()
    records = run_async(ctx, lambda: service.get_iterations(task_id))

    if format == "json":
        console.print_json(data=[r.model_dump(mode="json") for r in records])
        return
    if not records:
        console.print("[yellow]No iterations recorded[/yellow]")
        return

    table = Table(title=f"Iterations of task {task_id}")
    table.add_column("Attempt", style="dim", justify="right")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Outcome")
    table.add_column("Command", overflow="fold")
    table.add_column("Applied fix", overflow="fold", style="dim")
    for r in records:
        color = OUTCOME_COLORS.get(r.outcome.value, "white")
        table.add_row(
            str(r.attempt_id),
            str(r.sequence),
            f"[{color}]{r.outcome.value}[/{color}]",
            r.command,
            r.applied_fix or "-",
        )
    console.print(table)


def snapshot(
    path: Annotated[
        Path,
        typer.Argument(help="Project directory", exists=True, file_okay=False),
    ],
) -> None:
    """Commit the working tree of a directory and print the checkpoint SHA."""
    from agentmux.main import get_app_context

    ctx = get_app_context()
    ref = ctx.checkpoints.snapshot(path)
    if ref is None:
        console.print(f"[yellow]No checkpoint taken:[/yellow] {path} is not a git repository")
        raise typer.Exit(code=1)
    console.print(ref)


def diff(
    path: Annotated[
        Path,
        typer.Argument(help="Project directory", exists=True, file_okay=False),
    ],
    ref: Annotated[
        Optional[str],
        typer.Option("--ref", "-r", help="Checkpoint to compare against (default HEAD)"),
    ] = None,
) -> None:
    """Show how a directory differs from a checkpoint."""
    from agentmux.main import get_app_context

    ctx = get_app_context()
    changes = ctx.checkpoints.diff(path, ref)
    if changes is None:
        console.print("[green]No changes[/green]")
        return
    console.print(changes, markup=False, highlight=False)
