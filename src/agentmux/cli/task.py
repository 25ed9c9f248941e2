"""Task management CLI commands.

This module provides CLI commands for adding and listing tasks.
"""

from __future__ import annotations

import json
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from agentmux.database.models.task import TaskStatus
from agentmux.database.queries.task import create_task, list_tasks

app = typer.Typer(help="Task management commands")
console = Console()


@app.command()
def add(
    project_id: Annotated[str, typer.Argument(help="Project id (directory name under the projects root)")],
    title: Annotated[str, typer.Argument(help="Task title")],
    description: Annotated[
        Optional[str],
        typer.Option("--description", "-d", help="Detailed task description"),
    ] = None,
    snippet: Annotated[
        Optional[str],
        typer.Option("--snippet", "-s", help="Code or command for the agent to carry out"),
    ] = None,
) -> None:
    """Add a new task to a project."""
    from agentmux.main import get_app_context, run_async

    ctx = get_app_context()

    async def _create_task():
        async with ctx.session_factory() as session:
            return await create_task(
                session,
                project_id=project_id,
                title=title,
                description=description,
                code_snippet=snippet,
            )

    try:
        task = run_async(ctx, _create_task)
    except Exception as e:
        console.print(f"[red]Error creating task:[/red] {e}")
        raise typer.Exit(code=1)

    panel = Panel(
        f"[green]Task created successfully![/green]\n\n"
        f"[bold]ID:[/bold] {task.id}\n"
        f"[bold]Project:[/bold] {task.project_id}\n"
        f"[bold]Title:[/bold] {task.title}\n"
        f"[bold]Status:[/bold] {task.status.value}",
        title="Task Created",
        border_style="green",
    )
    console.print(panel)


@app.command(name="list")
def list_command(
    project_id: Annotated[Optional[str], typer.Option("--project", "-p", help="Project id")] = None,
    status: Annotated[
        Optional[str],
        typer.Option("--status", "-s", help="Filter by status (pending, completed)"),
    ] = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List tasks."""
    from agentmux.main import get_app_context, run_async

    ctx = get_app_context()

    status_filter = None
    if status is not None:
        try:
            status_filter = TaskStatus(status)
        except ValueError:
            console.print(f"[red]Invalid status:[/red] {status}. Valid values: pending, completed")
            raise typer.Exit(code=1)

    async def _list_tasks():
        async with ctx.session_factory() as session:
            return await list_tasks(session, project_id=project_id, status_filter=status_filter)

    try:
        tasks = run_async(ctx, _list_tasks)
    except Exception as e:
        console.print(f"[red]Error listing tasks:[/red] {e}")
        raise typer.Exit(code=1)

    if format == "json":
        output = [
            {
                "id": t.id,
                "project_id": t.project_id,
                "title": t.title,
                "status": t.status.value,
                "has_snippet": bool(t.code_snippet),
                "created_at": t.created_at.isoformat() if t.created_at else None,
            }
            for t in tasks
        ]
        console.print(json.dumps(output, indent=2))
        return

    if not tasks:
        console.print("[yellow]No tasks found[/yellow]")
        return

    table = Table(title="Tasks")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Project", style="blue")
    table.add_column("Title", style="bold")
    table.add_column("Status", style="magenta")
    table.add_column("Snippet", style="dim")

    for t in tasks:
        status_color = "green" if t.status == TaskStatus.completed else "dim"
        table.add_row(
            str(t.id),
            t.project_id,
            t.title,
            f"[{status_color}]{t.status.value}[/{status_color}]",
            "yes" if t.code_snippet else "-",
        )

    console.print(table)
