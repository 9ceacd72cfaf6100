"""Core task commands for taskmr."""

import contextlib
import json
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from taskmr.core.taskmr_core.config import TaskmrConfig
from taskmr.core.taskmr_core.errors import TaskmrError
from taskmr.core.taskmr_core.service import EventSourcedTaskService, TaskService, create_service
from taskmr.core.taskmr_core.state import Task, TaskFilter, TaskStatus

console = Console()


@contextlib.contextmanager
def open_service(ctx: typer.Context) -> Iterator[TaskService]:
    """Open the configured task service, turning task errors into exit codes."""
    config: TaskmrConfig = ctx.obj
    service = None
    try:
        service = create_service(config)
        yield service
    except TaskmrError as e:
        console.print(f"✗ {e}", style="red")
        raise typer.Exit(code=e.exit_code)
    finally:
        if service is not None:
            service.shutdown()


def _require_event_sourced(service: TaskService) -> EventSourcedTaskService:
    if not isinstance(service, EventSourcedTaskService):
        console.print("✗ This command needs the event-sourced backend (--backend es)", style="red")
        raise typer.Exit(code=1)
    return service


def _status_label(task: Task) -> str:
    if task.status == TaskStatus.CLOSED:
        return "[dim]closed[/dim]"
    return "[green]open[/green]"


def add(
    ctx: typer.Context,
    title: str,
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Task description"),
    priority: Optional[int] = typer.Option(None, "--priority", "-p", help="Task priority (default 10)"),
    cost: Optional[int] = typer.Option(None, "--cost", "-c", help="Task cost (default 10)"),
) -> None:
    """Add a new task."""
    with open_service(ctx) as service:
        task = service.add(title, description=description, priority=priority, cost=cost)

    console.print(f"✓ Added task {task.sequential_id}: {task.title}", style="green")
    console.print(f"  Task ID: {task.task_id}", style="dim")


def edit(
    ctx: typer.Context,
    task_ref: str = typer.Argument(..., help="Sequential id or task id"),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="New title"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="New description (empty to clear)"),
    priority: Optional[int] = typer.Option(None, "--priority", "-p", help="New priority"),
    cost: Optional[int] = typer.Option(None, "--cost", "-c", help="New cost"),
    expect_version: Optional[int] = typer.Option(None, "--expect-version", help="Fail if the task moved past this version"),
) -> None:
    """Edit a task's title, description, priority or cost."""
    with open_service(ctx) as service:
        task = service.edit(
            service.resolve(task_ref),
            title=title,
            description=description,
            priority=priority,
            cost=cost,
            expected_version=expect_version,
        )

    console.print(f"✓ Edited task {task.sequential_id}: {task.title}", style="green")


def close(
    ctx: typer.Context,
    task_ref: str = typer.Argument(..., help="Sequential id or task id"),
    expect_version: Optional[int] = typer.Option(None, "--expect-version", help="Fail if the task moved past this version"),
) -> None:
    """Close an open task."""
    with open_service(ctx) as service:
        task = service.close(service.resolve(task_ref), expected_version=expect_version)

    console.print(f"✓ Closed task {task.sequential_id}: {task.title}", style="green")


def reopen(
    ctx: typer.Context,
    task_ref: str = typer.Argument(..., help="Sequential id or task id"),
    expect_version: Optional[int] = typer.Option(None, "--expect-version", help="Fail if the task moved past this version"),
) -> None:
    """Reopen a closed task."""
    with open_service(ctx) as service:
        task = service.reopen(service.resolve(task_ref), expected_version=expect_version)

    console.print(f"✓ Reopened task {task.sequential_id}: {task.title}", style="green")


def list_items(
    ctx: typer.Context,
    show_all: bool = typer.Option(False, "--all", "-a", help="Include closed tasks"),
    closed: bool = typer.Option(False, "--closed", help="Show only closed tasks"),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Only titles containing this text"),
) -> None:
    """List tasks (open tasks by default)."""
    if closed:
        status = TaskStatus.CLOSED
    elif show_all:
        status = None
    else:
        status = TaskStatus.OPEN
    task_filter = TaskFilter(status=status, title_contains=search)

    with open_service(ctx) as service:
        tasks = list(service.list_tasks(task_filter))

    if not tasks:
        console.print("📋 No tasks found", style="dim")
        console.print("💡 Try: taskmr add \"Your first task\"", style="dim")
        return

    tasks_table = Table(title="📋 Tasks", show_header=True, header_style="bold cyan")
    tasks_table.add_column("ID", justify="right", style="bold")
    tasks_table.add_column("Title")
    tasks_table.add_column("Status")
    tasks_table.add_column("Priority", justify="right")
    tasks_table.add_column("Cost", justify="right")

    for task in tasks:
        tasks_table.add_row(
            str(task.sequential_id),
            task.title,
            _status_label(task),
            str(task.priority),
            str(task.cost),
        )

    console.print(tasks_table)
    console.print(f"Summary: {len(tasks)} task{'s' if len(tasks) != 1 else ''}", style="dim")


def show(
    ctx: typer.Context,
    task_ref: str = typer.Argument(..., help="Sequential id or task id"),
) -> None:
    """Show one task in detail."""
    with open_service(ctx) as service:
        task = service.get(service.resolve(task_ref))

    details = Table(show_header=False, box=None, padding=(0, 2))
    details.add_column("Field", style="bold")
    details.add_column("Value")
    details.add_row("Task ID", task.task_id)
    details.add_row("Status", _status_label(task))
    details.add_row("Description", task.description or "[dim]-[/dim]")
    details.add_row("Priority", str(task.priority))
    details.add_row("Cost", str(task.cost))
    details.add_row("Version", str(task.version))
    details.add_row("Created", task.created_at.strftime("%Y-%m-%d %H:%M"))
    details.add_row("Updated", task.updated_at.strftime("%Y-%m-%d %H:%M"))

    console.print(Panel(details, title=f"#{task.sequential_id} {task.title}", border_style="blue"))


def history(
    ctx: typer.Context,
    task_ref: str = typer.Argument(..., help="Sequential id or task id"),
) -> None:
    """Show the event history of a task."""
    with open_service(ctx) as service:
        es_service = _require_event_sourced(service)
        events = es_service.history(es_service.resolve(task_ref))

    history_table = Table(title="🕓 Task History", show_header=True, header_style="bold cyan")
    history_table.add_column("#", justify="right")
    history_table.add_column("Event")
    history_table.add_column("When")
    history_table.add_column("Details", style="dim")

    for event in events:
        history_table.add_row(
            str(event.sequence),
            event.event_type,
            event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            json.dumps(event.payload.model_dump(exclude_unset=True), ensure_ascii=False),
        )

    console.print(history_table)


def rebuild(ctx: typer.Context) -> None:
    """Rebuild the task projection from the event log."""
    with open_service(ctx) as service:
        count = _require_event_sourced(service).rebuild()

    console.print(f"✓ Rebuilt projection for {count} task{'s' if count != 1 else ''}", style="green")


def verify(ctx: typer.Context) -> None:
    """Check that the task projection matches the event log."""
    with open_service(ctx) as service:
        mismatched = _require_event_sourced(service).verify()

    if not mismatched:
        console.print("✓ Projection matches event log", style="green")
        return

    console.print(f"✗ Projection differs from event log for {len(mismatched)} task(s):", style="red")
    for task_id in mismatched:
        console.print(f"  • {task_id}", style="dim red")
    console.print("💡 Run: taskmr rebuild", style="dim")
    raise typer.Exit(code=3)
