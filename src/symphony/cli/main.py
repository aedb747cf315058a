"""Symphony CLI - multi-agent task orchestration."""

import asyncio
import signal as sig
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
import yaml
from rich.console import Console
from rich.table import Table

from symphony import __version__
from symphony.application.engine import SymphonyEngine, create_controller
from symphony.application.task_controller import TaskController
from symphony.domain.models import Task, TaskState
from symphony.infrastructure.config import LANE_CONFIG_FILE, Config, ConfigManager
from symphony.infrastructure.exceptions import SymphonyError
from symphony.infrastructure.logger import setup_logging

T = TypeVar("T")

# Initialize Typer app
app = typer.Typer(
    name="symphony",
    help="Coordinate parallel coding agents on isolated worktrees under human approval gates",
    no_args_is_help=True,
)

console = Console()

_STATE_STYLES = {
    TaskState.ACTIVE: "green",
    TaskState.REVIEW: "cyan",
    TaskState.WAITING_APPROVAL: "cyan",
    TaskState.WAITING_FINAL: "cyan",
    TaskState.NEEDS_HUMAN_INTEGRATION: "yellow",
    TaskState.ESCALATED: "yellow",
    TaskState.TEST_FAILED: "yellow",
    TaskState.FAILED: "red",
    TaskState.CANCELLED: "dim",
    TaskState.COMPLETE: "green",
}

_SAMPLE_LANES = {
    "lanes": {
        "frontend-agent": ["src/ui", "src/components"],
        "backend-agent": ["src/api"],
    },
    "shared": ["src/shared"],
}


# ===== Version =====
@app.command()
def version() -> None:
    """Show Symphony version."""
    console.print(f"[bold]Symphony[/bold] version [cyan]{__version__}[/cyan]")


# ===== Helper Functions =====
def _get_controller() -> tuple[TaskController, ConfigManager]:
    """Build the controller for the project in the current directory."""
    config_manager = ConfigManager()
    config = config_manager.load_config()
    setup_logging(log_level=config.log_level, log_dir=config_manager.get_log_dir())
    return create_controller(config_manager), config_manager


def _run(action: Callable[[TaskController], Awaitable[T]]) -> T:
    """Run an async controller action, turning domain errors into exit code 1."""

    async def _main() -> T:
        controller, _ = _get_controller()
        return await action(controller)

    try:
        return asyncio.run(_main())
    except SymphonyError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _state(state: TaskState) -> str:
    style = _STATE_STYLES.get(state, "white")
    return f"[{style}]{state.value}[/{style}]"


def _print_task(task: Task) -> None:
    console.print(f"[bold]Task {task.id}[/bold]: {task.title}  {_state(task.state)}")
    if task.escalation_reason:
        console.print(f"[yellow]Escalated:[/yellow] {task.escalation_reason}")

    if task.subtasks:
        table = Table(title="Subtasks")
        table.add_column("Subtask", style="cyan")
        table.add_column("Scope")
        table.add_column("Status")
        table.add_column("Progress", justify="right")
        table.add_column("Attempts", justify="right")
        table.add_column("Current")
        for subtask in task.subtasks:
            table.add_row(
                subtask.id,
                ", ".join(subtask.scope),
                "SKIPPED" if subtask.skipped else subtask.status.value,
                f"{subtask.progress}%",
                str(subtask.attempts),
                subtask.current_activity[:50],
            )
        console.print(table)

    if task.unassigned_paths:
        console.print(f"[yellow]Unassigned:[/yellow] {', '.join(task.unassigned_paths)}")
    if task.shared_paths:
        console.print(f"[dim]Shared:[/dim] {', '.join(task.shared_paths)}")

    conflict = task.open_conflict()
    if conflict is not None:
        console.print(f"[yellow]Open conflict {conflict.id}:[/yellow] {', '.join(conflict.paths)}")
        for step in conflict.suggested_resolution:
            console.print(f"  [dim]-[/dim] {step}")

    if task.last_verification and not task.last_verification.passed:
        tail = "\n".join(task.last_verification.output.splitlines()[-10:])
        console.print("[red]Last verification failed:[/red]")
        console.print(f"[dim]{tail}[/dim]")

    if task.errors:
        last = task.errors[-1]
        console.print(f"[dim]Last error ({last.kind.value}): {last.cause}[/dim]")


# ===== Project Commands =====
@app.command()
def init(
    force: bool = typer.Option(False, help="Overwrite existing configuration files"),
) -> None:
    """Initialize Symphony in the current project.

    Creates the .symphony runtime directory with a default config.yaml, and a
    sample symphony.config.yml lane configuration when none exists.
    """
    config_manager = ConfigManager()
    symphony_dir = config_manager.get_symphony_dir()
    for sub in ("state", "tasks", "worktrees", "logs/agents"):
        (symphony_dir / sub).mkdir(parents=True, exist_ok=True)

    config_path = symphony_dir / "config.yaml"
    if force or not config_path.exists():
        config_path.write_text(yaml.safe_dump(Config().model_dump(), sort_keys=False))
        console.print(f"[green]✓[/green] Wrote {config_path}")

    lanes_path = config_manager.project_root / LANE_CONFIG_FILE
    if force or not lanes_path.exists():
        lanes_path.write_text(yaml.safe_dump(_SAMPLE_LANES, sort_keys=False))
        console.print(f"[green]✓[/green] Wrote sample lane configuration {lanes_path}")

    console.print("[green]✓[/green] Symphony initialized")


@app.command()
def submit(
    title: str = typer.Argument(..., help="Short task title"),
    description: str = typer.Option("", "--description", "-d", help="Full task description"),
    source: str = typer.Option("direct", help="Issue reference or 'direct'"),
    path: list[str] = typer.Option([], "--path", "-p", help="Directory the task touches"),  # noqa: B008
) -> None:
    """Submit a task to the queue."""
    controller, _ = _get_controller()
    task = controller.submit(title, description=description, source=source, impact_hint=path)
    console.print(f"[green]✓[/green] Task submitted: [cyan]{task.id}[/cyan]")


@app.command()
def status(
    task_id: str | None = typer.Argument(None, help="Task to show (default: current task)"),
) -> None:
    """Show the queue, the current task and live agents."""
    controller, _ = _get_controller()
    try:
        if task_id:
            _print_task(controller.get_task(task_id))
            return
    except SymphonyError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    snapshot = controller.status()
    if snapshot.current is None:
        console.print("[dim]No current task[/dim]")
    else:
        _print_task(snapshot.current)

    if snapshot.registry.root:
        table = Table(title="Agents")
        table.add_column("Agent", style="cyan")
        table.add_column("Slot", justify="right")
        table.add_column("Attempt", justify="right")
        table.add_column("Last activity")
        table.add_column("Workspace")
        for registration in snapshot.registry.root:
            table.add_row(
                registration.agent_id,
                str(registration.slot),
                str(registration.attempt),
                registration.last_activity.isoformat(timespec="seconds"),
                registration.workspace.path,
            )
        console.print(table)

    if snapshot.pending:
        table = Table(title="Queue")
        table.add_column("ID", style="cyan")
        table.add_column("Source")
        table.add_column("Title")
        for task in snapshot.pending:
            table.add_row(task.id, task.source, task.title)
        console.print(table)
    console.print(f"[dim]{len(snapshot.queue.completed)} task(s) archived[/dim]")


@app.command()
def plan(task_id: str = typer.Argument(..., help="Task ID")) -> None:
    """Run planning for a task in PLANNING."""
    lane_plan = _run(lambda c: c.plan(task_id))
    for subtask in lane_plan.subtasks:
        console.print(f"[cyan]{subtask.role}[/cyan]: {', '.join(subtask.scope)}")
    if lane_plan.unassigned:
        console.print(f"[yellow]Unassigned:[/yellow] {', '.join(lane_plan.unassigned)}")
    console.print("[green]✓[/green] Plan ready for approval")


@app.command()
def assign(
    task_id: str = typer.Argument(..., help="Task ID"),
    path: str = typer.Argument(..., help="Unassigned path"),
    role: str = typer.Argument(..., help="Role that takes the path"),
) -> None:
    """Manually assign an unassigned path to a role."""

    async def _assign(controller: TaskController) -> Task:
        return controller.assign(task_id, path, role)

    _run(_assign)
    console.print(f"[green]✓[/green] {path} assigned to {role}")


# ===== Gate Commands =====
@app.command()
def approve(task_id: str = typer.Argument(..., help="Task ID")) -> None:
    """Approve the plan, the staged review or the final sign-off."""
    task = _run(lambda c: c.approve(task_id))
    console.print(f"[green]✓[/green] Task {task.id} is now {_state(task.state)}")


@app.command()
def reject(
    task_id: str = typer.Argument(..., help="Task ID"),
    reason: str = typer.Option(..., "--reason", "-r", help="Why the work is rejected"),
    replan: bool = typer.Option(False, help="Send an implementation back to planning"),
) -> None:
    """Reject a plan or an implementation."""
    target = TaskState.PLANNING if replan else TaskState.ACTIVE
    task = _run(lambda c: c.reject(task_id, reason, target=target))
    console.print(f"[yellow]✗[/yellow] Task {task.id} rejected, now {_state(task.state)}")


@app.command()
def fail(
    task_id: str = typer.Argument(..., help="Task ID"),
    reason: str = typer.Option(..., "--reason", "-r", help="Failure reason"),
) -> None:
    """Fail a task under review (or an escalated one)."""
    task = _run(lambda c: c.fail(task_id, reason))
    console.print(f"[red]✗[/red] Task {task.id} {_state(task.state)}")


@app.command()
def cancel(
    task_id: str = typer.Argument(..., help="Task ID"),
    force: bool = typer.Option(False, "--force", "-f", help="Cancel and tear down live agents"),
) -> None:
    """Cancel a task."""
    task = _run(lambda c: c.cancel(task_id, force=force))
    console.print(f"[green]✓[/green] Task {task.id} {_state(task.state)}")


@app.command()
def resolve(task_id: str = typer.Argument(..., help="Task ID")) -> None:
    """Continue integration after resolving a conflict by hand."""
    result = _run(lambda c: c.resolve(task_id))
    if result.conflict is not None:
        console.print(
            f"[yellow]New conflict {result.conflict.id}:[/yellow] {', '.join(result.conflict.paths)}"
        )
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Integration resumed ({len(result.applied)} commit(s) applied)")


# ===== Override Commands =====
@app.command()
def retry(task_id: str = typer.Argument(..., help="Task ID")) -> None:
    """Resume an escalated task with fresh attempts."""
    task = _run(lambda c: c.retry(task_id))
    console.print(f"[green]✓[/green] Task {task.id} {_state(task.state)}")


@app.command()
def skip(
    task_id: str = typer.Argument(..., help="Task ID"),
    subtask_id: str = typer.Argument(..., help="Subtask to leave out"),
) -> None:
    """Resume an escalated task without one of its subtasks."""
    task = _run(lambda c: c.skip(task_id, subtask_id))
    console.print(f"[green]✓[/green] Task {task.id} {_state(task.state)}, {subtask_id} skipped")


# ===== Engine Commands =====
@app.command()
def run(
    max_ticks: int | None = typer.Option(None, help="Stop after this many polling steps"),
    exit_when_idle: bool = typer.Option(False, help="Stop when the queue is empty"),
    poll_interval: float | None = typer.Option(None, help="Polling interval in seconds"),
) -> None:
    """Run the engine loop until interrupted with Ctrl+C.

    Examples:
        symphony run                        # Run continuously until Ctrl+C
        symphony run --exit-when-idle       # Drain the queue, then stop
        symphony run --poll-interval 2      # Poll every 2 seconds
    """

    async def _start() -> None:
        controller, config_manager = _get_controller()
        interval = poll_interval or config_manager.load_config().supervisor.poll_interval_seconds
        engine = SymphonyEngine(controller, poll_interval=interval)

        loop = asyncio.get_running_loop()

        def signal_handler(signum: int, frame: Any) -> None:
            console.print("\n[yellow]Shutdown signal received, stopping gracefully...[/yellow]")
            loop.call_soon_threadsafe(lambda: asyncio.ensure_future(engine.shutdown()))

        sig.signal(sig.SIGINT, signal_handler)
        sig.signal(sig.SIGTERM, signal_handler)

        console.print("[blue]Symphony engine running...[/blue]")
        console.print("[dim]Press Ctrl+C to stop gracefully[/dim]")
        ticks = await engine.run(max_ticks=max_ticks, exit_when_idle=exit_when_idle)
        console.print(f"[green]✓[/green] Engine stopped after {ticks} polling step(s)")

    try:
        asyncio.run(_start())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
    except SymphonyError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


@app.command()
def recover() -> None:
    """Discard in-flight agent work and restart the current task at PLANNING."""
    task = _run(lambda c: c.recover())
    if task is None:
        console.print("[green]✓[/green] Recovered; no task to restart")
    else:
        console.print(f"[green]✓[/green] Recovered; task {task.id} is {_state(task.state)}")


@app.command()
def cleanup(
    worktrees: bool = typer.Option(False, help="Remove worktrees not owned by a live agent"),
    state: bool = typer.Option(False, help="Reset queue, current task and registry"),
) -> None:
    """Remove leftover worktrees and/or reset engine state."""
    if not worktrees and not state:
        console.print("[yellow]Nothing to do:[/yellow] pass --worktrees and/or --state")
        raise typer.Exit(1)

    async def _cleanup(controller: TaskController) -> list[Path]:
        removed = await controller.cleanup_worktrees() if worktrees else []
        if state:
            controller.store.reset()
        return removed

    removed = _run(_cleanup)
    if worktrees:
        console.print(f"[green]✓[/green] Removed {len(removed)} worktree(s)")
    if state:
        console.print("[green]✓[/green] State reset")


# ===== Main Entry Point =====
def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except SymphonyError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
