"""Main CLI for agent-remote."""

import asyncio
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ..core.config import load_config
from ..core.errors import ConfigurationError
from ..core.session_logger import SessionLogger
from ..core.session_manager import SessionManager
from ..core.workflow import TERMINAL_STATUSES, WorkflowStatus, WorkflowStore
from ..health.checker import CheckStatus, HealthChecker
from ..utils.rich_logging import setup_rich_logging


console = Console()

ABANDONED_STATUSES = {WorkflowStatus.FAILED.value, WorkflowStatus.CANCELLED.value}

STATUS_STYLES = {
    "running": "green",
    "waiting_input": "yellow",
    "completed": "cyan",
    "error": "red",
    "interrupted": "red",
}


def _sessions(config) -> SessionManager:
    return SessionManager(
        config.server.sessions_path,
        stale_running_minutes=config.session.stale_running_minutes,
        expiry_hours=config.session.expiry_hours,
    )


@click.group()
@click.option("--config", "-c", "config_path", default="config/agent-remote.yaml", help="Config file")
@click.pass_context
def cli(ctx, config_path):
    """agent-remote - webhook-driven coding agents."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config_path)
    ctx.obj["config"] = load_config(Path(config_path))


@cli.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", "-p", type=int, default=None, help="Port (default from config)")
@click.option("--log-level", default="INFO", help="Log level")
@click.pass_context
def serve(ctx, host, port, log_level):
    """Start the webhook server."""
    from ..web.server import run_server

    config = ctx.obj["config"]
    setup_rich_logging(logs_dir=config.server.logs_dir, log_level=log_level)
    try:
        run_server(config, host=host, port=port)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/]")
        sys.exit(1)


@cli.command()
@click.option("--active", is_flag=True, help="Only running or waiting sessions")
@click.pass_context
def sessions(ctx, active):
    """List persisted sessions."""
    manager = _sessions(ctx.obj["config"])
    items = asyncio.run(manager.get_active_sessions() if active else manager.get_all_sessions())

    if not items:
        console.print("[dim]No sessions[/]")
        return

    table = Table(title=f"Sessions ({len(items)})")
    table.add_column("Task")
    table.add_column("Title")
    table.add_column("Provider")
    table.add_column("Status")
    table.add_column("Messages", justify="right")
    table.add_column("Updated")

    for session in sorted(items, key=lambda s: s.updated_at, reverse=True):
        style = STATUS_STYLES.get(session.status, "white")
        table.add_row(
            session.task_id,
            session.title[:50],
            session.provider,
            f"[{style}]{session.status}[/]",
            str(session.message_count),
            session.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@cli.command()
@click.argument("task_id", required=False)
@click.option("--delete", is_flag=True, help="Delete the workflow and session for TASK_ID")
@click.pass_context
def workflows(ctx, task_id, delete):
    """List workflows, show one in detail, or delete one.

    Deleting lets a failed or cancelled task be assigned again. Run it while
    the server is stopped; a running server should use DELETE /workflows/{id}.
    """
    config = ctx.obj["config"]
    store = WorkflowStore(config.server.workflows_path)

    if delete:
        if not task_id:
            raise click.UsageError("--delete requires TASK_ID")
        if not store.delete(task_id):
            console.print(f"[red]No workflow for task {task_id}[/]")
            sys.exit(1)
        asyncio.run(_sessions(config).delete_session(task_id))
        console.print(f"[green]✓ Deleted workflow for task {task_id}[/]")
        return

    if task_id:
        workflow = store.get(task_id)
        if workflow is None:
            console.print(f"[red]No workflow for task {task_id}[/]")
            sys.exit(1)
        for key, value in workflow.to_dict().items():
            if key != "metadata":
                console.print(f"[bold]{key}[/]: {value}")
        if workflow.metadata.get("error"):
            console.print(f"[red]error[/]: {workflow.metadata['error']}")
        return

    items = store.all()
    if not items:
        console.print("[dim]No workflows[/]")
        return

    table = Table(title=f"Workflows ({len(items)})")
    table.add_column("Task")
    table.add_column("Repository")
    table.add_column("Branch")
    table.add_column("Status")
    table.add_column("PR")

    for workflow in sorted(items, key=lambda w: w.updated_at, reverse=True):
        done = workflow.status in TERMINAL_STATUSES
        table.add_row(
            workflow.task_id,
            workflow.repository_id or "-",
            workflow.working_branch or "-",
            f"[dim]{workflow.status}[/]" if done else f"[green]{workflow.status}[/]",
            f"#{workflow.pull_request_number}" if workflow.pull_request_number else "-",
        )
    console.print(table)


@cli.command()
@click.option("--online", is_flag=True, help="Also check the GitHub API")
@click.pass_context
def health(ctx, online):
    """Check configuration and provider availability."""
    checker = HealthChecker(ctx.obj["config"], config_path=ctx.obj["config_path"])
    results = checker.run_all_checks(online=online)

    icons = {
        CheckStatus.PASSED: "[green]✓[/]",
        CheckStatus.WARNING: "[yellow]![/]",
        CheckStatus.FAILED: "[red]✗[/]",
        CheckStatus.SKIPPED: "[dim]-[/]",
    }
    table = Table()
    table.add_column("")
    table.add_column("Check")
    table.add_column("Result")
    for result in results:
        message = result.message
        if result.fix_action:
            message += f"\n[dim]→ {result.fix_action}[/]"
        table.add_row(icons[result.status], result.name, message)
    console.print(table)

    overall = HealthChecker.overall_status(results)
    console.print(f"\nOverall: [bold]{overall}[/]")
    if overall != "healthy":
        sys.exit(1)


@cli.command()
@click.option("--max-age-hours", type=float, default=None, help="Override session expiry")
@click.option("--log-retention-days", type=int, default=7, help="Delete session logs older than this")
@click.option("--failed", is_flag=True, help="Also delete FAILED and CANCELLED workflows")
@click.pass_context
def cleanup(ctx, max_age_hours, log_retention_days, failed):
    """Recover stuck sessions, expire old ones and prune session logs."""
    config = ctx.obj["config"]
    manager = _sessions(config)

    async def _run():
        removed = await manager.recover_sessions()
        expired = await manager.cleanup_expired(max_age_hours)
        return removed, expired

    removed, expired = asyncio.run(_run())
    logs_removed = SessionLogger.cleanup_old_sessions(config.server.logs_dir, log_retention_days)

    console.print(f"[green]✓ Recovered {len(removed)} stuck/errored sessions[/]")
    console.print(f"[green]✓ Expired {expired} old sessions[/]")
    console.print(f"[green]✓ Removed {logs_removed} old session logs[/]")

    if failed:
        store = WorkflowStore(config.server.workflows_path)
        dead = [w.task_id for w in store.all() if w.status in ABANDONED_STATUSES]
        for task_id in dead:
            store.delete(task_id)
        console.print(f"[green]✓ Deleted {len(dead)} failed/cancelled workflows[/]")


if __name__ == "__main__":
    cli()
