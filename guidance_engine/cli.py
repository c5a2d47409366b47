"""Command line interface for inspecting guidance workflows."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional
from uuid import UUID

import typer

from guidance_engine.config import load_config
from guidance_engine.service import GuidanceService, OperationResult

app = typer.Typer(help="CLI for guidance-engine workflows")

executions_app = typer.Typer(help="Commands for inspecting workflow executions")
progress_app = typer.Typer(help="Commands for inspecting step progress")

app.add_typer(executions_app, name="executions")
app.add_typer(progress_app, name="progress")


@app.callback()
def main(
    ctx: typer.Context,
    database_url: Optional[str] = typer.Option(None, help="Database URL; overrides configuration"),
) -> None:
    """guidance-engine CLI entry point."""
    config = load_config()
    if database_url:
        config.database_url = database_url
    logging.basicConfig(level=config.logging.level)
    ctx.obj = config


def _service(ctx: typer.Context) -> GuidanceService:
    # an in-memory store would have no tables to inspect
    if not ctx.obj.database_url:
        typer.secho(
            "No database configured: pass --database-url or set GUIDANCE_DATABASE_URL",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)
    return GuidanceService.from_config(ctx.obj)


def _run(service: GuidanceService, operation) -> OperationResult:
    async def runner() -> OperationResult:
        try:
            return await operation(service)
        finally:
            await service.store.dispose()

    result = asyncio.run(runner())
    if not result.success:
        typer.secho(f"{result.error.code}: {result.error.message}", fg=typer.colors.RED)
        for issue in result.error.blocking_issues:
            typer.echo(f"  - {issue}")
        raise typer.Exit(code=1)
    return result


@executions_app.command("list")
def executions_list(
    ctx: typer.Context,
    active: bool = typer.Option(False, help="Only executions not yet completed"),
) -> None:
    """
    List workflow executions, newest first.

    Example:
        guidance executions list --active
        # Output: 3f2c...    task-42    role_transitioned    4/12
    """
    result = _run(_service(ctx), lambda s: s.list_executions(active_only=active))
    if not result.data:
        typer.echo("No executions found")
        return
    for execution in result.data:
        typer.echo(
            f"{execution.id}\t{execution.task_id or '-'}\t"
            f"{execution.state.phase}\t{execution.steps_completed}/{execution.total_steps}"
        )


@executions_app.command("show")
def executions_show(ctx: typer.Context, execution_id: UUID) -> None:
    """
    Show the summary and transition history of one execution.

    Example:
        guidance executions show 3f2c1a9e-...
    """
    service = _service(ctx)

    async def load(s: GuidanceService) -> OperationResult:
        summary = await s.get_execution_summary(execution_id)
        if not summary.success:
            return summary
        history = await s.get_transition_history(execution_id)
        return OperationResult.ok((summary.data, history.data or []))

    summary, history = _run(service, load).data
    typer.echo(f"Execution {summary.execution_id}: {summary.phase}")
    typer.echo(f"Task: {summary.task_id or '-'}")
    typer.echo(f"Current role: {summary.current_role_id}")
    typer.echo(f"Current step: {summary.current_step_id or '-'}")
    typer.echo(
        f"Progress: {summary.steps_completed}/{summary.total_steps} ({summary.percent_complete}%)"
    )
    for status, count in summary.progress_by_status.items():
        typer.echo(f"  {status}: {count}")
    for record in history:
        typer.echo(
            f"- {record.transitioned_at}: {record.from_role_id} -> {record.to_role_id}"
            + (f" ({record.handoff_message})" if record.handoff_message else "")
        )


@progress_app.command("summary")
def progress_summary(ctx: typer.Context, role_name: str) -> None:
    """
    Show aggregated step progress for a role.

    Example:
        guidance progress summary senior-developer
        # Output: total=5 completed=3 failed=1 in_progress=1 not_started=0
        #         average_duration=42.5s success_rate=60.0%
    """

    async def load(s: GuidanceService) -> OperationResult:
        role = await s.get_role(role_name)
        if not role.success:
            return role
        return await s.get_progress_summary(role.data.id)

    summary = _run(_service(ctx), load).data
    typer.echo(f"Role {role_name}")
    typer.echo(
        f"total={summary.total} completed={summary.completed} failed={summary.failed} "
        f"in_progress={summary.in_progress} not_started={summary.not_started}"
    )
    typer.echo(
        f"average_duration={summary.average_duration:.1f}s success_rate={summary.success_rate * 100:.1f}%"
    )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
