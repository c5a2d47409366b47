from __future__ import annotations

import logging
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..contracts import (
    CompletedState,
    CompletedStepRecord,
    InProgressState,
    StepAssignment,
    StepStatus,
    utcnow,
)
from ..errors import ExecutionCompleted, ExecutionNotFound, RoleMismatch, StepNotFound
from ..persistence import UnitOfWork, WorkflowExecution, WorkflowStore
from .repair import last_transition


class ExecutionSummary(BaseModel):
    execution_id: UUID
    task_id: Optional[str] = None
    current_role_id: UUID
    current_step_id: Optional[UUID] = None
    phase: str
    steps_completed: int = 0
    total_steps: int = 0
    percent_complete: float = 0.0
    progress_by_status: Dict[str, int] = Field(default_factory=dict)
    transitions: int = 0
    completed: bool = False


class ExecutionService:
    """Pointer bookkeeping for a running execution."""

    def __init__(self, store: WorkflowStore, logger: Optional[logging.Logger] = None) -> None:
        self._store = store
        self._logger = logger or logging.getLogger(__name__)

    async def get_execution(self, execution_id: UUID) -> WorkflowExecution:
        async with self._store.transaction("get_execution", execution_id=execution_id) as uow:
            return await self._load(uow, execution_id)

    async def get_execution_for_task(self, task_id: str) -> WorkflowExecution:
        async with self._store.transaction("get_execution_for_task", task_id=task_id) as uow:
            execution = await uow.executions.latest_for_task(task_id)
            if execution is None:
                raise ExecutionNotFound(task_id=task_id)
            return execution

    async def list_executions(self, active_only: bool = False) -> List[WorkflowExecution]:
        async with self._store.transaction("list_executions") as uow:
            return await uow.executions.list_all(active_only=active_only)

    async def attach_task(self, execution_id: UUID, task_id: str) -> WorkflowExecution:
        async with self._store.transaction("attach_task", execution_id=execution_id, task_id=task_id) as uow:
            execution = await self._load(uow, execution_id)
            execution.task_id = task_id
            await uow.executions.save(execution)
        self._logger.info(f"Attached task={task_id} to execution={execution_id}")
        return execution

    async def assign_step(self, execution_id: UUID, step_id: UUID) -> WorkflowExecution:
        """Point the execution at ``step_id``, writing pointer and hint together."""
        async with self._store.transaction("assign_step", execution_id=execution_id, step_id=step_id) as uow:
            execution = await self._load_open(uow, execution_id)
            step = await uow.steps.get(step_id)
            if step is None:
                raise StepNotFound(step_id)
            if step.role_id != execution.current_role_id:
                raise RoleMismatch(
                    f"Step '{step.name}' does not belong to the execution's current role",
                    execution_id=str(execution_id),
                    step_id=str(step_id),
                    step_role_id=str(step.role_id),
                    current_role_id=str(execution.current_role_id),
                )

            previous = execution.state
            execution.current_step_id = step.id
            execution.set_state(
                InProgressState(
                    current_step=StepAssignment.for_step(step),
                    last_transition=last_transition(previous),
                    last_completed_step=getattr(previous, "last_completed_step", None),
                    progress_markers=getattr(previous, "progress_markers", []),
                )
            )
            await uow.executions.save(execution)
        self._logger.info(f"Assigned step={step.name} to execution={execution_id}")
        return execution

    async def record_step_completion(self, execution_id: UUID, step_id: UUID) -> WorkflowExecution:
        async with self._store.transaction(
            "record_step_completion", execution_id=execution_id, step_id=step_id
        ) as uow:
            execution = await self._load_open(uow, execution_id)
            step = await uow.steps.get(step_id)
            if step is None:
                raise StepNotFound(step_id)

            previous = execution.state
            completed = CompletedStepRecord(id=step.id)
            markers = [*getattr(previous, "progress_markers", []), step.name]
            execution.steps_completed += 1
            execution.set_state(
                InProgressState(
                    current_step=getattr(previous, "current_step", None),
                    last_transition=last_transition(previous),
                    last_completed_step=completed,
                    progress_markers=markers,
                )
            )
            await uow.executions.save(execution)
        return execution

    async def complete_execution(self, execution_id: UUID) -> WorkflowExecution:
        async with self._store.transaction("complete_execution", execution_id=execution_id) as uow:
            execution = await self._load_open(uow, execution_id)
            now = utcnow()
            execution.completed_at = now
            execution.set_state(
                CompletedState(
                    completed_at=now,
                    last_completed_step=getattr(execution.state, "last_completed_step", None),
                )
            )
            await uow.executions.save(execution)
        self._logger.info(f"Completed execution={execution_id}")
        return execution

    async def get_execution_summary(self, execution_id: UUID) -> ExecutionSummary:
        """Aggregate view of an execution. Never writes."""
        async with self._store.transaction("get_execution_summary", execution_id=execution_id) as uow:
            execution = await self._load(uow, execution_id)
            records = await uow.progress.list_for_execution(execution_id)
            history = await uow.history.list_for_execution(execution_id)

        by_status = {status.value: 0 for status in StepStatus}
        for record in records:
            by_status[record.status] = by_status.get(record.status, 0) + 1
        percent = (
            round(execution.steps_completed / execution.total_steps * 100, 1)
            if execution.total_steps
            else 0.0
        )
        return ExecutionSummary(
            execution_id=execution.id,
            task_id=execution.task_id,
            current_role_id=execution.current_role_id,
            current_step_id=execution.current_step_id,
            phase=execution.state.phase,
            steps_completed=execution.steps_completed,
            total_steps=execution.total_steps,
            percent_complete=percent,
            progress_by_status=by_status,
            transitions=len(history),
            completed=execution.completed_at is not None,
        )

    async def _load(self, uow: UnitOfWork, execution_id: UUID) -> WorkflowExecution:
        execution = await uow.executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFound(execution_id=execution_id)
        return execution

    async def _load_open(self, uow: UnitOfWork, execution_id: UUID) -> WorkflowExecution:
        execution = await self._load(uow, execution_id)
        if execution.completed_at is not None:
            raise ExecutionCompleted(execution_id)
        return execution
