"""Step progress tracking: one progress row per attempt at a step."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..contracts import StepResult, StepStatus, as_utc, utcnow
from ..errors import (
    ConstraintViolation,
    IllegalStatusTransition,
    NoProgressRecordFound,
    StepAlreadyInProgress,
)
from ..persistence import UnitOfWork, WorkflowStepProgress, WorkflowStore


class ActionResult(BaseModel):
    """Outcome of a single guided action executed by the agent."""

    action_id: str
    action_name: str
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    execution_time: Optional[float] = None


class StepCompletionData(BaseModel):
    result: StepResult = StepResult.SUCCESS
    action_results: List[ActionResult] = Field(default_factory=list)
    duration: Optional[float] = Field(default=None, description="Seconds; derived when omitted")
    output: Dict[str, Any] = Field(default_factory=dict)


class StepFailureData(BaseModel):
    errors: List[str] = Field(default_factory=list)
    action_results: List[ActionResult] = Field(default_factory=list)


class RoleProgressSummary(BaseModel):
    role_id: UUID
    total: int = 0
    completed: int = 0
    failed: int = 0
    in_progress: int = 0
    not_started: int = 0
    average_duration: float = 0.0
    success_rate: float = 0.0


class StepProgressTracker:
    """Records start/update/complete/fail of a step attempt."""

    def __init__(self, store: WorkflowStore, logger: Optional[logging.Logger] = None) -> None:
        self._store = store
        self._logger = logger or logging.getLogger(__name__)

    async def start_step(
        self,
        step_id: UUID,
        execution_id: UUID,
        role_id: UUID,
        task_id: Optional[str] = None,
    ) -> WorkflowStepProgress:
        """Open a new IN_PROGRESS row for the step.

        A concurrent writer that opened the row first trips the partial unique
        index on open attempts; that surfaces as :class:`StepAlreadyInProgress`.
        """
        try:
            async with self._store.transaction(
                "start_step", step_id=step_id, execution_id=execution_id, role_id=role_id
            ) as uow:
                open_row = await uow.progress.in_progress_for(execution_id, step_id)
                if open_row is not None:
                    raise StepAlreadyInProgress(
                        f"Step {step_id} is already in progress for execution {execution_id}",
                        step_id=str(step_id),
                        execution_id=str(execution_id),
                        progress_id=open_row.id,
                    )
                record = WorkflowStepProgress(
                    step_id=step_id,
                    execution_id=execution_id,
                    role_id=role_id,
                    task_id=task_id,
                    status=StepStatus.IN_PROGRESS.value,
                    started_at=utcnow(),
                    execution_data={"phase": "GUIDANCE_PREPARED"},
                )
                await uow.progress.add(record)
        except ConstraintViolation as exc:
            raise StepAlreadyInProgress(
                f"Step {step_id} is already in progress for execution {execution_id}",
                step_id=str(step_id),
                execution_id=str(execution_id),
            ) from exc

        self._logger.info(f"Started step={step_id} execution={execution_id} progress={record.id}")
        return record

    async def update_progress(
        self,
        step_id: UUID,
        data: Dict[str, Any],
        execution_id: Optional[UUID] = None,
    ) -> WorkflowStepProgress:
        """Merge ``data`` into the latest row's execution data; status is unchanged."""
        async with self._store.transaction("update_progress", step_id=step_id) as uow:
            record = await self._latest_open(uow, step_id, execution_id, target="update")
            record.execution_data = {**(record.execution_data or {}), "phase": "EXECUTING", **data}
            await uow.progress.save(record)
        return record

    async def complete_step(
        self,
        step_id: UUID,
        data: Optional[StepCompletionData] = None,
        execution_id: Optional[UUID] = None,
    ) -> WorkflowStepProgress:
        data = data or StepCompletionData()
        async with self._store.transaction("complete_step", step_id=step_id) as uow:
            record = await self._latest_open(uow, step_id, execution_id, target=StepStatus.COMPLETED.value)
            completed_at = utcnow()
            if data.duration is not None:
                duration = data.duration
            elif record.started_at is not None:
                duration = (completed_at - as_utc(record.started_at)).total_seconds()
            else:
                duration = None

            record.status = StepStatus.COMPLETED.value
            record.completed_at = completed_at
            record.duration = duration
            record.result = data.result.value
            record.execution_data = {
                **(record.execution_data or {}),
                "phase": "COMPLETED",
                "action_results": [r.model_dump() for r in data.action_results],
                "output": data.output,
            }
            await uow.progress.save(record)

        self._logger.info(f"Completed step={step_id} progress={record.id} duration={duration}")
        return record

    async def fail_step(
        self,
        step_id: UUID,
        data: Optional[StepFailureData] = None,
        execution_id: Optional[UUID] = None,
    ) -> WorkflowStepProgress:
        data = data or StepFailureData()
        async with self._store.transaction("fail_step", step_id=step_id) as uow:
            record = await self._latest_open(uow, step_id, execution_id, target=StepStatus.FAILED.value)
            failed_at = utcnow()
            record.status = StepStatus.FAILED.value
            record.failed_at = failed_at
            record.result = StepResult.FAILURE.value
            record.error_details = {
                "errors": list(data.errors),
                "action_results": [r.model_dump() for r in data.action_results],
                "timestamp": failed_at.isoformat(),
            }
            await uow.progress.save(record)

        self._logger.warning(f"Failed step={step_id} progress={record.id} errors={data.errors}")
        return record

    async def get_step_progress(self, step_id: UUID) -> Optional[WorkflowStepProgress]:
        async with self._store.transaction("get_step_progress", step_id=step_id) as uow:
            return await uow.progress.latest_for_step(step_id)

    async def list_execution_progress(self, execution_id: UUID) -> List[WorkflowStepProgress]:
        async with self._store.transaction("list_execution_progress", execution_id=execution_id) as uow:
            return await uow.progress.list_for_execution(execution_id)

    async def get_progress_summary(self, role_id: UUID) -> RoleProgressSummary:
        """Aggregate every attempt recorded for a role. Read-only."""
        async with self._store.transaction("get_progress_summary", role_id=role_id) as uow:
            records = await uow.progress.list_for_role(role_id)
        return summarize_progress(role_id, records)

    async def _latest_open(
        self,
        uow: UnitOfWork,
        step_id: UUID,
        execution_id: Optional[UUID],
        target: str,
    ) -> WorkflowStepProgress:
        record = await uow.progress.latest_for_step(step_id, execution_id)
        if record is None:
            raise NoProgressRecordFound(step_id)
        if record.status in (StepStatus.COMPLETED.value, StepStatus.FAILED.value):
            raise IllegalStatusTransition(record.status, target, step_id=str(step_id), progress_id=record.id)
        return record


def summarize_progress(role_id: UUID, records: List[WorkflowStepProgress]) -> RoleProgressSummary:
    counts = {status: 0 for status in StepStatus}
    for record in records:
        counts[StepStatus(record.status)] += 1

    durations = [
        r.duration
        for r in records
        if r.status == StepStatus.COMPLETED.value and r.duration is not None
    ]
    total = len(records)
    completed = counts[StepStatus.COMPLETED]
    return RoleProgressSummary(
        role_id=role_id,
        total=total,
        completed=completed,
        failed=counts[StepStatus.FAILED],
        in_progress=counts[StepStatus.IN_PROGRESS],
        not_started=counts[StepStatus.NOT_STARTED],
        average_duration=sum(durations) / len(durations) if durations else 0.0,
        success_rate=completed / total if total else 0.0,
    )
