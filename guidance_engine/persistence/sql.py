"""SQLAlchemy implementations of the repository protocols.

Each repository is bound to the ``AsyncSession`` of one unit of work; none of
them commit. Commit and rollback belong to :class:`~.store.WorkflowStore`.
"""

from __future__ import annotations

from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..contracts import StepStatus, utcnow
from .models import (
    RoleTransition,
    RoleTransitionRecord,
    Subtask,
    SubtaskDependency,
    WorkflowExecution,
    WorkflowRole,
    WorkflowStep,
    WorkflowStepProgress,
)
from .repository import (
    ExecutionRepository,
    ProgressRepository,
    RoleRepository,
    StepRepository,
    SubtaskRepository,
    TransitionHistoryRepository,
    TransitionRepository,
)


class _SessionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _first(self, statement: Any) -> Any:
        result = await self._session.execute(statement.limit(1))
        return result.scalars().first()

    async def _all(self, statement: Any) -> list[Any]:
        result = await self._session.execute(statement)
        return list(result.scalars().all())

    async def _persist(self, obj: Any) -> Any:
        self._session.add(obj)
        await self._session.flush()
        return obj


class SQLRoleRepository(_SessionRepository, RoleRepository):
    async def get(self, role_id: UUID) -> WorkflowRole | None:
        return await self._session.get(WorkflowRole, role_id)

    async def get_by_name(self, name: str) -> WorkflowRole | None:
        return await self._first(select(WorkflowRole).where(WorkflowRole.name == name))

    async def list_all(self, active_only: bool = True) -> list[WorkflowRole]:
        statement = select(WorkflowRole).order_by(WorkflowRole.priority, WorkflowRole.name)
        if active_only:
            statement = statement.where(WorkflowRole.is_active.is_(True))
        return await self._all(statement)

    async def add(self, role: WorkflowRole) -> WorkflowRole:
        return await self._persist(role)


class SQLStepRepository(_SessionRepository, StepRepository):
    async def get(self, step_id: UUID) -> WorkflowStep | None:
        return await self._session.get(WorkflowStep, step_id)

    async def first_for_role(self, role_id: UUID) -> WorkflowStep | None:
        return await self._first(
            select(WorkflowStep)
            .where(WorkflowStep.role_id == role_id)
            .order_by(WorkflowStep.sequence_number)
        )

    async def next_after(self, role_id: UUID, sequence_number: int) -> WorkflowStep | None:
        return await self._first(
            select(WorkflowStep)
            .where(
                WorkflowStep.role_id == role_id,
                WorkflowStep.sequence_number > sequence_number,
            )
            .order_by(WorkflowStep.sequence_number)
        )

    async def list_for_role(self, role_id: UUID) -> list[WorkflowStep]:
        return await self._all(
            select(WorkflowStep)
            .where(WorkflowStep.role_id == role_id)
            .order_by(WorkflowStep.sequence_number)
        )

    async def count_for_roles(self, role_ids: Sequence[UUID]) -> int:
        if not role_ids:
            return 0
        result = await self._session.execute(
            select(func.count(WorkflowStep.id)).where(WorkflowStep.role_id.in_(list(role_ids)))
        )
        return int(result.scalar_one())

    async def add(self, step: WorkflowStep) -> WorkflowStep:
        return await self._persist(step)


class SQLTransitionRepository(_SessionRepository, TransitionRepository):
    async def get(self, transition_id: UUID) -> RoleTransition | None:
        return await self._session.get(RoleTransition, transition_id)

    async def list_from_role(self, role_id: UUID, active_only: bool = True) -> list[RoleTransition]:
        statement = (
            select(RoleTransition)
            .where(RoleTransition.from_role_id == role_id)
            .order_by(RoleTransition.transition_name)
        )
        if active_only:
            statement = statement.where(RoleTransition.is_active.is_(True))
        return await self._all(statement)

    async def add(self, transition: RoleTransition) -> RoleTransition:
        return await self._persist(transition)


class SQLExecutionRepository(_SessionRepository, ExecutionRepository):
    async def get(self, execution_id: UUID, refresh: bool = False) -> WorkflowExecution | None:
        return await self._session.get(
            WorkflowExecution, execution_id, populate_existing=refresh
        )

    async def latest_for_task(self, task_id: str) -> WorkflowExecution | None:
        return await self._first(
            select(WorkflowExecution)
            .where(WorkflowExecution.task_id == task_id)
            .order_by(WorkflowExecution.created_at.desc())
        )

    async def list_all(self, active_only: bool = False) -> list[WorkflowExecution]:
        statement = select(WorkflowExecution).order_by(WorkflowExecution.created_at.desc())
        if active_only:
            statement = statement.where(WorkflowExecution.completed_at.is_(None))
        return await self._all(statement)

    async def add(self, execution: WorkflowExecution) -> WorkflowExecution:
        return await self._persist(execution)

    async def save(self, execution: WorkflowExecution) -> WorkflowExecution:
        execution.updated_at = utcnow()
        return await self._persist(execution)

    async def move_to_role(
        self,
        execution_id: UUID,
        expected_role_id: UUID,
        new_role_id: UUID,
        execution_state: dict[str, Any],
    ) -> bool:
        result = await self._session.execute(
            update(WorkflowExecution)
            .where(
                WorkflowExecution.id == execution_id,
                WorkflowExecution.current_role_id == expected_role_id,
            )
            .values(
                current_role_id=new_role_id,
                current_step_id=None,
                execution_state=execution_state,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class SQLProgressRepository(_SessionRepository, ProgressRepository):
    async def add(self, record: WorkflowStepProgress) -> WorkflowStepProgress:
        return await self._persist(record)

    async def save(self, record: WorkflowStepProgress) -> WorkflowStepProgress:
        return await self._persist(record)

    async def latest_for_step(
        self, step_id: UUID, execution_id: UUID | None = None
    ) -> WorkflowStepProgress | None:
        statement = select(WorkflowStepProgress).where(WorkflowStepProgress.step_id == step_id)
        if execution_id is not None:
            statement = statement.where(WorkflowStepProgress.execution_id == execution_id)
        return await self._first(statement.order_by(WorkflowStepProgress.id.desc()))

    async def in_progress_for(self, execution_id: UUID, step_id: UUID) -> WorkflowStepProgress | None:
        return await self._first(
            select(WorkflowStepProgress).where(
                WorkflowStepProgress.execution_id == execution_id,
                WorkflowStepProgress.step_id == step_id,
                WorkflowStepProgress.status == StepStatus.IN_PROGRESS.value,
            )
        )

    async def list_for_role(self, role_id: UUID) -> list[WorkflowStepProgress]:
        return await self._all(
            select(WorkflowStepProgress)
            .where(WorkflowStepProgress.role_id == role_id)
            .order_by(WorkflowStepProgress.id)
        )

    async def list_for_execution(self, execution_id: UUID) -> list[WorkflowStepProgress]:
        return await self._all(
            select(WorkflowStepProgress)
            .where(WorkflowStepProgress.execution_id == execution_id)
            .order_by(WorkflowStepProgress.id)
        )

    async def completed_step_ids(self, execution_id: UUID, role_id: UUID) -> set[UUID]:
        result = await self._session.execute(
            select(WorkflowStepProgress.step_id).where(
                WorkflowStepProgress.execution_id == execution_id,
                WorkflowStepProgress.role_id == role_id,
                WorkflowStepProgress.status == StepStatus.COMPLETED.value,
            )
        )
        return set(result.scalars().all())


class SQLTransitionHistoryRepository(_SessionRepository, TransitionHistoryRepository):
    async def add(self, record: RoleTransitionRecord) -> RoleTransitionRecord:
        return await self._persist(record)

    async def list_for_execution(self, execution_id: UUID) -> list[RoleTransitionRecord]:
        return await self._all(
            select(RoleTransitionRecord)
            .where(RoleTransitionRecord.execution_id == execution_id)
            .order_by(RoleTransitionRecord.id)
        )


class SQLSubtaskRepository(_SessionRepository, SubtaskRepository):
    async def get(self, subtask_id: int) -> Subtask | None:
        return await self._session.get(Subtask, subtask_id)

    async def list_for_task(self, task_id: str) -> list[Subtask]:
        return await self._all(
            select(Subtask)
            .where(Subtask.task_id == task_id)
            .order_by(Subtask.sequence_number, Subtask.id)
        )

    async def list_for_batch(self, task_id: str, batch_id: str) -> list[Subtask]:
        return await self._all(
            select(Subtask)
            .where(Subtask.task_id == task_id, Subtask.batch_id == batch_id)
            .order_by(Subtask.sequence_number, Subtask.id)
        )

    async def add(self, subtask: Subtask) -> Subtask:
        return await self._persist(subtask)

    async def save(self, subtask: Subtask) -> Subtask:
        subtask.updated_at = utcnow()
        return await self._persist(subtask)

    async def required_by(self, subtask_id: int) -> list[Subtask]:
        return await self._all(
            select(Subtask)
            .join(SubtaskDependency, SubtaskDependency.required_subtask_id == Subtask.id)
            .where(SubtaskDependency.dependent_subtask_id == subtask_id)
            .order_by(Subtask.sequence_number, Subtask.id)
        )

    async def dependents_of(self, subtask_id: int) -> list[Subtask]:
        return await self._all(
            select(Subtask)
            .join(SubtaskDependency, SubtaskDependency.dependent_subtask_id == Subtask.id)
            .where(SubtaskDependency.required_subtask_id == subtask_id)
            .order_by(Subtask.sequence_number, Subtask.id)
        )

    async def add_dependency(self, dependent_id: int, required_id: int) -> SubtaskDependency | None:
        existing = await self._first(
            select(SubtaskDependency).where(
                SubtaskDependency.dependent_subtask_id == dependent_id,
                SubtaskDependency.required_subtask_id == required_id,
            )
        )
        if existing is not None:
            return None
        return await self._persist(
            SubtaskDependency(dependent_subtask_id=dependent_id, required_subtask_id=required_id)
        )
