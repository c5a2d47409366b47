"""Repository abstractions consumed by the workflow and sub-task engines."""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol, Sequence
from uuid import UUID

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


class EntityKind(str, Enum):
    """Finite set of persisted entity kinds, each bound to one repository."""

    ROLE = "role"
    STEP = "step"
    TRANSITION = "transition"
    EXECUTION = "execution"
    PROGRESS = "progress"
    TRANSITION_HISTORY = "transition_history"
    SUBTASK = "subtask"


class RoleRepository(Protocol):
    async def get(self, role_id: UUID) -> WorkflowRole | None:
        """Fetch a role by id."""

    async def get_by_name(self, name: str) -> WorkflowRole | None:
        """Fetch a role by its unique name."""

    async def list_all(self, active_only: bool = True) -> list[WorkflowRole]:
        """Return roles ordered by priority."""

    async def add(self, role: WorkflowRole) -> WorkflowRole:
        """Persist a new role."""


class StepRepository(Protocol):
    async def get(self, step_id: UUID) -> WorkflowStep | None:
        """Fetch a step by id."""

    async def first_for_role(self, role_id: UUID) -> WorkflowStep | None:
        """Return the role's step with the lowest sequence number."""

    async def next_after(self, role_id: UUID, sequence_number: int) -> WorkflowStep | None:
        """Return the role's step with the next-higher sequence number."""

    async def list_for_role(self, role_id: UUID) -> list[WorkflowStep]:
        """Return a role's steps in sequence order."""

    async def count_for_roles(self, role_ids: Sequence[UUID]) -> int:
        """Count the steps owned by the given roles."""

    async def add(self, step: WorkflowStep) -> WorkflowStep:
        """Persist a new step."""


class TransitionRepository(Protocol):
    async def get(self, transition_id: UUID) -> RoleTransition | None:
        """Fetch a transition edge by id."""

    async def list_from_role(self, role_id: UUID, active_only: bool = True) -> list[RoleTransition]:
        """Return the edges leaving ``role_id``."""

    async def add(self, transition: RoleTransition) -> RoleTransition:
        """Persist a new transition edge."""


class ExecutionRepository(Protocol):
    async def get(self, execution_id: UUID, refresh: bool = False) -> WorkflowExecution | None:
        """Fetch an execution by id."""

    async def latest_for_task(self, task_id: str) -> WorkflowExecution | None:
        """Return the most recently created execution for a task."""

    async def list_all(self, active_only: bool = False) -> list[WorkflowExecution]:
        """Return executions, newest first."""

    async def add(self, execution: WorkflowExecution) -> WorkflowExecution:
        """Persist a new execution."""

    async def save(self, execution: WorkflowExecution) -> WorkflowExecution:
        """Flush pending changes on an execution."""

    async def move_to_role(
        self,
        execution_id: UUID,
        expected_role_id: UUID,
        new_role_id: UUID,
        execution_state: dict[str, Any],
    ) -> bool:
        """Compare-and-set the current role; ``False`` when another writer won."""


class ProgressRepository(Protocol):
    async def add(self, record: WorkflowStepProgress) -> WorkflowStepProgress:
        """Persist a new progress row."""

    async def save(self, record: WorkflowStepProgress) -> WorkflowStepProgress:
        """Flush pending changes on a progress row."""

    async def latest_for_step(
        self, step_id: UUID, execution_id: UUID | None = None
    ) -> WorkflowStepProgress | None:
        """Return the most recent progress row for a step."""

    async def in_progress_for(self, execution_id: UUID, step_id: UUID) -> WorkflowStepProgress | None:
        """Return the open row for (execution, step), if any."""

    async def list_for_role(self, role_id: UUID) -> list[WorkflowStepProgress]:
        """Return every progress row recorded for a role."""

    async def list_for_execution(self, execution_id: UUID) -> list[WorkflowStepProgress]:
        """Return an execution's progress rows in creation order."""

    async def completed_step_ids(self, execution_id: UUID, role_id: UUID) -> set[UUID]:
        """Ids of steps with at least one COMPLETED row in the execution."""


class TransitionHistoryRepository(Protocol):
    async def add(self, record: RoleTransitionRecord) -> RoleTransitionRecord:
        """Persist a transition history entry."""

    async def list_for_execution(self, execution_id: UUID) -> list[RoleTransitionRecord]:
        """Return an execution's transition history, oldest first."""


class SubtaskRepository(Protocol):
    async def get(self, subtask_id: int) -> Subtask | None:
        """Fetch a sub-task by id."""

    async def list_for_task(self, task_id: str) -> list[Subtask]:
        """Return a task's sub-tasks ordered by sequence number."""

    async def list_for_batch(self, task_id: str, batch_id: str) -> list[Subtask]:
        """Return the sub-tasks sharing ``batch_id``."""

    async def add(self, subtask: Subtask) -> Subtask:
        """Persist a sub-task and assign its id."""

    async def save(self, subtask: Subtask) -> Subtask:
        """Flush pending changes on a sub-task."""

    async def required_by(self, subtask_id: int) -> list[Subtask]:
        """Sub-tasks that ``subtask_id`` depends on."""

    async def dependents_of(self, subtask_id: int) -> list[Subtask]:
        """Sub-tasks that depend on ``subtask_id``."""

    async def add_dependency(self, dependent_id: int, required_id: int) -> SubtaskDependency | None:
        """Create an edge; ``None`` when it already exists."""
