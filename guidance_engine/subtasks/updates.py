from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Set

from pydantic import BaseModel, Field

from ..contracts import SubtaskStatus
from ..errors import IllegalStatusTransition, IncompleteDependencies, SubtaskNotFound
from ..persistence import Subtask, UnitOfWork, WorkflowStore
from .batches import BatchCompletionAggregator, BatchCompletionResult
from .specs import SubtaskUpdate

ALLOWED_TRANSITIONS: Mapping[SubtaskStatus, Set[SubtaskStatus]] = {
    SubtaskStatus.NOT_STARTED: {SubtaskStatus.IN_PROGRESS, SubtaskStatus.COMPLETED},
    SubtaskStatus.IN_PROGRESS: {SubtaskStatus.COMPLETED, SubtaskStatus.NOT_STARTED},
    SubtaskStatus.COMPLETED: set(),
}

# Moving into these statuses requires every required sub-task to be completed.
GATED_STATUSES = {SubtaskStatus.IN_PROGRESS, SubtaskStatus.COMPLETED}


class DependencyStatus(BaseModel):
    subtask_id: int
    can_start: bool
    total: int = 0
    completed: int = 0
    pending: List[str] = Field(default_factory=list)


@dataclass
class SubtaskUpdateResult:
    subtask: Subtask
    updated_fields: List[str] = field(default_factory=list)
    batch_completion: Optional[BatchCompletionResult] = None

    @property
    def message(self) -> str:
        if not self.updated_fields:
            return f"Subtask '{self.subtask.name}' - no changes made"
        return (
            f"Subtask '{self.subtask.name}' updated successfully. "
            f"Fields updated: {', '.join(self.updated_fields)}"
        )


def check_status_transition(current: SubtaskStatus, target: SubtaskStatus, **context) -> None:
    if current == target:
        return
    if target not in ALLOWED_TRANSITIONS[current]:
        raise IllegalStatusTransition(current.value, target.value, **context)


class SubtaskUpdater:
    """Dependency-gated sub-task updates with batch completion detection."""

    def __init__(
        self,
        store: WorkflowStore,
        aggregator: Optional[BatchCompletionAggregator] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._logger = logger or logging.getLogger(__name__)
        self._aggregator = aggregator or BatchCompletionAggregator(store, logger=self._logger)

    async def update_subtask(self, task_id: str, subtask_id: int, update: SubtaskUpdate) -> SubtaskUpdateResult:
        """Apply ``update`` to a sub-task of ``task_id``.

        Raises:
            SubtaskNotFound: no such sub-task for this task.
            IllegalStatusTransition: the status change is not allowed.
            IncompleteDependencies: a required sub-task is not completed yet.
        """
        async with self._store.transaction(
            "update_subtask", task_id=task_id, subtask_id=subtask_id
        ) as uow:
            subtask = await self._load(uow, task_id, subtask_id)
            result = SubtaskUpdateResult(subtask=subtask)

            if update.status is not None:
                current = SubtaskStatus(subtask.status)
                check_status_transition(
                    current, update.status, task_id=task_id, subtask_id=subtask_id
                )
                if update.status != current and update.status in GATED_STATUSES:
                    status = await self._dependency_status(uow, subtask)
                    if not status.can_start:
                        raise IncompleteDependencies(
                            f"Subtask '{subtask.name}' cannot move to '{update.status.value}': "
                            f"{len(status.pending)} required subtask(s) not completed",
                            blocking_issues=[f"Required subtask '{name}' is not completed" for name in status.pending],
                            task_id=task_id,
                            subtask_id=subtask_id,
                        )
                subtask.status = update.status.value
                result.updated_fields.append("status")

            if update.completion_evidence is not None:
                subtask.completion_evidence = update.completion_evidence.model_dump()
                result.updated_fields.append("completion_evidence")
            if update.description is not None:
                subtask.description = update.description
                result.updated_fields.append("description")
            if update.implementation_approach is not None:
                subtask.implementation_approach = update.implementation_approach
                result.updated_fields.append("implementation_approach")

            if result.updated_fields:
                await uow.subtasks.save(subtask)

            if update.status == SubtaskStatus.COMPLETED and subtask.batch_id:
                result.batch_completion = await self._aggregator.check(uow, task_id, subtask.batch_id)

        self._logger.info(
            f"Updated subtask={subtask_id} task={task_id} fields={result.updated_fields} status={subtask.status}"
        )
        return result

    async def check_subtask_dependencies(self, task_id: str, subtask_id: int) -> DependencyStatus:
        async with self._store.transaction(
            "check_subtask_dependencies", task_id=task_id, subtask_id=subtask_id
        ) as uow:
            subtask = await self._load(uow, task_id, subtask_id)
            return await self._dependency_status(uow, subtask)

    async def _load(self, uow: UnitOfWork, task_id: str, subtask_id: int) -> Subtask:
        subtask = await uow.subtasks.get(subtask_id)
        if subtask is None or subtask.task_id != task_id:
            raise SubtaskNotFound(
                f"Subtask {subtask_id} not found for task {task_id}",
                task_id=task_id,
                subtask_id=subtask_id,
            )
        return subtask

    async def _dependency_status(self, uow: UnitOfWork, subtask: Subtask) -> DependencyStatus:
        required = await uow.subtasks.required_by(subtask.id)
        pending = [r.name for r in required if r.status != SubtaskStatus.COMPLETED.value]
        return DependencyStatus(
            subtask_id=subtask.id,
            can_start=not pending,
            total=len(required),
            completed=len(required) - len(pending),
            pending=pending,
        )
