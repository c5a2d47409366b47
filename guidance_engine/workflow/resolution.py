from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from ..persistence import WorkflowStep, WorkflowStore
from .repair import ConsistencyResolver, hinted_step


class StepResolver:
    """Computes the next actionable step for a role. Read-only."""

    def __init__(
        self,
        store: WorkflowStore,
        resolver: Optional[ConsistencyResolver] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._logger = logger or logging.getLogger(__name__)
        self._resolver = resolver or ConsistencyResolver(store, logger=self._logger)

    async def get_first_step_for_role(self, role_id: UUID) -> Optional[WorkflowStep]:
        async with self._store.transaction("get_first_step_for_role", role_id=role_id) as uow:
            return await uow.steps.first_for_role(role_id)

    async def get_next_available_step(self, task_id: str, role_id: UUID) -> Optional[WorkflowStep]:
        """Return the step after the one the role is currently on.

        After a transition the hinted step is already "current", so the step
        after it is returned. Without an execution, or when the execution is on
        another role or has no resolvable current step, the role's first step
        is returned. ``None`` means the role's steps are exhausted.
        """
        async with self._store.transaction(
            "get_next_available_step", task_id=task_id, role_id=role_id
        ) as uow:
            execution = await uow.executions.latest_for_task(task_id)
            if execution is None:
                self._logger.debug(f"No execution for task={task_id}; using first step of role={role_id}")
                return await uow.steps.first_for_role(role_id)

            check = await self._resolver.inspect(uow, execution, role_id)
            if check.drift and check.assigned_step is not None:
                current = check.assigned_step
                return await uow.steps.next_after(role_id, current.sequence_number)

            if execution.current_role_id != role_id:
                self._logger.warning(
                    f"Role mismatch on execution={execution.id}: "
                    f"current={execution.current_role_id} requested={role_id}"
                )
                return await uow.steps.first_for_role(role_id)

            if execution.current_step_id is None:
                hint = hinted_step(execution.state)
                if hint is not None:
                    step = await uow.steps.get(hint.id)
                    if step is not None and step.role_id == role_id:
                        return step
                return await uow.steps.first_for_role(role_id)

            current = await uow.steps.get(execution.current_step_id)
            if current is None or current.role_id != role_id:
                return await uow.steps.first_for_role(role_id)
            return await uow.steps.next_after(role_id, current.sequence_number)
