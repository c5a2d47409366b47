"""Workflow bootstrap: creates the first execution of a run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..contracts import InitializedState, StepAssignment, utcnow
from ..errors import NoStepsForRole, RoleInactive, RoleNotFound
from ..persistence import WorkflowExecution, WorkflowRole, WorkflowStep, WorkflowStore


@dataclass
class BootstrapResult:
    execution: WorkflowExecution
    role: WorkflowRole
    first_step: WorkflowStep


class WorkflowBootstrapper:
    """Seeds a new execution pointed at the first step of the initial role."""

    def __init__(
        self,
        store: WorkflowStore,
        default_mode: str = "GUIDED",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._default_mode = default_mode
        self._logger = logger or logging.getLogger(__name__)

    async def bootstrap_workflow(
        self,
        initial_role: str,
        execution_mode: Optional[str] = None,
        project_path: Optional[str] = None,
    ) -> BootstrapResult:
        """Create the execution in a single transaction.

        Raises:
            RoleNotFound: ``initial_role`` does not exist.
            RoleInactive: the role exists but is deactivated.
            NoStepsForRole: the role owns no steps; nothing is written.
        """
        async with self._store.transaction("bootstrap_workflow", role=initial_role) as uow:
            role = await uow.roles.get_by_name(initial_role)
            if role is None:
                raise RoleNotFound(initial_role)
            if not role.is_active:
                raise RoleInactive(role.name)

            first_step = await uow.steps.first_for_role(role.id)
            if first_step is None:
                raise NoStepsForRole(role.name)

            active_roles = await uow.roles.list_all(active_only=True)
            total_steps = await uow.steps.count_for_roles([r.id for r in active_roles])

            now = utcnow()
            execution = WorkflowExecution(
                task_id=None,
                current_role_id=role.id,
                current_step_id=first_step.id,
                execution_mode=execution_mode or self._default_mode,
                total_steps=total_steps,
                execution_context={
                    "bootstrapped_at": now.isoformat(),
                    "project_path": project_path,
                    "initial_role_name": role.name,
                    "first_step_name": first_step.name,
                },
            )
            execution.set_state(
                InitializedState(current_step=StepAssignment.for_step(first_step, now))
            )
            await uow.executions.add(execution)

        self._logger.info(
            f"Bootstrapped execution={execution.id} role={role.name} first_step={first_step.name}"
        )
        return BootstrapResult(execution=execution, role=role, first_step=first_step)
