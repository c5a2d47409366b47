"""Drift detection between an execution's step pointer and its recovery hint.

The pointer (``current_step_id``) is what the relational model says the role
is working on; the hint (``execution_state.current_step``) is the copy written
alongside transitions and assignments. Three ordered signals decide whether
the hint is authoritative:

1. phase is ``role_transitioned`` and the execution is on the asking role;
2. the last transition targeted the asking role, the execution is on it, a
   hint exists, and the pointer is null (unsynchronized write);
3. as 2, but the pointer is set and the hint carries an assignment time.

When the hinted step belongs to the asking role the pointer is healed in
place; otherwise the execution is reported invalid and nothing is written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from ..contracts import (
    ExecutionState,
    InitializedState,
    InProgressState,
    RoleTransitionedState,
    StepAssignment,
    TransitionRecord,
)
from ..errors import ExecutionNotFound
from ..persistence import UnitOfWork, WorkflowExecution, WorkflowStep, WorkflowStore


class DriftSignal(str, Enum):
    PHASE_ROLE_TRANSITIONED = "phase_role_transitioned"
    UNSYNCHRONIZED_POINTER = "unsynchronized_pointer"
    ASSIGNED_BY_TRANSITION = "assigned_by_transition"


@dataclass
class PostTransitionCheck:
    drift: bool = False
    signal: Optional[DriftSignal] = None
    assigned_step: Optional[WorkflowStep] = None
    hinted_step_id: Optional[UUID] = None
    new_role_id: Optional[UUID] = None
    transition_timestamp: Optional[datetime] = None


@dataclass
class SyncResult:
    is_valid: bool
    corrected: bool = False
    current_step: Optional[WorkflowStep] = None
    signal: Optional[DriftSignal] = None
    issue: Optional[str] = None


def hinted_step(state: ExecutionState) -> Optional[StepAssignment]:
    match state:
        case InitializedState(current_step=step) | InProgressState(current_step=step) | RoleTransitionedState(current_step=step):
            return step
        case _:
            return None


def last_transition(state: ExecutionState) -> Optional[TransitionRecord]:
    match state:
        case InProgressState(last_transition=record) | RoleTransitionedState(last_transition=record):
            return record
        case _:
            return None


def classify_drift(execution: WorkflowExecution, role_id: UUID) -> Optional[DriftSignal]:
    """Return the first matching drift signal, or None when consistent."""
    on_role = execution.current_role_id == role_id
    match execution.state:
        case RoleTransitionedState():
            return DriftSignal.PHASE_ROLE_TRANSITIONED if on_role else None
        case InProgressState(
            last_transition=TransitionRecord(new_role_id=new_role_id),
            current_step=StepAssignment() as hint,
        ) if on_role and new_role_id == role_id:
            if execution.current_step_id is None:
                return DriftSignal.UNSYNCHRONIZED_POINTER
            if hint.assigned_at is not None:
                return DriftSignal.ASSIGNED_BY_TRANSITION
            return None
        case _:
            return None


class ConsistencyResolver:
    """Classifies and heals pointer/hint drift on the latest execution of a task."""

    def __init__(self, store: WorkflowStore, logger: Optional[logging.Logger] = None) -> None:
        self._store = store
        self._logger = logger or logging.getLogger(__name__)

    async def check_post_transition_state(self, task_id: str, role_id: UUID) -> PostTransitionCheck:
        async with self._store.transaction(
            "check_post_transition_state", task_id=task_id, role_id=role_id
        ) as uow:
            execution = await uow.executions.latest_for_task(task_id)
            if execution is None:
                return PostTransitionCheck()
            return await self.inspect(uow, execution, role_id)

    async def validate_and_sync_execution_state(self, task_id: str, role_id: UUID) -> SyncResult:
        async with self._store.transaction(
            "validate_and_sync_execution_state", task_id=task_id, role_id=role_id
        ) as uow:
            execution = await uow.executions.latest_for_task(task_id)
            if execution is None:
                raise ExecutionNotFound(task_id=task_id)
            return await self.sync(uow, execution, role_id)

    async def inspect(
        self, uow: UnitOfWork, execution: WorkflowExecution, role_id: UUID
    ) -> PostTransitionCheck:
        """Classify ``execution`` inside an open unit of work. Never writes."""
        signal = classify_drift(execution, role_id)
        if signal is None:
            return PostTransitionCheck()

        state = execution.state
        hint = hinted_step(state)
        transition = last_transition(state)
        assigned = None
        if hint is not None:
            step = await uow.steps.get(hint.id)
            if step is not None and step.role_id == role_id:
                assigned = step

        self._logger.debug(
            f"Drift on execution={execution.id} role={role_id} signal={signal.value} "
            f"hint={hint.id if hint else None}"
        )
        return PostTransitionCheck(
            drift=True,
            signal=signal,
            assigned_step=assigned,
            hinted_step_id=hint.id if hint else None,
            new_role_id=transition.new_role_id if transition else None,
            transition_timestamp=transition.timestamp if transition else None,
        )

    async def sync(self, uow: UnitOfWork, execution: WorkflowExecution, role_id: UUID) -> SyncResult:
        """Heal the pointer from the hint when safe; otherwise report invalid."""
        signal = classify_drift(execution, role_id)
        hint = hinted_step(execution.state)

        if signal is not None or (execution.current_step_id is None and hint is not None):
            return await self._repair(uow, execution, role_id, signal, hint)

        if execution.current_step_id is None:
            return self._invalid(execution, "Execution has no current step and no recovery hint")

        step = await uow.steps.get(execution.current_step_id)
        if step is None:
            return self._invalid(execution, f"Current step {execution.current_step_id} does not exist")
        if execution.current_role_id != role_id:
            return self._invalid(
                execution, f"Execution is on role {execution.current_role_id}, not {role_id}"
            )
        if step.role_id != role_id:
            return self._invalid(execution, f"Current step {step.id} belongs to role {step.role_id}")
        return SyncResult(is_valid=True, current_step=step)

    async def _repair(
        self,
        uow: UnitOfWork,
        execution: WorkflowExecution,
        role_id: UUID,
        signal: Optional[DriftSignal],
        hint: Optional[StepAssignment],
    ) -> SyncResult:
        if hint is None:
            return self._invalid(execution, "Drift detected but no hinted step recorded", signal)
        if execution.current_role_id != role_id:
            return self._invalid(
                execution, f"Execution is on role {execution.current_role_id}, not {role_id}", signal
            )

        step = await uow.steps.get(hint.id)
        if step is None:
            return self._invalid(execution, f"Hinted step {hint.id} does not exist", signal)
        if step.role_id != role_id:
            return self._invalid(
                execution, f"Hinted step {step.id} belongs to role {step.role_id}, not {role_id}", signal
            )

        corrected = execution.current_step_id != step.id
        if corrected:
            execution.current_step_id = step.id
            await uow.executions.save(execution)
            self._logger.info(
                f"Repaired execution={execution.id} role={role_id} step={step.id} "
                f"signal={signal.value if signal else 'null_pointer'}"
            )
        return SyncResult(is_valid=True, corrected=corrected, current_step=step, signal=signal)

    def _invalid(
        self, execution: WorkflowExecution, issue: str, signal: Optional[DriftSignal] = None
    ) -> SyncResult:
        self._logger.warning(f"Execution state invalid execution={execution.id}: {issue}")
        return SyncResult(is_valid=False, signal=signal, issue=issue)
