"""Role transitions: listing, recommendation, validation and execution."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Tuple
from uuid import UUID

from pydantic import BaseModel, Field

from ..config import ScoringConfig, TransitionConfig
from ..contracts import (
    RoleTransitionedState,
    StepAssignment,
    StepStatus,
    TransitionRecord,
    dump_execution_state,
    utcnow,
)
from ..errors import RoleMismatch, RoleNotFound, TransitionBlocked, TransitionNotFound
from ..persistence import (
    RoleTransition,
    RoleTransitionRecord,
    UnitOfWork,
    WorkflowExecution,
    WorkflowRole,
    WorkflowStep,
    WorkflowStore,
)
from .repair import ConsistencyResolver, SyncResult


class TransitionContext(BaseModel):
    """Identifies the execution a transition applies to."""

    task_id: Optional[str] = None
    execution_id: Optional[UUID] = None


class TransitionValidation(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


@dataclass
class RecommendedTransition:
    transition: RoleTransition
    to_role: WorkflowRole
    score: float


@dataclass
class TransitionOutcome:
    execution: WorkflowExecution
    transition: RoleTransition
    record: RoleTransitionRecord
    first_step: Optional[WorkflowStep]
    sync: SyncResult


# A readiness check returns the blocking issues it found (empty when satisfied).
ReadinessCheck = Callable[[UnitOfWork, RoleTransition, WorkflowExecution], Awaitable[List[str]]]


async def required_steps_completed(
    uow: UnitOfWork, transition: RoleTransition, execution: WorkflowExecution
) -> List[str]:
    steps = await uow.steps.list_for_role(transition.from_role_id)
    done = await uow.progress.completed_step_ids(execution.id, transition.from_role_id)
    return [
        f"Required step '{step.name}' is not completed"
        for step in steps
        if step.is_required and step.id not in done
    ]


async def no_open_steps(
    uow: UnitOfWork, transition: RoleTransition, execution: WorkflowExecution
) -> List[str]:
    records = await uow.progress.list_for_execution(execution.id)
    return [
        f"Step {record.step_id} is still in progress"
        for record in records
        if record.role_id == transition.from_role_id
        and record.status == StepStatus.IN_PROGRESS.value
    ]


READINESS_CHECKS: Mapping[str, ReadinessCheck] = {
    "required_steps_completed": required_steps_completed,
    "no_open_steps": no_open_steps,
}


class TransitionScorer(Protocol):
    def score(self, transition: RoleTransition, to_role: WorkflowRole, context: TransitionContext) -> float:
        ...


class WeightedTransitionScorer:
    """Base score, a bonus for well-trodden paths and an optional priority weight."""

    def __init__(self, config: Optional[ScoringConfig] = None) -> None:
        self.config = config or ScoringConfig()

    def score(self, transition: RoleTransition, to_role: WorkflowRole, context: TransitionContext) -> float:
        score = self.config.base_score
        if transition.transition_name in self.config.common_transitions:
            score += self.config.common_transition_bonus
        score += self.config.priority_weight * to_role.priority
        return score


class RoleTransitionEngine:
    def __init__(
        self,
        store: WorkflowStore,
        config: Optional[TransitionConfig] = None,
        resolver: Optional[ConsistencyResolver] = None,
        scorer: Optional[TransitionScorer] = None,
        checks: Optional[Mapping[str, ReadinessCheck]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self.config = config or TransitionConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._resolver = resolver or ConsistencyResolver(store, logger=self._logger)
        self._scorer = scorer or WeightedTransitionScorer(self.config.scoring)
        self._checks: Dict[str, ReadinessCheck] = dict(checks or READINESS_CHECKS)

    async def list_available_transitions(self, from_role_name: str) -> List[RoleTransition]:
        async with self._store.transaction("list_available_transitions", role=from_role_name) as uow:
            role = await uow.roles.get_by_name(from_role_name)
            if role is None:
                raise RoleNotFound(from_role_name)
            return await uow.transitions.list_from_role(role.id)

    async def list_recommended_transitions(
        self, current_role_name: str, context: TransitionContext
    ) -> List[RecommendedTransition]:
        """Valid edges out of ``current_role_name``, best first."""
        async with self._store.transaction(
            "list_recommended_transitions", role=current_role_name, task_id=context.task_id
        ) as uow:
            role = await uow.roles.get_by_name(current_role_name)
            if role is None:
                raise RoleNotFound(current_role_name)

            candidates = []
            for transition in await uow.transitions.list_from_role(role.id):
                validation, _, _ = await self._validate(uow, transition.id, context)
                if not validation.valid:
                    continue
                to_role = await uow.roles.get(transition.to_role_id)
                candidates.append(
                    RecommendedTransition(
                        transition=transition,
                        to_role=to_role,
                        score=self._scorer.score(transition, to_role, context),
                    )
                )

        candidates.sort(key=lambda c: (-c.score, c.transition.transition_name))
        return candidates[: self.config.recommendation_limit]

    async def validate_transition(
        self, transition_id: UUID, context: TransitionContext
    ) -> TransitionValidation:
        async with self._store.transaction(
            "validate_transition", transition_id=transition_id, task_id=context.task_id
        ) as uow:
            validation, _, _ = await self._validate(uow, transition_id, context)
            return validation

    async def execute_transition(
        self,
        transition_id: UUID,
        context: TransitionContext,
        handoff_message: Optional[str] = None,
    ) -> TransitionOutcome:
        """Move the execution to the transition's target role in one transaction.

        The role switch is a compare-and-set on ``current_role_id``; if another
        writer moved the execution after validation, :class:`RoleMismatch` is
        raised and nothing is written.
        """
        async with self._store.transaction(
            "execute_transition",
            transition_id=transition_id,
            task_id=context.task_id,
            execution_id=context.execution_id,
        ) as uow:
            validation, transition, execution = await self._validate(uow, transition_id, context)
            if transition is None:
                raise TransitionNotFound(transition_id)
            if not validation.valid:
                raise TransitionBlocked(
                    f"Transition '{transition.transition_name}' is blocked",
                    blocking_issues=validation.errors,
                    transition_id=str(transition_id),
                    task_id=context.task_id,
                )

            now = utcnow()
            first_step = await uow.steps.first_for_role(transition.to_role_id)
            state = RoleTransitionedState(
                last_transition=TransitionRecord(
                    new_role_id=transition.to_role_id,
                    timestamp=now,
                    handoff_message=handoff_message,
                ),
                previous_role_id=transition.from_role_id,
                current_step=StepAssignment.for_step(first_step, now) if first_step else None,
                last_completed_step=getattr(execution.state, "last_completed_step", None),
            )
            moved = await uow.executions.move_to_role(
                execution.id,
                expected_role_id=transition.from_role_id,
                new_role_id=transition.to_role_id,
                execution_state=dump_execution_state(state),
            )
            if not moved:
                raise RoleMismatch(
                    f"Execution {execution.id} is no longer on the transition's source role",
                    execution_id=str(execution.id),
                    expected_role_id=str(transition.from_role_id),
                )

            execution = await uow.executions.get(execution.id, refresh=True)
            record = await uow.history.add(
                RoleTransitionRecord(
                    execution_id=execution.id,
                    task_id=execution.task_id,
                    transition_id=transition.id,
                    from_role_id=transition.from_role_id,
                    to_role_id=transition.to_role_id,
                    handoff_message=handoff_message,
                    transitioned_at=now,
                )
            )
            sync = await self._resolver.sync(uow, execution, transition.to_role_id)

        self._logger.info(
            f"Executed transition={transition.transition_name} execution={execution.id} "
            f"to_role={transition.to_role_id} first_step={sync.current_step.id if sync.current_step else None}"
        )
        return TransitionOutcome(
            execution=execution,
            transition=transition,
            record=record,
            first_step=sync.current_step,
            sync=sync,
        )

    async def get_transition_history(self, execution_id: UUID) -> List[RoleTransitionRecord]:
        async with self._store.transaction("get_transition_history", execution_id=execution_id) as uow:
            return await uow.history.list_for_execution(execution_id)

    async def _resolve_execution(
        self, uow: UnitOfWork, context: TransitionContext
    ) -> Optional[WorkflowExecution]:
        if context.execution_id is not None:
            return await uow.executions.get(context.execution_id)
        if context.task_id is not None:
            return await uow.executions.latest_for_task(context.task_id)
        return None

    async def _validate(
        self, uow: UnitOfWork, transition_id: UUID, context: TransitionContext
    ) -> Tuple[TransitionValidation, Optional[RoleTransition], Optional[WorkflowExecution]]:
        errors: List[str] = []
        warnings: List[str] = []

        transition = await uow.transitions.get(transition_id)
        if transition is None:
            return TransitionValidation(valid=False, errors=[f"Transition {transition_id} not found"]), None, None
        if not transition.is_active:
            errors.append(f"Transition '{transition.transition_name}' is not active")

        to_role = await uow.roles.get(transition.to_role_id)
        if to_role is None:
            errors.append(f"Target role {transition.to_role_id} not found")
        elif not to_role.is_active:
            errors.append(f"Target role '{to_role.name}' is not active")

        execution = await self._resolve_execution(uow, context)
        if execution is None:
            errors.append("No workflow execution found for transition context")
            return TransitionValidation(valid=False, errors=errors), transition, None
        if execution.completed_at is not None:
            errors.append(f"Execution {execution.id} is already completed")
        if execution.current_role_id != transition.from_role_id:
            errors.append(
                f"Execution is on role {execution.current_role_id}, "
                f"transition starts from {transition.from_role_id}"
            )

        for name in transition.conditions or self.config.default_conditions:
            check = self._checks.get(name)
            if check is None:
                warnings.append(f"Unknown readiness condition '{name}' ignored")
                continue
            errors.extend(await check(uow, transition, execution))

        return TransitionValidation(valid=not errors, errors=errors, warnings=warnings), transition, execution
