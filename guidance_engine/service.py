"""Boundary facade for the transport layer.

Every public operation returns an :class:`OperationResult`. Engine errors
(:class:`~guidance_engine.errors.GuidanceError`) become typed failures; any
other exception is a bug and propagates unchanged.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .config import GuidanceConfig, load_config
from .errors import ErrorKind, GuidanceError, RoleNotFound
from .persistence import WorkflowStore, get_store
from .subtasks import (
    BatchCompletionAggregator,
    SubtaskBatchRequest,
    SubtaskCreator,
    SubtaskQueries,
    SubtaskUpdate,
    SubtaskUpdater,
    plan_batches,
)
from .workflow import (
    ConsistencyResolver,
    ExecutionService,
    RoleTransitionEngine,
    StepCompletionData,
    StepFailureData,
    StepProgressTracker,
    StepResolver,
    TransitionContext,
    TransitionScorer,
    WorkflowBootstrapper,
)


class OperationFailure(BaseModel):
    kind: ErrorKind
    code: str
    message: str
    blocking_issues: List[str] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
    retryable: bool = False

    @classmethod
    def from_error(cls, error: GuidanceError) -> "OperationFailure":
        return cls(
            kind=error.kind,
            code=error.code,
            message=error.message,
            blocking_issues=error.blocking_issues,
            context={k: str(v) for k, v in error.context.items()},
            retryable=error.retryable,
        )


class OperationResult(BaseModel):
    success: bool
    data: Any = None
    error: Optional[OperationFailure] = None

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: GuidanceError) -> "OperationResult":
        return cls(success=False, error=OperationFailure.from_error(error))


class GuidanceService:
    """Wires every engine component over one store."""

    def __init__(
        self,
        store: WorkflowStore,
        config: Optional[GuidanceConfig] = None,
        scorer: Optional[TransitionScorer] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.config = config or GuidanceConfig()
        self._logger = logger or logging.getLogger(__name__)

        self.resolver = ConsistencyResolver(store, logger=self._logger)
        self.bootstrapper = WorkflowBootstrapper(
            store, default_mode=self.config.execution_mode, logger=self._logger
        )
        self.progress = StepProgressTracker(store, logger=self._logger)
        self.steps = StepResolver(store, resolver=self.resolver, logger=self._logger)
        self.transitions = RoleTransitionEngine(
            store,
            config=self.config.transitions,
            resolver=self.resolver,
            scorer=scorer,
            logger=self._logger,
        )
        self.executions = ExecutionService(store, logger=self._logger)
        self.batches = BatchCompletionAggregator(store, logger=self._logger)
        self.subtask_creator = SubtaskCreator(store, logger=self._logger)
        self.subtask_updater = SubtaskUpdater(store, aggregator=self.batches, logger=self._logger)
        self.subtask_queries = SubtaskQueries(store, logger=self._logger)

    @classmethod
    def from_config(
        cls, config: Optional[GuidanceConfig] = None, logger: Optional[logging.Logger] = None
    ) -> "GuidanceService":
        config = config or load_config()
        store = get_store(config.database_url, config=config, logger=logger)
        return cls(store, config=config, logger=logger)

    async def _call(self, operation: str, call: Awaitable[Any]) -> OperationResult:
        try:
            data = await call
        except GuidanceError as exc:
            level = logging.ERROR if exc.retryable else logging.WARNING
            self._logger.log(level, f"{operation} failed: {exc.code}: {exc.message}")
            return OperationResult.failed(exc)
        return OperationResult.ok(data)

    # ------------------------------------------------------------------
    # Roles and bootstrap
    async def get_role(self, name: str) -> OperationResult:
        return await self._call("get_role", self._get_role(name))

    async def _get_role(self, name: str):
        async with self.store.transaction("get_role", role=name) as uow:
            role = await uow.roles.get_by_name(name)
        if role is None:
            raise RoleNotFound(name)
        return role

    async def bootstrap_workflow(
        self,
        initial_role: str,
        execution_mode: Optional[str] = None,
        project_path: Optional[str] = None,
    ) -> OperationResult:
        return await self._call(
            "bootstrap_workflow",
            self.bootstrapper.bootstrap_workflow(initial_role, execution_mode, project_path),
        )

    # ------------------------------------------------------------------
    # Step progress
    async def start_step(
        self, step_id: UUID, execution_id: UUID, role_id: UUID, task_id: Optional[str] = None
    ) -> OperationResult:
        return await self._call(
            "start_step", self.progress.start_step(step_id, execution_id, role_id, task_id)
        )

    async def update_progress(
        self, step_id: UUID, data: Dict[str, Any], execution_id: Optional[UUID] = None
    ) -> OperationResult:
        return await self._call(
            "update_progress", self.progress.update_progress(step_id, data, execution_id)
        )

    async def complete_step(
        self,
        step_id: UUID,
        data: Optional[StepCompletionData] = None,
        execution_id: Optional[UUID] = None,
    ) -> OperationResult:
        return await self._call(
            "complete_step", self.progress.complete_step(step_id, data, execution_id)
        )

    async def fail_step(
        self,
        step_id: UUID,
        data: Optional[StepFailureData] = None,
        execution_id: Optional[UUID] = None,
    ) -> OperationResult:
        return await self._call("fail_step", self.progress.fail_step(step_id, data, execution_id))

    async def get_step_progress(self, step_id: UUID) -> OperationResult:
        return await self._call("get_step_progress", self.progress.get_step_progress(step_id))

    async def list_execution_progress(self, execution_id: UUID) -> OperationResult:
        return await self._call(
            "list_execution_progress", self.progress.list_execution_progress(execution_id)
        )

    async def get_progress_summary(self, role_id: UUID) -> OperationResult:
        return await self._call("get_progress_summary", self.progress.get_progress_summary(role_id))

    # ------------------------------------------------------------------
    # Step resolution and repair
    async def get_next_available_step(self, task_id: str, role_id: UUID) -> OperationResult:
        return await self._call(
            "get_next_available_step", self.steps.get_next_available_step(task_id, role_id)
        )

    async def get_first_step_for_role(self, role_id: UUID) -> OperationResult:
        return await self._call(
            "get_first_step_for_role", self.steps.get_first_step_for_role(role_id)
        )

    async def check_post_transition_state(self, task_id: str, role_id: UUID) -> OperationResult:
        return await self._call(
            "check_post_transition_state",
            self.resolver.check_post_transition_state(task_id, role_id),
        )

    async def validate_and_sync_execution_state(self, task_id: str, role_id: UUID) -> OperationResult:
        return await self._call(
            "validate_and_sync_execution_state",
            self.resolver.validate_and_sync_execution_state(task_id, role_id),
        )

    # ------------------------------------------------------------------
    # Role transitions
    async def list_available_transitions(self, from_role_name: str) -> OperationResult:
        return await self._call(
            "list_available_transitions", self.transitions.list_available_transitions(from_role_name)
        )

    async def list_recommended_transitions(
        self, current_role_name: str, context: TransitionContext
    ) -> OperationResult:
        return await self._call(
            "list_recommended_transitions",
            self.transitions.list_recommended_transitions(current_role_name, context),
        )

    async def validate_transition(self, transition_id: UUID, context: TransitionContext) -> OperationResult:
        return await self._call(
            "validate_transition", self.transitions.validate_transition(transition_id, context)
        )

    async def execute_transition(
        self,
        transition_id: UUID,
        context: TransitionContext,
        handoff_message: Optional[str] = None,
    ) -> OperationResult:
        return await self._call(
            "execute_transition",
            self.transitions.execute_transition(transition_id, context, handoff_message),
        )

    async def get_transition_history(self, execution_id: UUID) -> OperationResult:
        return await self._call(
            "get_transition_history", self.transitions.get_transition_history(execution_id)
        )

    # ------------------------------------------------------------------
    # Execution pointer
    async def get_execution(self, execution_id: UUID) -> OperationResult:
        return await self._call("get_execution", self.executions.get_execution(execution_id))

    async def get_execution_for_task(self, task_id: str) -> OperationResult:
        return await self._call("get_execution_for_task", self.executions.get_execution_for_task(task_id))

    async def list_executions(self, active_only: bool = False) -> OperationResult:
        return await self._call("list_executions", self.executions.list_executions(active_only))

    async def attach_task(self, execution_id: UUID, task_id: str) -> OperationResult:
        return await self._call("attach_task", self.executions.attach_task(execution_id, task_id))

    async def assign_step(self, execution_id: UUID, step_id: UUID) -> OperationResult:
        return await self._call("assign_step", self.executions.assign_step(execution_id, step_id))

    async def record_step_completion(self, execution_id: UUID, step_id: UUID) -> OperationResult:
        return await self._call(
            "record_step_completion", self.executions.record_step_completion(execution_id, step_id)
        )

    async def complete_execution(self, execution_id: UUID) -> OperationResult:
        return await self._call("complete_execution", self.executions.complete_execution(execution_id))

    async def get_execution_summary(self, execution_id: UUID) -> OperationResult:
        return await self._call(
            "get_execution_summary", self.executions.get_execution_summary(execution_id)
        )

    # ------------------------------------------------------------------
    # Sub-tasks
    async def validate_batch_dependencies(self, request: SubtaskBatchRequest) -> OperationResult:
        return await self._call("validate_batch_dependencies", self._plan(request))

    async def _plan(self, request: SubtaskBatchRequest) -> List[str]:
        return [batch.batch_id for batch in plan_batches(request)]

    async def create_subtask_batches(self, task_id: str, request: SubtaskBatchRequest) -> OperationResult:
        return await self._call(
            "create_subtask_batches", self.subtask_creator.create_subtask_batches(task_id, request)
        )

    async def update_subtask(self, task_id: str, subtask_id: int, update: SubtaskUpdate) -> OperationResult:
        return await self._call(
            "update_subtask", self.subtask_updater.update_subtask(task_id, subtask_id, update)
        )

    async def check_subtask_dependencies(self, task_id: str, subtask_id: int) -> OperationResult:
        return await self._call(
            "check_subtask_dependencies",
            self.subtask_updater.check_subtask_dependencies(task_id, subtask_id),
        )

    async def check_batch_completion(self, task_id: str, batch_id: str) -> OperationResult:
        return await self._call(
            "check_batch_completion", self.batches.check_batch_completion(task_id, batch_id)
        )

    async def get_subtask(self, task_id: str, subtask_id: int) -> OperationResult:
        return await self._call("get_subtask", self.subtask_queries.get_subtask(task_id, subtask_id))

    async def list_subtasks(self, task_id: str, batch_id: Optional[str] = None) -> OperationResult:
        return await self._call(
            "list_subtasks", self.subtask_queries.list_subtasks(task_id, batch_id=batch_id)
        )

    async def get_next_subtask(self, task_id: str) -> OperationResult:
        return await self._call("get_next_subtask", self.subtask_queries.get_next_subtask(task_id))
