"""Error taxonomy for the guidance engine.

Components raise these exceptions; :mod:`guidance_engine.service` converts
them into typed failures at the transport boundary.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    PRECONDITION_FAILED = "precondition_failed"
    STRUCTURAL_INVALID = "structural_invalid"
    TRANSIENT_STORE_FAILURE = "transient_store_failure"


class GuidanceError(Exception):
    """Base class for every failure surfaced by the engine."""

    kind: ErrorKind = ErrorKind.STRUCTURAL_INVALID
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        blocking_issues: Optional[Iterable[str]] = None,
        **context: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.blocking_issues: list[str] = list(blocking_issues or [])
        self.context = {k: v for k, v in context.items() if v is not None}

    @property
    def code(self) -> str:
        return type(self).__name__


# ----------------------------------------------------------------------
# NotFound
class NotFound(GuidanceError):
    kind = ErrorKind.NOT_FOUND


class RoleNotFound(NotFound):
    def __init__(self, role: Any) -> None:
        super().__init__(f"Role '{role}' not found", role=str(role))


class StepNotFound(NotFound):
    def __init__(self, step_id: Any) -> None:
        super().__init__(f"Workflow step {step_id} not found", step_id=str(step_id))


class ExecutionNotFound(NotFound):
    def __init__(self, *, execution_id: Any = None, task_id: Any = None) -> None:
        target = f"execution {execution_id}" if execution_id else f"task {task_id}"
        super().__init__(
            f"No workflow execution found for {target}",
            execution_id=str(execution_id) if execution_id else None,
            task_id=task_id,
        )


class TransitionNotFound(NotFound):
    def __init__(self, transition_id: Any) -> None:
        super().__init__(
            f"Role transition {transition_id} not found",
            transition_id=str(transition_id),
        )


class SubtaskNotFound(NotFound):
    pass


class NoStepsForRole(NotFound):
    def __init__(self, role_name: str) -> None:
        super().__init__(
            f"No workflow steps found for role '{role_name}'", role=role_name
        )


class NoProgressRecordFound(NotFound):
    def __init__(self, step_id: Any) -> None:
        super().__init__(
            f"No progress record found for step: {step_id}", step_id=str(step_id)
        )


# ----------------------------------------------------------------------
# PreconditionFailed
class PreconditionFailed(GuidanceError):
    kind = ErrorKind.PRECONDITION_FAILED


class RoleMismatch(PreconditionFailed):
    pass


class RoleInactive(PreconditionFailed):
    def __init__(self, role_name: str) -> None:
        super().__init__(f"Role '{role_name}' is not active", role=role_name)


class TransitionBlocked(PreconditionFailed):
    pass


class IncompleteDependencies(PreconditionFailed):
    pass


class IllegalStatusTransition(PreconditionFailed):
    def __init__(self, from_status: str, to_status: str, **context: Any) -> None:
        super().__init__(
            f"Invalid status transition: '{from_status}' -> '{to_status}'",
            from_status=from_status,
            to_status=to_status,
            **context,
        )


class StepAlreadyInProgress(PreconditionFailed):
    pass


class ExecutionCompleted(PreconditionFailed):
    def __init__(self, execution_id: Any) -> None:
        super().__init__(
            f"Workflow execution {execution_id} is already completed",
            execution_id=str(execution_id),
        )


# ----------------------------------------------------------------------
# StructuralInvalid
class StructuralInvalid(GuidanceError):
    kind = ErrorKind.STRUCTURAL_INVALID


class CircularDependency(StructuralInvalid):
    def __init__(self, batch_id: str, detail: str = "batch dependencies") -> None:
        self.batch_id = batch_id
        super().__init__(
            f"Circular dependency detected in {detail} involving batch: {batch_id}",
            batch_id=batch_id,
        )


class DuplicateDefinition(StructuralInvalid):
    pass


class InvalidExecutionState(StructuralInvalid):
    pass


class ConstraintViolation(StructuralInvalid):
    pass


# ----------------------------------------------------------------------
# TransientStoreFailure
class TransientStoreFailure(GuidanceError):
    kind = ErrorKind.TRANSIENT_STORE_FAILURE
    retryable = True


__all__ = [
    "ErrorKind",
    "GuidanceError",
    "NotFound",
    "RoleNotFound",
    "StepNotFound",
    "ExecutionNotFound",
    "TransitionNotFound",
    "SubtaskNotFound",
    "NoStepsForRole",
    "NoProgressRecordFound",
    "PreconditionFailed",
    "RoleMismatch",
    "RoleInactive",
    "TransitionBlocked",
    "IncompleteDependencies",
    "IllegalStatusTransition",
    "StepAlreadyInProgress",
    "ExecutionCompleted",
    "StructuralInvalid",
    "CircularDependency",
    "DuplicateDefinition",
    "InvalidExecutionState",
    "ConstraintViolation",
    "TransientStoreFailure",
]
