"""Core contracts shared by the workflow and sub-task engines."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import InvalidExecutionState


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive values read back from SQLite."""
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class StepStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class StepResult(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class SubtaskStatus(str, Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class ExecutionPhase(str, Enum):
    INITIALIZED = "initialized"
    IN_PROGRESS = "in-progress"
    ROLE_TRANSITIONED = "role_transitioned"
    COMPLETED = "completed"


# ----------------------------------------------------------------------
# Execution state (recovery hints)
class StepAssignment(BaseModel):
    """Denormalized copy of the step an execution is pointed at."""

    id: UUID
    name: str
    sequence_number: int
    assigned_at: Optional[datetime] = None

    @classmethod
    def for_step(cls, step: Any, assigned_at: Optional[datetime] = None) -> "StepAssignment":
        return cls(
            id=step.id,
            name=step.name,
            sequence_number=step.sequence_number,
            assigned_at=assigned_at or utcnow(),
        )


class TransitionRecord(BaseModel):
    new_role_id: UUID
    timestamp: datetime = Field(default_factory=utcnow)
    handoff_message: Optional[str] = None


class CompletedStepRecord(BaseModel):
    id: UUID
    completed_at: datetime = Field(default_factory=utcnow)
    result: StepResult = StepResult.SUCCESS


class InitializedState(BaseModel):
    """State written by bootstrap."""

    phase: Literal["initialized"] = "initialized"
    current_step: StepAssignment
    progress_markers: List[str] = Field(default_factory=list)


class InProgressState(BaseModel):
    """State after a step has been assigned within the current role."""

    phase: Literal["in-progress"] = "in-progress"
    current_step: Optional[StepAssignment] = None
    last_transition: Optional[TransitionRecord] = None
    last_completed_step: Optional[CompletedStepRecord] = None
    progress_markers: List[str] = Field(default_factory=list)


class RoleTransitionedState(BaseModel):
    """State written by a role transition, before the next step assignment."""

    phase: Literal["role_transitioned"] = "role_transitioned"
    last_transition: TransitionRecord
    previous_role_id: Optional[UUID] = None
    current_step: Optional[StepAssignment] = None
    last_completed_step: Optional[CompletedStepRecord] = None


class CompletedState(BaseModel):
    phase: Literal["completed"] = "completed"
    completed_at: datetime = Field(default_factory=utcnow)
    last_completed_step: Optional[CompletedStepRecord] = None


ExecutionState = Annotated[
    Union[InitializedState, InProgressState, RoleTransitionedState, CompletedState],
    Field(discriminator="phase"),
]

_state_adapter: TypeAdapter[ExecutionState] = TypeAdapter(ExecutionState)


def parse_execution_state(raw: Optional[Dict[str, Any]]) -> ExecutionState:
    """Parse the stored JSON blob into its phase variant."""
    try:
        return _state_adapter.validate_python(raw or {})
    except ValidationError as exc:
        raise InvalidExecutionState(
            f"Execution state could not be parsed: {exc.error_count()} error(s)",
            phase=(raw or {}).get("phase"),
        ) from exc


def dump_execution_state(state: ExecutionState) -> Dict[str, Any]:
    return _state_adapter.dump_python(state, mode="json")


# ----------------------------------------------------------------------
# Sub-task evidence
class CompletionEvidence(BaseModel):
    """Evidence recorded when a sub-task is completed."""

    files_modified: List[str] = Field(default_factory=list)
    implementation_notes: Optional[str] = None
    acceptance_criteria_verification: Dict[str, str] = Field(default_factory=dict)
    testing_results: Optional[str] = None


__all__ = [
    "utcnow",
    "as_utc",
    "StepStatus",
    "StepResult",
    "SubtaskStatus",
    "ExecutionPhase",
    "StepAssignment",
    "TransitionRecord",
    "CompletedStepRecord",
    "InitializedState",
    "InProgressState",
    "RoleTransitionedState",
    "CompletedState",
    "ExecutionState",
    "parse_execution_state",
    "dump_execution_state",
    "CompletionEvidence",
]
