from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from ..contracts import (
    ExecutionState,
    StepStatus,
    SubtaskStatus,
    dump_execution_state,
    parse_execution_state,
    utcnow,
)


class WorkflowRole(SQLModel, table=True):
    """A named phase of the delivery workflow."""

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str = ""
    priority: int = 0
    is_active: bool = True
    capabilities: list = Field(default_factory=list, sa_column=Column(JSON))
    responsibilities: list = Field(default_factory=list, sa_column=Column(JSON))


class WorkflowStep(SQLModel, table=True):
    """Atomic unit of guidance within a role, ordered by sequence number."""

    __table_args__ = (UniqueConstraint("role_id", "sequence_number"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    role_id: UUID = Field(foreign_key="workflowrole.id", index=True)
    name: str
    description: str = ""
    sequence_number: int
    step_type: str = "ACTION"
    is_required: bool = True


class RoleTransition(SQLModel, table=True):
    """Static legal edge between two roles."""

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    from_role_id: UUID = Field(foreign_key="workflowrole.id", index=True)
    to_role_id: UUID = Field(foreign_key="workflowrole.id")
    transition_name: str
    is_active: bool = True
    conditions: list = Field(default_factory=list, sa_column=Column(JSON))


class WorkflowExecution(SQLModel, table=True):
    """One continuous run of the workflow."""

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    task_id: Optional[str] = Field(default=None, index=True)
    current_role_id: UUID = Field(foreign_key="workflowrole.id")
    current_step_id: Optional[UUID] = Field(default=None, foreign_key="workflowstep.id")
    execution_mode: str = "GUIDED"
    execution_state: dict = Field(default_factory=dict, sa_column=Column(JSON))
    execution_context: dict = Field(default_factory=dict, sa_column=Column(JSON))
    steps_completed: int = 0
    total_steps: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def state(self) -> ExecutionState:
        return parse_execution_state(self.execution_state)

    def set_state(self, state: ExecutionState) -> None:
        self.execution_state = dump_execution_state(state)
        self.updated_at = utcnow()


class WorkflowStepProgress(SQLModel, table=True):
    """Lifecycle record of one attempt at a step."""

    # at most one open attempt per (execution, step)
    __table_args__ = (
        Index(
            "uq_open_step_progress",
            "execution_id",
            "step_id",
            unique=True,
            sqlite_where=text("status = 'IN_PROGRESS'"),
            postgresql_where=text("status = 'IN_PROGRESS'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    step_id: UUID = Field(foreign_key="workflowstep.id", index=True)
    execution_id: UUID = Field(foreign_key="workflowexecution.id", index=True)
    task_id: Optional[str] = None
    role_id: UUID = Field(foreign_key="workflowrole.id", index=True)
    status: str = Field(default=StepStatus.NOT_STARTED.value)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    duration: Optional[float] = None
    result: Optional[str] = None
    execution_data: dict = Field(default_factory=dict, sa_column=Column(JSON))
    validation_results: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    error_details: Optional[dict] = Field(default=None, sa_column=Column(JSON))


class RoleTransitionRecord(SQLModel, table=True):
    """History entry written for every executed role transition."""

    id: Optional[int] = Field(default=None, primary_key=True)
    execution_id: UUID = Field(foreign_key="workflowexecution.id", index=True)
    task_id: Optional[str] = None
    transition_id: UUID = Field(foreign_key="roletransition.id")
    from_role_id: UUID
    to_role_id: UUID
    handoff_message: Optional[str] = None
    transitioned_at: datetime = Field(default_factory=utcnow)


class Subtask(SQLModel, table=True):
    """Implementation unit of a task, grouped into batches."""

    __table_args__ = (UniqueConstraint("task_id", "name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    task_id: str = Field(index=True)
    name: str
    description: str = ""
    sequence_number: int = 0
    status: str = Field(default=SubtaskStatus.NOT_STARTED.value)
    batch_id: Optional[str] = Field(default=None, index=True)
    batch_title: Optional[str] = None
    acceptance_criteria: list = Field(default_factory=list, sa_column=Column(JSON))
    implementation_approach: Optional[str] = None
    completion_evidence: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SubtaskDependency(SQLModel, table=True):
    """Directed edge: ``dependent_subtask_id`` requires ``required_subtask_id``."""

    __table_args__ = (
        UniqueConstraint("dependent_subtask_id", "required_subtask_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    dependent_subtask_id: int = Field(foreign_key="subtask.id", index=True)
    required_subtask_id: int = Field(foreign_key="subtask.id", index=True)
