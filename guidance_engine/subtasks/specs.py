"""Request models for sub-task decomposition and updates."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from ..contracts import CompletionEvidence, SubtaskStatus


class SubtaskSpec(BaseModel):
    name: str
    description: str = ""
    sequence_number: int = 0
    dependencies: List[str] = Field(
        default_factory=list, description="Names of sub-tasks this one requires"
    )
    acceptance_criteria: List[str] = Field(default_factory=list)
    implementation_approach: Optional[str] = None


class BatchSpec(BaseModel):
    batch_id: str
    batch_title: str = "Untitled Batch"
    batch_description: str = ""
    subtasks: List[SubtaskSpec] = Field(default_factory=list)


class BatchDependency(BaseModel):
    batch_id: str
    depends_on_batches: List[str] = Field(default_factory=list)


class SubtaskBatchRequest(BaseModel):
    batches: List[BatchSpec]
    batch_dependencies: List[BatchDependency] = Field(default_factory=list)


class SubtaskUpdate(BaseModel):
    """Partial update; unset fields are left untouched."""

    status: Optional[SubtaskStatus] = None
    completion_evidence: Optional[CompletionEvidence] = None
    description: Optional[str] = None
    implementation_approach: Optional[str] = None
