"""Batch completion detection and evidence aggregation."""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from ..contracts import SubtaskStatus
from ..persistence import Subtask, UnitOfWork, WorkflowStore


class AggregatedEvidence(BaseModel):
    completion_summary: str
    files_modified: List[str] = Field(default_factory=list)
    implementation_notes: str = ""
    total_subtasks: int
    completed_subtasks: int
    automatic_completion: bool = True


class BatchCompletionResult(BaseModel):
    batch_id: str
    batch_completed: bool = False
    completion_triggered: bool = False
    completed_count: int = 0
    total_count: int = 0
    message: str
    aggregated_evidence: Optional[AggregatedEvidence] = None


def collect_files_modified(subtasks: List[Subtask]) -> List[str]:
    """Union of every sub-task's ``files_modified``, in first-seen order."""
    seen: dict[str, None] = {}
    for subtask in subtasks:
        for path in (subtask.completion_evidence or {}).get("files_modified") or []:
            seen.setdefault(path, None)
    return list(seen)


def batch_implementation_notes(subtasks: List[Subtask]) -> str:
    lines = [f"Batch completed with {len(subtasks)} subtasks:"]
    for subtask in subtasks:
        notes = (subtask.completion_evidence or {}).get("implementation_notes")
        lines.append(f"- {subtask.name}: {notes or subtask.description}")
    lines.append("All acceptance criteria met and evidence collected.")
    return "\n".join(lines)


def summarize_batch(batch_id: str, subtasks: List[Subtask]) -> BatchCompletionResult:
    total = len(subtasks)
    if not total:
        return BatchCompletionResult(batch_id=batch_id, message=f"No subtasks found for batch {batch_id}")

    completed = sum(1 for s in subtasks if s.status == SubtaskStatus.COMPLETED.value)
    if completed < total:
        return BatchCompletionResult(
            batch_id=batch_id,
            completed_count=completed,
            total_count=total,
            message=f"Batch {batch_id} not ready for completion: {completed}/{total} subtasks completed",
        )

    return BatchCompletionResult(
        batch_id=batch_id,
        batch_completed=True,
        completion_triggered=True,
        completed_count=completed,
        total_count=total,
        message=f"Batch {batch_id} automatically completed - all {total} subtasks finished",
        aggregated_evidence=AggregatedEvidence(
            completion_summary=f"Automatic batch completion: All {total} subtasks completed successfully",
            files_modified=collect_files_modified(subtasks),
            implementation_notes=batch_implementation_notes(subtasks),
            total_subtasks=total,
            completed_subtasks=completed,
        ),
    )


class BatchCompletionAggregator:
    """Detects full batch completion. Never touches the parent task."""

    def __init__(self, store: WorkflowStore, logger: Optional[logging.Logger] = None) -> None:
        self._store = store
        self._logger = logger or logging.getLogger(__name__)

    async def check_batch_completion(self, task_id: str, batch_id: str) -> BatchCompletionResult:
        async with self._store.transaction("check_batch_completion", task_id=task_id, batch_id=batch_id) as uow:
            return await self.check(uow, task_id, batch_id)

    async def check(self, uow: UnitOfWork, task_id: str, batch_id: str) -> BatchCompletionResult:
        result = summarize_batch(batch_id, await uow.subtasks.list_for_batch(task_id, batch_id))
        if result.batch_completed:
            self._logger.info(f"Batch completed task={task_id} batch={batch_id} subtasks={result.total_count}")
        return result
