from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..contracts import SubtaskStatus
from ..errors import SubtaskNotFound
from ..persistence import Subtask, WorkflowStore


@dataclass
class BlockedSubtask:
    id: int
    name: str
    pending_dependencies: List[str]


@dataclass
class NextSubtaskResult:
    next_subtask: Optional[Subtask]
    message: str
    resumed: bool = False
    blocked: List[BlockedSubtask] = field(default_factory=list)


class SubtaskQueries:
    def __init__(self, store: WorkflowStore, logger: Optional[logging.Logger] = None) -> None:
        self._store = store
        self._logger = logger or logging.getLogger(__name__)

    async def get_subtask(self, task_id: str, subtask_id: int) -> Subtask:
        async with self._store.transaction("get_subtask", task_id=task_id, subtask_id=subtask_id) as uow:
            subtask = await uow.subtasks.get(subtask_id)
        if subtask is None or subtask.task_id != task_id:
            raise SubtaskNotFound(
                f"Subtask {subtask_id} not found for task {task_id}",
                task_id=task_id,
                subtask_id=subtask_id,
            )
        return subtask

    async def list_subtasks(
        self,
        task_id: str,
        status: Optional[SubtaskStatus] = None,
        batch_id: Optional[str] = None,
    ) -> List[Subtask]:
        async with self._store.transaction("list_subtasks", task_id=task_id) as uow:
            if batch_id is not None:
                subtasks = await uow.subtasks.list_for_batch(task_id, batch_id)
            else:
                subtasks = await uow.subtasks.list_for_task(task_id)
        if status is not None:
            subtasks = [s for s in subtasks if s.status == status.value]
        return subtasks

    async def get_next_subtask(self, task_id: str) -> NextSubtaskResult:
        """Pick the sub-task to work on next.

        An in-progress sub-task is always resumed first. Otherwise the first
        not-started sub-task by sequence whose requirements are all completed
        is returned; when none qualifies, the blocked candidates are reported.
        """
        async with self._store.transaction("get_next_subtask", task_id=task_id) as uow:
            subtasks = await uow.subtasks.list_for_task(task_id)
            if not subtasks:
                return NextSubtaskResult(None, "No subtasks found for this task")

            for subtask in subtasks:
                if subtask.status == SubtaskStatus.IN_PROGRESS.value:
                    return NextSubtaskResult(
                        subtask,
                        f"Resuming in-progress subtask: '{subtask.name}' "
                        f"(sequence {subtask.sequence_number}) - complete this before starting new subtasks",
                        resumed=True,
                    )

            candidates = [s for s in subtasks if s.status == SubtaskStatus.NOT_STARTED.value]
            if not candidates:
                return NextSubtaskResult(None, "All subtasks have been completed")

            blocked = []
            for candidate in candidates:
                required = await uow.subtasks.required_by(candidate.id)
                pending = [r.name for r in required if r.status != SubtaskStatus.COMPLETED.value]
                if not pending:
                    return NextSubtaskResult(
                        candidate,
                        f"Next available subtask: '{candidate.name}' "
                        f"(sequence {candidate.sequence_number}) in batch {candidate.batch_id}",
                    )
                blocked.append(BlockedSubtask(candidate.id, candidate.name, pending))

        self._logger.info(f"Task={task_id}: {len(blocked)} subtasks blocked on dependencies")
        return NextSubtaskResult(
            None,
            "No subtasks available - all remaining subtasks have incomplete dependencies",
            blocked=blocked,
        )
