from __future__ import annotations

import difflib
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..errors import DuplicateDefinition, SubtaskNotFound
from ..persistence import Subtask, UnitOfWork, WorkflowStore
from .graph import name_key, plan_batches
from .specs import BatchSpec, SubtaskBatchRequest


@dataclass
class BatchCreationResult:
    subtasks: List[Subtask] = field(default_factory=list)
    batch_order: List[str] = field(default_factory=list)
    dependency_count: int = 0

    @property
    def message(self) -> str:
        return (
            f"Created {len(self.subtasks)} subtasks in {len(self.batch_order)} batches "
            f"with {self.dependency_count} dependencies"
        )


class SubtaskCreator:
    """Creates validated batches of sub-tasks and wires their dependencies."""

    def __init__(self, store: WorkflowStore, logger: Optional[logging.Logger] = None) -> None:
        self._store = store
        self._logger = logger or logging.getLogger(__name__)

    async def create_subtask_batches(
        self, task_id: str, request: SubtaskBatchRequest
    ) -> BatchCreationResult:
        """Validate, order and persist ``request`` in one transaction.

        Batches are created in dependency order so every name-based dependency
        resolves to an already-flushed row. Names match case-insensitively and
        may refer to sub-tasks created earlier for the same task.
        """
        ordered = plan_batches(request)
        result = BatchCreationResult(batch_order=[b.batch_id for b in ordered])

        async with self._store.transaction("create_subtask_batches", task_id=task_id) as uow:
            by_name: Dict[str, Subtask] = {
                name_key(s.name): s for s in await uow.subtasks.list_for_task(task_id)
            }
            clashes = [
                spec.name
                for batch in ordered
                for spec in batch.subtasks
                if name_key(spec.name) in by_name
            ]
            if clashes:
                raise DuplicateDefinition(
                    f"Sub-tasks already exist for task {task_id}: {', '.join(clashes)}",
                    task_id=task_id,
                )

            for batch in ordered:
                result.subtasks.extend(await self._create_batch(uow, task_id, batch, by_name))
                result.dependency_count += await self._wire_dependencies(uow, batch, by_name)

        self._logger.info(f"Task={task_id}: {result.message} order={result.batch_order}")
        return result

    async def _create_batch(
        self, uow: UnitOfWork, task_id: str, batch: BatchSpec, by_name: Dict[str, Subtask]
    ) -> List[Subtask]:
        created = []
        for spec in batch.subtasks:
            subtask = await uow.subtasks.add(
                Subtask(
                    task_id=task_id,
                    name=spec.name,
                    description=spec.description,
                    sequence_number=spec.sequence_number,
                    batch_id=batch.batch_id,
                    batch_title=batch.batch_title,
                    acceptance_criteria=list(spec.acceptance_criteria),
                    implementation_approach=spec.implementation_approach,
                )
            )
            by_name[name_key(spec.name)] = subtask
            created.append(subtask)
        return created

    async def _wire_dependencies(
        self, uow: UnitOfWork, batch: BatchSpec, by_name: Dict[str, Subtask]
    ) -> int:
        count = 0
        for spec in batch.subtasks:
            dependent = by_name[name_key(spec.name)]
            for name in spec.dependencies:
                required = by_name.get(name_key(name))
                if required is None:
                    raise SubtaskNotFound(
                        _unresolved_message(name, spec.name, by_name),
                        dependency=name,
                        subtask=spec.name,
                        batch_id=batch.batch_id,
                    )
                if await uow.subtasks.add_dependency(dependent.id, required.id) is not None:
                    count += 1
        return count


def _unresolved_message(name: str, dependent: str, by_name: Dict[str, Subtask]) -> str:
    message = f"Dependency '{name}' of sub-task '{dependent}' does not exist"
    candidates = difflib.get_close_matches(
        name_key(name), list(by_name), n=3, cutoff=0.6
    )
    if candidates:
        message += "; did you mean: " + ", ".join(by_name[c].name for c in candidates)
    return message
