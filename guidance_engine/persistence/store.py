from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from ..errors import ConstraintViolation, TransientStoreFailure
from . import models  # noqa: F401  registers tables on SQLModel.metadata
from .repository import (
    EntityKind,
    ExecutionRepository,
    ProgressRepository,
    RoleRepository,
    StepRepository,
    SubtaskRepository,
    TransitionHistoryRepository,
    TransitionRepository,
)
from .sql import (
    SQLExecutionRepository,
    SQLProgressRepository,
    SQLRoleRepository,
    SQLStepRepository,
    SQLSubtaskRepository,
    SQLTransitionHistoryRepository,
    SQLTransitionRepository,
)

REPOSITORIES: Mapping[EntityKind, type] = {
    EntityKind.ROLE: SQLRoleRepository,
    EntityKind.STEP: SQLStepRepository,
    EntityKind.TRANSITION: SQLTransitionRepository,
    EntityKind.EXECUTION: SQLExecutionRepository,
    EntityKind.PROGRESS: SQLProgressRepository,
    EntityKind.TRANSITION_HISTORY: SQLTransitionHistoryRepository,
    EntityKind.SUBTASK: SQLSubtaskRepository,
}


class UnitOfWork:
    """Repositories bound to a single transaction."""

    def __init__(self, session: AsyncSession, repositories: Mapping[EntityKind, type]) -> None:
        self.session = session
        self._repositories = {kind: cls(session) for kind, cls in repositories.items()}

    def repository(self, kind: EntityKind) -> Any:
        return self._repositories[kind]

    @property
    def roles(self) -> RoleRepository:
        return self._repositories[EntityKind.ROLE]

    @property
    def steps(self) -> StepRepository:
        return self._repositories[EntityKind.STEP]

    @property
    def transitions(self) -> TransitionRepository:
        return self._repositories[EntityKind.TRANSITION]

    @property
    def executions(self) -> ExecutionRepository:
        return self._repositories[EntityKind.EXECUTION]

    @property
    def progress(self) -> ProgressRepository:
        return self._repositories[EntityKind.PROGRESS]

    @property
    def history(self) -> TransitionHistoryRepository:
        return self._repositories[EntityKind.TRANSITION_HISTORY]

    @property
    def subtasks(self) -> SubtaskRepository:
        return self._repositories[EntityKind.SUBTASK]


class WorkflowStore:
    """Async database helper scoping every unit of work to one transaction."""

    def __init__(
        self,
        database_url: str,
        *,
        echo: bool = False,
        repositories: Optional[Mapping[EntityKind, type]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.database_url = database_url
        self._logger = logger or logging.getLogger(__name__)
        self._repositories = dict(repositories or REPOSITORIES)
        missing = set(EntityKind) - set(self._repositories)
        if missing:
            raise ValueError(
                f"No repository configured for: {', '.join(sorted(k.value for k in missing))}"
            )

        engine_args: dict[str, Any] = {"echo": echo, "future": True}
        if database_url.startswith("sqlite"):
            engine_args["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite+aiosqlite:"):
                engine_args["poolclass"] = StaticPool
        self.engine = create_async_engine(database_url, **engine_args)

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def transaction(self, operation: str = "unit_of_work", **context: Any) -> AsyncIterator[UnitOfWork]:
        """Yield a :class:`UnitOfWork`; commit on success, roll back on any error.

        SQLAlchemy failures are translated into the engine's error taxonomy and
        logged with ``operation`` and ``context`` ids.
        """

        try:
            async with AsyncSession(self.engine, expire_on_commit=False) as session:
                async with session.begin():
                    yield UnitOfWork(session, self._repositories)
        except IntegrityError as exc:
            self._logger.error(
                f"Constraint violated during {operation} ({_format_context(context)}): {exc.orig}"
            )
            raise ConstraintViolation(
                f"Constraint violated during {operation}: {exc.orig}", operation=operation, **context
            ) from exc
        except SQLAlchemyError as exc:
            self._logger.error(
                f"Store failure during {operation} ({_format_context(context)}): {exc}"
            )
            raise TransientStoreFailure(
                f"Store failure during {operation}: {exc}", operation=operation, **context
            ) from exc


def _format_context(context: Mapping[str, Any]) -> str:
    return " ".join(f"{key}={value}" for key, value in context.items() if value is not None)
