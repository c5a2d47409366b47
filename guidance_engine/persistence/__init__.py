"""Persistence layer for guidance-engine workflows."""

from __future__ import annotations

import logging
import os
from typing import Optional

from ..config import GuidanceConfig, load_config
from .models import (
    RoleTransition,
    RoleTransitionRecord,
    Subtask,
    SubtaskDependency,
    WorkflowExecution,
    WorkflowRole,
    WorkflowStep,
    WorkflowStepProgress,
)
from .repository import EntityKind
from .store import REPOSITORIES, UnitOfWork, WorkflowStore

IN_MEMORY_URL = "sqlite+aiosqlite:///:memory:"


def get_store(
    database_url: Optional[str] = None,
    config: Optional[GuidanceConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> WorkflowStore:
    """Factory function to obtain a workflow store.

    The backend is selected from ``database_url`` which can be provided
    explicitly, via environment variable ``GUIDANCE_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory SQLite store is returned. Every call builds a
    new store; callers own its lifetime.
    """

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("GUIDANCE_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
        or IN_MEMORY_URL
    )

    if database_url.startswith("sqlite://"):
        database_url = database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    elif database_url.startswith(("postgres://", "postgresql://")):
        database_url = "postgresql+asyncpg://" + database_url.split("://", 1)[1]
    elif not database_url.startswith(("sqlite+aiosqlite://", "postgresql+asyncpg://")):
        raise ValueError(f"Unsupported database backend: {database_url}")

    return WorkflowStore(database_url, echo=config.database_echo, logger=logger)


__all__ = [
    "EntityKind",
    "REPOSITORIES",
    "UnitOfWork",
    "WorkflowStore",
    "get_store",
    "RoleTransition",
    "RoleTransitionRecord",
    "Subtask",
    "SubtaskDependency",
    "WorkflowExecution",
    "WorkflowRole",
    "WorkflowStep",
    "WorkflowStepProgress",
]
