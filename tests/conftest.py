from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

import pytest
import pytest_asyncio

from guidance_engine.persistence import RoleTransition, WorkflowRole, WorkflowStep, WorkflowStore
from guidance_engine.service import GuidanceService

ROLE_STEPS = {
    "boomerang": ["analyze_request", "delegate"],
    "researcher": ["gather_sources", "write_findings"],
    "architect": ["review_requirements", "design_solution", "document_decisions"],
    "senior-developer": ["setup_environment", "implement_subtask", "verify_implementation"],
    "code-review": ["review_changes", "report_findings"],
    "empty-role": [],
    "retired": ["legacy_step"],
}

OPTIONAL_STEPS = {"document_decisions"}
INACTIVE_ROLES = {"retired"}

TRANSITIONS = [
    ("boomerang_to_architect", "boomerang", "architect"),
    ("boomerang_to_researcher", "boomerang", "researcher"),
    ("researcher_to_architect", "researcher", "architect"),
    ("architect_to_senior_developer", "architect", "senior-developer"),
    ("architect_to_retired", "architect", "retired"),
    ("senior_developer_to_code_review", "senior-developer", "code-review"),
    ("code_review_to_boomerang", "code-review", "boomerang"),
]


@dataclass
class Catalog:
    roles: Dict[str, WorkflowRole] = field(default_factory=dict)
    steps: Dict[str, List[WorkflowStep]] = field(default_factory=dict)
    transitions: Dict[str, RoleTransition] = field(default_factory=dict)


async def seed_catalog(store: WorkflowStore) -> Catalog:
    catalog = Catalog()
    async with store.transaction("seed_catalog") as uow:
        for priority, (name, step_names) in enumerate(ROLE_STEPS.items(), start=1):
            role = await uow.roles.add(
                WorkflowRole(
                    name=name,
                    description=f"{name} role",
                    priority=priority,
                    is_active=name not in INACTIVE_ROLES,
                )
            )
            catalog.roles[name] = role
            catalog.steps[name] = []
            for sequence, step_name in enumerate(step_names, start=1):
                step = await uow.steps.add(
                    WorkflowStep(
                        role_id=role.id,
                        name=step_name,
                        sequence_number=sequence,
                        is_required=step_name not in OPTIONAL_STEPS,
                    )
                )
                catalog.steps[name].append(step)

        for transition_name, source, target in TRANSITIONS:
            catalog.transitions[transition_name] = await uow.transitions.add(
                RoleTransition(
                    from_role_id=catalog.roles[source].id,
                    to_role_id=catalog.roles[target].id,
                    transition_name=transition_name,
                )
            )
    return catalog


@pytest_asyncio.fixture
async def store(tmp_path):
    store = WorkflowStore(f"sqlite+aiosqlite:///{tmp_path/'guidance.db'}")
    await store.init_db()
    yield store
    await store.dispose()


@pytest_asyncio.fixture
async def catalog(store) -> Catalog:
    return await seed_catalog(store)


@pytest_asyncio.fixture
async def service(store, catalog) -> GuidanceService:
    return GuidanceService(store)


@pytest.fixture
def finish_role(service, catalog):
    """Start and complete every required step of a role within an execution."""

    async def finish(execution_id, role_name: str, task_id=None) -> None:
        role = catalog.roles[role_name]
        for step in catalog.steps[role_name]:
            if not step.is_required:
                continue
            await service.progress.start_step(step.id, execution_id, role.id, task_id)
            await service.progress.complete_step(step.id, execution_id=execution_id)

    return finish
