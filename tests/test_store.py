import pytest

from guidance_engine.contracts import InitializedState, StepAssignment, dump_execution_state
from guidance_engine.errors import ConstraintViolation
from guidance_engine.persistence import repository
from guidance_engine.persistence import (
    REPOSITORIES,
    EntityKind,
    WorkflowExecution,
    WorkflowRole,
    WorkflowStep,
    WorkflowStore,
)


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(store):
    with pytest.raises(RuntimeError):
        async with store.transaction("seed") as uow:
            await uow.roles.add(WorkflowRole(name="architect"))
            raise RuntimeError("boom")

    async with store.transaction() as uow:
        assert await uow.roles.get_by_name("architect") is None


@pytest.mark.asyncio
async def test_integrity_error_becomes_constraint_violation(store):
    async with store.transaction() as uow:
        role = await uow.roles.add(WorkflowRole(name="architect"))
        await uow.steps.add(WorkflowStep(role_id=role.id, name="one", sequence_number=1))

    with pytest.raises(ConstraintViolation) as excinfo:
        async with store.transaction("add_step", role=role.name) as uow:
            await uow.steps.add(WorkflowStep(role_id=role.id, name="dup", sequence_number=1))
    assert excinfo.value.context["operation"] == "add_step"
    assert excinfo.value.retryable is False


@pytest.mark.asyncio
async def test_steps_are_ordered_by_sequence(store, catalog):
    role = catalog.roles["architect"]
    async with store.transaction() as uow:
        first = await uow.steps.first_for_role(role.id)
        second = await uow.steps.next_after(role.id, first.sequence_number)
        last = await uow.steps.next_after(role.id, 3)
        total = await uow.steps.count_for_roles([role.id, catalog.roles["boomerang"].id])
    assert first.name == "review_requirements"
    assert second.name == "design_solution"
    assert last is None
    assert total == 5


@pytest.mark.asyncio
async def test_move_to_role_is_compare_and_set(store, catalog):
    architect = catalog.roles["architect"]
    developer = catalog.roles["senior-developer"]
    step = catalog.steps["architect"][0]
    state = dump_execution_state(InitializedState(current_step=StepAssignment.for_step(step)))

    async with store.transaction() as uow:
        execution = await uow.executions.add(
            WorkflowExecution(current_role_id=architect.id, current_step_id=step.id, execution_state=state)
        )

    async with store.transaction() as uow:
        moved = await uow.executions.move_to_role(execution.id, architect.id, developer.id, state)
        stale = await uow.executions.move_to_role(execution.id, architect.id, developer.id, state)
        refreshed = await uow.executions.get(execution.id, refresh=True)

    assert moved is True
    assert stale is False
    assert refreshed.current_role_id == developer.id
    assert refreshed.current_step_id is None


def test_store_requires_repository_for_every_entity_kind():
    partial = {k: v for k, v in REPOSITORIES.items() if k is not EntityKind.SUBTASK}
    with pytest.raises(ValueError) as excinfo:
        WorkflowStore("sqlite+aiosqlite:///:memory:", repositories=partial)
    assert "subtask" in str(excinfo.value)


def test_sql_repositories_implement_their_protocols():
    expected = {
        EntityKind.ROLE: repository.RoleRepository,
        EntityKind.STEP: repository.StepRepository,
        EntityKind.TRANSITION: repository.TransitionRepository,
        EntityKind.EXECUTION: repository.ExecutionRepository,
        EntityKind.PROGRESS: repository.ProgressRepository,
        EntityKind.TRANSITION_HISTORY: repository.TransitionHistoryRepository,
        EntityKind.SUBTASK: repository.SubtaskRepository,
    }
    for kind, protocol in expected.items():
        assert protocol in REPOSITORIES[kind].__mro__
