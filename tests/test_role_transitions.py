import asyncio
import uuid

import pytest

from guidance_engine.config import ScoringConfig
from guidance_engine.contracts import RoleTransitionedState
from guidance_engine.errors import (
    RoleMismatch,
    RoleNotFound,
    TransientStoreFailure,
    TransitionBlocked,
    TransitionNotFound,
)
from guidance_engine.workflow import TransitionContext, TransitionOutcome, WeightedTransitionScorer


async def _bootstrap(service, role_name, task_id="T-1"):
    boot = await service.bootstrapper.bootstrap_workflow(role_name)
    await service.executions.attach_task(boot.execution.id, task_id)
    return boot.execution


@pytest.mark.asyncio
async def test_list_available_transitions(service, catalog):
    transitions = await service.transitions.list_available_transitions("architect")
    assert {t.transition_name for t in transitions} == {
        "architect_to_senior_developer",
        "architect_to_retired",
    }
    with pytest.raises(RoleNotFound):
        await service.transitions.list_available_transitions("nobody")


@pytest.mark.asyncio
async def test_validation_reports_incomplete_required_steps(service, catalog):
    await _bootstrap(service, "architect")
    transition = catalog.transitions["architect_to_senior_developer"]

    validation = await service.transitions.validate_transition(transition.id, TransitionContext(task_id="T-1"))

    assert validation.valid is False
    assert "Required step 'review_requirements' is not completed" in validation.errors
    assert "Required step 'design_solution' is not completed" in validation.errors
    # optional steps never block
    assert not any("document_decisions" in e for e in validation.errors)


@pytest.mark.asyncio
async def test_validation_rejects_inactive_target_and_wrong_source(service, catalog, finish_role):
    execution = await _bootstrap(service, "architect")
    await finish_role(execution.id, "architect")
    context = TransitionContext(task_id="T-1")

    retired = await service.transitions.validate_transition(
        catalog.transitions["architect_to_retired"].id, context
    )
    assert retired.valid is False
    assert any("not active" in e for e in retired.errors)

    wrong_source = await service.transitions.validate_transition(
        catalog.transitions["code_review_to_boomerang"].id, context
    )
    assert wrong_source.valid is False
    assert any("transition starts from" in e for e in wrong_source.errors)


@pytest.mark.asyncio
async def test_unknown_condition_is_warning(service, catalog, store, finish_role):
    transition = catalog.transitions["architect_to_senior_developer"]
    async with store.transaction() as uow:
        row = await uow.transitions.get(transition.id)
        row.conditions = ["required_steps_completed", "review_approved"]
    execution = await _bootstrap(service, "architect")
    await finish_role(execution.id, "architect")

    validation = await service.transitions.validate_transition(transition.id, TransitionContext(task_id="T-1"))

    assert validation.valid is True
    assert validation.warnings == ["Unknown readiness condition 'review_approved' ignored"]


@pytest.mark.asyncio
async def test_blocked_transition_leaves_state_untouched(service, catalog):
    execution = await _bootstrap(service, "architect")
    transition = catalog.transitions["architect_to_senior_developer"]

    with pytest.raises(TransitionBlocked) as excinfo:
        await service.transitions.execute_transition(transition.id, TransitionContext(task_id="T-1"))
    assert excinfo.value.blocking_issues

    reloaded = await service.executions.get_execution(execution.id)
    assert reloaded.current_role_id == catalog.roles["architect"].id
    assert reloaded.current_step_id == execution.current_step_id
    assert await service.transitions.get_transition_history(execution.id) == []


@pytest.mark.asyncio
async def test_unknown_transition(service):
    with pytest.raises(TransitionNotFound):
        await service.transitions.execute_transition(uuid.uuid4(), TransitionContext(task_id="T-1"))


@pytest.mark.asyncio
async def test_execute_transition_moves_role_and_assigns_first_step(service, catalog, finish_role):
    execution = await _bootstrap(service, "architect")
    await finish_role(execution.id, "architect")
    transition = catalog.transitions["architect_to_senior_developer"]
    developer = catalog.roles["senior-developer"]

    outcome = await service.transitions.execute_transition(
        transition.id, TransitionContext(task_id="T-1"), handoff_message="Design approved"
    )

    first = catalog.steps["senior-developer"][0]
    assert outcome.execution.current_role_id == developer.id
    assert outcome.execution.current_step_id == first.id
    assert outcome.first_step.id == first.id
    assert outcome.sync.corrected is True

    state = outcome.execution.state
    assert isinstance(state, RoleTransitionedState)
    assert state.last_transition.new_role_id == developer.id
    assert state.last_transition.handoff_message == "Design approved"
    assert state.previous_role_id == catalog.roles["architect"].id
    assert state.current_step.id == first.id

    history = await service.transitions.get_transition_history(execution.id)
    assert len(history) == 1
    assert history[0].from_role_id == catalog.roles["architect"].id
    assert history[0].to_role_id == developer.id
    assert history[0].task_id == "T-1"


@pytest.mark.asyncio
async def test_repeating_transition_is_blocked(service, catalog, finish_role):
    execution = await _bootstrap(service, "architect")
    await finish_role(execution.id, "architect")
    transition = catalog.transitions["architect_to_senior_developer"]
    context = TransitionContext(execution_id=execution.id)

    await service.transitions.execute_transition(transition.id, context)
    with pytest.raises(TransitionBlocked):
        await service.transitions.execute_transition(transition.id, context)


@pytest.mark.asyncio
async def test_recommendations_rank_common_transitions_first(service, catalog, finish_role):
    execution = await _bootstrap(service, "boomerang")
    await finish_role(execution.id, "boomerang")

    recommended = await service.transitions.list_recommended_transitions(
        "boomerang", TransitionContext(task_id="T-1")
    )

    assert [r.transition.transition_name for r in recommended] == [
        "boomerang_to_architect",
        "boomerang_to_researcher",
    ]
    assert recommended[0].score == 70.0
    assert recommended[1].score == 50.0


@pytest.mark.asyncio
async def test_recommendations_skip_invalid_edges(service, catalog):
    await _bootstrap(service, "boomerang")

    recommended = await service.transitions.list_recommended_transitions(
        "boomerang", TransitionContext(task_id="T-1")
    )
    assert recommended == []


@pytest.mark.asyncio
async def test_weighted_scorer_uses_priority(catalog):
    scorer = WeightedTransitionScorer(ScoringConfig(priority_weight=2.0, common_transitions=[]))
    transition = catalog.transitions["boomerang_to_researcher"]
    role = catalog.roles["researcher"]
    assert scorer.score(transition, role, TransitionContext()) == 50.0 + 2.0 * role.priority


@pytest.mark.asyncio
async def test_concurrent_transitions_let_one_writer_win(service, catalog, finish_role):
    execution = await _bootstrap(service, "architect")
    await finish_role(execution.id, "architect")
    transition = catalog.transitions["architect_to_senior_developer"]
    context = TransitionContext(execution_id=execution.id)

    results = await asyncio.gather(
        service.transitions.execute_transition(transition.id, context),
        service.transitions.execute_transition(transition.id, context),
        return_exceptions=True,
    )

    winners = [r for r in results if isinstance(r, TransitionOutcome)]
    losers = [r for r in results if not isinstance(r, TransitionOutcome)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], (RoleMismatch, TransitionBlocked, TransientStoreFailure))

    history = await service.transitions.get_transition_history(execution.id)
    assert len(history) == 1
    reloaded = await service.executions.get_execution(execution.id)
    assert reloaded.current_role_id == catalog.roles["senior-developer"].id
