import uuid

import pytest

from guidance_engine.config import GuidanceConfig
from guidance_engine.errors import ErrorKind, TransientStoreFailure
from guidance_engine.service import GuidanceService, OperationResult
from guidance_engine.subtasks import BatchDependency, BatchSpec, SubtaskBatchRequest, SubtaskSpec
from guidance_engine.workflow import TransitionContext


@pytest.mark.asyncio
async def test_successful_operation_wraps_data(service, catalog):
    result = await service.bootstrap_workflow("architect")

    assert result.success is True
    assert result.error is None
    assert result.data.first_step.id == catalog.steps["architect"][0].id


@pytest.mark.asyncio
async def test_not_found_becomes_typed_failure(service):
    result = await service.get_role("product-owner")

    assert result.success is False
    assert result.error.kind is ErrorKind.NOT_FOUND
    assert result.error.code == "RoleNotFound"
    assert result.error.context == {"role": "product-owner"}
    assert result.error.retryable is False


@pytest.mark.asyncio
async def test_blocked_transition_carries_blocking_issues(service, catalog):
    boot = await service.bootstrap_workflow("architect")
    await service.attach_task(boot.data.execution.id, "T-9")

    result = await service.execute_transition(
        catalog.transitions["architect_to_senior_developer"].id, TransitionContext(task_id="T-9")
    )

    assert result.success is False
    assert result.error.kind is ErrorKind.PRECONDITION_FAILED
    assert result.error.code == "TransitionBlocked"
    assert "Required step 'review_requirements' is not completed" in result.error.blocking_issues


@pytest.mark.asyncio
async def test_structural_failures(service):
    request = SubtaskBatchRequest(
        batches=[BatchSpec(batch_id="B1"), BatchSpec(batch_id="B2")],
        batch_dependencies=[
            BatchDependency(batch_id="B1", depends_on_batches=["B2"]),
            BatchDependency(batch_id="B2", depends_on_batches=["B1"]),
        ],
    )

    result = await service.validate_batch_dependencies(request)

    assert result.success is False
    assert result.error.kind is ErrorKind.STRUCTURAL_INVALID
    assert result.error.code == "CircularDependency"
    assert result.error.context["batch_id"] in {"B1", "B2"}


@pytest.mark.asyncio
async def test_validate_batch_dependencies_returns_order(service):
    request = SubtaskBatchRequest(
        batches=[
            BatchSpec(batch_id="B2", subtasks=[SubtaskSpec(name="b")]),
            BatchSpec(batch_id="B1", subtasks=[SubtaskSpec(name="a")]),
        ],
        batch_dependencies=[BatchDependency(batch_id="B2", depends_on_batches=["B1"])],
    )

    result = await service.validate_batch_dependencies(request)
    assert result.success is True
    assert result.data == ["B1", "B2"]


@pytest.mark.asyncio
async def test_missing_execution_context_is_stringified(service):
    execution_id = uuid.uuid4()
    result = await service.get_execution_summary(execution_id)

    assert result.error.code == "ExecutionNotFound"
    assert result.error.context == {"execution_id": str(execution_id)}


@pytest.mark.asyncio
async def test_unexpected_errors_propagate(service, monkeypatch):
    async def explode(*args, **kwargs):
        raise KeyError("bug")

    monkeypatch.setattr(service.executions, "list_executions", explode)
    with pytest.raises(KeyError):
        await service.list_executions()


def test_retryable_failures_are_flagged():
    result = OperationResult.failed(TransientStoreFailure("database is locked", operation="start_step"))

    assert result.error.kind is ErrorKind.TRANSIENT_STORE_FAILURE
    assert result.error.retryable is True
    assert result.error.context == {"operation": "start_step"}


@pytest.mark.asyncio
async def test_from_config_uses_configured_database(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'svc.db'}"
    service = GuidanceService.from_config(GuidanceConfig(database_url=url, execution_mode="AUTONOMOUS"))
    try:
        assert str(service.store.engine.url) == url
        assert service.config.execution_mode == "AUTONOMOUS"
    finally:
        await service.store.dispose()
