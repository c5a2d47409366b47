import pytest

from guidance_engine.contracts import CompletionEvidence, SubtaskStatus
from guidance_engine.errors import (
    CircularDependency,
    DuplicateDefinition,
    IllegalStatusTransition,
    IncompleteDependencies,
    SubtaskNotFound,
)
from guidance_engine.subtasks import (
    BatchDependency,
    BatchSpec,
    SubtaskBatchRequest,
    SubtaskSpec,
    SubtaskUpdate,
)

TASK = "TSK-7"


def _request():
    return SubtaskBatchRequest(
        batches=[
            BatchSpec(
                batch_id="B2",
                batch_title="API",
                subtasks=[
                    SubtaskSpec(name="Expose endpoint", sequence_number=4, dependencies=["create schema"]),
                ],
            ),
            BatchSpec(
                batch_id="B1",
                batch_title="Storage",
                subtasks=[
                    SubtaskSpec(name="Create schema", sequence_number=1),
                    SubtaskSpec(name="Write migration", sequence_number=2, dependencies=["Create schema"]),
                    SubtaskSpec(name="Seed data", sequence_number=3),
                ],
            ),
        ],
        batch_dependencies=[BatchDependency(batch_id="B2", depends_on_batches=["B1"])],
    )


@pytest.fixture
def creator(service):
    return service.subtask_creator


@pytest.fixture
def updater(service):
    return service.subtask_updater


@pytest.fixture
def queries(service):
    return service.subtask_queries


async def _by_name(queries):
    return {s.name: s for s in await queries.list_subtasks(TASK)}


@pytest.mark.asyncio
async def test_create_batches_in_dependency_order(creator, updater, queries):
    result = await creator.create_subtask_batches(TASK, _request())

    assert result.batch_order == ["B1", "B2"]
    assert len(result.subtasks) == 4
    assert result.dependency_count == 2
    assert result.message == "Created 4 subtasks in 2 batches with 2 dependencies"

    subtasks = await _by_name(queries)
    assert subtasks["Expose endpoint"].batch_title == "API"
    deps = await updater.check_subtask_dependencies(TASK, subtasks["Write migration"].id)
    assert deps.total == 1
    assert deps.pending == ["Create schema"]
    assert deps.can_start is False


@pytest.mark.asyncio
async def test_unresolved_dependency_suggests_close_names(creator, queries):
    request = SubtaskBatchRequest(
        batches=[
            BatchSpec(
                batch_id="B1",
                subtasks=[
                    SubtaskSpec(name="Create schema", sequence_number=1),
                    SubtaskSpec(name="Write migration", sequence_number=2, dependencies=["Create schemas"]),
                ],
            )
        ]
    )

    with pytest.raises(SubtaskNotFound) as excinfo:
        await creator.create_subtask_batches(TASK, request)

    assert "did you mean: Create schema" in excinfo.value.message
    # nothing from the failed request is persisted
    assert await queries.list_subtasks(TASK) == []


@pytest.mark.asyncio
async def test_existing_names_are_rejected(creator):
    await creator.create_subtask_batches(TASK, _request())

    again = SubtaskBatchRequest(batches=[BatchSpec(batch_id="B3", subtasks=[SubtaskSpec(name="seed DATA ")])])
    with pytest.raises(DuplicateDefinition):
        await creator.create_subtask_batches(TASK, again)


@pytest.mark.asyncio
async def test_cycle_rejected_before_anything_is_written(creator, queries):
    request = _request()
    request.batch_dependencies.append(BatchDependency(batch_id="B1", depends_on_batches=["B2"]))

    with pytest.raises(CircularDependency):
        await creator.create_subtask_batches(TASK, request)
    assert await queries.list_subtasks(TASK) == []


@pytest.mark.asyncio
async def test_dependencies_gate_status_changes(creator, updater, queries):
    await creator.create_subtask_batches(TASK, _request())
    subtasks = await _by_name(queries)
    migration = subtasks["Write migration"]

    with pytest.raises(IncompleteDependencies) as excinfo:
        await updater.update_subtask(TASK, migration.id, SubtaskUpdate(status=SubtaskStatus.IN_PROGRESS))
    assert excinfo.value.blocking_issues == ["Required subtask 'Create schema' is not completed"]
    assert (await queries.get_subtask(TASK, migration.id)).status == SubtaskStatus.NOT_STARTED.value

    await updater.update_subtask(TASK, subtasks["Create schema"].id, SubtaskUpdate(status=SubtaskStatus.COMPLETED))
    result = await updater.update_subtask(TASK, migration.id, SubtaskUpdate(status=SubtaskStatus.IN_PROGRESS))

    assert result.subtask.status == SubtaskStatus.IN_PROGRESS.value
    assert result.updated_fields == ["status"]
    assert result.batch_completion is None


@pytest.mark.asyncio
async def test_completed_subtasks_are_final(creator, updater, queries):
    await creator.create_subtask_batches(TASK, _request())
    seed = (await _by_name(queries))["Seed data"]
    await updater.update_subtask(TASK, seed.id, SubtaskUpdate(status=SubtaskStatus.COMPLETED))

    with pytest.raises(IllegalStatusTransition):
        await updater.update_subtask(TASK, seed.id, SubtaskUpdate(status=SubtaskStatus.IN_PROGRESS))

    # re-stating the current status is a no-op transition
    unchanged = await updater.update_subtask(
        TASK, seed.id, SubtaskUpdate(status=SubtaskStatus.COMPLETED, description="seeded")
    )
    assert unchanged.subtask.description == "seeded"


@pytest.mark.asyncio
async def test_update_without_changes(creator, updater, queries):
    await creator.create_subtask_batches(TASK, _request())
    seed = (await _by_name(queries))["Seed data"]

    result = await updater.update_subtask(TASK, seed.id, SubtaskUpdate())
    assert result.updated_fields == []
    assert result.message == "Subtask 'Seed data' - no changes made"

    with pytest.raises(SubtaskNotFound):
        await updater.update_subtask("OTHER", seed.id, SubtaskUpdate())


@pytest.mark.asyncio
async def test_batch_completes_with_last_subtask(service, creator, updater, queries):
    await creator.create_subtask_batches(TASK, _request())
    subtasks = await _by_name(queries)

    def done(*files):
        return SubtaskUpdate(
            status=SubtaskStatus.COMPLETED,
            completion_evidence=CompletionEvidence(files_modified=list(files), implementation_notes="done"),
        )

    first = await updater.update_subtask(TASK, subtasks["Create schema"].id, done("db/schema.sql", "db/__init__.py"))
    second = await updater.update_subtask(TASK, subtasks["Seed data"].id, done("db/seed.py"))
    assert first.batch_completion.batch_completed is False
    assert second.batch_completion.batch_completed is False
    assert second.batch_completion.completed_count == 2
    assert second.batch_completion.total_count == 3
    assert second.batch_completion.message == "Batch B1 not ready for completion: 2/3 subtasks completed"

    last = await updater.update_subtask(TASK, subtasks["Write migration"].id, done("db/schema.sql", "db/migrate.py"))

    completion = last.batch_completion
    assert completion.batch_completed is True
    assert completion.completion_triggered is True
    evidence = completion.aggregated_evidence
    assert evidence.files_modified == ["db/schema.sql", "db/__init__.py", "db/migrate.py", "db/seed.py"]
    assert evidence.total_subtasks == evidence.completed_subtasks == 3
    assert "- Seed data: done" in evidence.implementation_notes

    other = await service.batches.check_batch_completion(TASK, "B2")
    assert other.batch_completed is False
    assert other.completed_count == 0


@pytest.mark.asyncio
async def test_check_batch_completion_for_unknown_batch(service):
    result = await service.batches.check_batch_completion(TASK, "B9")
    assert result.batch_completed is False
    assert result.total_count == 0
    assert result.message == "No subtasks found for batch B9"


@pytest.mark.asyncio
async def test_next_subtask_resumes_then_respects_dependencies(creator, updater, queries):
    empty = await queries.get_next_subtask(TASK)
    assert empty.next_subtask is None
    assert empty.message == "No subtasks found for this task"

    await creator.create_subtask_batches(TASK, _request())
    subtasks = await _by_name(queries)

    first = await queries.get_next_subtask(TASK)
    assert first.next_subtask.name == "Create schema"
    assert first.resumed is False

    await updater.update_subtask(TASK, subtasks["Create schema"].id, SubtaskUpdate(status=SubtaskStatus.IN_PROGRESS))
    resumed = await queries.get_next_subtask(TASK)
    assert resumed.next_subtask.name == "Create schema"
    assert resumed.resumed is True

    await updater.update_subtask(TASK, subtasks["Create schema"].id, SubtaskUpdate(status=SubtaskStatus.COMPLETED))
    nxt = await queries.get_next_subtask(TASK)
    assert nxt.next_subtask.name == "Write migration"


@pytest.mark.asyncio
async def test_next_subtask_waits_for_requirements(creator, updater, queries):
    request = SubtaskBatchRequest(
        batches=[
            BatchSpec(
                batch_id="B1",
                subtasks=[
                    SubtaskSpec(name="Build", sequence_number=1),
                    SubtaskSpec(name="Ship", sequence_number=2, dependencies=["Build"]),
                ],
            )
        ]
    )
    await creator.create_subtask_batches(TASK, request)
    subtasks = await _by_name(queries)
    with pytest.raises(IncompleteDependencies):
        await updater.update_subtask(TASK, subtasks["Ship"].id, SubtaskUpdate(status=SubtaskStatus.COMPLETED))

    await updater.update_subtask(TASK, subtasks["Build"].id, SubtaskUpdate(status=SubtaskStatus.IN_PROGRESS))
    await updater.update_subtask(TASK, subtasks["Build"].id, SubtaskUpdate(status=SubtaskStatus.NOT_STARTED))
    assert (await queries.get_next_subtask(TASK)).next_subtask.name == "Build"

    await updater.update_subtask(TASK, subtasks["Build"].id, SubtaskUpdate(status=SubtaskStatus.COMPLETED))
    await updater.update_subtask(TASK, subtasks["Ship"].id, SubtaskUpdate(status=SubtaskStatus.COMPLETED))
    finished = await queries.get_next_subtask(TASK)
    assert finished.next_subtask is None
    assert finished.message == "All subtasks have been completed"
