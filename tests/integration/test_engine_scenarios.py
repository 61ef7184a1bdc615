import pytest

from trainflow.errors import DefinitionNotActive, DuplicateTask, InstanceTerminated


def _types(events):
    return [e.event_type for e in events]


@pytest.mark.asyncio
async def test_basic_approval_flow(service, entities, activate, basic_definition):
    definition = await activate(basic_definition)

    instance_id = await service.apply_workflow_to_entity(
        definition.id, "training_requests", "tr-high", actor="eve"
    )

    instance = await service.get_instance(instance_id)
    assert instance.status == "running"
    assert instance.current_node_id == "appr-0"
    assert instance.definition_version == definition.version

    tasks = await service.list_tasks(instance_id)
    assert len(tasks) == 1
    assert tasks[0].status == "pending"
    assert tasks[0].assigned_role == "manager"
    created = [e for e in await service.list_events(instance_id) if e.event_type == "task_created"]
    assert created[0].metadata["candidates"] == ["mia"]

    assert _types(await service.list_events(instance_id)) == [
        "started",
        "node_entered",
        "node_completed",
        "node_entered",
        "node_completed",
        "node_entered",
        "task_created",
    ]

    resolved = await service.resolve_task(tasks[0].id, "completed", actor="mia", comment="go")
    assert resolved.status == "completed"
    assert resolved.resolved_by == "mia"

    instance = await service.get_instance(instance_id)
    assert instance.status == "completed"
    assert instance.current_node_id == "end-0"
    assert instance.completed_at is not None
    assert instance.variables["approvals"]["appr-0"] == {"status": "completed", "by": "mia"}
    assert await entities.get_field("training_requests", "tr-high", "status") == "approved"

    events = await service.list_events(instance_id)
    assert _types(events)[-5:] == [
        "task_resolved",
        "node_completed",
        "node_entered",
        "node_completed",
        "completed",
    ]
    assert [e.sequence for e in events] == list(range(1, len(events) + 1))
    assert await service.list_open_tasks_for("mia") == []


@pytest.mark.asyncio
async def test_low_cost_auto_approval(service, entities, activate, basic_definition):
    definition = await activate(basic_definition)

    instance_id = await service.apply_workflow_to_entity(definition.id, "training_requests", "tr-low")

    instance = await service.get_instance(instance_id)
    assert instance.status == "completed"
    assert await service.list_tasks(instance_id) == []
    assert await entities.get_field("training_requests", "tr-low", "status") == "approved"
    cond_done = [
        e for e in await service.list_events(instance_id)
        if e.event_type == "node_completed" and e.metadata["node_id"] == "cond-0"
    ]
    assert cond_done[0].metadata["result"] is False


@pytest.mark.asyncio
async def test_rejection_fails_instance(service, entities, activate, basic_definition):
    definition = await activate(basic_definition)
    instance_id = await service.apply_workflow_to_entity(definition.id, "training_requests", "tr-high")
    task = (await service.list_tasks(instance_id))[0]

    await service.resolve_task(task.id, "failed", actor="mia", comment="over budget")

    instance = await service.get_instance(instance_id)
    assert instance.status == "failed"
    assert instance.current_node_id == "appr-0"
    assert "over budget" in instance.last_error
    assert await entities.get_field("training_requests", "tr-high", "status") == "pending"

    # a retry asks for approval again instead of replaying the rejection
    instance = await service.retry(instance_id, actor="ada")
    assert instance.status == "running"
    tasks = await service.list_tasks(instance_id)
    assert [t.status for t in tasks] == ["failed", "pending"]


@pytest.mark.asyncio
async def test_skipped_approval_moves_on_without_update(service, entities, activate, basic_definition):
    definition = await activate(basic_definition)
    instance_id = await service.apply_workflow_to_entity(definition.id, "training_requests", "tr-high")
    task = (await service.list_tasks(instance_id))[0]

    await service.resolve_task(task.id, "skipped", actor="ada")

    assert (await service.get_instance(instance_id)).status == "completed"
    assert await entities.get_field("training_requests", "tr-high", "status") == "pending"


@pytest.mark.asyncio
async def test_inactive_definition_creates_no_instance(service, basic_definition):
    await service.definitions.save(basic_definition)

    with pytest.raises(DefinitionNotActive):
        await service.apply_workflow_to_entity(basic_definition.id, "training_requests", "tr-high")
    assert await service.list_instances() == []


@pytest.mark.asyncio
async def test_terminal_instance_is_sticky(service, activate, basic_definition):
    definition = await activate(basic_definition)
    instance_id = await service.apply_workflow_to_entity(definition.id, "training_requests", "tr-low")

    with pytest.raises(InstanceTerminated):
        await service.engine.advance(instance_id)
    instance = await service.get_instance(instance_id)
    assert instance.status == "completed"
    assert instance.current_node_id == "end-0"


@pytest.mark.asyncio
async def test_advance_on_failed_instance_is_a_noop(service, activate, basic_definition):
    definition = await activate(basic_definition)
    instance_id = await service.apply_workflow_to_entity(definition.id, "training_requests", "tr-high")
    task = (await service.list_tasks(instance_id))[0]
    await service.resolve_task(task.id, "failed", actor="mia")

    before = await service.get_instance(instance_id)
    after = await service.engine.advance(instance_id)
    assert (after.status, after.current_node_id) == (before.status, before.current_node_id)
    assert after.revision == before.revision


@pytest.mark.asyncio
async def test_duplicate_task_is_refused(service, activate, basic_definition):
    definition = await activate(basic_definition)
    instance_id = await service.apply_workflow_to_entity(definition.id, "training_requests", "tr-high")
    instance = await service.get_instance(instance_id)
    assert not service.locks.is_locked(instance_id)

    approval = next(n for n in definition.nodes if n.id == "appr-0")
    with pytest.raises(DuplicateTask):
        await service.tasks.create_task(instance, approval)
    assert len(await service.list_tasks(instance_id)) == 1

    # advancing a waiting instance does not open a second task either
    await service.engine.advance(instance_id)
    assert len(await service.list_tasks(instance_id)) == 1


@pytest.mark.asyncio
async def test_cancel_skips_open_tasks(service, activate, basic_definition):
    definition = await activate(basic_definition)
    instance_id = await service.apply_workflow_to_entity(definition.id, "training_requests", "tr-high")

    instance = await service.cancel(instance_id, actor="mia", reason="request withdrawn")

    assert instance.status == "cancelled"
    assert [t.status for t in await service.list_tasks(instance_id)] == ["skipped"]
    last = (await service.list_events(instance_id))[-1]
    assert (last.event_type, last.actor, last.message) == ("cancelled", "mia", "request withdrawn")
    with pytest.raises(InstanceTerminated):
        await service.engine.advance(instance_id)
    with pytest.raises(InstanceTerminated):
        await service.cancel(instance_id, actor="mia")


@pytest.mark.asyncio
async def test_running_instance_keeps_its_pinned_version(service, entities, activate, basic_definition):
    definition = await activate(basic_definition)
    instance_id = await service.apply_workflow_to_entity(definition.id, "training_requests", "tr-high")

    # drop the approval step in a new version while the instance waits on it
    nodes = [n for n in definition.nodes if n.id not in ("cond-0", "appr-0")]
    edges = [
        {"source": "start-0", "target": "act-0"},
        {"source": "act-0", "target": "end-0"},
    ]
    v2 = await service.definitions.update_graph(definition.id, nodes, edges, actor="ada")
    assert v2.version == 2 and v2.status == "draft"
    await service.definitions.activate(definition.id, 2)
    assert (await service.definitions.get(definition.id, 1)).status == "inactive"

    task = (await service.list_tasks(instance_id))[0]
    await service.resolve_task(task.id, "completed", actor="mia")

    instance = await service.get_instance(instance_id)
    assert instance.status == "completed"
    assert instance.definition_version == 1


@pytest.mark.asyncio
async def test_nan_cost_routes_instead_of_failing(service, entities, activate, basic_definition):
    definition = await activate(basic_definition)
    entities.put("training_requests", "tr-nan", estimated_cost=float("nan"), status="pending")

    instance_id = await service.apply_workflow_to_entity(definition.id, "training_requests", "tr-nan")

    instance = await service.get_instance(instance_id)
    assert instance.status == "running"
    assert instance.last_error is None
    # "nan" sorts after "1000" as text, so the request needs approval
    assert instance.current_node_id == "appr-0"
