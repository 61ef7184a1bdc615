import pytest

from trainflow.actions import ActionExecutor
from trainflow.contracts import ActionNode
from trainflow.entities import InMemoryEntityStore
from trainflow.errors import ActionFailure
from trainflow.notifications import InMemoryDispatcher
from trainflow.persistence import WorkflowInstance


def _instance(**variables) -> WorkflowInstance:
    return WorkflowInstance(
        workflow_id="wf",
        definition_version=1,
        entity_type="training_requests",
        entity_id="tr-1",
        variables=variables,
    )


def _node(action_type, **config) -> ActionNode:
    return ActionNode.model_validate({"id": "act", "type": "action", "action": {"type": action_type, **config}})


@pytest.fixture
def store() -> InMemoryEntityStore:
    store = InMemoryEntityStore()
    store.put("training_requests", "tr-1", title="Fire Safety", status="pending")
    return store


@pytest.mark.asyncio
async def test_update_status_patches_bound_entity(store):
    executor = ActionExecutor(store)
    # the node's entity type label does not redirect the update
    node = _node("update_status", entityUpdates={"status": "approved"})
    result = await executor.execute(_instance(), node.model_copy(update={"entity_type": "other"}))

    assert result == {"updated": {"status": "approved"}}
    assert await store.get_field("training_requests", "tr-1", "status") == "approved"


@pytest.mark.asyncio
async def test_update_status_without_updates_fails(store):
    with pytest.raises(ActionFailure):
        await ActionExecutor(store).execute(_instance(), _node("update_status"))


@pytest.mark.asyncio
async def test_send_email_renders_and_fails_loudly(store):
    dispatcher = InMemoryDispatcher()
    executor = ActionExecutor(store, dispatcher)
    node = _node(
        "send_email",
        parameters={"to": "hr@corp.test, eve@corp.test", "subject": "{{title}}", "template": "Hi {{name}}"},
    )

    await executor.execute(_instance(name="Eve"), node)
    assert dispatcher.sent[0].recipients == ["hr@corp.test", "eve@corp.test"]
    assert (dispatcher.sent[0].subject, dispatcher.sent[0].body) == ("Fire Safety", "Hi Eve")

    dispatcher.fail_with = "bounced"
    with pytest.raises(ActionFailure, match="bounced"):
        await executor.execute(_instance(), node)


@pytest.mark.asyncio
async def test_create_record(store):
    node = _node(
        "create_record",
        parameters={"entity_type": "certificates", "values": {"title": "{{title}} cert", "hours": 4}},
    )
    result = await ActionExecutor(store).execute(_instance(), node)

    record = await store.get_fields("certificates", result["record_id"])
    assert record["title"] == "Fire Safety cert"
    assert record["hours"] == 4


@pytest.mark.asyncio
async def test_custom_handlers_and_wrapping(store):
    executor = ActionExecutor(store)

    async def stamp(ctx):
        return {"stamped": ctx.parameters["value"]}

    async def broken(ctx):
        raise KeyError("missing")

    executor.register("stamp", stamp)
    executor.register("broken", broken)

    assert await executor.execute(_instance(), _node("custom", parameters={"handler": "stamp", "value": 3})) == {"stamped": 3}
    with pytest.raises(ActionFailure):
        await executor.execute(_instance(), _node("custom", parameters={"handler": "broken"}))
    with pytest.raises(ActionFailure):
        await executor.execute(_instance(), _node("custom", parameters={"handler": "unknown"}))
