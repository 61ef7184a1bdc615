import pytest

from trainflow.contracts import WorkflowDefinition
from trainflow.errors import DeliveryFailure
from trainflow.notifications import DispatchResult, NotificationDispatcher


class ExplodingDispatcher(NotificationDispatcher):
    async def dispatch(self, recipients, subject, body) -> DispatchResult:
        raise DeliveryFailure("smtp down")


async def _approve_expense(service, activate, definition):
    definition = await activate(definition)
    instance_id = await service.apply_workflow_to_entity(
        definition.id, "course_cost_actuals", "exp-1", variables={"requester": "eve@example.com"}
    )
    task = (await service.list_tasks(instance_id))[0]
    assert task.assigned_role == "finance"
    await service.resolve_task(task.id, "completed", actor="fred")
    return instance_id


@pytest.mark.asyncio
async def test_notification_renders_entity_fields(service, dispatcher, activate, expense_definition):
    instance_id = await _approve_expense(service, activate, expense_definition)

    assert (await service.get_instance(instance_id)).status == "completed"
    assert len(dispatcher.delivered) == 1
    message = dispatcher.delivered[0]
    assert message.subject == "Your expense has been processed"
    # the approval already set status before the notification fired
    assert message.body == "Expense INV-7 has been approved."
    sent = [e for e in await service.list_events(instance_id) if e.event_type == "notification_sent"]
    assert sent[0].metadata["channel"] == "inmemory"


@pytest.mark.asyncio
async def test_failed_delivery_does_not_fail_instance(service, dispatcher, activate, expense_definition):
    dispatcher.fail_with = "channel offline"

    instance_id = await _approve_expense(service, activate, expense_definition)

    instance = await service.get_instance(instance_id)
    assert instance.status == "completed"
    assert instance.last_error is None
    failed = [e for e in await service.list_events(instance_id) if e.event_type == "notification_failed"]
    assert len(failed) == 1
    assert failed[0].message == "channel offline"
    done = [
        e for e in await service.list_events(instance_id)
        if e.event_type == "node_completed" and e.metadata["node_id"] == "notif-0"
    ]
    assert done[0].metadata["delivered"] is False


@pytest.mark.asyncio
async def test_raising_dispatcher_is_contained(repository, entities, directory, expense_definition):
    from trainflow.service import WorkflowService

    service = WorkflowService(repository, entities, ExplodingDispatcher(), directory=directory)
    await service.definitions.save(expense_definition)
    definition = await service.definitions.activate(expense_definition.id)
    instance_id = await service.apply_workflow_to_entity(definition.id, "course_cost_actuals", "exp-1")
    task = (await service.list_tasks(instance_id))[0]

    await service.resolve_task(task.id, "completed", actor="fred")

    assert (await service.get_instance(instance_id)).status == "completed"


@pytest.mark.asyncio
async def test_variables_fill_missing_entity_fields(service, dispatcher, activate):
    definition = WorkflowDefinition.model_validate(
        {
            "name": "Reminder",
            "category": "certification",
            "nodes": [
                {"id": "start", "type": "start"},
                {
                    "id": "notify",
                    "type": "notification",
                    "data": {"notification": {"recipients": ["slack"], "template": "Hi {{requester}}, {{ status }}"}},
                },
                {"id": "end", "type": "end"},
            ],
            "edges": [{"source": "start", "target": "notify"}, {"source": "notify", "target": "end"}],
        }
    )
    definition = await activate(definition)

    await service.apply_workflow_to_entity(
        definition.id, "training_requests", "tr-low", variables={"requester": "Eve", "status": "ignored"}
    )

    message = dispatcher.delivered[0]
    assert message.recipients == ["slack"]
    assert message.body == "Hi Eve, pending"
