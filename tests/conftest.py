import pytest

from trainflow.contracts import WorkflowDefinition
from trainflow.directory import StaticDirectory
from trainflow.entities import InMemoryEntityStore
from trainflow.graph.templates import expense_approval, training_approval_basic
from trainflow.notifications import InMemoryDispatcher
from trainflow.persistence import InMemoryWorkflowRepository
from trainflow.service import WorkflowService


@pytest.fixture
def entities() -> InMemoryEntityStore:
    store = InMemoryEntityStore()
    store.put("training_requests", "tr-high", estimated_cost=2000, status="pending")
    store.put("training_requests", "tr-low", estimated_cost=500, status="pending")
    store.put("course_cost_actuals", "exp-1", invoice_no="INV-7", status="submitted")
    return store


@pytest.fixture
def dispatcher() -> InMemoryDispatcher:
    return InMemoryDispatcher()


@pytest.fixture
def directory() -> StaticDirectory:
    return StaticDirectory(
        {"manager": ["mia"], "admin": ["ada"], "finance": ["fred"], "employee": ["eve"]}
    )


@pytest.fixture
def repository() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def service(repository, entities, dispatcher, directory) -> WorkflowService:
    return WorkflowService(repository, entities, dispatcher, directory=directory)


@pytest.fixture
def basic_definition() -> WorkflowDefinition:
    return training_approval_basic().definition


@pytest.fixture
def expense_definition() -> WorkflowDefinition:
    return expense_approval().definition


@pytest.fixture
def activate(service):
    """Store ``definition`` and make it the active version."""

    async def _activate(definition: WorkflowDefinition) -> WorkflowDefinition:
        await service.definitions.save(definition)
        return await service.definitions.activate(definition.id)

    return _activate
