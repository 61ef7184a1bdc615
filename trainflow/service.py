"""Public surface of the workflow engine."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .actions import ActionExecutor
from .config import TrainflowConfig, load_config
from .constants import SYSTEM_ACTOR
from .definitions import DefinitionStore
from .directory import AssignmentDirectory, StaticDirectory
from .engine import WorkflowEngine
from .entities import EntityStore, InMemoryEntityStore
from .errors import InstanceNotFound, InvalidTransition
from .locking import InstanceLocks
from .notifications import NotificationDispatcher, get_dispatcher
from .persistence import get_repository
from .persistence.models import WorkflowInstance, WorkflowInstanceEvent, WorkflowTask
from .persistence.repository import WorkflowRepository
from .recovery import RecoveryController
from .security import PolicyEngine
from .tasks import TaskManager

logger = logging.getLogger(__name__)


class WorkflowService:
    """Wires the store, engine, task manager and recovery controller together."""

    def __init__(
        self,
        repository: WorkflowRepository,
        entity_store: EntityStore,
        dispatcher: NotificationDispatcher,
        directory: Optional[AssignmentDirectory] = None,
        config: Optional[TrainflowConfig] = None,
    ) -> None:
        self.config = config or TrainflowConfig()
        self.repository = repository
        self.directory = directory or StaticDirectory(self.config.directory)
        self.locks = InstanceLocks()
        self.definitions = DefinitionStore(repository)
        self.tasks = TaskManager(
            repository,
            directory=self.directory,
            locks=self.locks,
            enforce_assignment=self.config.engine.enforce_task_assignment,
        )
        self.engine = WorkflowEngine(
            repository,
            entity_store,
            dispatcher,
            tasks=self.tasks,
            actions=ActionExecutor(entity_store, dispatcher),
            locks=self.locks,
        )
        self.recovery = RecoveryController(repository, self.engine, self.config.engine)
        self.policy = PolicyEngine(self.directory)

    @classmethod
    def from_config(
        cls,
        config: Optional[TrainflowConfig] = None,
        entity_store: Optional[EntityStore] = None,
    ) -> "WorkflowService":
        """Build a service from configuration using the backend factories."""
        config = config or load_config()
        return cls(
            repository=get_repository(config=config),
            entity_store=entity_store or InMemoryEntityStore(),
            dispatcher=get_dispatcher(config=config),
            config=config,
        )

    # ------------------------------------------------------------------
    async def apply_workflow_to_entity(
        self,
        workflow_id: str,
        entity_type: str,
        entity_id: str,
        variables: Optional[Dict[str, Any]] = None,
        actor: str = SYSTEM_ACTOR,
    ) -> str:
        """Start the active version of ``workflow_id`` for one entity.

        Raises:
            DefinitionNotActive: no version of the definition is active.
        """
        definition = await self.definitions.get_active(workflow_id)
        instance = await self.engine.start(definition, entity_type, entity_id, variables, actor)
        return instance.id

    async def retry(
        self, instance_id: str, node_id: Optional[str] = None, actor: str = SYSTEM_ACTOR
    ) -> WorkflowInstance:
        await self.policy.enforce(actor, "instance.retry")
        return await self.recovery.retry(instance_id, node_id, actor)

    async def cancel(
        self, instance_id: str, actor: str = SYSTEM_ACTOR, reason: Optional[str] = None
    ) -> WorkflowInstance:
        await self.policy.enforce(actor, "instance.cancel")
        return await self.engine.cancel(instance_id, actor, reason)

    async def resolve_task(
        self, task_id: str, outcome: str, actor: str, comment: Optional[str] = None
    ) -> WorkflowTask:
        return await self.tasks.resolve_task(task_id, outcome, actor, comment)

    async def expire_overdue_tasks(self, now: Optional[datetime] = None) -> List[WorkflowTask]:
        """Reject pending tasks past their ``due_at`` on behalf of the system."""
        expired = []
        for task in await self.tasks.overdue_tasks(now):
            try:
                expired.append(
                    await self.tasks.resolve_task(
                        task.id, "failed", SYSTEM_ACTOR, comment="Approval timed out"
                    )
                )
            except InvalidTransition:
                logger.info(f"Task {task.id} was resolved before it could expire")
        if expired:
            logger.info(f"Expired {len(expired)} overdue task(s)")
        return expired

    # ------------------------------------------------------------------
    async def list_open_tasks_for(self, assignee: str) -> List[WorkflowTask]:
        return await self.tasks.list_open_tasks_for(assignee)

    async def list_events(self, instance_id: str) -> List[WorkflowInstanceEvent]:
        return await self.repository.list_events(instance_id)

    async def list_tasks(self, instance_id: str) -> List[WorkflowTask]:
        return await self.tasks.list_tasks(instance_id)

    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        instance = await self.repository.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFound(instance_id)
        return instance

    async def list_instances(self, status: Optional[str] = None) -> List[WorkflowInstance]:
        return await self.repository.list_instances(status)
