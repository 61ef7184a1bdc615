"""Operator-driven re-arming of failed or stalled instances."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from .config import EngineConfig
from .constants import EVENT_RETRY, SYSTEM_ACTOR
from .contracts import utcnow
from .engine import WorkflowEngine
from .errors import (
    DefinitionNotFound,
    InstanceNotFound,
    InstanceTerminated,
    InvalidTransition,
    RetryLimitExceeded,
    UnknownNode,
)
from .graph import WorkflowGraph
from .persistence.models import WorkflowInstance, WorkflowInstanceEvent
from .persistence.repository import WorkflowRepository

logger = logging.getLogger(__name__)


class RecoveryController:
    """The only sanctioned way to move an instance out of ``failed``."""

    def __init__(
        self,
        repository: WorkflowRepository,
        engine: WorkflowEngine,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self._repository = repository
        self._engine = engine
        self.config = config or EngineConfig()

    def is_stalled(self, instance: WorkflowInstance, now: Optional[datetime] = None) -> bool:
        if instance.status not in ("pending", "running"):
            return False
        reference = instance.updated_at or instance.created_at
        limit = timedelta(seconds=self.config.stall_timeout_seconds)
        return (now or utcnow()) - reference >= limit

    async def retry(
        self,
        instance_id: str,
        node_id: Optional[str] = None,
        actor: str = SYSTEM_ACTOR,
    ) -> WorkflowInstance:
        """Re-arm the instance, optionally at ``node_id``, and advance it.

        Raises:
            InstanceTerminated: the instance is completed or cancelled.
            InvalidTransition: a running instance is healthy or waiting on a task.
            UnknownNode: ``node_id`` is not part of the pinned definition.
            RetryLimitExceeded: the configured ``max_retries`` is used up.
        """
        async with self._engine.locks.hold(instance_id):
            instance = await self._repository.get_instance(instance_id)
            if instance is None:
                raise InstanceNotFound(instance_id)
            if instance.status in ("completed", "cancelled"):
                raise InstanceTerminated(instance.id, instance.status)
            if instance.status != "failed":
                if not self.is_stalled(instance):
                    raise InvalidTransition(
                        f"Instance {instance.id} is {instance.status} and not stalled; retry refused"
                    )
                if instance.current_node_id:
                    open_task = await self._engine.tasks.find_open_task(
                        instance.id, instance.current_node_id
                    )
                    if open_task is not None and node_id in (None, instance.current_node_id):
                        raise InvalidTransition(
                            f"Instance {instance.id} is waiting on task {open_task.id}; "
                            "resolve or cancel it instead"
                        )

            limit = self.config.max_retries
            if limit is not None and instance.retry_count >= limit:
                raise RetryLimitExceeded(instance.id, limit)

            definition = await self._repository.get_definition(
                instance.workflow_id, instance.definition_version
            )
            if definition is None:
                raise DefinitionNotFound(instance.workflow_id, instance.definition_version)
            if node_id is not None and node_id not in definition.node_ids():
                raise UnknownNode(node_id, definition.id)

            if node_id is not None and node_id != instance.current_node_id:
                await self._engine.tasks.skip_open_tasks(
                    instance.id, actor, f"Retry moved instance to node {node_id}"
                )

            previous_error = instance.last_error
            instance.retry_count += 1
            instance.last_error = None
            instance.status = "running"
            instance.completed_at = None
            if node_id is not None:
                instance.current_node_id = node_id
            elif instance.current_node_id is None:
                # never got past creation; start from the top
                instance.current_node_id = WorkflowGraph(definition).start_node().id
                instance.started_at = instance.started_at or utcnow()
            instance = await self._repository.save_instance(instance)

            message = "Retry requested"
            if node_id is not None:
                message += f"; moved to node {node_id}"
            await self._repository.append_event(
                WorkflowInstanceEvent(
                    instance_id=instance.id,
                    event_type=EVENT_RETRY,
                    message=message,
                    metadata={
                        "retry_count": instance.retry_count,
                        "node_id": instance.current_node_id,
                        "previous_error": previous_error,
                    },
                    actor=actor,
                )
            )
        logger.info(
            f"Instance {instance.id} retried by {actor} "
            f"(attempt {instance.retry_count}, node={instance.current_node_id})"
        )
        return await self._engine.advance(instance.id, actor)
