"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from ..contracts import WorkflowDefinition, utcnow
from ..errors import ConcurrentModification, InstanceNotFound
from .models import WorkflowInstance, WorkflowInstanceEvent, WorkflowTask
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._definitions: Dict[Tuple[str, int], WorkflowDefinition] = {}
        self._instances: Dict[str, WorkflowInstance] = {}
        self._events: Dict[str, List[WorkflowInstanceEvent]] = {}
        self._tasks: Dict[str, WorkflowTask] = {}

    # ------------------------------------------------------------------
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        key = (definition.id, definition.version)
        self._definitions[key] = definition.model_copy(deep=True)

    async def get_definition(
        self, definition_id: str, version: Optional[int] = None
    ) -> WorkflowDefinition | None:
        if version is not None:
            found = self._definitions.get((definition_id, version))
            return found.model_copy(deep=True) if found else None
        versions = await self.list_definition_versions(definition_id)
        return versions[-1] if versions else None

    async def list_definition_versions(self, definition_id: str) -> list[WorkflowDefinition]:
        versions = [
            d.model_copy(deep=True)
            for (def_id, _), d in self._definitions.items()
            if def_id == definition_id
        ]
        return sorted(versions, key=lambda d: d.version)

    async def list_definitions(self) -> list[WorkflowDefinition]:
        return [d.model_copy(deep=True) for d in self._definitions.values()]

    # ------------------------------------------------------------------
    async def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        self._instances[instance.id] = instance.model_copy(deep=True)
        self._events.setdefault(instance.id, [])
        return instance.model_copy(deep=True)

    async def save_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        stored = self._instances.get(instance.id)
        if stored is None:
            raise InstanceNotFound(instance.id)
        if stored.revision != instance.revision:
            raise ConcurrentModification(instance.id, instance.revision, stored.revision)
        updated = instance.model_copy(
            update={"revision": instance.revision + 1, "updated_at": utcnow()}, deep=True
        )
        self._instances[instance.id] = updated
        return updated.model_copy(deep=True)

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        found = self._instances.get(instance_id)
        return found.model_copy(deep=True) if found else None

    async def list_instances(self, status: Optional[str] = None) -> list[WorkflowInstance]:
        instances = [
            i.model_copy(deep=True)
            for i in self._instances.values()
            if status is None or i.status == status
        ]
        return list(reversed(sorted(instances, key=lambda i: i.created_at)))

    # ------------------------------------------------------------------
    async def append_event(self, event: WorkflowInstanceEvent) -> WorkflowInstanceEvent:
        timeline = self._events.setdefault(event.instance_id, [])
        stored = event.model_copy(update={"sequence": len(timeline) + 1})
        timeline.append(stored)
        return stored

    async def list_events(self, instance_id: str) -> list[WorkflowInstanceEvent]:
        return list(self._events.get(instance_id, []))

    # ------------------------------------------------------------------
    async def create_task(self, task: WorkflowTask) -> WorkflowTask:
        self._tasks[task.id] = task.model_copy(deep=True)
        return task.model_copy(deep=True)

    async def save_task(self, task: WorkflowTask) -> WorkflowTask:
        updated = task.model_copy(update={"updated_at": utcnow()}, deep=True)
        self._tasks[task.id] = updated
        return updated.model_copy(deep=True)

    async def get_task(self, task_id: str) -> WorkflowTask | None:
        found = self._tasks.get(task_id)
        return found.model_copy(deep=True) if found else None

    async def list_tasks(self, instance_id: str) -> list[WorkflowTask]:
        tasks = [t.model_copy(deep=True) for t in self._tasks.values() if t.instance_id == instance_id]
        return sorted(tasks, key=lambda t: t.created_at)

    async def list_pending_tasks(self) -> list[WorkflowTask]:
        tasks = [t.model_copy(deep=True) for t in self._tasks.values() if t.status == "pending"]
        return list(reversed(sorted(tasks, key=lambda t: t.created_at)))
