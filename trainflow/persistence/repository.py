"""Repository abstraction for workflow persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from ..contracts import WorkflowDefinition
from .models import WorkflowInstance, WorkflowInstanceEvent, WorkflowTask


class WorkflowRepository(Protocol):
    """Protocol for workflow persistence backends."""

    # Definitions ------------------------------------------------------
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        """Insert or replace the row for ``(definition.id, definition.version)``."""

    async def get_definition(
        self, definition_id: str, version: Optional[int] = None
    ) -> WorkflowDefinition | None:
        """Return one version, or the latest one when ``version`` is omitted."""

    async def list_definition_versions(self, definition_id: str) -> list[WorkflowDefinition]:
        """Return every version of a definition, oldest first."""

    async def list_definitions(self) -> list[WorkflowDefinition]:
        """Return all stored definition versions."""

    # Instances --------------------------------------------------------
    async def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Persist a new instance."""

    async def save_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Persist ``instance`` if its revision matches the stored one.

        Returns the stored copy with the revision bumped. Raises
        :class:`~trainflow.errors.ConcurrentModification` on a mismatch.
        """

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve an instance by id."""

    async def list_instances(self, status: Optional[str] = None) -> list[WorkflowInstance]:
        """Return instances, newest first."""

    # Events -----------------------------------------------------------
    async def append_event(self, event: WorkflowInstanceEvent) -> WorkflowInstanceEvent:
        """Append to the instance timeline, assigning the next sequence number."""

    async def list_events(self, instance_id: str) -> list[WorkflowInstanceEvent]:
        """Return the timeline in creation order."""

    # Tasks ------------------------------------------------------------
    async def create_task(self, task: WorkflowTask) -> WorkflowTask:
        """Persist a new task."""

    async def save_task(self, task: WorkflowTask) -> WorkflowTask:
        """Persist task updates."""

    async def get_task(self, task_id: str) -> WorkflowTask | None:
        """Retrieve a task by id."""

    async def list_tasks(self, instance_id: str) -> list[WorkflowTask]:
        """Return the tasks of an instance, oldest first."""

    async def list_pending_tasks(self) -> list[WorkflowTask]:
        """Return every pending task, newest first."""
