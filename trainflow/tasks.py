"""Human approval tasks bound to an (instance, node) pair."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel

from .constants import EVENT_TASK_RESOLVED, SYSTEM_ACTOR
from .contracts import ApprovalNode, utcnow
from .directory import AssignmentDirectory
from .errors import (
    DuplicateTask,
    Forbidden,
    InstanceTerminated,
    InvalidTransition,
    TaskNotFound,
)
from .locking import InstanceLocks
from .persistence.models import WorkflowInstance, WorkflowInstanceEvent, WorkflowTask
from .persistence.repository import WorkflowRepository

logger = logging.getLogger(__name__)

RESOLUTION_OUTCOMES = ("completed", "failed", "skipped")
# Set in ``WorkflowTask.resolution`` once the engine has acted on the outcome.
CONSUMED_KEY = "consumed"

ResumeCallback = Callable[[str, str], Awaitable[object]]


class TaskAssignment(BaseModel):
    """Who a task is for and when it is due."""

    role: Optional[str] = None
    user: Optional[str] = None
    due_at: Optional[datetime] = None

    @classmethod
    def for_node(cls, node: ApprovalNode, now: Optional[datetime] = None) -> "TaskAssignment":
        due_at = None
        if node.timeout_hours:
            due_at = (now or utcnow()) + timedelta(hours=node.timeout_hours)
        return cls(role=node.assigned_role, user=node.assigned_user, due_at=due_at)


class TaskManager:
    """Creates, tracks and resolves approval tasks.

    Resolving a task resumes the owning instance through the callback bound
    with :meth:`bind`, so callers return only once the instance has moved past
    the node or suspended at the next one.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        directory: Optional[AssignmentDirectory] = None,
        locks: Optional[InstanceLocks] = None,
        enforce_assignment: bool = True,
    ) -> None:
        self._repository = repository
        self._directory = directory
        self._locks = locks or InstanceLocks()
        self._enforce_assignment = enforce_assignment
        self._resume: Optional[ResumeCallback] = None

    def bind(self, resume: ResumeCallback) -> None:
        self._resume = resume

    async def find_open_task(self, instance_id: str, node_id: str) -> Optional[WorkflowTask]:
        for task in await self._repository.list_tasks(instance_id):
            if task.node_id == node_id and task.is_open:
                return task
        return None

    async def latest_task(self, instance_id: str, node_id: str) -> Optional[WorkflowTask]:
        tasks = [t for t in await self._repository.list_tasks(instance_id) if t.node_id == node_id]
        return tasks[-1] if tasks else None

    async def create_task(
        self,
        instance: WorkflowInstance,
        node: ApprovalNode,
        assignment: Optional[TaskAssignment] = None,
    ) -> WorkflowTask:
        """Open a task for ``(instance, node)``.

        Raises:
            DuplicateTask: a pending task already exists for the pair. This
                signals a state-machine bug; nothing is written.
        """
        existing = await self.find_open_task(instance.id, node.id)
        if existing is not None:
            logger.error(
                f"Refusing duplicate task for instance={instance.id} node={node.id}; "
                f"task {existing.id} is still pending"
            )
            raise DuplicateTask(instance.id, node.id, existing.id)

        assignment = assignment or TaskAssignment.for_node(node)
        task = WorkflowTask(
            instance_id=instance.id,
            node_id=node.id,
            assigned_role=assignment.role,
            assigned_user=assignment.user,
            due_at=assignment.due_at,
        )
        task = await self._repository.create_task(task)
        logger.info(
            f"Created task {task.id} for instance={instance.id} node={node.id} "
            f"(role={task.assigned_role}, user={task.assigned_user})"
        )
        return task

    async def _ensure_eligible(self, task: WorkflowTask, actor: str) -> None:
        if not self._enforce_assignment or actor == SYSTEM_ACTOR:
            return
        if task.assigned_user and task.assigned_user == actor:
            return
        roles = await self._directory.roles_for(actor) if self._directory else set()
        if "admin" in roles or (task.assigned_role and task.assigned_role in roles):
            return
        raise Forbidden(actor, f"resolve task {task.id}")

    async def resolve_task(
        self,
        task_id: str,
        outcome: str,
        actor: str,
        comment: Optional[str] = None,
    ) -> WorkflowTask:
        """Close a pending task and resume its instance."""
        if outcome not in RESOLUTION_OUTCOMES:
            raise ValueError(f"Unsupported task outcome: {outcome}")

        task = await self._repository.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        await self._ensure_eligible(task, actor)

        async with self._locks.hold(task.instance_id):
            task = await self._repository.get_task(task_id)
            if task is None:
                raise TaskNotFound(task_id)
            if not task.is_open:
                raise InvalidTransition(f"Task {task_id} is already {task.status}")
            task.status = outcome
            task.resolved_by = actor
            task.resolution = {"outcome": outcome, "resolved_at": utcnow().isoformat()}
            if comment:
                task.resolution["comment"] = comment
            task = await self._repository.save_task(task)
            await self._repository.append_event(
                WorkflowInstanceEvent(
                    instance_id=task.instance_id,
                    event_type=EVENT_TASK_RESOLVED,
                    message=f"Task {task.id} {outcome} by {actor}",
                    metadata={"task_id": task.id, "node_id": task.node_id, "outcome": outcome},
                    actor=actor,
                )
            )
        logger.info(f"Task {task.id} resolved as {outcome} by {actor}")

        if self._resume is not None:
            try:
                await self._resume(task.instance_id, actor)
            except InstanceTerminated as exc:
                # cancelled after the resolution was saved; the task stays resolved
                logger.info(f"Instance {task.instance_id} not resumed after task {task.id}: {exc}")
        return await self._repository.get_task(task.id) or task

    async def mark_consumed(self, task: WorkflowTask) -> WorkflowTask:
        task.resolution = {**task.resolution, CONSUMED_KEY: True}
        return await self._repository.save_task(task)

    async def skip_open_tasks(self, instance_id: str, actor: str, reason: str) -> List[WorkflowTask]:
        """Close every pending task of an instance without resuming it."""
        skipped = []
        for task in await self._repository.list_tasks(instance_id):
            if not task.is_open:
                continue
            task.status = "skipped"
            task.resolved_by = actor
            task.resolution = {"outcome": "skipped", "reason": reason, CONSUMED_KEY: True}
            skipped.append(await self._repository.save_task(task))
        return skipped

    async def list_open_tasks_for(self, assignee: str) -> List[WorkflowTask]:
        """Pending tasks for a user (directly or through a role) or for a role name."""
        roles = await self._directory.roles_for(assignee) if self._directory else set()
        return [
            task
            for task in await self._repository.list_pending_tasks()
            if task.assigned_user == assignee
            or task.assigned_role == assignee
            or (task.assigned_role is not None and task.assigned_role in roles)
        ]

    async def candidates_for(self, task: WorkflowTask) -> List[str]:
        """Actors who may pick up ``task``, for notification purposes only."""
        candidates = [task.assigned_user] if task.assigned_user else []
        if task.assigned_role and self._directory is not None:
            for actor in await self._directory.actors_for_role(task.assigned_role):
                if actor not in candidates:
                    candidates.append(actor)
        return candidates

    async def list_tasks(self, instance_id: str) -> List[WorkflowTask]:
        return await self._repository.list_tasks(instance_id)

    async def overdue_tasks(self, now: Optional[datetime] = None) -> List[WorkflowTask]:
        now = now or utcnow()
        return [
            task
            for task in await self._repository.list_pending_tasks()
            if task.due_at is not None and task.due_at <= now
        ]
