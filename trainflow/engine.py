"""Instance state machine: walks a pinned definition graph for one entity."""

from __future__ import annotations

import logging
from typing import Any, Dict, NamedTuple, Optional

from . import conditions
from .actions import ActionExecutor
from .constants import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    EVENT_CANCELLED,
    EVENT_COMPLETED,
    EVENT_FAILED,
    EVENT_NODE_COMPLETED,
    EVENT_NODE_ENTERED,
    EVENT_NOTIFICATION_FAILED,
    EVENT_NOTIFICATION_SENT,
    EVENT_STARTED,
    EVENT_TASK_CREATED,
    SYSTEM_ACTOR,
)
from .contracts import (
    ActionNode,
    ApprovalNode,
    ConditionNode,
    NotificationNode,
    WorkflowDefinition,
    WorkflowNode,
    utcnow,
)
from .entities import EntityStore
from .errors import (
    DefinitionNotActive,
    DefinitionNotFound,
    DeliveryFailure,
    InstanceNotFound,
    InstanceTerminated,
)
from .graph import WorkflowGraph, ensure_valid
from .locking import InstanceLocks
from .notifications import DispatchResult, NotificationDispatcher
from .persistence.models import WorkflowInstance, WorkflowInstanceEvent
from .persistence.repository import WorkflowRepository
from .tasks import CONSUMED_KEY, TaskManager
from .templating import placeholders, render

logger = logging.getLogger(__name__)


class StepResult(NamedTuple):
    """What the loop does after a node's work."""

    next_node_id: Optional[str] = None
    suspend: bool = False
    finished: bool = False


class WorkflowEngine:
    """Advances workflow instances node by node.

    ``advance`` never runs concurrently for the same instance id. Suspension
    happens only at approval nodes and is recorded purely as data (a
    ``running`` instance parked on the node plus its open task), so a process
    restart loses nothing.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        entity_store: EntityStore,
        dispatcher: NotificationDispatcher,
        tasks: Optional[TaskManager] = None,
        actions: Optional[ActionExecutor] = None,
        locks: Optional[InstanceLocks] = None,
    ) -> None:
        self._repository = repository
        self._entities = entity_store
        self._dispatcher = dispatcher
        self.locks = locks or InstanceLocks()
        self.tasks = tasks or TaskManager(repository, locks=self.locks)
        self.tasks.bind(self.advance)
        self.actions = actions or ActionExecutor(entity_store, dispatcher)

    # ------------------------------------------------------------------
    # Timeline helpers
    async def _emit(
        self,
        instance: WorkflowInstance,
        event_type: str,
        message: Optional[str] = None,
        actor: str = SYSTEM_ACTOR,
        **metadata: Any,
    ) -> WorkflowInstanceEvent:
        return await self._repository.append_event(
            WorkflowInstanceEvent(
                instance_id=instance.id,
                event_type=event_type,
                message=message,
                metadata=metadata,
                actor=actor,
            )
        )

    async def _load_graph(self, instance: WorkflowInstance) -> WorkflowGraph:
        definition = await self._repository.get_definition(
            instance.workflow_id, instance.definition_version
        )
        if definition is None:
            raise DefinitionNotFound(instance.workflow_id, instance.definition_version)
        return WorkflowGraph(definition)

    # ------------------------------------------------------------------
    # Public operations
    async def start(
        self,
        definition: WorkflowDefinition,
        entity_type: str,
        entity_id: str,
        initial_variables: Optional[Dict[str, Any]] = None,
        actor: str = SYSTEM_ACTOR,
    ) -> WorkflowInstance:
        """Create an instance pinned to ``definition.version`` and run it."""
        if definition.status != "active":
            raise DefinitionNotActive(definition.id, definition.status)
        ensure_valid(definition)
        graph = WorkflowGraph(definition)

        instance = await self._repository.create_instance(
            WorkflowInstance(
                workflow_id=definition.id,
                definition_version=definition.version,
                entity_type=entity_type,
                entity_id=entity_id,
                variables=dict(initial_variables or {}),
            )
        )
        logger.info(
            f"Starting workflow {definition.id} v{definition.version} "
            f"for {entity_type} {entity_id} (instance={instance.id})"
        )

        async with self.locks.hold(instance.id):
            instance.status = "running"
            instance.current_node_id = graph.start_node().id
            instance.started_at = utcnow()
            instance = await self._repository.save_instance(instance)
            await self._emit(
                instance,
                EVENT_STARTED,
                f"Workflow {definition.name} v{definition.version} started",
                actor=actor,
                workflow_id=definition.id,
                definition_version=definition.version,
            )
            return await self._run(instance, graph, actor)

    async def advance(self, instance_id: str, actor: str = SYSTEM_ACTOR) -> WorkflowInstance:
        """Move the instance forward until it suspends, completes or fails.

        Raises:
            InstanceTerminated: the instance is completed or cancelled.
        """
        async with self.locks.hold(instance_id):
            instance = await self._get(instance_id)
            if instance.status in ("completed", "cancelled"):
                raise InstanceTerminated(instance.id, instance.status)
            if instance.status == "failed":
                logger.info(f"Instance {instance.id} is failed; advance ignored until retried")
                return instance

            graph = await self._load_graph(instance)
            if instance.status == "pending":
                instance.status = "running"
                instance.current_node_id = graph.start_node().id
                instance.started_at = instance.started_at or utcnow()
                instance = await self._repository.save_instance(instance)
            return await self._run(instance, graph, actor)

    async def cancel(
        self, instance_id: str, actor: str, reason: Optional[str] = None
    ) -> WorkflowInstance:
        """Move a non-terminal instance to ``cancelled``."""
        async with self.locks.hold(instance_id):
            instance = await self._get(instance_id)
            if instance.is_terminal:
                raise InstanceTerminated(instance.id, instance.status)
            await self.tasks.skip_open_tasks(instance.id, actor, reason or "Instance cancelled")
            instance.status = "cancelled"
            instance.completed_at = utcnow()
            instance = await self._repository.save_instance(instance)
            await self._emit(
                instance,
                EVENT_CANCELLED,
                reason or "Workflow cancelled",
                actor=actor,
                node_id=instance.current_node_id,
            )
        logger.info(f"Instance {instance.id} cancelled by {actor}")
        return instance

    async def _get(self, instance_id: str) -> WorkflowInstance:
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFound(instance_id)
        return instance

    # ------------------------------------------------------------------
    # Execution loop (caller holds the instance lock)
    async def _run(
        self, instance: WorkflowInstance, graph: WorkflowGraph, actor: str
    ) -> WorkflowInstance:
        while instance.status == "running":
            node_id = instance.current_node_id
            try:
                node = graph.node(node_id)
                result = await self._process(instance, graph, node, actor)
            except Exception as exc:
                return await self._fail(instance, node_id, exc, actor)

            if result.finished or result.suspend:
                return await self._get(instance.id)

            instance = await self._get(instance.id)
            instance.current_node_id = result.next_node_id
            instance = await self._repository.save_instance(instance)
        return instance

    async def _process(
        self,
        instance: WorkflowInstance,
        graph: WorkflowGraph,
        node: WorkflowNode,
        actor: str,
    ) -> StepResult:
        if node.type == "approval":
            return await self._process_approval(instance, graph, node, actor)

        await self._emit(instance, EVENT_NODE_ENTERED, node.label or None, node_id=node.id, node_type=node.type)
        metadata: Dict[str, Any] = {}
        chosen_label = None

        if node.type == "end":
            instance.status = "completed"
            instance.completed_at = utcnow()
            instance = await self._repository.save_instance(instance)
            await self._emit(instance, EVENT_NODE_COMPLETED, node.label or None, node_id=node.id, node_type=node.type)
            await self._emit(instance, EVENT_COMPLETED, "Workflow completed", node_id=node.id)
            logger.info(f"Instance {instance.id} completed at node {node.id}")
            return StepResult(finished=True)
        elif node.type == "condition":
            chosen = await self._evaluate_condition(instance, node)
            chosen_label = CONDITION_TRUE if chosen else CONDITION_FALSE
            metadata["result"] = chosen
        elif node.type == "notification":
            metadata.update(await self._notify(instance, node))
        elif node.type == "action":
            metadata.update(await self._execute_action(instance, node))

        successor = graph.next_node(node.id, chosen_label)
        if successor is None:
            raise RuntimeError(f"Node {node.id} has no successor")
        await self._emit(
            instance,
            EVENT_NODE_COMPLETED,
            node.label or None,
            node_id=node.id,
            node_type=node.type,
            next_node_id=successor.id,
            **metadata,
        )
        return StepResult(next_node_id=successor.id)

    # ------------------------------------------------------------------
    # Node semantics
    async def _evaluate_condition(self, instance: WorkflowInstance, node: ConditionNode) -> bool:
        fields = await self._entities.get_fields(
            instance.entity_type,
            instance.entity_id,
            conditions.referenced_fields(node.condition),
        )
        result = conditions.evaluate(node.condition, fields)
        logger.info(f"Condition {node.id} on instance {instance.id} evaluated to {result}")
        return result

    async def _process_approval(
        self,
        instance: WorkflowInstance,
        graph: WorkflowGraph,
        node: ApprovalNode,
        actor: str,
    ) -> StepResult:
        task = await self.tasks.latest_task(instance.id, node.id)

        if task is None or task.resolution.get(CONSUMED_KEY):
            await self._emit(instance, EVENT_NODE_ENTERED, node.label or None, node_id=node.id, node_type=node.type)
            task = await self.tasks.create_task(instance, node)
            await self._emit(
                instance,
                EVENT_TASK_CREATED,
                f"Approval requested from {task.assigned_user or task.assigned_role}",
                task_id=task.id,
                node_id=node.id,
                assigned_role=task.assigned_role,
                assigned_user=task.assigned_user,
                candidates=await self.tasks.candidates_for(task),
            )
            return StepResult(suspend=True)

        if task.is_open:
            logger.debug(f"Instance {instance.id} still waiting on task {task.id}")
            return StepResult(suspend=True)

        approvals = dict(instance.variables.get("approvals") or {})
        approvals[node.id] = {"status": task.status, "by": task.resolved_by}
        instance.variables["approvals"] = approvals

        if task.status == "failed":
            await self.tasks.mark_consumed(task)
            comment = task.resolution.get("comment")
            message = f"Approval rejected at node {node.id} by {task.resolved_by}"
            if comment:
                message += f": {comment}"
            instance.status = "failed"
            instance.last_error = message
            await self._repository.save_instance(instance)
            await self._emit(instance, EVENT_FAILED, message, actor=actor, node_id=node.id, task_id=task.id)
            logger.info(f"Instance {instance.id} failed: {message}")
            return StepResult(finished=True)

        if task.status == "completed":
            patch = {node.entity_field: node.approved_value}
            await self._entities.update_fields(instance.entity_type, instance.entity_id, patch)
        await self.tasks.mark_consumed(task)
        instance = await self._repository.save_instance(instance)

        successor = graph.next_node(node.id)
        if successor is None:
            raise RuntimeError(f"Node {node.id} has no successor")
        await self._emit(
            instance,
            EVENT_NODE_COMPLETED,
            node.label or None,
            actor=actor,
            node_id=node.id,
            node_type=node.type,
            next_node_id=successor.id,
            task_id=task.id,
            outcome=task.status,
        )
        return StepResult(next_node_id=successor.id)

    async def _notify(self, instance: WorkflowInstance, node: NotificationNode) -> Dict[str, Any]:
        names = list(node.entity_fields)
        for name in placeholders(node.subject) + placeholders(node.template):
            if name not in names:
                names.append(name)
        fields = await self._entities.get_fields(instance.entity_type, instance.entity_id, names) if names else {}
        context = {**instance.variables, **{k: v for k, v in fields.items() if v is not None}}
        subject = render(node.subject, context)
        body = render(node.template, context)

        try:
            result = await self._dispatcher.dispatch(node.recipients, subject, body)
        except DeliveryFailure as exc:
            result = DispatchResult.failure(str(exc))

        if result.ok:
            await self._emit(
                instance,
                EVENT_NOTIFICATION_SENT,
                subject or None,
                node_id=node.id,
                recipients=list(node.recipients),
                channel=result.channel,
            )
        else:
            logger.warning(f"Notification at node {node.id} for instance {instance.id} failed: {result.detail}")
            await self._emit(
                instance,
                EVENT_NOTIFICATION_FAILED,
                result.detail,
                node_id=node.id,
                recipients=list(node.recipients),
                channel=result.channel,
            )
        return {"delivered": result.ok}

    async def _execute_action(self, instance: WorkflowInstance, node: ActionNode) -> Dict[str, Any]:
        outcome = await self.actions.execute(instance, node)
        if "record_id" in outcome:
            records = dict(instance.variables.get("created_records") or {})
            records[node.id] = outcome["record_id"]
            instance.variables["created_records"] = records
            await self._repository.save_instance(instance)
        return {"action": node.action.type, **outcome}

    async def _fail(
        self,
        instance: WorkflowInstance,
        node_id: Optional[str],
        exc: Exception,
        actor: str,
    ) -> WorkflowInstance:
        """Record an unrecoverable node error; ``current_node_id`` stays put for retry."""
        message = str(exc) or exc.__class__.__name__
        logger.error(f"Instance {instance.id} failed at node {node_id}: {message}")
        instance = await self._get(instance.id)
        instance.status = "failed"
        instance.last_error = message
        instance.current_node_id = node_id
        instance = await self._repository.save_instance(instance)
        await self._emit(
            instance,
            EVENT_FAILED,
            message,
            actor=actor,
            node_id=node_id,
            error_type=exc.__class__.__name__,
        )
        return instance
