"""Execution of typed ``action`` node operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from .contracts import ActionNode
from .entities import EntityStore
from .errors import ActionFailure, WorkflowError
from .notifications import NotificationDispatcher
from .persistence.models import WorkflowInstance
from .templating import placeholders, render

logger = logging.getLogger(__name__)


@dataclass
class ActionContext:
    """Everything an action handler may touch."""

    instance: WorkflowInstance
    node: ActionNode
    entity_store: EntityStore
    dispatcher: Optional[NotificationDispatcher] = None
    parameters: Dict[str, Any] = field(default_factory=dict)

    async def render_context(self, *templates: str) -> Dict[str, Any]:
        """Variables plus the entity fields referenced by ``templates``."""
        names = [name for t in templates for name in placeholders(t)]
        fields: Dict[str, Any] = {}
        if names:
            fields = await self.entity_store.get_fields(
                self.instance.entity_type, self.instance.entity_id, names
            )
        return {**self.instance.variables, **{k: v for k, v in fields.items() if v is not None}}


ActionHandler = Callable[[ActionContext], Awaitable[Optional[Dict[str, Any]]]]


async def update_status(ctx: ActionContext) -> Dict[str, Any]:
    """Apply the configured field updates to the bound entity."""
    patch = dict(ctx.node.action.entity_updates or ctx.parameters.get("updates") or {})
    if not patch:
        raise ActionFailure(f"Action node {ctx.node.id} has no entity updates configured")
    await ctx.entity_store.update_fields(ctx.instance.entity_type, ctx.instance.entity_id, patch)
    return {"updated": patch}


async def send_email(ctx: ActionContext) -> Dict[str, Any]:
    """Send a templated email; unlike notification nodes a failed send is fatal."""
    if ctx.dispatcher is None:
        raise ActionFailure("No notification dispatcher configured for send_email")
    recipients = ctx.parameters.get("to") or ctx.parameters.get("recipients") or []
    if isinstance(recipients, str):
        recipients = [r.strip() for r in recipients.split(",") if r.strip()]
    if not recipients:
        raise ActionFailure(f"Action node {ctx.node.id} has no email recipients")
    subject_tpl = ctx.parameters.get("subject", "")
    body_tpl = ctx.parameters.get("template") or ctx.parameters.get("body", "")
    variables = await ctx.render_context(subject_tpl, body_tpl)
    result = await ctx.dispatcher.dispatch(
        recipients, render(subject_tpl, variables), render(body_tpl, variables)
    )
    if not result.ok:
        raise ActionFailure(f"send_email failed: {result.detail}")
    return {"recipients": list(recipients)}


async def create_record(ctx: ActionContext) -> Dict[str, Any]:
    """Insert a related record, rendering string values as templates."""
    entity_type = ctx.parameters.get("entity_type")
    if not entity_type:
        raise ActionFailure(f"Action node {ctx.node.id} create_record needs an entity_type")
    raw_values = dict(ctx.parameters.get("values") or {})
    templates = [v for v in raw_values.values() if isinstance(v, str)]
    variables = await ctx.render_context(*templates)
    values = {
        key: render(value, variables) if isinstance(value, str) else value
        for key, value in raw_values.items()
    }
    record_id = await ctx.entity_store.create_record(entity_type, values)
    return {"entity_type": entity_type, "record_id": record_id}


class ActionExecutor:
    """Dispatches action nodes to their handlers.

    ``custom`` actions look up ``parameters["handler"]`` among handlers added
    with :meth:`register`.
    """

    def __init__(
        self,
        entity_store: EntityStore,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.entity_store = entity_store
        self.dispatcher = dispatcher
        self._builtin: Dict[str, ActionHandler] = {
            "update_status": update_status,
            "send_email": send_email,
            "create_record": create_record,
        }
        self._custom: Dict[str, ActionHandler] = {}

    def register(self, name: str, handler: ActionHandler) -> None:
        self._custom[name] = handler

    def _resolve(self, node: ActionNode) -> ActionHandler:
        action_type = node.action.type
        if action_type != "custom":
            return self._builtin[action_type]
        name = node.action.parameters.get("handler")
        if not name or name not in self._custom:
            raise ActionFailure(f"No custom action handler registered for {name!r}")
        return self._custom[name]

    async def execute(self, instance: WorkflowInstance, node: ActionNode) -> Dict[str, Any]:
        """Run the node's operation; any failure surfaces as :class:`ActionFailure`."""
        handler = self._resolve(node)
        ctx = ActionContext(
            instance=instance,
            node=node,
            entity_store=self.entity_store,
            dispatcher=self.dispatcher,
            parameters=dict(node.action.parameters),
        )
        try:
            result = await handler(ctx)
        except WorkflowError:
            raise
        except Exception as exc:
            raise ActionFailure(f"{node.action.type} failed: {exc}") from exc
        logger.info(
            f"Action {node.action.type} at node {node.id} done for instance {instance.id}"
        )
        return result or {}
