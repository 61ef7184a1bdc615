"""Data models for persisted workflow execution state."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from ..constants import SYSTEM_ACTOR, TERMINAL_STATUSES
from ..contracts import utcnow

InstanceStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
TaskStatus = Literal["pending", "completed", "failed", "skipped"]


class WorkflowInstance(BaseModel):
    """One execution of a pinned definition version against one entity.

    Waiting for approval is not a status of its own: the instance stays
    ``running`` with ``current_node_id`` on the approval node, and the open
    :class:`WorkflowTask` is what records the pause.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    definition_version: int
    entity_type: str
    entity_id: str
    status: InstanceStatus = "pending"
    current_node_id: Optional[str] = None
    retry_count: int = 0
    last_error: Optional[str] = None
    variables: dict[str, Any] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    revision: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class WorkflowInstanceEvent(BaseModel):
    """Immutable timeline entry."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    instance_id: str
    sequence: int = 0
    event_type: str
    message: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    actor: str = SYSTEM_ACTOR
    created_at: datetime = Field(default_factory=utcnow)


class WorkflowTask(BaseModel):
    """Human work item created by an approval node."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    instance_id: str
    node_id: str
    status: TaskStatus = "pending"
    assigned_role: Optional[str] = None
    assigned_user: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    due_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.status == "pending"
