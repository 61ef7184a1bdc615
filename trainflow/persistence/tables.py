from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def _ts_column(nullable: bool = True) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)


class DefinitionRow(SQLModel, table=True):
    """One version of a workflow definition; the graph lives in ``document``."""

    __tablename__ = "workflow_definitions"

    id: str = Field(primary_key=True)
    version: int = Field(primary_key=True)
    name: str
    category: str
    status: str = Field(default="draft", index=True)
    document: dict = Field(sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(sa_column=_ts_column(nullable=False))
    updated_at: datetime = Field(sa_column=_ts_column(nullable=False))


class InstanceRow(SQLModel, table=True):
    """Represents an instance of a workflow execution."""

    __tablename__ = "workflow_instances"

    id: str = Field(primary_key=True)
    workflow_id: str = Field(index=True)
    definition_version: int
    entity_type: str
    entity_id: str
    status: str = Field(default="pending", index=True)
    current_node_id: Optional[str] = None
    retry_count: int = 0
    last_error: Optional[str] = None
    variables: dict = Field(default_factory=dict, sa_column=Column(JSON))
    started_at: Optional[datetime] = Field(default=None, sa_column=_ts_column())
    completed_at: Optional[datetime] = Field(default=None, sa_column=_ts_column())
    created_at: datetime = Field(sa_column=_ts_column(nullable=False))
    updated_at: datetime = Field(sa_column=_ts_column(nullable=False))
    revision: int = 0


class EventRow(SQLModel, table=True):
    """Append-only timeline entry."""

    __tablename__ = "workflow_instance_events"
    __table_args__ = (
        UniqueConstraint("instance_id", "sequence", name="uq_workflow_instance_event_sequence"),
    )

    id: str = Field(primary_key=True)
    instance_id: str = Field(foreign_key="workflow_instances.id", index=True)
    sequence: int
    event_type: str
    message: Optional[str] = None
    # ``metadata`` is reserved on declarative classes.
    event_metadata: dict = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    actor: str
    created_at: datetime = Field(sa_column=_ts_column(nullable=False))


class TaskRow(SQLModel, table=True):
    """Tracks a human approval task for one node of one instance."""

    __tablename__ = "workflow_tasks"

    id: str = Field(primary_key=True)
    instance_id: str = Field(foreign_key="workflow_instances.id", index=True)
    node_id: str
    status: str = Field(default="pending", index=True)
    assigned_role: Optional[str] = None
    assigned_user: Optional[str] = None
    created_at: datetime = Field(sa_column=_ts_column(nullable=False))
    updated_at: datetime = Field(sa_column=_ts_column(nullable=False))
    due_at: Optional[datetime] = Field(default=None, sa_column=_ts_column())
    resolved_by: Optional[str] = None
    resolution: dict = Field(default_factory=dict, sa_column=Column(JSON))
