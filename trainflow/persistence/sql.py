"""SQL implementation of the workflow repository (sqlmodel on an async engine)."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel, select

from ..contracts import WorkflowDefinition, utcnow
from ..errors import ConcurrentModification, InstanceNotFound
from .models import WorkflowInstance, WorkflowInstanceEvent, WorkflowTask
from .repository import WorkflowRepository
from .tables import DefinitionRow, EventRow, InstanceRow, TaskRow


def normalize_database_url(database_url: str) -> str:
    """Map plain URLs onto the async drivers used by the engine."""
    if database_url.startswith("sqlite:///"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back without tzinfo.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SQLWorkflowRepository(WorkflowRepository):
    """Persist workflow state in a relational database."""

    def __init__(self, database_url: str) -> None:
        self.database_url = normalize_database_url(database_url)
        connect_args = (
            {"check_same_thread": False} if self.database_url.startswith("sqlite") else {}
        )
        self.engine = create_async_engine(
            self.database_url, echo=False, future=True, connect_args=connect_args
        )
        self._initialized = False

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._initialized = True

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if not self._initialized:
            await self.init_db()
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    # ------------------------------------------------------------------
    # Row mapping
    @staticmethod
    def _definition_from_row(row: DefinitionRow) -> WorkflowDefinition:
        return WorkflowDefinition.model_validate(row.document)

    @staticmethod
    def _instance_from_row(row: InstanceRow) -> WorkflowInstance:
        return WorkflowInstance(
            id=row.id,
            workflow_id=row.workflow_id,
            definition_version=row.definition_version,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            status=row.status,
            current_node_id=row.current_node_id,
            retry_count=row.retry_count,
            last_error=row.last_error,
            variables=row.variables or {},
            started_at=_aware(row.started_at),
            completed_at=_aware(row.completed_at),
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
            revision=row.revision,
        )

    @staticmethod
    def _instance_values(instance: WorkflowInstance) -> dict:
        return instance.model_dump(mode="python")

    @staticmethod
    def _event_from_row(row: EventRow) -> WorkflowInstanceEvent:
        return WorkflowInstanceEvent(
            id=row.id,
            instance_id=row.instance_id,
            sequence=row.sequence,
            event_type=row.event_type,
            message=row.message,
            metadata=row.event_metadata or {},
            actor=row.actor,
            created_at=_aware(row.created_at),
        )

    @staticmethod
    def _task_from_row(row: TaskRow) -> WorkflowTask:
        return WorkflowTask(
            id=row.id,
            instance_id=row.instance_id,
            node_id=row.node_id,
            status=row.status,
            assigned_role=row.assigned_role,
            assigned_user=row.assigned_user,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
            due_at=_aware(row.due_at),
            resolved_by=row.resolved_by,
            resolution=row.resolution or {},
        )

    # ------------------------------------------------------------------
    # Definitions
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        row = DefinitionRow(
            id=definition.id,
            version=definition.version,
            name=definition.name,
            category=definition.category,
            status=definition.status,
            document=definition.model_dump(mode="json"),
            created_at=definition.created_at,
            updated_at=definition.updated_at,
        )
        async with self.session() as session:
            await session.merge(row)
            await session.commit()

    async def get_definition(
        self, definition_id: str, version: Optional[int] = None
    ) -> WorkflowDefinition | None:
        async with self.session() as session:
            if version is not None:
                row = await session.get(DefinitionRow, (definition_id, version))
            else:
                stmt = (
                    select(DefinitionRow)
                    .where(DefinitionRow.id == definition_id)
                    .order_by(DefinitionRow.version.desc())
                    .limit(1)
                )
                row = (await session.execute(stmt)).scalars().first()
        return self._definition_from_row(row) if row else None

    async def list_definition_versions(self, definition_id: str) -> list[WorkflowDefinition]:
        stmt = (
            select(DefinitionRow)
            .where(DefinitionRow.id == definition_id)
            .order_by(DefinitionRow.version)
        )
        async with self.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [self._definition_from_row(r) for r in rows]

    async def list_definitions(self) -> list[WorkflowDefinition]:
        stmt = select(DefinitionRow).order_by(DefinitionRow.id, DefinitionRow.version)
        async with self.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [self._definition_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Instances
    async def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        async with self.session() as session:
            session.add(InstanceRow(**self._instance_values(instance)))
            await session.commit()
        return instance.model_copy(deep=True)

    async def save_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        updated = instance.model_copy(
            update={"revision": instance.revision + 1, "updated_at": utcnow()}, deep=True
        )
        values = self._instance_values(updated)
        values.pop("id")
        stmt = (
            update(InstanceRow)
            .where(InstanceRow.id == instance.id)
            .where(InstanceRow.revision == instance.revision)
            .values(**values)
        )
        async with self.session() as session:
            result = await session.execute(stmt)
            if result.rowcount != 1:
                await session.rollback()
                current = await session.get(InstanceRow, instance.id)
                if current is None:
                    raise InstanceNotFound(instance.id)
                raise ConcurrentModification(instance.id, instance.revision, current.revision)
            await session.commit()
        return updated

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        async with self.session() as session:
            row = await session.get(InstanceRow, instance_id)
        return self._instance_from_row(row) if row else None

    async def list_instances(self, status: Optional[str] = None) -> list[WorkflowInstance]:
        stmt = select(InstanceRow).order_by(InstanceRow.created_at.desc())
        if status is not None:
            stmt = stmt.where(InstanceRow.status == status)
        async with self.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [self._instance_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Events
    async def append_event(self, event: WorkflowInstanceEvent) -> WorkflowInstanceEvent:
        async with self.session() as session:
            last = (
                await session.execute(
                    select(func.max(EventRow.sequence)).where(
                        EventRow.instance_id == event.instance_id
                    )
                )
            ).scalar()
            stored = event.model_copy(update={"sequence": (last or 0) + 1})
            session.add(
                EventRow(
                    id=stored.id,
                    instance_id=stored.instance_id,
                    sequence=stored.sequence,
                    event_type=stored.event_type,
                    message=stored.message,
                    event_metadata=stored.metadata,
                    actor=stored.actor,
                    created_at=stored.created_at,
                )
            )
            await session.commit()
        return stored

    async def list_events(self, instance_id: str) -> list[WorkflowInstanceEvent]:
        stmt = (
            select(EventRow)
            .where(EventRow.instance_id == instance_id)
            .order_by(EventRow.sequence)
        )
        async with self.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [self._event_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Tasks
    async def create_task(self, task: WorkflowTask) -> WorkflowTask:
        async with self.session() as session:
            session.add(TaskRow(**task.model_dump(mode="python")))
            await session.commit()
        return task.model_copy(deep=True)

    async def save_task(self, task: WorkflowTask) -> WorkflowTask:
        updated = task.model_copy(update={"updated_at": utcnow()}, deep=True)
        async with self.session() as session:
            await session.merge(TaskRow(**updated.model_dump(mode="python")))
            await session.commit()
        return updated

    async def get_task(self, task_id: str) -> WorkflowTask | None:
        async with self.session() as session:
            row = await session.get(TaskRow, task_id)
        return self._task_from_row(row) if row else None

    async def list_tasks(self, instance_id: str) -> list[WorkflowTask]:
        stmt = (
            select(TaskRow)
            .where(TaskRow.instance_id == instance_id)
            .order_by(TaskRow.created_at)
        )
        async with self.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [self._task_from_row(r) for r in rows]

    async def list_pending_tasks(self) -> list[WorkflowTask]:
        stmt = (
            select(TaskRow)
            .where(TaskRow.status == "pending")
            .order_by(TaskRow.created_at.desc())
        )
        async with self.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [self._task_from_row(r) for r in rows]
