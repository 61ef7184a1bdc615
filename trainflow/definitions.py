"""Versioned storage and lifecycle of workflow definitions."""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional

from .contracts import WorkflowDefinition, utcnow
from .errors import DefinitionNotActive, DefinitionNotFound
from .graph import ValidationResult, ensure_valid, get_template, instantiate, validate
from .persistence.repository import WorkflowRepository

logger = logging.getLogger(__name__)


class DefinitionStore:
    """Creates, edits and activates definitions on top of a repository.

    Drafts are edited in place. Once a version has left ``draft`` its graph is
    frozen, and editing it stores a new draft version instead.
    """

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def create(
        self,
        name: str,
        category: str,
        nodes: Iterable[Any] = (),
        edges: Iterable[Any] = (),
        description: str = "",
        created_by: Optional[str] = None,
    ) -> WorkflowDefinition:
        definition = WorkflowDefinition.model_validate(
            {
                "name": name,
                "category": category,
                "description": description,
                "nodes": list(nodes),
                "edges": list(edges),
                "created_by": created_by,
            }
        )
        await self._repository.save_definition(definition)
        logger.info(f"Created definition {definition.id} ({definition.name})")
        return definition

    async def save(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """Store an externally built definition, e.g. one loaded from a file."""
        if definition.status == "active":
            ensure_valid(definition)
        await self._repository.save_definition(definition)
        return definition

    async def get(self, definition_id: str, version: Optional[int] = None) -> WorkflowDefinition:
        definition = await self._repository.get_definition(definition_id, version)
        if definition is None:
            raise DefinitionNotFound(definition_id, version)
        return definition

    async def versions(self, definition_id: str) -> List[WorkflowDefinition]:
        return await self._repository.list_definition_versions(definition_id)

    async def update_graph(
        self,
        definition_id: str,
        nodes: Iterable[Any],
        edges: Iterable[Any],
        actor: Optional[str] = None,
    ) -> WorkflowDefinition:
        """Replace the graph of the latest version.

        Returns the edited draft, or a new draft version when the latest one
        is already active or inactive.
        """
        latest = await self.get(definition_id)
        data = latest.model_dump(mode="json", exclude={"nodes", "edges"})
        data["nodes"] = [n.model_dump(mode="json") if hasattr(n, "model_dump") else n for n in nodes]
        data["edges"] = [e.model_dump(mode="json") if hasattr(e, "model_dump") else e for e in edges]
        data["updated_at"] = utcnow()

        if latest.status != "draft":
            data["version"] = latest.version + 1
            data["status"] = "draft"
            data["created_at"] = data["updated_at"]
            data["created_by"] = actor or latest.created_by
            logger.info(
                f"Definition {definition_id} v{latest.version} is {latest.status}; "
                f"storing edit as v{data['version']}"
            )

        updated = WorkflowDefinition.model_validate(data)
        await self._repository.save_definition(updated)
        return updated

    async def activate(self, definition_id: str, version: Optional[int] = None) -> WorkflowDefinition:
        """Make one version the active one; other versions become inactive.

        Raises:
            InvalidGraph: the version fails structural validation.
        """
        definition = await self.get(definition_id, version)
        ensure_valid(definition)
        for other in await self.versions(definition_id):
            if other.version != definition.version and other.status == "active":
                other.status = "inactive"
                other.updated_at = utcnow()
                await self._repository.save_definition(other)
        definition.status = "active"
        definition.updated_at = utcnow()
        await self._repository.save_definition(definition)
        logger.info(f"Activated definition {definition_id} v{definition.version}")
        return definition

    async def deactivate(self, definition_id: str) -> Optional[WorkflowDefinition]:
        """Stop new instances from starting; in-flight ones are unaffected."""
        active = await self._find_active(definition_id)
        if active is None:
            return None
        active.status = "inactive"
        active.updated_at = utcnow()
        await self._repository.save_definition(active)
        logger.info(f"Deactivated definition {definition_id} v{active.version}")
        return active

    async def _find_active(self, definition_id: str) -> Optional[WorkflowDefinition]:
        versions = await self.versions(definition_id)
        if not versions:
            raise DefinitionNotFound(definition_id)
        for definition in reversed(versions):
            if definition.status == "active":
                return definition
        return None

    async def get_active(self, definition_id: str) -> WorkflowDefinition:
        active = await self._find_active(definition_id)
        if active is None:
            latest = await self.get(definition_id)
            raise DefinitionNotActive(definition_id, latest.status)
        return active

    async def list(self, category: Optional[str] = None) -> List[WorkflowDefinition]:
        """Latest version of each definition, optionally filtered by category."""
        latest = {}
        for definition in await self._repository.list_definitions():
            current = latest.get(definition.id)
            if current is None or definition.version > current.version:
                latest[definition.id] = definition
        return sorted(
            (d for d in latest.values() if category is None or d.category == category),
            key=lambda d: d.name,
        )

    def validate(self, definition: WorkflowDefinition) -> ValidationResult:
        return validate(definition)

    async def create_from_template(
        self, template_id: str, created_by: Optional[str] = None
    ) -> WorkflowDefinition:
        definition = instantiate(get_template(template_id), created_by=created_by)
        await self._repository.save_definition(definition)
        logger.info(f"Created definition {definition.id} from template {template_id}")
        return definition
