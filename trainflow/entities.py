"""Entity store boundary: the business records workflows govern."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Iterable, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class EntityNotFound(LookupError):
    def __init__(self, entity_type: str, entity_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class EntityStore(Protocol):
    """Read/write access to entity fields.

    The engine assumes read-committed consistency and takes no locks here.
    """

    async def get_field(self, entity_type: str, entity_id: str, field: str) -> Any:
        """Return one field value (``None`` when unset)."""

    async def get_fields(
        self, entity_type: str, entity_id: str, fields: Optional[Iterable[str]] = None
    ) -> Dict[str, Any]:
        """Return the requested fields, or every field when ``fields`` is None."""

    async def update_fields(self, entity_type: str, entity_id: str, patch: Dict[str, Any]) -> None:
        """Apply ``patch`` to the entity."""

    async def create_record(self, entity_type: str, values: Dict[str, Any]) -> str:
        """Insert a record and return its id."""


class InMemoryEntityStore(EntityStore):
    """Keeps entities as plain dicts keyed by ``(entity_type, entity_id)``."""

    def __init__(self, records: Optional[Dict[Tuple[str, str], Dict[str, Any]]] = None) -> None:
        self._records: Dict[Tuple[str, str], Dict[str, Any]] = {
            key: dict(value) for key, value in (records or {}).items()
        }

    def put(self, entity_type: str, entity_id: str, **fields: Any) -> None:
        self._records.setdefault((entity_type, entity_id), {"id": entity_id}).update(fields)

    def _record(self, entity_type: str, entity_id: str) -> Dict[str, Any]:
        try:
            return self._records[(entity_type, entity_id)]
        except KeyError:
            raise EntityNotFound(entity_type, entity_id) from None

    async def get_field(self, entity_type: str, entity_id: str, field: str) -> Any:
        return self._record(entity_type, entity_id).get(field)

    async def get_fields(
        self, entity_type: str, entity_id: str, fields: Optional[Iterable[str]] = None
    ) -> Dict[str, Any]:
        record = self._record(entity_type, entity_id)
        if fields is None:
            return dict(record)
        return {name: record.get(name) for name in fields}

    async def update_fields(self, entity_type: str, entity_id: str, patch: Dict[str, Any]) -> None:
        self._record(entity_type, entity_id).update(patch)
        logger.debug(f"Updated {entity_type} {entity_id}: {patch}")

    async def create_record(self, entity_type: str, values: Dict[str, Any]) -> str:
        record_id = str(values.get("id") or uuid.uuid4())
        self._records[(entity_type, record_id)] = {**values, "id": record_id}
        return record_id
