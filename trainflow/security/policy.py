"""Runtime policy enforcement for operator operations."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Set

from ..constants import OPERATOR_ROLES, SYSTEM_ACTOR
from ..directory import AssignmentDirectory
from ..errors import Forbidden

logger = logging.getLogger(__name__)

# action -> roles allowed to perform it
DEFAULT_RULES: Dict[str, Iterable[str]] = {
    "instance.retry": OPERATOR_ROLES,
    "instance.cancel": OPERATOR_ROLES,
    "definition.activate": ("admin",),
}


class PolicyEngine:
    """Evaluates role-based authorization rules at runtime.

    Actions without a rule are permitted. The system actor is always
    permitted.
    """

    def __init__(
        self,
        directory: Optional[AssignmentDirectory] = None,
        rules: Optional[Dict[str, Iterable[str]]] = None,
    ) -> None:
        self._directory = directory
        self._rules: Dict[str, Set[str]] = {
            action: set(roles) for action, roles in (rules or DEFAULT_RULES).items()
        }

    async def evaluate(self, actor: str, action: str) -> bool:
        """Return ``True`` if ``actor`` may perform ``action``."""
        if actor == SYSTEM_ACTOR:
            return True
        allowed = self._rules.get(action)
        if allowed is None:
            return True
        roles = await self._directory.roles_for(actor) if self._directory else set()
        return bool(roles & allowed)

    async def enforce(self, actor: str, action: str) -> None:
        if not await self.evaluate(actor, action):
            logger.warning(f"Denied {action} for {actor}")
            raise Forbidden(actor, action)
