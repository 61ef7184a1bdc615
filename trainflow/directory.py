"""Task assignment directory: who holds which role."""

from __future__ import annotations

from typing import Dict, Iterable, List, Protocol, Set


class AssignmentDirectory(Protocol):
    """Resolves roles to actors and actors to roles."""

    async def actors_for_role(self, role: str) -> List[str]:
        """Return the actors eligible for tasks assigned to ``role``."""

    async def roles_for(self, actor: str) -> Set[str]:
        """Return the roles held by ``actor``."""


class StaticDirectory(AssignmentDirectory):
    """Directory built from a ``role -> actors`` mapping (e.g. from config)."""

    def __init__(self, roles: Dict[str, Iterable[str]] | None = None) -> None:
        self._roles: Dict[str, List[str]] = {
            role: list(actors) for role, actors in (roles or {}).items()
        }

    def grant(self, actor: str, role: str) -> None:
        members = self._roles.setdefault(role, [])
        if actor not in members:
            members.append(actor)

    async def actors_for_role(self, role: str) -> List[str]:
        return list(self._roles.get(role, []))

    async def roles_for(self, actor: str) -> Set[str]:
        return {role for role, actors in self._roles.items() if actor in actors}
