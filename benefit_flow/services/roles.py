# ruff: noqa: TC003
from __future__ import annotations

import uuid
from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from benefit_flow.models.enums import Role


def normalize_roles(names: Iterable[str | Role]) -> frozenset[Role]:
    """Map free-text role names to the Role enum, case-insensitively.

    Unknown names are dropped; they grant nothing.
    """
    roles: set[Role] = set()
    for name in names:
        try:
            roles.add(Role(str(name).strip().lower()))
        except ValueError:
            continue
    return frozenset(roles)


@runtime_checkable
class RoleProvider(Protocol):
    """Interface for the identity/role provider."""

    async def get_roles(self, actor_id: uuid.UUID) -> frozenset[Role]:
        """Return the capability set of an actor. Empty if unknown."""
        ...


class InMemoryRoleProvider:
    """In-memory stub implementation for development."""

    def __init__(self) -> None:
        self._roles: dict[uuid.UUID, frozenset[Role]] = {}

    def seed(self, actor_id: uuid.UUID, *roles: str | Role) -> None:
        """Grant roles to an actor, replacing any previous grant."""
        self._roles[actor_id] = normalize_roles(roles)

    async def get_roles(self, actor_id: uuid.UUID) -> frozenset[Role]:
        return self._roles.get(actor_id, frozenset())


_role_provider: RoleProvider = InMemoryRoleProvider()


def get_role_provider() -> RoleProvider:
    """Return the active role provider."""
    return _role_provider


def set_role_provider(provider: RoleProvider) -> None:
    """Override the provider (for testing or production wiring)."""
    global _role_provider
    _role_provider = provider
