"""
Organization directory interface (``expense_kernel.domain.directory``).

The workflow builder needs the claimant's direct manager; rule validation
needs to know who belongs to an organization and in what role.  Both come
from an external user directory, described here as a Protocol so hosts can
plug in their own user store.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from expense_kernel.domain.approval import APPROVAL_ELIGIBLE_ROLES


@dataclass(frozen=True)
class DirectoryUser:
    """A user as seen by the approval engine."""

    user_id: UUID
    org_id: UUID
    role: str
    manager_id: UUID | None = None
    name: str = ""


class OrgDirectory(Protocol):
    """Pluggable interface for organizational lookups."""

    def lookup_manager(self, user_id: UUID) -> UUID | None:
        """Return the user's direct manager, if any."""
        ...

    def get_role(self, user_id: UUID) -> str | None:
        """Return the user's role, or None if the user is unknown."""
        ...

    def belongs_to(self, user_id: UUID, org_id: UUID) -> bool:
        """Check if the user is a member of the organization."""
        ...

    def list_eligible_approvers(self, org_id: UUID) -> list[tuple[UUID, str]]:
        """Return ``(user_id, role)`` for every approval-eligible member."""
        ...


class InMemoryOrgDirectory:
    """Dictionary-backed ``OrgDirectory`` for hosts without a user store and for tests."""

    def __init__(self, users: list[DirectoryUser] | None = None):
        self._users: dict[UUID, DirectoryUser] = {}
        for user in users or ():
            self.add(user)

    def add(self, user: DirectoryUser) -> DirectoryUser:
        self._users[user.user_id] = user
        return user

    def lookup_manager(self, user_id: UUID) -> UUID | None:
        user = self._users.get(user_id)
        return user.manager_id if user is not None else None

    def get_role(self, user_id: UUID) -> str | None:
        user = self._users.get(user_id)
        return user.role if user is not None else None

    def belongs_to(self, user_id: UUID, org_id: UUID) -> bool:
        user = self._users.get(user_id)
        return user is not None and user.org_id == org_id

    def list_eligible_approvers(self, org_id: UUID) -> list[tuple[UUID, str]]:
        return [
            (u.user_id, u.role)
            for u in self._users.values()
            if u.org_id == org_id and u.role in APPROVAL_ELIGIBLE_ROLES
        ]
