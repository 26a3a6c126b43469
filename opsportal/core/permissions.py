from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional


class Role(str, Enum):
    """Portal roles."""
    ADMIN = "admin"
    OPERATIONS_LEAD = "operations_lead"
    DISPATCHER = "dispatcher"
    CENTRAL_KITCHEN = "central_kitchen"
    BRANCH_MANAGER = "branch_manager"
    BRANCH_STAFF = "branch_staff"


# Roles that see and act on every branch; everyone else is limited to
# the branches assigned on their token
ALL_BRANCH_ACCESS_ROLES: FrozenSet[str] = frozenset({
    Role.ADMIN.value,
    Role.OPERATIONS_LEAD.value,
    Role.DISPATCHER.value,
})


# The central kitchen role works only its own branch
CENTRAL_KITCHEN_BRANCH = "central-kitchen"


ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    Role.ADMIN.value: frozenset({
        "dispatch:view",
        "dispatch:create",
        "dispatch:update",
        "dispatch:add_item",
        "dispatch:resolve",
        "dispatch:delete",
        "dispatch:archive_view",
    }),
    Role.OPERATIONS_LEAD.value: frozenset({
        "dispatch:view",
        "dispatch:create",
        "dispatch:update",
        "dispatch:add_item",
        "dispatch:resolve",
        "dispatch:delete",
    }),
    Role.DISPATCHER.value: frozenset({
        "dispatch:view",
        "dispatch:create",
        "dispatch:update",
        "dispatch:add_item",
    }),
    Role.CENTRAL_KITCHEN.value: frozenset({
        "dispatch:view",
        "dispatch:update",
    }),
    Role.BRANCH_MANAGER.value: frozenset({
        "dispatch:view",
        "dispatch:update",
    }),
    Role.BRANCH_STAFF.value: frozenset({
        "dispatch:view",
        "dispatch:update",
    }),
}


@dataclass
class Actor:
    """The authenticated caller, resolved from bearer token claims."""
    identity: str
    role: str
    name: Optional[str] = None
    branches: List[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        """Name recorded on late additions and archive stamps."""
        return self.name or self.identity or "Unknown"


class PermissionChecker:
    """
    Permission checker utility for role-based access.
    Permissions come from the fixed role table above.
    """

    def __init__(self, actor: Actor):
        self.actor = actor
        self.permissions = ROLE_PERMISSIONS.get(actor.role, frozenset())

    def has_permission(self, permission_code: str) -> bool:
        """
        Check if the actor has a specific permission.

        Args:
            permission_code: The permission code to check (e.g., 'dispatch:add_item')
        """
        return permission_code in self.permissions

    def has_all_branch_access(self) -> bool:
        return self.actor.role in ALL_BRANCH_ACCESS_ROLES

    def can_access_branch(self, branch_slug: str) -> bool:
        """Branch-scoped roles may only touch their assigned branches."""
        if self.has_all_branch_access():
            return True
        if self.actor.role == Role.CENTRAL_KITCHEN.value:
            return branch_slug == CENTRAL_KITCHEN_BRANCH
        return branch_slug in self.actor.branches
