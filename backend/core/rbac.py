"""Role-Based Access Control (RBAC) collaborators.

The engine asks a single yes/no question before starting or steering an
execution:

    allowed = await access_checker.can_execute(tenant_id, user_id, "workflows", "execute")

Permission codes are ``"<resource>.<action>"`` strings and support
wildcards: ``"workflows.*"`` and ``"*"``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


class AccessChecker(ABC):
    """Answers whether a user may perform an action on a resource."""

    @abstractmethod
    async def can_execute(
        self,
        tenant_id: str,
        user_id: str,
        resource: str,
        action: str,
    ) -> bool:
        ...


def _check_permission(user_perms: set[str], required: str) -> bool:
    """Check if user permissions satisfy the required permission.

    Supports wildcard: "admin.*" matches "admin.read", "admin.write", etc.
    """
    if required in user_perms:
        return True

    for perm in user_perms:
        if perm == "*":
            return True
        if perm.endswith(".*"):
            prefix = perm[:-2]
            if required.startswith(prefix + "."):
                return True

    return False


class PermissionSetAccessChecker(AccessChecker):
    """In-process checker backed by per-tenant, per-user permission sets.

    Usage:
        checker = PermissionSetAccessChecker()
        checker.grant("tenant-1", "alice", ["workflows.*"])
    """

    def __init__(self, grants: Optional[dict[tuple[str, str], set[str]]] = None):
        self._grants: dict[tuple[str, str], set[str]] = {
            key: set(codes) for key, codes in (grants or {}).items()
        }

    def grant(self, tenant_id: str, user_id: str, permissions: Iterable[str]) -> None:
        self._grants.setdefault((tenant_id, user_id), set()).update(permissions)

    def revoke(self, tenant_id: str, user_id: str, permission: str) -> None:
        self._grants.get((tenant_id, user_id), set()).discard(permission)

    def permissions_for(self, tenant_id: str, user_id: str) -> set[str]:
        return set(self._grants.get((tenant_id, user_id), set()))

    async def can_execute(
        self,
        tenant_id: str,
        user_id: str,
        resource: str,
        action: str,
    ) -> bool:
        user_perms = self._grants.get((tenant_id, user_id), set())
        allowed = _check_permission(user_perms, f"{resource}.{action}")
        if not allowed:
            logger.warning(
                "RBAC denied: tenant=%s user=%s permission=%s.%s",
                tenant_id, user_id, resource, action,
            )
        return allowed
