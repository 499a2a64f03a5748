"""
RBAC Models - Data structures for Role-Based Access Control.

This module defines the core data models used by the authorization core:
- Role: A named bundle of permissions with optional parent roles
- AccessResult: Result of a permission evaluation, with diagnostics

Permissions themselves are plain strings (e.g. "posts.delete"); they exist
implicitly through the permission sets of roles.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from ..exceptions import ConfigurationError

VALID_ROLE_NAME = re.compile(r"^[a-zA-Z0-9_.-]+$")
MAX_ROLE_NAME_LENGTH = 64
MAX_PERMISSION_LENGTH = 128


@dataclass(frozen=True)
class Role:
    """
    Represents a role with a set of permissions and parent roles.

    Roles are immutable: changing a role means publishing a new snapshot
    through the role provider, so concurrent decisions never observe a
    half-updated role.

    Attributes:
        name: Unique identifier for the role.
        permissions: Permission names owned directly by this role.
        parents: Ordered parent role names this role inherits from. Multiple
            parents (and diamond-shaped graphs) are allowed.
        description: Human-readable description of the role's purpose.
        metadata: Additional metadata for the role.

    Example:
        >>> editor = Role(
        ...     name="editor",
        ...     permissions=frozenset({"posts.edit", "posts.delete"}),
        ...     parents=("author",),
        ... )
        >>> editor.has_direct_permission("posts.edit")
        True
    """

    name: str
    permissions: FrozenSet[str] = frozenset()
    parents: Tuple[str, ...] = ()
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        """Validate and normalise role data after initialization."""
        if not self.name or len(self.name) > MAX_ROLE_NAME_LENGTH:
            raise ValueError(f"Role name must be 1-{MAX_ROLE_NAME_LENGTH} characters")
        if not VALID_ROLE_NAME.match(self.name):
            raise ValueError(f"Invalid role name format: {self.name}")

        if isinstance(self.permissions, str) or isinstance(self.parents, str):
            raise ValueError("Role permissions and parents must be collections, not strings")

        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "permissions", frozenset(self.permissions))
        object.__setattr__(self, "parents", tuple(self.parents))

        for permission in self.permissions:
            if not permission or len(permission) > MAX_PERMISSION_LENGTH:
                raise ValueError(
                    f"Permission name must be 1-{MAX_PERMISSION_LENGTH} characters"
                )
        if len(set(self.parents)) != len(self.parents):
            raise ValueError(f"Role '{self.name}' lists a parent more than once")

    def has_direct_permission(self, permission: str) -> bool:
        """
        Check if this role owns a permission directly.

        Args:
            permission: The permission name to check for.

        Returns:
            True if the role has the permission (not through inheritance).
        """
        return permission in self.permissions

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "Role":
        """
        Build a role from its configuration entry.

        Args:
            name: Role name.
            data: Mapping with optional ``permissions``, ``parents``,
                ``description`` and ``metadata`` keys.

        Raises:
            ConfigurationError: If the entry is malformed.
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Role '{name}' must be configured as a mapping")

        unknown = set(data) - {"permissions", "parents", "description", "metadata"}
        if unknown:
            raise ConfigurationError(
                f"Role '{name}' has unknown configuration keys: {sorted(unknown)}"
            )

        permissions = data.get("permissions") or []
        parents = data.get("parents") or []
        if isinstance(permissions, str) or isinstance(parents, str):
            raise ConfigurationError(
                f"Role '{name}': 'permissions' and 'parents' must be lists"
            )

        try:
            return cls(
                name=name,
                permissions=frozenset(permissions),
                parents=tuple(parents),
                description=data.get("description") or "",
                metadata=dict(data.get("metadata") or {}),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid role '{name}': {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the role to its configuration form.

        Returns:
            Dictionary suitable for :meth:`from_dict`.
        """
        return {
            "permissions": sorted(self.permissions),
            "parents": list(self.parents),
            "description": self.description,
            "metadata": dict(self.metadata),
        }


@dataclass
class AccessResult:
    """
    Represents the result of a permission check.

    Contains whether access was granted and the reasoning behind the
    decision. ``allowed`` is the only field callers should branch on; the
    rest is for logging and auditing.

    Attributes:
        allowed: Whether access is granted.
        reason: Human-readable explanation of the decision.
        permission: The permission that was requested.
        identity_id: Id of the identity, or None for a guest decision.
        assigned_roles: Roles considered for the decision.
        granting_roles: Assigned roles that hold the permission transitively.
        assertion: Description of the assertion that decided the outcome, if any.
        error: Diagnostic message when an assertion faulted (fail-closed).
        evaluated_at: ISO timestamp of the evaluation.

    Example:
        >>> result = AccessResult(
        ...     allowed=True,
        ...     reason="Granted by role 'editor'",
        ...     permission="posts.delete",
        ...     granting_roles=["editor"],
        ... )
    """

    allowed: bool
    reason: str
    permission: str
    identity_id: Optional[str] = None
    assigned_roles: List[str] = field(default_factory=list)
    granting_roles: List[str] = field(default_factory=list)
    assertion: Optional[str] = None
    error: Optional[str] = None
    evaluated_at: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the result to a dictionary.

        Returns:
            Dictionary representation of the result.
        """
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "permission": self.permission,
            "identity_id": self.identity_id,
            "assigned_roles": self.assigned_roles,
            "granting_roles": self.granting_roles,
            "assertion": self.assertion,
            "error": self.error,
            "evaluated_at": self.evaluated_at,
        }
