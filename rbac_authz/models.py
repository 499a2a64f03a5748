"""
Identity model for rbac-authz.

The authorization core never authenticates anyone. An :class:`Identity` is
supplied by the host application (typically from an authentication
middleware) and only carries what a decision needs: a stable id and the set
of role names assigned to it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional


@dataclass
class Identity:
    """
    Represents the authenticated subject of an authorization decision.

    Attributes:
        id: Stable unique identifier (e.g., sub claim, username, user id).
        roles: Role names assigned to this identity.
        name: Human-readable display name, if available.
        attributes: Free-form attributes (tenant, department, raw claims...)
            that assertions may inspect.

    Example:
        >>> alice = Identity(id="alice", roles=["author"])
        >>> alice.assigned_roles
        frozenset({'author'})
        >>> alice.is_same("alice")
        True
    """

    id: str
    roles: List[str] = field(default_factory=list)
    name: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate identity data after initialization."""
        if not self.id:
            raise ValueError("Identity ID cannot be empty")
        if not isinstance(self.roles, (list, tuple, set, frozenset)):
            raise ValueError("Identity roles must be a collection of role names")

    @property
    def assigned_roles(self) -> FrozenSet[str]:
        """Role names held by this identity."""
        return frozenset(self.roles)

    def is_same(self, other: Any) -> bool:
        """
        Identity-equality primitive used by assertions.

        Args:
            other: Another Identity, or a raw identifier (str/int) such as an
                ``author_id`` column value.

        Returns:
            True if ``other`` refers to this identity.
        """
        if other is None:
            return False
        if isinstance(other, Identity):
            return other.id == self.id
        return str(other) == str(self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "roles": sorted(self.assigned_roles),
            "name": self.name,
            "attributes": self.attributes,
        }


class IdentityProvider(ABC):
    """Supplies the identity of the current caller."""

    @abstractmethod
    def get_identity(self) -> Optional[Identity]:
        """Return the current identity, or None for an anonymous caller."""
        raise NotImplementedError()


class StaticIdentityProvider(IdentityProvider):
    """Always returns the same identity. Useful for CLIs, jobs and tests."""

    def __init__(self, identity: Optional[Identity] = None):
        self.identity = identity

    def get_identity(self) -> Optional[Identity]:
        return self.identity
