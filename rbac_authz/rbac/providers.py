"""
Role Providers - supply the roles known to the system.

A role provider abstracts where roles come from (configuration, a database,
a remote service). The authorization core only needs three read operations:

- ``get_role(name)``: the Role, or None if it does not exist
- ``get_permissions_of(name)``: the permissions a role owns directly (eager)
- ``role_has_permission(name, permission)``: a point existence check (lazy),
  which an indexed store can answer without materializing the whole
  permission collection of a role with lots of permissions

:class:`InMemoryRoleProvider` keeps an immutable snapshot and publishes
changes by swapping the snapshot reference, so decisions running in other
threads always see either the old or the new role graph, never a mix.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from ..exceptions import ConfigurationError, UnknownRoleError
from .graph import validate_graph
from .models import Role

logger = logging.getLogger(__name__)


class RoleProvider(ABC):
    """
    Interface for role sources.

    Subclasses must implement :meth:`get_role` and :meth:`list_roles`. The
    permission lookups have default implementations based on ``get_role``;
    providers backed by an indexed store should override
    :meth:`role_has_permission` with a direct existence query.
    """

    @abstractmethod
    def get_role(self, name: str) -> Optional[Role]:
        """Return the role with the given name, or None if it does not exist."""
        raise NotImplementedError()

    @abstractmethod
    def list_roles(self) -> List[str]:
        """Return the names of all known roles."""
        raise NotImplementedError()

    def get_permissions_of(self, name: str) -> FrozenSet[str]:
        """
        Get the permissions a role owns directly.

        Raises:
            UnknownRoleError: If the role does not exist.
        """
        role = self.get_role(name)
        if role is None:
            raise UnknownRoleError(name)
        return role.permissions

    def role_has_permission(self, name: str, permission: str) -> bool:
        """
        Check if a role owns a permission directly.

        Raises:
            UnknownRoleError: If the role does not exist.
        """
        return permission in self.get_permissions_of(name)

    @property
    def version(self) -> int:
        """Monotonic counter identifying the current role graph."""
        return 0

    @property
    def frozen(self) -> bool:
        """Whether the role graph can no longer change in place."""
        return False

    def snapshot(self) -> "RoleProvider":
        """
        Get a consistent read view for the duration of one decision.

        Providers without snapshot support return themselves.
        """
        return self


class RoleSnapshot(RoleProvider):
    """
    Immutable view over a set of roles with a (role, permission) index.

    Instances are never modified after construction.
    """

    def __init__(self, roles: Mapping[str, Role], version: int = 0):
        self._roles: Dict[str, Role] = dict(roles)
        self._index: FrozenSet[Tuple[str, str]] = frozenset(
            (role.name, permission)
            for role in self._roles.values()
            for permission in role.permissions
        )
        self._version = version

    def get_role(self, name: str) -> Optional[Role]:
        return self._roles.get(name)

    def list_roles(self) -> List[str]:
        return list(self._roles.keys())

    def role_has_permission(self, name: str, permission: str) -> bool:
        if name not in self._roles:
            raise UnknownRoleError(name)
        return (name, permission) in self._index

    @property
    def version(self) -> int:
        return self._version

    @property
    def frozen(self) -> bool:
        return True

    @property
    def roles(self) -> Dict[str, Role]:
        return dict(self._roles)

    def __len__(self) -> int:
        return len(self._roles)

    def __contains__(self, name: object) -> bool:
        return name in self._roles


class InMemoryRoleProvider(RoleProvider):
    """
    Thread-safe in-memory role provider with atomic snapshot publishing.

    Readers never lock: every read goes through the current snapshot
    reference. Writers serialize on a lock, build a complete new snapshot,
    validate it and swap the reference.

    Args:
        roles: Initial roles.
        validate: Validate every snapshot before publishing it (cycle check).
            Parents may reference roles that are added later.

    Example:
        >>> provider = InMemoryRoleProvider([
        ...     Role("editor", frozenset({"posts.delete"})),
        ...     Role("admin", parents=("editor",)),
        ... ])
        >>> provider.role_has_permission("editor", "posts.delete")
        True
        >>> provider.freeze()
    """

    def __init__(self, roles: Iterable[Role] = (), validate: bool = True):
        self._lock = threading.RLock()
        self._validate = validate
        self._frozen = False
        self._snapshot = RoleSnapshot({}, version=0)

        roles = list(roles)
        if roles:
            self._publish(self._index_by_name(roles))

    @staticmethod
    def _index_by_name(roles: Iterable[Role]) -> Dict[str, Role]:
        by_name: Dict[str, Role] = {}
        for role in roles:
            if role.name in by_name:
                raise ConfigurationError(f"Role '{role.name}' is defined more than once")
            by_name[role.name] = role
        return by_name

    def _publish(self, roles: Dict[str, Role], require_parents: bool = False) -> None:
        with self._lock:
            if self._validate:
                validate_graph(roles, require_parents=require_parents)
            self._snapshot = RoleSnapshot(roles, version=self._snapshot.version + 1)

        logger.info(
            "Published role snapshot v%d with %d roles",
            self._snapshot.version,
            len(roles),
            extra={"version": self._snapshot.version, "role_count": len(roles)},
        )

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError(
                "Role provider is frozen; publish a new role set with reload()"
            )

    # Read operations
    def get_role(self, name: str) -> Optional[Role]:
        return self._snapshot.get_role(name)

    def list_roles(self) -> List[str]:
        return self._snapshot.list_roles()

    def get_permissions_of(self, name: str) -> FrozenSet[str]:
        return self._snapshot.get_permissions_of(name)

    def role_has_permission(self, name: str, permission: str) -> bool:
        return self._snapshot.role_has_permission(name, permission)

    @property
    def version(self) -> int:
        return self._snapshot.version

    @property
    def frozen(self) -> bool:
        return self._frozen

    def snapshot(self) -> RoleSnapshot:
        return self._snapshot

    # Write operations
    def add_role(self, role: Role) -> None:
        """
        Register a role.

        Raises:
            ValueError: If a role with the same name already exists.
            CyclicRoleGraphError: If validation is enabled and the role closes a cycle.
            RuntimeError: If the provider is frozen.
        """
        with self._lock:
            self._check_mutable()
            roles = self._snapshot.roles
            if role.name in roles:
                raise ValueError(f"Role '{role.name}' already exists")
            roles[role.name] = role
            self._publish(roles)

        logger.info(
            f"Added role '{role.name}' with {len(role.permissions)} permissions",
            extra={"role_name": role.name, "permission_count": len(role.permissions)},
        )

    def remove_role(self, name: str) -> bool:
        """
        Remove a role.

        Roles that still list it as a parent will fail with UnknownRoleError
        when traversed.

        Returns:
            True if the role was removed, False if it didn't exist.
        """
        with self._lock:
            self._check_mutable()
            roles = self._snapshot.roles
            if name not in roles:
                return False
            del roles[name]
            self._publish(roles)

        logger.info(f"Removed role '{name}'")
        return True

    def reload(self, roles: Iterable[Role]) -> None:
        """
        Replace the whole role set atomically.

        Allowed on frozen providers: this is how a frozen role graph is
        hot-reloaded. The new set must be self-contained (every parent
        defined).
        """
        with self._lock:
            self._publish(self._index_by_name(roles), require_parents=True)

    def freeze(self) -> None:
        """
        Mark the role graph as immutable.

        Once frozen, ``add_role``/``remove_role`` raise RuntimeError and
        resolvers may share cached results across decisions.
        """
        with self._lock:
            self._frozen = True
        logger.info("Role provider frozen at snapshot v%d", self.version)

    # Construction from configuration
    @classmethod
    def from_config(
        cls, config: Mapping[str, Any], validate: bool = True
    ) -> "InMemoryRoleProvider":
        """
        Build a provider from a configuration mapping.

        Accepted forms::

            {"roles": {"editor": {"permissions": ["posts.delete"],
                                  "parents": ["author"]}}}

            {"editor": {"permissions": ["posts.delete"], "parents": ["author"]}}

        Raises:
            ConfigurationError: If the configuration is malformed.
            CyclicRoleGraphError: If validation is enabled and roles form a cycle.
            UnknownRoleError: If validation is enabled and a parent is undefined.
        """
        if not isinstance(config, Mapping):
            raise ConfigurationError("Role configuration must be a mapping")

        roles_config = config["roles"] if "roles" in config else config
        if not isinstance(roles_config, Mapping):
            raise ConfigurationError("'roles' must be a mapping of role name to role")

        roles = [Role.from_dict(name, data) for name, data in roles_config.items()]

        provider = cls(validate=False)
        provider._validate = validate
        provider._publish(cls._index_by_name(roles), require_parents=validate)
        return provider

    @classmethod
    def from_file(
        cls, path: Union[str, Path], validate: bool = True
    ) -> "InMemoryRoleProvider":
        """
        Build a provider from a JSON role configuration file.

        Raises:
            ConfigurationError: If the file cannot be read or parsed.
        """
        path = Path(path)
        try:
            with path.open("r", encoding="utf-8") as f:
                config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot load roles from {path}: {e}") from e

        logger.info(f"Loading roles from {path}")
        return cls.from_config(config, validate=validate)
