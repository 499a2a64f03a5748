"""
Permission Resolver - answers "does any of these roles hold permission P?"

The resolver walks each role's inheritance graph through a role provider.
Two lookup strategies are supported:

- EAGER: fetch the full permission set of each visited role once
  (``get_permissions_of``) and test membership locally. Cheapest when roles
  own few permissions or the provider is in memory.
- LAZY: ask the provider ``role_has_permission`` for each visited role.
  Cheapest when roles own lots of permissions and the provider can answer a
  point lookup from an index.

Results are memoized in a :class:`DecisionCache` that lives for one
decision. A shared LRU cache across decisions is only used when the role
provider is frozen; its entries are keyed by the provider version, so a
reload makes every previous entry unreachable.

Permission lookups stop at the first granting role, so before the first
lookup of a decision the full ancestry of the assigned roles is walked once
to surface cycles. Frozen providers remember the roles already verified for
the current snapshot version.
"""

import logging
import threading
from collections import OrderedDict
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from ..exceptions import UnknownRoleError
from .graph import role_has_permission_transitively, walk_ancestors
from .models import Role
from .providers import RoleProvider

logger = logging.getLogger(__name__)

MAX_SHARED_CACHE_SIZE = 1000000


class ResolutionStrategy(str, Enum):
    """How the resolver asks the role provider about a single role."""

    EAGER = "eager"
    LAZY = "lazy"


class DecisionCache:
    """
    Memo for a single authorization decision.

    Pins the role snapshot the decision runs against and remembers results
    per (role, permission) and per-role permission sets. Not thread-safe and
    not meant to be shared: create one per decision.
    """

    def __init__(self, view: RoleProvider):
        self.view = view
        self.grants: Dict[Tuple[str, str], bool] = {}
        self.permissions: Dict[str, FrozenSet[str]] = {}
        # roles whose whole ancestry was walked without finding a cycle
        self.acyclic: Set[str] = set()

    def __len__(self) -> int:
        return len(self.grants)


class PermissionResolver:
    """
    Resolve permissions for a set of role names, following inheritance.

    Args:
        provider: Role provider to read roles from.
        strategy: Eager (permission sets) or lazy (point lookups).
        shared_cache_size: Maximum entries in the cross-decision cache that
            is used when the provider is frozen.

    Example:
        >>> resolver = PermissionResolver(provider, ResolutionStrategy.LAZY)
        >>> resolver.is_granted({"admin"}, "posts.delete")
        True
    """

    def __init__(
        self,
        provider: RoleProvider,
        strategy: ResolutionStrategy = ResolutionStrategy.EAGER,
        shared_cache_size: int = 10000,
    ):
        if shared_cache_size < 0 or shared_cache_size > MAX_SHARED_CACHE_SIZE:
            raise ValueError(
                f"shared_cache_size must be between 0 and {MAX_SHARED_CACHE_SIZE:,}"
            )

        self.provider = provider
        self.strategy = ResolutionStrategy(strategy)
        self._shared_cache_size = shared_cache_size
        self._shared_cache: "OrderedDict[Tuple[int, str, str], bool]" = OrderedDict()
        self._shared_version = provider.version
        self._acyclic_version = provider.version
        self._acyclic_roles: Set[str] = set()
        self._lock = threading.Lock()
        self._cache_hits = 0
        self._cache_misses = 0

    def new_cache(self) -> DecisionCache:
        """Start a decision against the provider's current snapshot."""
        return DecisionCache(self.provider.snapshot())

    def is_granted(
        self,
        role_names: Iterable[str],
        permission: str,
        cache: Optional[DecisionCache] = None,
    ) -> bool:
        """
        Check if any of the roles holds the permission, directly or inherited.

        Args:
            role_names: Names of the roles to check.
            permission: Permission name.
            cache: Decision cache to use; a fresh one is created if omitted.

        Returns:
            True if at least one role grants the permission.

        Raises:
            UnknownRoleError: If a role name (or a referenced parent) is unknown.
            CyclicRoleGraphError: If a cycle is reachable from the roles.
        """
        if cache is None:
            cache = self.new_cache()
        names = self._checked_names(role_names, cache)
        return any(self._role_grants(name, permission, cache) for name in names)

    def granting_roles(
        self,
        role_names: Iterable[str],
        permission: str,
        cache: Optional[DecisionCache] = None,
    ) -> List[str]:
        """
        Get the roles (among ``role_names``) that hold the permission.

        Returns:
            Sorted list of granting role names; empty if none grants it.
        """
        if cache is None:
            cache = self.new_cache()
        names = self._checked_names(role_names, cache)
        return [name for name in names if self._role_grants(name, permission, cache)]

    def _checked_names(self, role_names: Iterable[str], cache: DecisionCache) -> List[str]:
        names = sorted(set(role_names))
        for name in names:
            if cache.view.get_role(name) is None:
                raise UnknownRoleError(name)
        self._ensure_acyclic(names, cache)
        return names

    def _ensure_acyclic(self, names: List[str], cache: DecisionCache) -> None:
        """
        Walk the full ancestry of ``names`` once per snapshot.

        Permission lookups stop at the first granting role, so a cycle above
        that role would otherwise go unnoticed.
        """
        pending = [name for name in names if name not in cache.acyclic]
        if not pending:
            return

        version = cache.view.version
        shared = self._shared_cache_size > 0 and self.provider.frozen
        if shared:
            with self._lock:
                if self._acyclic_version == version:
                    known = [name for name in pending if name in self._acyclic_roles]
                    cache.acyclic.update(known)
                    pending = [name for name in pending if name not in self._acyclic_roles]
            if not pending:
                return

        reached = {role.name for role in walk_ancestors(pending, cache.view.get_role)}
        cache.acyclic.update(reached)

        if shared:
            with self._lock:
                if self._acyclic_version != version:
                    self._acyclic_roles = set()
                    self._acyclic_version = version
                self._acyclic_roles.update(reached)

    def _role_grants(self, name: str, permission: str, cache: DecisionCache) -> bool:
        key = (name, permission)
        if key in cache.grants:
            return cache.grants[key]

        shared_key = (cache.view.version, name, permission)
        use_shared = self._shared_cache_size > 0 and self.provider.frozen
        if use_shared:
            cached = self._get_shared(shared_key)
            if cached is not None:
                cache.grants[key] = cached
                return cached

        def check(role: Role, perm: str) -> bool:
            if self.strategy is ResolutionStrategy.LAZY:
                return cache.view.role_has_permission(role.name, perm)
            if role.name not in cache.permissions:
                cache.permissions[role.name] = cache.view.get_permissions_of(role.name)
            return perm in cache.permissions[role.name]

        result = role_has_permission_transitively(
            name, permission, cache.view.get_role, check
        )

        cache.grants[key] = result
        if use_shared:
            self._store_shared(shared_key, result)
        return result

    def _get_shared(self, key: Tuple[int, str, str]) -> Optional[bool]:
        with self._lock:
            if key in self._shared_cache:
                self._shared_cache.move_to_end(key)
                self._cache_hits += 1
                return self._shared_cache[key]
            self._cache_misses += 1
            return None

    def _store_shared(self, key: Tuple[int, str, str], result: bool) -> None:
        with self._lock:
            # entries from older snapshot versions can never be hit again
            if key[0] != self._shared_version:
                self._shared_cache.clear()
                self._shared_version = key[0]

            while len(self._shared_cache) >= self._shared_cache_size:
                self._shared_cache.popitem(last=False)
            self._shared_cache[key] = result

    def clear_cache(self) -> int:
        """
        Clear the cross-decision cache.

        Returns:
            Number of cache entries cleared.
        """
        with self._lock:
            cleared_count = len(self._shared_cache)
            self._shared_cache.clear()
            self._acyclic_roles = set()

        logger.info(f"Cleared {cleared_count} resolver cache entries")
        return cleared_count

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total = self._cache_hits + self._cache_misses
            return {
                "strategy": self.strategy.value,
                "shared_cache_enabled": self.provider.frozen
                and self._shared_cache_size > 0,
                "cache_size": len(self._shared_cache),
                "cache_max_size": self._shared_cache_size,
                "cache_hits": self._cache_hits,
                "verified_roles": len(self._acyclic_roles),
                "cache_misses": self._cache_misses,
                "cache_hit_rate": (self._cache_hits / max(total, 1)) * 100,
            }
