"""
Authorization Service - the single entry point for authorization decisions.

The service combines the permission resolver (role graph) and the assertion
registry (context-sensitive conditions):

1. Get the identity's assigned roles. No roles means deny.
2. Ask the resolver which assigned roles grant the permission, following
   inheritance. None means deny, and no assertion is consulted.
3. For each granting role, resolve an assertion (role-qualified keys of the
   role and then of its ancestors first, the plain permission key last).
   A role without an assertion grants; otherwise the assertion's result
   decides for that role. Any granting role is sufficient.

Denial is a normal ``False`` result. Only configuration and integrity
problems (unknown role, cyclic role graph) raise. A failing assertion is
logged and counts as a denial.

Route guards are a coarse pre-filter; business code performing a sensitive
action must still ask this service, since guards only protect the routes
they are attached to.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from ..exceptions import AccessDeniedError, AssertionEvaluationError
from ..models import IdentityProvider
from .assertions import AssertionRegistry
from .graph import walk_ancestors
from .models import MAX_PERMISSION_LENGTH, AccessResult
from .providers import RoleProvider
from .resolver import DecisionCache, PermissionResolver, ResolutionStrategy

logger = logging.getLogger(__name__)


class AuthorizationService:
    """
    Decide whether an identity may use a permission, optionally on a context.

    All collaborators are passed in explicitly. The service keeps no
    per-request state, so one instance can serve concurrent requests.

    Args:
        role_provider: Source of roles.
        assertion_registry: Assertions restricting granted permissions.
        resolver: Permission resolver; built from ``role_provider`` if omitted.
        identity_provider: Fallback source of the current identity when a
            decision is requested without one.
        guest_role: Role used when there is no identity at all. Ignored if
            the role provider does not define it.
        strategy: Resolver strategy when ``resolver`` is omitted.
        shared_cache_size: Resolver cache size when ``resolver`` is omitted.

    Example:
        >>> service = AuthorizationService(provider, registry)
        >>> service.is_granted(alice, "posts.delete", post)
        True
    """

    def __init__(
        self,
        role_provider: RoleProvider,
        assertion_registry: Optional[AssertionRegistry] = None,
        resolver: Optional[PermissionResolver] = None,
        identity_provider: Optional[IdentityProvider] = None,
        guest_role: Optional[str] = "guest",
        strategy: ResolutionStrategy = ResolutionStrategy.EAGER,
        shared_cache_size: int = 10000,
    ):
        self.role_provider = role_provider
        self.assertions = (
            assertion_registry if assertion_registry is not None else AssertionRegistry()
        )
        self.resolver = resolver or PermissionResolver(
            role_provider, strategy=strategy, shared_cache_size=shared_cache_size
        )
        self.identity_provider = identity_provider
        self.guest_role = guest_role

        self._lock = threading.Lock()
        self._checks = 0
        self._grants = 0
        self._denials = 0
        self._assertion_failures = 0

        logger.info(
            "Authorization service initialized with %s resolution",
            self.resolver.strategy.value,
        )

    def _current_identity(self, identity: Any) -> Any:
        if identity is None and self.identity_provider is not None:
            return self.identity_provider.get_identity()
        return identity

    def _roles_of(self, identity: Any, view: RoleProvider) -> FrozenSet[str]:
        if identity is None:
            if self.guest_role and view.get_role(self.guest_role) is not None:
                return frozenset([self.guest_role])
            return frozenset()

        roles = getattr(identity, "assigned_roles", None)
        if roles is None:
            roles = getattr(identity, "roles", None)
        return frozenset(roles or ())

    @staticmethod
    def _validate_permission(permission: str) -> None:
        if not isinstance(permission, str) or not permission:
            raise ValueError("Permission must be a non-empty string")
        if len(permission) > MAX_PERMISSION_LENGTH:
            raise ValueError(f"Permission must be 1-{MAX_PERMISSION_LENGTH} characters")

    def check(
        self, identity: Any, permission: str, context: Any = None
    ) -> AccessResult:
        """
        Evaluate a permission and explain the decision.

        Args:
            identity: The identity asking (see :class:`rbac_authz.Identity`),
                or None to use the identity provider / guest role.
            permission: Permission name.
            context: Optional object of interest passed to assertions untouched.

        Returns:
            AccessResult with the decision and reasoning.

        Raises:
            UnknownRoleError: If the identity holds a role the provider doesn't know.
            CyclicRoleGraphError: If the role graph contains a cycle.
        """
        self._validate_permission(permission)
        start_time = time.time()

        identity = self._current_identity(identity)
        cache = self.resolver.new_cache()
        roles = self._roles_of(identity, cache.view)
        identity_id = getattr(identity, "id", None) if identity is not None else None

        result = AccessResult(
            allowed=False,
            reason="",
            permission=permission,
            identity_id=identity_id,
            assigned_roles=sorted(roles),
        )

        if not roles:
            result.reason = "No role assigned"
        else:
            granting = self.resolver.granting_roles(roles, permission, cache)
            result.granting_roles = granting
            if not granting:
                result.reason = f"No assigned role grants '{permission}'"
            else:
                self._apply_assertions(result, identity, permission, context, cache)

        result.evaluated_at = datetime.now(timezone.utc).isoformat()

        with self._lock:
            self._checks += 1
            if result.allowed:
                self._grants += 1
            else:
                self._denials += 1

        decision_time = time.time() - start_time
        logger.debug(
            f"Permission check for {identity_id or 'guest'}: {permission} "
            f"-> {'ALLOWED' if result.allowed else 'DENIED'} "
            f"({decision_time:.3f}s)",
            extra={
                "identity_id": identity_id,
                "permission": permission,
                "allowed": result.allowed,
                "reason": result.reason,
            },
        )
        return result

    def _apply_assertions(
        self,
        result: AccessResult,
        identity: Any,
        permission: str,
        context: Any,
        cache: DecisionCache,
    ) -> None:
        evaluated: Dict[int, bool] = {}
        denied_by: List[str] = []
        errors: List[str] = []
        scoped = self.assertions.has_role_scoped

        for role in result.granting_roles:
            inherited: List[str] = []
            if scoped:
                inherited = [
                    ancestor.name
                    for ancestor in walk_ancestors(role, cache.view.get_role)
                ][1:]
            entry = self.assertions.resolve_entry(permission, role, inherited)
            if entry is None:
                result.allowed = True
                result.reason = f"Granted by role '{role}'"
                return

            key, predicate = entry
            if id(predicate) not in evaluated:
                try:
                    evaluated[id(predicate)] = self.assertions.evaluate(
                        predicate, identity, context, key
                    )
                except AssertionEvaluationError as e:
                    with self._lock:
                        self._assertion_failures += 1
                    logger.error(
                        f"Assertion for '{key}' failed, denying access: {e.original}",
                        extra={
                            "permission": permission,
                            "role": role,
                            "assertion": str(key),
                        },
                        exc_info=True,
                    )
                    errors.append(str(e))
                    evaluated[id(predicate)] = False

            if evaluated[id(predicate)]:
                result.allowed = True
                result.assertion = str(key)
                result.reason = f"Granted by role '{role}', assertion '{key}' passed"
                return
            denied_by.append(str(key))

        result.assertion = denied_by[-1] if denied_by else None
        result.error = "; ".join(errors) or None
        result.reason = f"Denied by assertion(s): {', '.join(dict.fromkeys(denied_by))}"

    def is_granted(self, identity: Any, permission: str, context: Any = None) -> bool:
        """
        Check if the identity is granted a permission.

        Returns:
            True if granted. Never raises for a denial.
        """
        return self.check(identity, permission, context).allowed

    def require(self, identity: Any, permission: str, context: Any = None) -> AccessResult:
        """
        Enforce a permission inside a sensitive operation.

        Returns:
            The granting AccessResult.

        Raises:
            AccessDeniedError: If the permission is not granted.
        """
        result = self.check(identity, permission, context)
        if not result.allowed:
            raise AccessDeniedError(permission, result.reason)
        return result

    def is_granted_all(
        self, identity: Any, permissions: Iterable[str], context: Any = None
    ) -> bool:
        """True if every permission is granted."""
        return all(self.is_granted(identity, p, context) for p in permissions)

    def is_granted_any(
        self, identity: Any, permissions: Iterable[str], context: Any = None
    ) -> bool:
        """True if at least one permission is granted."""
        return any(self.is_granted(identity, p, context) for p in permissions)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get decision statistics for monitoring.

        Returns:
            Dictionary of counters plus resolver cache statistics.
        """
        with self._lock:
            stats = {
                "checks": self._checks,
                "grants": self._grants,
                "denials": self._denials,
                "assertion_failures": self._assertion_failures,
            }
        stats["roles_count"] = len(self.role_provider.list_roles())
        stats["assertions_count"] = len(self.assertions)
        stats["resolver"] = self.resolver.get_stats()
        return stats

    def reset_stats(self) -> None:
        """Reset decision counters."""
        with self._lock:
            self._checks = 0
            self._grants = 0
            self._denials = 0
            self._assertion_failures = 0
        logger.info("Authorization statistics reset")
