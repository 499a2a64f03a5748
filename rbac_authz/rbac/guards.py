"""
Route guards - coarse, route-level pre-filters.

Guards reject obviously unauthorized requests before any business logic
runs, using a static mapping of route pattern to required roles or
permissions. They complement the authorization service rather than replace
it: code reachable without going through a guarded route is not protected
by the guard.

Patterns use shell-style wildcards (``/admin/*``, ``/posts/*/edit``) and are
matched case-insensitively. The first matching rule, in declaration order,
applies. Routes matched by no rule follow the protection policy.
"""

import logging
from enum import Enum
from fnmatch import fnmatchcase
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from .graph import expand_roles
from .providers import RoleProvider
from .service import AuthorizationService

logger = logging.getLogger(__name__)

WILDCARD = "*"


class ProtectionPolicy(str, Enum):
    """What a guard does for a route no rule matches."""

    DENY = "deny"
    ALLOW = "allow"


def _normalise_rules(
    rules: Mapping[str, Union[str, Iterable[str]]]
) -> List[Tuple[str, Tuple[str, ...]]]:
    normalised = []
    for pattern, values in rules.items():
        if not pattern:
            raise ValueError("Guard route pattern cannot be empty")
        if isinstance(values, str):
            values = [values]
        normalised.append((pattern.lower(), tuple(values)))
    return normalised


class _BaseGuard:
    def __init__(
        self,
        rules: Mapping[str, Union[str, Iterable[str]]],
        policy: ProtectionPolicy = ProtectionPolicy.DENY,
    ):
        self.rules = _normalise_rules(rules)
        self.policy = ProtectionPolicy(policy)

    def match(self, route: str) -> Optional[Tuple[str, Tuple[str, ...]]]:
        """
        Find the rule that applies to a route.

        Returns:
            ``(pattern, values)`` of the first matching rule, or None.
        """
        route = route.lower()
        for pattern, values in self.rules:
            if fnmatchcase(route, pattern):
                return pattern, values
        return None

    def _unmatched(self, route: str) -> bool:
        allowed = self.policy is ProtectionPolicy.ALLOW
        logger.debug(
            f"No guard rule for '{route}', policy {self.policy.value}",
            extra={"route": route, "policy": self.policy.value},
        )
        return allowed


class RouteGuard(_BaseGuard):
    """
    Require one of a set of roles for matching routes.

    An identity satisfies a rule if it holds one of the listed roles, or a
    role inheriting from one of them. ``"*"`` lets everybody through.

    Example:
        >>> guard = RouteGuard({"/admin/*": ["admin"], "/posts*": ["*"]}, provider)
        >>> guard.is_granted("/admin/users", Identity("bob", roles=["editor"]))
        False
    """

    def __init__(
        self,
        rules: Mapping[str, Union[str, Iterable[str]]],
        role_provider: RoleProvider,
        policy: ProtectionPolicy = ProtectionPolicy.DENY,
        guest_role: Optional[str] = "guest",
    ):
        super().__init__(rules, policy)
        self.role_provider = role_provider
        self.guest_role = guest_role

    def _identity_roles(self, identity: Any, view: RoleProvider) -> List[str]:
        if identity is None:
            if self.guest_role and view.get_role(self.guest_role) is not None:
                return [self.guest_role]
            return []
        roles = getattr(identity, "assigned_roles", None)
        if roles is None:
            roles = getattr(identity, "roles", None)
        return list(roles or ())

    def is_granted(self, route: str, identity: Any) -> bool:
        """
        Check if the identity may access a route.

        Raises:
            UnknownRoleError: If the identity holds an undefined role.
            CyclicRoleGraphError: If the role graph contains a cycle.
        """
        rule = self.match(route)
        if rule is None:
            return self._unmatched(route)

        pattern, required = rule
        if WILDCARD in required:
            return True

        view = self.role_provider.snapshot()
        held = expand_roles(self._identity_roles(identity, view), view.get_role)
        allowed = any(role in held for role in required)
        if not allowed:
            logger.info(
                f"Route guard denied '{route}' (rule '{pattern}')",
                extra={"route": route, "required_roles": list(required)},
            )
        return allowed


class RoutePermissionsGuard(_BaseGuard):
    """
    Require every listed permission for matching routes.

    Permissions are checked through the authorization service without a
    context, so context assertions registered for them see ``None``.
    ``"*"`` lets everybody through.
    """

    def __init__(
        self,
        rules: Mapping[str, Union[str, Iterable[str]]],
        service: AuthorizationService,
        policy: ProtectionPolicy = ProtectionPolicy.DENY,
    ):
        super().__init__(rules, policy)
        self.service = service

    def is_granted(self, route: str, identity: Any) -> bool:
        rule = self.match(route)
        if rule is None:
            return self._unmatched(route)

        pattern, permissions = rule
        if WILDCARD in permissions:
            return True

        allowed = self.service.is_granted_all(identity, permissions)
        if not allowed:
            logger.info(
                f"Permission guard denied '{route}' (rule '{pattern}')",
                extra={"route": route, "required_permissions": list(permissions)},
            )
        return allowed
