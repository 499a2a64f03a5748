"""
rbac-authz: Role-based authorization core with context-sensitive assertions

This package decides whether an identity may use a permission. Roles carry
permission sets and may inherit from parent roles; assertions add
context-sensitive conditions (such as "only the author may delete a post")
on top of what the role graph grants.

Features:
    - Role hierarchies with multiple inheritance and cycle detection
    - Eager or lazy (indexed) permission lookups through role providers
    - Assertion registry with role-qualified keys, failing closed
    - Atomic role snapshot publishing for hot reloads
    - Route guards and FastAPI dependencies

Example:
    >>> from rbac_authz import AuthorizationService, Identity, InMemoryRoleProvider, Role
    >>>
    >>> provider = InMemoryRoleProvider([
    ...     Role("editor", frozenset({"posts.delete"})),
    ...     Role("admin", parents=("editor",)),
    ... ])
    >>> service = AuthorizationService(provider)
    >>> service.is_granted(Identity("root", roles=["admin"]), "posts.delete")
    True
"""

__version__ = "0.1.0"

from .exceptions import (
    AccessDeniedError,
    AssertionEvaluationError,
    ConfigurationError,
    CyclicRoleGraphError,
    DuplicateAssertionError,
    RBACError,
    UnknownRoleError,
)
from .models import Identity, IdentityProvider, StaticIdentityProvider
from .rbac import (
    AccessResult,
    AssertionRegistry,
    AssertionSet,
    AuthorizationService,
    InMemoryRoleProvider,
    OwnershipAssertion,
    PermissionResolver,
    ResolutionStrategy,
    Role,
    RoleProvider,
    RouteGuard,
    RoutePermissionsGuard,
)
from .settings import Settings
from .setup import create_authorization_service, setup_authorization

__all__ = [
    "Identity",
    "IdentityProvider",
    "StaticIdentityProvider",
    "Role",
    "AccessResult",
    "RoleProvider",
    "InMemoryRoleProvider",
    "PermissionResolver",
    "ResolutionStrategy",
    "AssertionRegistry",
    "AssertionSet",
    "OwnershipAssertion",
    "AuthorizationService",
    "RouteGuard",
    "RoutePermissionsGuard",
    "Settings",
    "create_authorization_service",
    "setup_authorization",
    "RBACError",
    "ConfigurationError",
    "UnknownRoleError",
    "CyclicRoleGraphError",
    "DuplicateAssertionError",
    "AssertionEvaluationError",
    "AccessDeniedError",
]
