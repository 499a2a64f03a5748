"""
RBAC (Role-Based Access Control) core for rbac-authz

Features:
- Roles with permission sets and multiple inheritance (DAG, cycle-checked)
- Permission resolution with eager or lazy (indexed) role lookups
- Assertions for context-sensitive conditions (e.g. "must be the author")
- A single authorization service combining both
- Route guards and FastAPI dependencies as coarse pre-filters
"""

from .assertions import AssertionKey, AssertionRegistry, AssertionSet, OwnershipAssertion
from .decorators import (
    GuardDependency,
    RBACPermission,
    get_authorization_service,
    get_current_identity,
    require_permissions,
)
from .graph import expand_roles, validate_graph, walk_ancestors
from .guards import ProtectionPolicy, RouteGuard, RoutePermissionsGuard
from .models import AccessResult, Role
from .providers import InMemoryRoleProvider, RoleProvider, RoleSnapshot
from .resolver import DecisionCache, PermissionResolver, ResolutionStrategy
from .service import AuthorizationService

__all__ = [
    "Role",
    "AccessResult",
    "RoleProvider",
    "RoleSnapshot",
    "InMemoryRoleProvider",
    "PermissionResolver",
    "ResolutionStrategy",
    "DecisionCache",
    "AssertionKey",
    "AssertionRegistry",
    "AssertionSet",
    "OwnershipAssertion",
    "AuthorizationService",
    "ProtectionPolicy",
    "RouteGuard",
    "RoutePermissionsGuard",
    "walk_ancestors",
    "expand_roles",
    "validate_graph",
    "RBACPermission",
    "require_permissions",
    "GuardDependency",
    "get_current_identity",
    "get_authorization_service",
]
