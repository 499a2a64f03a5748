"""
Error taxonomy for rbac-authz.

Configuration and integrity errors (unknown roles, cyclic role graphs,
duplicate assertion registrations) propagate to the caller. Assertion faults
are raised by the registry but contained by the authorization service, which
converts them into a denied decision. A plain denial is never an exception.
"""

from typing import List, Optional


class RBACError(Exception):
    """Base class for authorization errors with optional machine-readable code."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class ConfigurationError(RBACError):
    """Role or assertion configuration is malformed."""

    def __init__(self, message: str):
        super().__init__(message, code="configuration_error")


class UnknownRoleError(RBACError):
    """A role name could not be found in the role provider."""

    def __init__(self, role_name: str, referenced_by: Optional[str] = None):
        if referenced_by:
            message = f"Role '{role_name}' (parent of '{referenced_by}') does not exist"
        else:
            message = f"Role '{role_name}' does not exist"
        super().__init__(message, code="unknown_role")
        self.role_name = role_name
        self.referenced_by = referenced_by


class CyclicRoleGraphError(RBACError):
    """The parent relation between roles contains a cycle."""

    def __init__(self, cycle: List[str]):
        super().__init__(
            f"Role inheritance cycle detected: {' -> '.join(cycle)}",
            code="cyclic_role_graph",
        )
        self.cycle = list(cycle)


class DuplicateAssertionError(RBACError):
    """An assertion is already registered under the same key."""

    def __init__(self, key):
        super().__init__(
            f"An assertion is already registered for {key}",
            code="duplicate_assertion",
        )
        self.key = key


class AssertionEvaluationError(RBACError):
    """An assertion predicate raised while being evaluated."""

    def __init__(self, key, original: BaseException):
        super().__init__(
            f"Assertion for {key} failed: {type(original).__name__}: {original}",
            code="assertion_failed",
        )
        self.key = key
        self.original = original


class AccessDeniedError(RBACError):
    """
    Raised by ``AuthorizationService.require`` and the web layer.

    ``is_granted`` returns False for the same decision instead.
    """

    def __init__(self, permission: str, reason: Optional[str] = None):
        super().__init__(
            reason or f"Permission denied: {permission}", code="access_denied"
        )
        self.permission = permission
