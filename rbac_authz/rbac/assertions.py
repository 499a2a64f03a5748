"""
Assertions - context-sensitive conditions on top of role permissions.

An assertion is any callable ``(identity, context) -> bool``. It is
registered for a permission, optionally scoped to a single role, and is
consulted only after the role graph has already granted the permission: an
assertion can restrict a grant, never create one.

Resolution precedence: a role-qualified key ``(role, permission)`` wins over
the plain ``permission`` key. A role-qualified key also covers roles
inheriting from that role, unless they have a closer role-qualified key.
No registered assertion means the role grant is sufficient.

Example:
    >>> registry = AssertionRegistry()
    >>> registry.register("posts.delete", OwnershipAssertion("author"))
    >>> registry.register(("moderator", "posts.delete"), lambda identity, post: True)
"""

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from ..exceptions import (
    AssertionEvaluationError,
    ConfigurationError,
    DuplicateAssertionError,
)

logger = logging.getLogger(__name__)

Predicate = Callable[[Any, Any], bool]
KeyLike = Union[str, Tuple[str, str], "AssertionKey"]


@dataclass(frozen=True)
class AssertionKey:
    """
    Registry key: a permission name, optionally scoped to a role.

    Attributes:
        permission: Permission name the assertion applies to.
        role: Role name for a role-qualified key, or None.
    """

    permission: str
    role: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.permission:
            raise ValueError("Assertion key permission cannot be empty")
        if self.role is not None and not self.role:
            raise ValueError("Assertion key role cannot be empty")

    @classmethod
    def of(cls, key: KeyLike) -> "AssertionKey":
        """
        Normalise a key.

        Accepts an AssertionKey, a permission string, or a
        ``(role, permission)`` tuple.
        """
        if isinstance(key, AssertionKey):
            return key
        if isinstance(key, str):
            return cls(permission=key)
        if isinstance(key, tuple) and len(key) == 2:
            role, permission = key
            return cls(permission=permission, role=role)
        raise TypeError(
            f"Invalid assertion key {key!r}: expected 'permission' or (role, permission)"
        )

    def __str__(self) -> str:
        if self.role:
            return f"{self.role}/{self.permission}"
        return self.permission


class AssertionRegistry:
    """
    Registry of assertions keyed by permission (optionally role-scoped).

    Registration happens at configuration time and is validated eagerly:
    registering the same key twice raises DuplicateAssertionError. Lookups
    never lock; registrations replace the internal mapping by reference.
    """

    def __init__(self, assertions: Optional[Mapping] = None):
        self._assertions: Dict[AssertionKey, Predicate] = {}
        self._lock = threading.Lock()
        self._frozen = False
        self._has_role_scoped = False
        if assertions:
            self.register_many(assertions)

    def register(self, key: KeyLike, predicate: Predicate) -> AssertionKey:
        """
        Register an assertion.

        Args:
            key: Permission name, ``(role, permission)`` tuple or AssertionKey.
            predicate: Callable ``(identity, context) -> bool``.

        Returns:
            The normalised key.

        Raises:
            DuplicateAssertionError: If the key is already registered.
            TypeError: If the predicate is not callable.
            RuntimeError: If the registry is frozen.
        """
        key = AssertionKey.of(key)
        if not callable(predicate):
            raise TypeError(f"Assertion for {key} must be callable")

        with self._lock:
            if self._frozen:
                raise RuntimeError("Assertion registry is frozen")
            if key in self._assertions:
                raise DuplicateAssertionError(key)
            assertions = dict(self._assertions)
            assertions[key] = predicate
            self._assertions = assertions
            if key.role is not None:
                self._has_role_scoped = True

        logger.info(
            f"Registered assertion for '{key}'",
            extra={"permission": key.permission, "role": key.role},
        )
        return key

    def register_many(self, assertions: Mapping) -> None:
        """Register several assertions from a ``key -> predicate`` mapping."""
        for key, predicate in assertions.items():
            self.register(key, predicate)

    def freeze(self) -> None:
        """Reject any further registration."""
        with self._lock:
            self._frozen = True

    def resolve_entry(
        self,
        permission: str,
        role: Optional[str] = None,
        inherited_roles: Iterable[str] = (),
    ) -> Optional[Tuple[AssertionKey, Predicate]]:
        """
        Find the assertion that applies, together with its key.

        Args:
            permission: Permission name (exact match).
            role: Role the grant comes from.
            inherited_roles: Ancestors of ``role`` in inheritance walk order
                (depth-first, parents in declared order). Their role-qualified
                keys apply to ``role`` as well, after its own.

        Returns:
            ``(key, predicate)`` or None if no assertion applies.
        """
        assertions = self._assertions
        if role is not None:
            for name in [role, *inherited_roles]:
                scoped = AssertionKey(permission=permission, role=name)
                if scoped in assertions:
                    return scoped, assertions[scoped]

        key = AssertionKey(permission=permission)
        if key in assertions:
            return key, assertions[key]
        return None

    def resolve(self, permission: str, role: Optional[str] = None) -> Optional[Predicate]:
        """
        Find the assertion for a permission.

        Args:
            permission: Permission name (exact match).
            role: Role the grant comes from; a ``(role, permission)`` key
                takes precedence over the plain permission key.

        Returns:
            The predicate, or None if no extra condition applies.
        """
        entry = self.resolve_entry(permission, role)
        return entry[1] if entry else None

    def evaluate(
        self,
        predicate: Predicate,
        identity: Any,
        context: Any = None,
        key: Optional[KeyLike] = None,
    ) -> bool:
        """
        Invoke an assertion.

        Raises:
            AssertionEvaluationError: If the predicate raises. Callers must
                treat this as a denial.
        """
        try:
            return bool(predicate(identity, context))
        except Exception as e:
            label = key if key is not None else _describe(predicate)
            raise AssertionEvaluationError(label, e) from e

    @property
    def has_role_scoped(self) -> bool:
        """Whether any role-qualified assertion is registered."""
        return self._has_role_scoped

    def keys(self) -> List[AssertionKey]:
        return list(self._assertions.keys())

    def __contains__(self, key: object) -> bool:
        try:
            return AssertionKey.of(key) in self._assertions
        except (TypeError, ValueError):
            return False

    def __len__(self) -> int:
        return len(self._assertions)

    @classmethod
    def from_config(
        cls,
        assertion_map: Optional[Mapping[str, str]],
        factories: Mapping[str, Callable[[], Predicate]],
        role_assertion_map: Optional[Mapping[str, Mapping[str, str]]] = None,
    ) -> "AssertionRegistry":
        """
        Build a registry from configuration.

        Args:
            assertion_map: ``permission -> assertion name``.
            factories: ``assertion name -> zero-argument factory`` returning
                the predicate.
            role_assertion_map: ``role -> {permission -> assertion name}``
                for role-qualified assertions.

        Raises:
            ConfigurationError: If an assertion name has no factory.
            DuplicateAssertionError: If a key is configured twice.
        """
        registry = cls()

        def build(name: str, where: str) -> Predicate:
            factory = factories.get(name)
            if factory is None:
                raise ConfigurationError(
                    f"No assertion factory named '{name}' (used by {where}); "
                    f"available: {sorted(factories)}"
                )
            return factory()

        for permission, name in (assertion_map or {}).items():
            registry.register(permission, build(name, permission))

        for role, permissions in (role_assertion_map or {}).items():
            if not isinstance(permissions, Mapping):
                raise ConfigurationError(
                    f"Role assertions for '{role}' must map permission to assertion name"
                )
            for permission, name in permissions.items():
                registry.register((role, permission), build(name, f"{role}/{permission}"))

        return registry


def _describe(predicate: Predicate) -> str:
    return getattr(predicate, "__name__", None) or type(predicate).__name__


class OwnershipAssertion:
    """
    Grant only when the identity owns the context object.

    The owner is read from the context through, in order: a mapping key,
    a ``get_<owner_attr>()`` accessor, or an ``<owner_attr>`` attribute, and
    compared with the identity's ``is_same`` primitive (plain equality for
    identities without one). A missing context or owner denies.

    Example:
        >>> must_be_author = OwnershipAssertion("author")
        >>> must_be_author(alice, post)  # post.author == "alice"
        True
    """

    def __init__(self, owner_attr: str = "owner"):
        if not owner_attr:
            raise ValueError("owner_attr cannot be empty")
        self.owner_attr = owner_attr

    def get_owner(self, context: Any) -> Any:
        if context is None:
            return None
        if isinstance(context, Mapping):
            return context.get(self.owner_attr)
        accessor = getattr(context, f"get_{self.owner_attr}", None)
        if callable(accessor):
            return accessor()
        return getattr(context, self.owner_attr, None)

    def __call__(self, identity: Any, context: Any = None) -> bool:
        owner = self.get_owner(context)
        if owner is None or identity is None:
            return False
        is_same = getattr(identity, "is_same", None)
        if callable(is_same):
            return bool(is_same(owner))
        return identity == owner

    def __repr__(self) -> str:
        return f"OwnershipAssertion(owner_attr={self.owner_attr!r})"


class AssertionSet:
    """
    Combine several assertions with AND or OR.

    AND stops at the first false assertion, OR at the first true one.
    Errors from member assertions propagate to the registry, which reports
    them as an AssertionEvaluationError for the whole set.
    """

    AND = "AND"
    OR = "OR"

    def __init__(self, assertions: Iterable[Predicate], condition: str = AND):
        self.assertions = list(assertions)
        self.condition = condition.upper()

        if not self.assertions:
            raise ValueError("AssertionSet needs at least one assertion")
        if self.condition not in (self.AND, self.OR):
            raise ValueError("AssertionSet condition must be 'AND' or 'OR'")
        for assertion in self.assertions:
            if not callable(assertion):
                raise TypeError("AssertionSet members must be callable")

    def __call__(self, identity: Any, context: Any = None) -> bool:
        if self.condition == self.AND:
            return all(bool(a(identity, context)) for a in self.assertions)
        return any(bool(a(identity, context)) for a in self.assertions)

    def __repr__(self) -> str:
        return f"AssertionSet({self.assertions!r}, condition={self.condition!r})"
