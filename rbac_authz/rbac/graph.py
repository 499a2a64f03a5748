"""
Role graph traversal.

Roles form a directed acyclic graph through their ``parents`` edges. Roles
are addressed by name and looked up through a callable (usually a role
provider's ``get_role``), so the walks here work against any snapshot
without holding references between roles.

All walks are depth-first, visit each role at most once (diamond-shaped
graphs are fine) and raise :class:`CyclicRoleGraphError` instead of looping
when the parent relation contains a cycle.
"""

import logging
from typing import Callable, Iterable, Iterator, List, Mapping, Optional, Set, Tuple, Union

from ..exceptions import CyclicRoleGraphError, UnknownRoleError
from .models import Role

logger = logging.getLogger(__name__)

RoleLookup = Callable[[str], Optional[Role]]


def walk_ancestors(
    role_names: Union[str, Iterable[str]], get_role: RoleLookup
) -> Iterator[Role]:
    """
    Yield every role reachable from ``role_names``, the start roles included.

    A role is yielded before its parents and parents are visited in their
    declared order. Stopping the iteration early (e.g. once a permission has
    been found) stops the walk.

    Args:
        role_names: A role name or an iterable of role names to start from.
        get_role: Lookup returning the Role for a name, or None.

    Yields:
        Role objects, each exactly once.

    Raises:
        UnknownRoleError: If a start role or a referenced parent is missing.
        CyclicRoleGraphError: If a cycle is reachable from the start roles.
    """
    if isinstance(role_names, str):
        role_names = [role_names]

    done: Set[str] = set()
    path: List[str] = []
    on_path: Set[str] = set()
    # explicit stack of (role, remaining parents) so deep chains don't recurse
    stack: List[Tuple[Role, Iterator[str]]] = []

    def enter(name: str, child: Optional[str]) -> Role:
        role = get_role(name)
        if role is None:
            raise UnknownRoleError(name, referenced_by=child)
        path.append(name)
        on_path.add(name)
        stack.append((role, iter(role.parents)))
        return role

    for start in role_names:
        if start in done:
            continue
        yield enter(start, None)

        while stack:
            current, parents = stack[-1]
            for parent in parents:
                if parent in on_path:
                    raise CyclicRoleGraphError(path[path.index(parent):] + [parent])
                if parent not in done:
                    yield enter(parent, current.name)
                    break
            else:
                stack.pop()
                path.pop()
                on_path.discard(current.name)
                done.add(current.name)


def role_has_permission_transitively(
    role_name: str,
    permission: str,
    get_role: RoleLookup,
    has_permission: Optional[Callable[[Role, str], bool]] = None,
) -> bool:
    """
    Check whether a role holds a permission directly or through any ancestor.

    Any ancestor granting the permission is sufficient (logical OR across
    the whole inheritance graph).

    Args:
        role_name: Name of the role to start from.
        permission: Permission name to look for.
        get_role: Role lookup.
        has_permission: Point check for a single role. Defaults to the role's
            own permission set.

    Returns:
        True if the role or one of its ancestors holds the permission.
    """
    check = has_permission or (lambda role, perm: role.has_direct_permission(perm))
    for role in walk_ancestors(role_name, get_role):
        if check(role, permission):
            return True
    return False


def expand_roles(role_names: Iterable[str], get_role: RoleLookup) -> Set[str]:
    """
    Get the names of all roles reachable from ``role_names``.

    Used to answer "does an identity holding ``admin`` also count as an
    ``editor``" when ``admin`` inherits from ``editor``.
    """
    return {role.name for role in walk_ancestors(list(role_names), get_role)}


def find_cycle(roles: Mapping[str, Role]) -> Optional[List[str]]:
    """
    Find a cycle in a complete set of roles.

    Parents that are not part of ``roles`` are ignored here; they are
    reported by :func:`validate_graph` when parents are required.

    Returns:
        The cycle as a list of role names (first name repeated at the end),
        or None if the graph is acyclic.
    """

    def lookup(name: str) -> Optional[Role]:
        role = roles.get(name)
        if role is None:
            return None
        return Role(
            name=role.name,
            permissions=role.permissions,
            parents=tuple(p for p in role.parents if p in roles),
        )

    try:
        for _ in walk_ancestors(sorted(roles), lookup):
            pass
    except CyclicRoleGraphError as e:
        return e.cycle
    return None


def validate_graph(roles: Mapping[str, Role], require_parents: bool = False) -> None:
    """
    Validate a role snapshot before it is published.

    Args:
        roles: Mapping of role name to Role.
        require_parents: Also require every referenced parent to exist.

    Raises:
        CyclicRoleGraphError: If the parent relation contains a cycle.
        UnknownRoleError: If ``require_parents`` is set and a parent is missing.
    """
    if require_parents:
        for name in sorted(roles):
            for parent in roles[name].parents:
                if parent not in roles:
                    raise UnknownRoleError(parent, referenced_by=name)

    cycle = find_cycle(roles)
    if cycle:
        logger.error(
            "Role inheritance cycle detected",
            extra={"cycle": cycle},
        )
        raise CyclicRoleGraphError(cycle)
