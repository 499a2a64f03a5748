"""
Wiring for rbac-authz.

Builds the role provider, assertion registry, resolver and authorization
service from :class:`Settings`, and attaches a service to a FastAPI
application. Everything is passed explicitly; there is no global service
instance.
"""

import logging
from typing import Callable, Mapping, Optional

from fastapi import FastAPI

from .exceptions import ConfigurationError
from .models import IdentityProvider
from .rbac.assertions import AssertionRegistry, OwnershipAssertion, Predicate
from .rbac.guards import ProtectionPolicy, RouteGuard
from .rbac.providers import InMemoryRoleProvider, RoleProvider
from .rbac.resolver import PermissionResolver, ResolutionStrategy
from .rbac.service import AuthorizationService
from .settings import Settings

logger = logging.getLogger(__name__)

# Assertion factories available to configuration without registration
BUILTIN_ASSERTIONS: Mapping[str, Callable[[], Predicate]] = {
    "must_be_owner": lambda: OwnershipAssertion("owner"),
    "must_be_author": lambda: OwnershipAssertion("author"),
}


def create_role_provider(settings: Settings) -> InMemoryRoleProvider:
    """
    Load roles according to the settings.

    Raises:
        ConfigurationError: If the roles file cannot be read or is malformed.
        CyclicRoleGraphError: If validation is enabled and roles form a cycle.
        UnknownRoleError: If validation is enabled and a parent is undefined.
    """
    roles_config = settings.get_roles_config()
    if roles_config:
        provider = InMemoryRoleProvider.from_config(
            roles_config, validate=settings.validate_graph
        )
    elif settings.roles_file:
        provider = InMemoryRoleProvider.from_file(
            settings.roles_file, validate=settings.validate_graph
        )
    else:
        logger.warning("No roles configured; every decision will be denied")
        provider = InMemoryRoleProvider(validate=settings.validate_graph)

    if settings.freeze_roles:
        provider.freeze()
    return provider


def create_assertion_registry(
    settings: Settings,
    assertion_factories: Optional[Mapping[str, Callable[[], Predicate]]] = None,
) -> AssertionRegistry:
    """
    Build the assertion registry from ``assertion_map``/``role_assertion_map``.

    Application factories override built-in ones with the same name.
    """
    factories = dict(BUILTIN_ASSERTIONS)
    factories.update(assertion_factories or {})
    return AssertionRegistry.from_config(
        settings.assertion_map, factories, settings.role_assertion_map
    )


def create_authorization_service(
    settings: Optional[Settings] = None,
    assertion_factories: Optional[Mapping[str, Callable[[], Predicate]]] = None,
    identity_provider: Optional[IdentityProvider] = None,
    role_provider: Optional[RoleProvider] = None,
) -> AuthorizationService:
    """
    Create a fully wired authorization service.

    Args:
        settings: Configuration. If None, settings are read from the environment.
        assertion_factories: ``name -> factory`` for assertions referenced by
            the assertion maps.
        identity_provider: Fallback source of the current identity.
        role_provider: Use this provider instead of loading roles from settings.

    Returns:
        The configured AuthorizationService.

    Raises:
        ValueError: If the configuration is invalid.
        ConfigurationError: If roles or assertions are misconfigured.

    Example:
        >>> settings = Settings(
        ...     roles={"admin": {"parents": ["editor"]},
        ...            "editor": {"permissions": ["posts.delete"]}},
        ... )
        >>> service = create_authorization_service(settings)
        >>> service.is_granted(Identity("root", roles=["admin"]), "posts.delete")
        True
    """
    settings = settings or Settings()

    try:
        settings.validate_configuration()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise

    if settings.debug:
        logging.getLogger("rbac_authz").setLevel(logging.DEBUG)

    provider = role_provider or create_role_provider(settings)
    registry = create_assertion_registry(settings, assertion_factories)
    resolver = PermissionResolver(
        provider,
        strategy=ResolutionStrategy(settings.resolution_strategy),
        shared_cache_size=settings.shared_cache_size,
    )

    service = AuthorizationService(
        provider,
        registry,
        resolver=resolver,
        identity_provider=identity_provider,
        guest_role=settings.guest_role,
    )
    logger.info(
        f"Authorization configured with {len(provider.list_roles())} roles "
        f"and {len(registry)} assertions"
    )
    return service


def create_route_guard(
    settings: Settings, role_provider: RoleProvider
) -> Optional[RouteGuard]:
    """Build the route guard from ``guard_rules``, or None if there are none."""
    if not settings.guard_rules:
        return None
    return RouteGuard(
        settings.guard_rules,
        role_provider,
        policy=ProtectionPolicy(settings.protection_policy),
        guest_role=settings.guest_role,
    )


def setup_authorization(
    app: FastAPI,
    service: Optional[AuthorizationService] = None,
    settings: Optional[Settings] = None,
    **kwargs,
) -> FastAPI:
    """
    Attach an authorization service to a FastAPI application.

    The service is stored on ``app.state.authorization`` where the
    dependencies in :mod:`rbac_authz.rbac.decorators` find it. If no service
    is given, one is created from ``settings`` (extra keyword arguments are
    passed to :func:`create_authorization_service`).

    Returns:
        The configured FastAPI application instance.
    """
    if service is None:
        service = create_authorization_service(settings, **kwargs)
    elif kwargs:
        raise ConfigurationError(
            f"Unexpected arguments with an existing service: {sorted(kwargs)}"
        )

    app.state.authorization = service
    logger.info("Authorization service attached to application")
    return app
