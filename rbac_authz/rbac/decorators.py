"""
RBAC Decorators - FastAPI integration for the authorization service.

The authorization core is framework-agnostic. This module maps it onto
FastAPI:

- the acting identity is read from ``request.state.identity`` (set by the
  application's authentication middleware)
- the service is read from ``request.app.state.authorization`` (see
  :func:`rbac_authz.setup.setup_authorization`)
- a denial becomes HTTP 403, a missing identity HTTP 401, and configuration
  errors (unknown role, cyclic role graph) HTTP 500
"""

import inspect
import logging
import time
from functools import wraps
from typing import Any, Callable, List, Optional, Union

from fastapi import Depends, HTTPException, Request

from ..exceptions import AccessDeniedError, RBACError
from .service import AuthorizationService

logger = logging.getLogger(__name__)


def get_current_identity(request: Request) -> Any:
    """
    Extract the authenticated identity from request state.

    Raises:
        HTTPException: 401 if no identity was attached to the request.
    """
    identity = getattr(request.state, "identity", None)
    if identity is None:
        logger.warning(
            "Identity not found in request state",
            extra={"endpoint": request.url.path, "method": request.method},
        )
        raise HTTPException(status_code=401, detail="Authentication required")
    return identity


def get_optional_identity(request: Request) -> Any:
    """Identity from request state, or None for an anonymous (guest) request."""
    return getattr(request.state, "identity", None)


def get_authorization_service(request: Request) -> AuthorizationService:
    """
    Get the authorization service attached to the application.

    Raises:
        HTTPException: 500 if the application was not set up.
    """
    service = getattr(request.app.state, "authorization", None)
    if service is None:
        logger.error(
            "Authorization service not configured - call setup_authorization(app, ...)",
            extra={"endpoint": request.url.path},
        )
        raise HTTPException(
            status_code=500, detail="Internal server error - authorization not configured"
        )
    return service


def _decide(
    service: AuthorizationService,
    identity: Any,
    permission: str,
    context: Any,
    endpoint: str,
) -> None:
    try:
        service.require(identity, permission, context)
    except AccessDeniedError as e:
        logger.warning(
            f"Permission denied: {permission}",
            extra={
                "endpoint": endpoint,
                "permission": permission,
                "identity_id": getattr(identity, "id", None),
                "reason": str(e),
            },
        )
        raise HTTPException(status_code=403, detail=f"Permission denied: {permission}")
    except RBACError as e:
        logger.error(
            f"Authorization configuration error for {permission}: {e}",
            extra={"endpoint": endpoint, "permission": permission, "code": e.code},
            exc_info=True,
        )
        raise HTTPException(
            status_code=500, detail="Internal server error during authorization"
        )


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def RBACPermission(
    permission: str,
    context_getter: Optional[Callable[[Request], Any]] = None,
    allow_guest: bool = False,
):
    """
    FastAPI dependency for permission checking.

    Args:
        permission: Permission name.
        context_getter: Optional (sync or async) callable building the
            assertion context from the request, e.g. loading the post being
            edited.
        allow_guest: Evaluate anonymous requests with the guest role instead
            of answering 401.

    Example:
        @app.delete("/posts/{post_id}")
        async def delete_post(
            post_id: str,
            _: None = RBACPermission("posts.delete", context_getter=load_post),
        ):
            ...
    """

    async def check_permission(request: Request) -> None:
        if allow_guest:
            identity = get_optional_identity(request)
        else:
            identity = get_current_identity(request)
        service = get_authorization_service(request)

        context = None
        if context_getter is not None:
            context = await _maybe_await(context_getter(request))

        _decide(service, identity, permission, context, request.url.path)

    return Depends(check_permission)


def require_permissions(
    permissions: Union[str, List[str]], context_param: Optional[str] = None
):
    """
    Decorator requiring permissions for an endpoint.

    The endpoint must take a ``Request`` parameter. When ``context_param``
    is given, the value of that endpoint argument is passed to assertions as
    the context.

    Example:
        @app.put("/posts/{post_id}")
        @require_permissions("posts.edit", context_param="post")
        async def edit_post(request: Request, post: Post = Depends(load_post)):
            ...
    """
    if isinstance(permissions, str):
        permissions = [permissions]
    if not permissions:
        raise ValueError("At least one permission is required")

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()

            request = kwargs.get("request")
            if not isinstance(request, Request):
                request = next((arg for arg in args if isinstance(arg, Request)), None)
            if request is None:
                logger.error(
                    f"Request object not found in {func.__name__} - ensure Request is a parameter",
                    extra={"function": func.__name__},
                )
                raise HTTPException(
                    status_code=500,
                    detail="Internal server error - Request object not found",
                )

            identity = get_current_identity(request)
            service = get_authorization_service(request)
            context = kwargs.get(context_param) if context_param else None

            for permission in permissions:
                _decide(service, identity, permission, context, request.url.path)

            logger.debug(
                f"Permission check passed for {func.__name__} "
                f"({time.time() - start_time:.3f}s)",
                extra={"endpoint": request.url.path, "permissions": permissions},
            )

            if inspect.iscoroutinefunction(func):
                return await func(*args, **kwargs)
            return func(*args, **kwargs)

        return wrapper

    return decorator


def GuardDependency(guard: Any):
    """
    FastAPI dependency applying a route guard to ``request.url.path``.

    Works with :class:`RouteGuard` and :class:`RoutePermissionsGuard`.
    Anonymous requests are passed to the guard as ``None`` (guest).

    Example:
        guard = RouteGuard({"/admin/*": ["admin"]}, provider)
        app = FastAPI(dependencies=[GuardDependency(guard)])
    """

    async def check_route(request: Request) -> None:
        identity = get_optional_identity(request)
        path = request.url.path
        try:
            allowed = guard.is_granted(path, identity)
        except RBACError as e:
            logger.error(
                f"Route guard configuration error for {path}: {e}",
                extra={"endpoint": path, "code": e.code},
                exc_info=True,
            )
            raise HTTPException(
                status_code=500, detail="Internal server error during authorization"
            )

        if not allowed:
            if identity is None:
                raise HTTPException(status_code=401, detail="Authentication required")
            raise HTTPException(status_code=403, detail="Access to this route is denied")

    return Depends(check_route)
