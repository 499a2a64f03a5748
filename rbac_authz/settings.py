"""
Configuration settings for rbac-authz.

This module defines the configuration schema using Pydantic settings,
supporting environment variables, .env files, and direct configuration.
"""

from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Configuration settings for the authorization core.

    Environment Variable Mapping:
        All settings can be configured via environment variables by prefixing
        with 'RBAC_AUTHZ_' (e.g., RBAC_AUTHZ_ROLES_FILE, RBAC_AUTHZ_GUEST_ROLE).
        Mapping-valued settings are read from JSON strings.

    Example:
        Roles from a file, lazy lookups for large roles:

        >>> settings = Settings(
        ...     roles_file="config/roles.json",
        ...     resolution_strategy="lazy",
        ... )

        Inline roles with an ownership assertion:

        >>> settings = Settings(
        ...     roles={
        ...         "guest": {},
        ...         "author": {"permissions": ["posts.delete"], "parents": ["guest"]},
        ...     },
        ...     assertion_map={"posts.delete": "must_be_author"},
        ... )
    """

    # Role configuration
    roles_file: Optional[str] = Field(
        default=None, description="Path to a JSON file describing roles"
    )
    roles: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Inline role definitions: name -> {permissions, parents, description}",
    )
    guest_role: Optional[str] = Field(
        default="guest",
        description="Role used for requests without an identity (ignored if undefined)",
    )
    validate_graph: bool = Field(
        default=True,
        description="Reject cyclic role graphs and undefined parents when loading roles",
    )
    freeze_roles: bool = Field(
        default=False,
        description="Freeze the role graph after loading, enabling the shared decision cache",
    )

    # Resolution
    resolution_strategy: str = Field(
        default="eager",
        description="'eager' loads role permission sets, 'lazy' uses point lookups",
    )
    shared_cache_size: int = Field(
        default=10000,
        description="Max cached (role, permission) results shared across decisions (frozen roles only)",
    )

    # Assertions: permission -> assertion name, role -> {permission -> assertion name}
    assertion_map: Dict[str, str] = Field(default_factory=dict)
    role_assertion_map: Dict[str, Dict[str, str]] = Field(default_factory=dict)

    # Guards
    protection_policy: str = Field(
        default="deny", description="Guard behaviour for routes with no rule"
    )
    guard_rules: Dict[str, List[str]] = Field(
        default_factory=dict, description="Route pattern -> roles allowed"
    )

    # Development and debugging
    debug: bool = False
    """Enable debug logging of individual decisions."""

    model_config = ConfigDict(
        env_file=".env", env_prefix="RBAC_AUTHZ_", case_sensitive=False, extra="forbid"
    )

    def get_roles_config(self) -> Dict[str, Any]:
        """
        Get inline role definitions.

        ``roles_file`` is not read here; see
        :func:`rbac_authz.setup.create_role_provider`, where inline roles take
        precedence over the file.

        Returns:
            ``{"roles": ...}`` for inline roles, or an empty mapping.
        """
        if self.roles is not None:
            return {"roles": dict(self.roles)}
        return {}

    def validate_configuration(self) -> None:
        """
        Validate the current configuration for common issues.

        Raises:
            ValueError: If configuration is invalid.
        """
        valid_strategies = ["eager", "lazy"]
        if self.resolution_strategy not in valid_strategies:
            raise ValueError(
                f"Invalid resolution_strategy '{self.resolution_strategy}'. "
                f"Must be one of: {valid_strategies}"
            )

        valid_policies = ["deny", "allow"]
        if self.protection_policy not in valid_policies:
            raise ValueError(
                f"Invalid protection_policy '{self.protection_policy}'. "
                f"Must be one of: {valid_policies}"
            )

        if self.shared_cache_size < 0:
            raise ValueError("shared_cache_size cannot be negative")

        if self.roles is not None and self.roles_file:
            import warnings

            warnings.warn(
                "Both 'roles' and 'roles_file' are set; inline roles take precedence.",
                UserWarning,
                stacklevel=2,
            )

        if self.guest_role is not None and not self.guest_role:
            raise ValueError("guest_role cannot be an empty string; use None to disable")
