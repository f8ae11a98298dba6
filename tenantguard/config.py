"""
Deployment settings for the tenantguard authorization core.

Only operational knobs live here: where denied navigations are sent, which
paths bypass the route table, how route prefixes are matched, and how much
change detail audit records keep.  The permission matrix and the route
table are compiled in and are deliberately *not* loadable from a file.
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator


ROUTE_MATCHING_STRATEGIES = ("first", "longest")


class AuthzSettings(BaseModel):
    """Operational settings for route gating and audit detail."""

    fallback_path: str = Field(
        default="/dashboard",
        description="Where a forbidden page navigation is redirected.",
    )
    denied_flag: str = Field(
        default="access_denied",
        min_length=1,
        description=(
            "Value of the generic ``error`` query parameter added to the "
            "fallback redirect.  The internal denial reason is never put in "
            "the URL."
        ),
    )
    login_path: str = Field(
        default="/login",
        description="Where an unauthenticated navigation is redirected.",
    )
    public_paths: list[str] = Field(
        default_factory=lambda: ["/login", "/register", "/forgot-password", "/api/auth"],
        description="Path prefixes that bypass route gating entirely.",
    )
    route_matching: str = Field(
        default="first",
        description=(
            "'first' -- first rule in declaration order whose prefix matches; "
            "'longest' -- the matching rule with the longest prefix."
        ),
    )
    audit_details_max_length: int = Field(
        default=500,
        ge=50,
        description="Maximum length of serialized change details in audit records.",
    )

    @field_validator("fallback_path", "login_path")
    @classmethod
    def path_is_absolute(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"redirect paths must start with '/', got '{v}'")
        return v

    @field_validator("public_paths")
    @classmethod
    def public_paths_are_absolute(cls, v: list[str]) -> list[str]:
        for path in v:
            if not path.startswith("/"):
                raise ValueError(f"public path must start with '/', got '{path}'")
        return v

    @field_validator("route_matching")
    @classmethod
    def validate_route_matching(cls, v: str) -> str:
        if v not in ROUTE_MATCHING_STRATEGIES:
            raise ValueError(
                f"route_matching must be one of {ROUTE_MATCHING_STRATEGIES}, got '{v}'"
            )
        return v


DEFAULT_SETTINGS = AuthzSettings()


def load_settings_from_yaml(path: str | Path) -> AuthzSettings:
    """Load settings from a YAML file with a top-level ``authz`` mapping.

    Example YAML structure::

        authz:
          fallback_path: "/home"
          route_matching: "longest"

    Args:
        path: Path to the YAML file.

    Returns:
        A validated ``AuthzSettings`` instance.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the YAML structure is invalid.
        pydantic.ValidationError: If a setting fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(path, "r") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict) or "authz" not in raw:
        raise ValueError("YAML file must contain a top-level 'authz' mapping.")

    data = raw["authz"] or {}
    if not isinstance(data, dict):
        raise ValueError("'authz' must be a mapping of setting names to values.")

    return AuthzSettings(**data)
