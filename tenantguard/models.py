"""
Core data models for the tenantguard authorization core.

Roles, resources and actions are closed enumerations.  Role tags arriving
from the identity provider are kept as raw strings on ``Principal`` and are
only mapped onto ``Role`` inside the matrix, so an unknown or mis-cased tag
never acquires permissions by accident.
"""

from __future__ import annotations

import enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Role(str, enum.Enum):
    """Authorization classes.  A principal holds exactly one role.

    ``SUPERADMIN`` exists at the application layer and bypasses the matrix
    entirely; it is deliberately not a member here.
    """

    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    WORKER = "WORKER"
    CLIENT = "CLIENT"


class Resource(str, enum.Enum):
    """Protectable nouns.  Adding a member requires a full row per role in
    the matrix."""

    USERS = "users"
    PROJECTS = "projects"
    CLIENTS = "clients"
    LEADS = "leads"
    TASKS = "tasks"
    TIMEENTRIES = "timeentries"
    DOCUMENTS = "documents"
    EXPENSES = "expenses"
    INVOICES = "invoices"
    SETTINGS = "settings"
    ANALYTICS = "analytics"


class Action(str, enum.Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"


class Grant(str, enum.Enum):
    """Outcome stored at a (role, resource, action) cell.

    * ``ALLOW``          -- unconditionally permitted.
    * ``DENY``           -- unconditionally forbidden.
    * ``ALLOW_OWN_ONLY`` -- permitted only on instances owned by the actor.
    """

    ALLOW = "ALLOW"
    DENY = "DENY"
    ALLOW_OWN_ONLY = "ALLOW_OWN_ONLY"

    @property
    def permits(self) -> bool:
        """True when the grant permits the action for at least some instances."""
        return self is not Grant.DENY


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

class Principal(BaseModel):
    """The acting identity for one evaluation.

    Built per request from the identity provider and never persisted by
    this core.  ``role`` is the raw tag as issued; it is not normalized.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Opaque user identifier.")
    role: str = Field(..., description="Raw role tag, e.g. 'WORKER'.")
    company_id: Optional[str] = Field(
        default=None,
        description="Tenant identifier, passed through untouched.",
    )
    name: Optional[str] = Field(default=None)
    email: Optional[str] = Field(default=None)

    @field_validator("role", mode="before")
    @classmethod
    def role_tag(cls, v):
        return v.value if isinstance(v, Role) else v


class RouteRule(BaseModel):
    """Maps a path prefix to the permission a page load requires.

    ``allowed_roles`` is an optional allow-list that is stricter than the
    matrix grant, used to hide whole sections from roles that hold a
    read grant but should not see the page.
    """

    model_config = ConfigDict(frozen=True)

    path_prefix: str
    resource: Resource
    action: Action
    allowed_roles: Optional[frozenset[str]] = None

    @field_validator("path_prefix")
    @classmethod
    def prefix_is_absolute(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"path_prefix must start with '/', got '{v}'")
        return v

    @field_validator("allowed_roles", mode="before")
    @classmethod
    def roles_to_frozenset(cls, v):
        if v is None:
            return None
        return frozenset(r.value if isinstance(r, Role) else r for r in v)


class RouteDecision(BaseModel):
    """Result of resolving a path against the route table."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: Optional[str] = None
    rule: Optional[RouteRule] = None
