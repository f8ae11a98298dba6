"""
Permission Matrix -- the static (role x resource x action) -> grant table.

The matrix is compiled-in configuration.  Changing authorization policy is a
code change and a redeploy, never a data migration.

**Fail-closed lookups:**  ``lookup()`` never raises.  A role, resource or
action that is not a member of its enumeration (a typo, a foreign tag, a
mis-cased ``"admin"``) evaluates to ``Grant.DENY``, and so does any cell the
table does not declare.  A new enum member added without updating every role
row therefore fails closed.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from types import MappingProxyType
from typing import Optional, Union

from tenantguard.models import Action, Grant, Resource, Role


RoleLike = Union[Role, str]
ResourceLike = Union[Resource, str]
ActionLike = Union[Action, str]


class IncompleteMatrixError(ValueError):
    """Raised when a permission table does not declare every cell."""
    pass


def _coerce(enum_cls: type[enum.Enum], value: object) -> Optional[enum.Enum]:
    """Map a raw value onto ``enum_cls`` without normalizing it."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except (ValueError, TypeError):
        return None


# ---------------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------------

class PermissionMatrix:
    """Immutable, total permission table.

    Args:
        table: Nested mapping ``role -> resource -> action -> Grant``.
            Keys may be enum members or their string values; unknown keys
            are ignored rather than trusted.
    """

    def __init__(
        self,
        table: Mapping[RoleLike, Mapping[ResourceLike, Mapping[ActionLike, Grant]]],
    ) -> None:
        cells: dict[tuple[Role, Resource, Action], Grant] = {}
        for raw_role, resources in table.items():
            role = _coerce(Role, raw_role)
            if role is None:
                continue
            for raw_resource, actions in resources.items():
                resource = _coerce(Resource, raw_resource)
                if resource is None:
                    continue
                for raw_action, grant in actions.items():
                    action = _coerce(Action, raw_action)
                    if action is None:
                        continue
                    cells[(role, resource, action)] = Grant(grant)
        self._cells = MappingProxyType(cells)

    def lookup(self, role: RoleLike, resource: ResourceLike, action: ActionLike) -> Grant:
        """Return the grant for a cell, ``Grant.DENY`` for anything unknown."""
        key = (
            _coerce(Role, role),
            _coerce(Resource, resource),
            _coerce(Action, action),
        )
        if None in key:
            return Grant.DENY
        return self._cells.get(key, Grant.DENY)

    def missing_cells(self) -> list[tuple[Role, Resource, Action]]:
        """Return every (role, resource, action) cell the table does not declare."""
        return [
            (role, resource, action)
            for role in Role
            for resource in Resource
            for action in Action
            if (role, resource, action) not in self._cells
        ]

    def validate(self) -> None:
        """Raise ``IncompleteMatrixError`` unless every cell is declared."""
        missing = self.missing_cells()
        if missing:
            sample = ", ".join(
                f"{r.value}.{res.value}.{a.value}" for r, res, a in missing[:5]
            )
            raise IncompleteMatrixError(
                f"Permission matrix is missing {len(missing)} cell(s): {sample}"
            )

    def grants_for_role(self, role: RoleLike) -> dict[tuple[Resource, Action], Grant]:
        """Return the full row set for a role (all ``DENY`` for unknown roles)."""
        return {
            (resource, action): self.lookup(role, resource, action)
            for resource in Resource
            for action in Action
        }

    def granted_count(self, role: RoleLike) -> int:
        """Number of cells where the role holds ``ALLOW`` or ``ALLOW_OWN_ONLY``."""
        return sum(1 for grant in self.grants_for_role(role).values() if grant.permits)

    def __len__(self) -> int:
        return len(self._cells)


# ---------------------------------------------------------------------------
# Compiled-in policy
# ---------------------------------------------------------------------------

_A = Grant.ALLOW
_D = Grant.DENY
_O = Grant.ALLOW_OWN_ONLY


def _row(create: Grant, read: Grant, update: Grant, delete: Grant, approve: Grant) -> dict[Action, Grant]:
    return {
        Action.CREATE: create,
        Action.READ: read,
        Action.UPDATE: update,
        Action.DELETE: delete,
        Action.APPROVE: approve,
    }


_DEFAULT_TABLE: dict[Role, dict[Resource, dict[Action, Grant]]] = {
    Role.ADMIN: {resource: _row(_A, _A, _A, _A, _A) for resource in Resource},
    Role.MANAGER: {
        Resource.USERS: _row(_D, _A, _D, _D, _D),
        Resource.PROJECTS: _row(_A, _A, _A, _D, _A),
        Resource.CLIENTS: _row(_A, _A, _A, _D, _A),
        Resource.LEADS: _row(_A, _A, _A, _A, _A),
        Resource.TASKS: _row(_A, _A, _A, _A, _A),
        Resource.TIMEENTRIES: _row(_A, _A, _A, _O, _A),
        Resource.DOCUMENTS: _row(_A, _A, _A, _O, _A),
        Resource.EXPENSES: _row(_A, _A, _O, _O, _A),
        Resource.INVOICES: _row(_A, _A, _A, _D, _A),
        Resource.SETTINGS: _row(_D, _A, _O, _D, _D),
        Resource.ANALYTICS: _row(_D, _A, _D, _D, _D),
    },
    Role.WORKER: {
        Resource.USERS: _row(_D, _D, _D, _D, _D),
        Resource.PROJECTS: _row(_D, _A, _D, _D, _D),
        Resource.CLIENTS: _row(_D, _A, _D, _D, _D),
        Resource.LEADS: _row(_A, _A, _O, _D, _D),
        Resource.TASKS: _row(_A, _A, _O, _D, _D),
        Resource.TIMEENTRIES: _row(_A, _O, _O, _O, _D),
        Resource.DOCUMENTS: _row(_A, _A, _O, _O, _D),
        Resource.EXPENSES: _row(_A, _O, _O, _O, _D),
        Resource.INVOICES: _row(_D, _D, _D, _D, _D),
        Resource.SETTINGS: _row(_D, _O, _O, _D, _D),
        Resource.ANALYTICS: _row(_D, _D, _D, _D, _D),
    },
    Role.CLIENT: {
        Resource.USERS: _row(_D, _D, _D, _D, _D),
        Resource.PROJECTS: _row(_D, _O, _D, _D, _D),
        Resource.CLIENTS: _row(_D, _O, _D, _D, _D),
        Resource.LEADS: _row(_D, _D, _D, _D, _D),
        Resource.TASKS: _row(_D, _O, _D, _D, _D),
        Resource.TIMEENTRIES: _row(_D, _D, _D, _D, _D),
        Resource.DOCUMENTS: _row(_D, _O, _D, _D, _D),
        Resource.EXPENSES: _row(_D, _D, _D, _D, _D),
        Resource.INVOICES: _row(_D, _O, _D, _D, _D),
        Resource.SETTINGS: _row(_D, _O, _O, _D, _D),
        Resource.ANALYTICS: _row(_D, _D, _D, _D, _D),
    },
}

DEFAULT_MATRIX = PermissionMatrix(_DEFAULT_TABLE)
"""The compiled-in policy.  Validated at import time, so it is total."""

DEFAULT_MATRIX.validate()
