"""
Permission Evaluator for tenantguard.

Answers "can this role do this action on this resource?" independently of
any request context.  Business code asks the evaluator, never the matrix
directly, so the matrix can later be swapped for another source (e.g. a
database-backed table) behind this one seam.

Role tags are accepted as raw strings.  Anything that is not exactly a
``Role`` value -- ``"admin"``, ``"SUPERADMIN"``, ``""`` -- evaluates to
``Grant.DENY``.
"""

from __future__ import annotations

from tenantguard.matrix import (
    DEFAULT_MATRIX,
    ActionLike,
    PermissionMatrix,
    ResourceLike,
    RoleLike,
)
from tenantguard.models import Action, Grant, Resource


class PermissionEvaluator:
    """Pure decision function over a ``PermissionMatrix``.

    Args:
        matrix: The table to consult.  Defaults to the compiled-in policy;
            tests pass their own.
    """

    def __init__(self, matrix: PermissionMatrix = DEFAULT_MATRIX) -> None:
        self._matrix = matrix

    @property
    def matrix(self) -> PermissionMatrix:
        return self._matrix

    def evaluate(self, role: RoleLike, resource: ResourceLike, action: ActionLike) -> Grant:
        """Return the grant for ``(role, resource, action)``.  Never raises."""
        return self._matrix.lookup(role, resource, action)


_default_evaluator = PermissionEvaluator()


def evaluate(role: RoleLike, resource: ResourceLike, action: ActionLike) -> Grant:
    """Evaluate against the compiled-in policy."""
    return _default_evaluator.evaluate(role, resource, action)


def check_permission(role: RoleLike, resource: ResourceLike, action: ActionLike) -> bool:
    """Check whether a role may perform an action on at least some instances.

    ``ALLOW_OWN_ONLY`` counts as permitted here; the ownership qualifier is
    enforced by ``PermissionGate``, which knows the acting principal.

    Args:
        role: The actor's raw role tag.
        resource: The resource tag (e.g. 'timeentries').
        action: The action tag (e.g. 'update').

    Returns:
        True if the grant is ``ALLOW`` or ``ALLOW_OWN_ONLY``, False otherwise.
    """
    return evaluate(role, resource, action).permits


def get_permissions_for_role(role: RoleLike) -> dict[str, dict[str, Grant]]:
    """Return all grants for a role as ``resource -> action -> Grant``.

    Args:
        role: The role to query.

    Returns:
        Nested dictionary keyed by resource and action string values.
        Every cell is present; unknown roles get ``DENY`` throughout.
    """
    return {
        resource.value: {
            action.value: evaluate(role, resource, action) for action in Action
        }
        for resource in Resource
    }
