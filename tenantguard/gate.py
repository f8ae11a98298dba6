"""
Permission Gate -- the enforcement entry point for server actions.

Business code calls ``assert_permission()`` before a protected operation.
The gate resolves the current principal, consults the evaluator, applies
the ownership qualifier, and either returns or raises.  Every denial is
audited exactly once before the error is raised; audit failures never
change the outcome.

``is_allowed()`` runs the same decision for UI-adjacent code that only
needs a boolean.  It does not audit: callers pick one call style per
check.

Decisions are never cached.  Role and ownership can change between calls,
so each call is evaluated fresh.
"""

from __future__ import annotations

import logging
from typing import Optional

from tenantguard.audit import AuditLogger, denied_action_tag
from tenantguard.identity import IdentityAccessor
from tenantguard.matrix import ActionLike, ResourceLike
from tenantguard.models import Grant, Principal
from tenantguard.rbac import PermissionEvaluator


logger = logging.getLogger(__name__)


def _tag(value: object) -> str:
    return getattr(value, "value", value)


# ---------------------------------------------------------------------------
# Authorization errors
# ---------------------------------------------------------------------------

class AuthorizationError(PermissionError):
    """Base class for all authorization failures."""
    pass


class Unauthenticated(AuthorizationError):
    """Raised when no principal resolves for the current request."""

    def __init__(self) -> None:
        super().__init__("Not authenticated.")


class PermissionDenied(AuthorizationError):
    """Raised when the grant for (role, resource, action) is ``DENY``."""

    def __init__(self, resource: ResourceLike, action: ActionLike) -> None:
        self.resource = _tag(resource)
        self.action = _tag(action)
        super().__init__(f"No permission to {self.action} {self.resource}.")


class OwnershipRequired(AuthorizationError):
    """Raised when an own-only grant is used on an instance the actor does not own."""

    def __init__(
        self, resource: ResourceLike, action: ActionLike, owner_id: Optional[str] = None
    ) -> None:
        self.resource = _tag(resource)
        self.action = _tag(action)
        self.owner_id = owner_id
        super().__init__(f"You may only {self.action} your own {self.resource}.")


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------

class PermissionGate:
    """Enforces permissions for the principal returned by ``identity``.

    Args:
        identity: Zero-argument callable returning the current principal.
        audit_logger: Receives one record per denial.  Optional; without it
            denials are only logged.
        evaluator: Decision function.  Defaults to the compiled-in policy.
    """

    def __init__(
        self,
        identity: IdentityAccessor,
        audit_logger: Optional[AuditLogger] = None,
        evaluator: Optional[PermissionEvaluator] = None,
    ) -> None:
        self._identity = identity
        self._audit_logger = audit_logger
        self._evaluator = evaluator or PermissionEvaluator()

    # -- helpers --

    def _decide(
        self,
        principal: Optional[Principal],
        resource: ResourceLike,
        action: ActionLike,
        owner_id: Optional[str],
    ) -> Optional[AuthorizationError]:
        """Return the error a check would raise, or None when it passes."""
        if principal is None:
            return Unauthenticated()

        grant = self._evaluator.evaluate(principal.role, resource, action)
        if grant is Grant.ALLOW:
            return None
        if grant is Grant.ALLOW_OWN_ONLY:
            if owner_id is not None and owner_id == principal.id:
                return None
            return OwnershipRequired(resource, action, owner_id)
        return PermissionDenied(resource, action)

    def _audit_denial(self, principal: Principal, error: AuthorizationError) -> None:
        if isinstance(error, OwnershipRequired):
            reason = (
                "ownership required: no owner given"
                if error.owner_id is None
                else "ownership required: resource belongs to another user"
            )
            resource_id = error.owner_id
        else:
            reason = f"permission denied: {error.resource}.{error.action}"
            resource_id = None

        logger.warning(
            "Denied %s %s.%s for principal %s (%s)",
            principal.role, error.resource, error.action, principal.id, reason,
        )
        if self._audit_logger is not None:
            self._audit_logger.record(
                principal.id,
                denied_action_tag(error.action),
                error.resource,
                resource_id,
                reason,
            )

    # -- public API --

    def assert_permission(
        self,
        resource: ResourceLike,
        action: ActionLike,
        owner_id: Optional[str] = None,
    ) -> None:
        """Return normally if permitted, raise otherwise.

        Args:
            resource: Resource tag being acted on.
            action: Action tag being performed.
            owner_id: Owner of the specific instance.  Required when the
                grant is ``ALLOW_OWN_ONLY``; the gate only compares it with
                the principal's id and never looks ownership up itself.

        Raises:
            Unauthenticated: No principal resolved.
            PermissionDenied: The grant is ``DENY``.
            OwnershipRequired: The grant is own-only and ``owner_id`` is
                absent or belongs to someone else.
        """
        principal = self._identity()
        error = self._decide(principal, resource, action, owner_id)
        if error is None:
            logger.debug(
                "Granted %s %s.%s for principal %s",
                principal.role, _tag(resource), _tag(action), principal.id,
            )
            return
        if principal is not None:
            self._audit_denial(principal, error)
        raise error

    def is_allowed(
        self,
        resource: ResourceLike,
        action: ActionLike,
        owner_id: Optional[str] = None,
    ) -> bool:
        """Same decision as ``assert_permission`` without raising or auditing.

        Any failure, including an error from the identity accessor or the
        evaluator, yields ``False``.
        """
        try:
            return self._decide(self._identity(), resource, action, owner_id) is None
        except Exception:
            logger.exception(
                "Permission check for %s.%s failed; treating as not allowed",
                _tag(resource), _tag(action),
            )
            return False
