"""
Route Access Resolver -- page-level gating over the same permission matrix.

Each ``RouteRule`` maps a path prefix to the (resource, action) a page load
requires, plus an optional role allow-list that is stricter than the grant.

**Matching:**  with the default ``first`` strategy the first rule, in
declaration order, whose prefix is a prefix of the requested path wins.
A rule for ``/admin`` therefore also matches ``/admin/users`` unless a
``/admin/users`` rule is declared earlier.  Ordering is a caller contract;
``validate_rule_order()`` reports shadowed rules but nothing reorders them.
The ``longest`` strategy picks the matching rule with the longest prefix.

**Unprotected by default:**  a path no rule matches is allowed.  This is the
opposite of the permission gate, which fails closed; pages that should be
public simply have no rule.

Route checks never carry an owner id.  An own-only grant lets the page
load, and ownership is enforced later by the page's own data access.
"""

from __future__ import annotations

import logging
from typing import Callable, NoReturn, Optional, Sequence
from urllib.parse import urlencode

from tenantguard.config import DEFAULT_SETTINGS, AuthzSettings
from tenantguard.gate import AuthorizationError
from tenantguard.identity import IdentityAccessor
from tenantguard.models import Action, Grant, Resource, Role, RouteDecision, RouteRule
from tenantguard.rbac import PermissionEvaluator


logger = logging.getLogger(__name__)

NOT_AUTHENTICATED = "not authenticated"


class RouteForbidden(AuthorizationError):
    """Raised by the default redirect handler when a navigation is denied.

    ``location`` is the redirect target; it carries only a generic flag,
    never the internal reason.
    """

    def __init__(self, path: str, reason: Optional[str], location: str) -> None:
        super().__init__(f"Access to {path} denied.")
        self.path = path
        self.reason = reason
        self.location = location


def _raise_redirect(path: str, reason: Optional[str], location: str) -> NoReturn:
    raise RouteForbidden(path, reason, location)


RedirectHandler = Callable[[str, Optional[str], str], object]


# ---------------------------------------------------------------------------
# Compiled-in route table
# ---------------------------------------------------------------------------

_ADMIN_ONLY = frozenset({Role.ADMIN.value})
_MANAGEMENT = frozenset({Role.ADMIN.value, Role.MANAGER.value})

DEFAULT_ROUTE_RULES: tuple[RouteRule, ...] = (
    # Admin sections
    RouteRule(path_prefix="/admin/users", resource=Resource.USERS, action=Action.READ, allowed_roles=_ADMIN_ONLY),
    RouteRule(path_prefix="/admin/clients", resource=Resource.CLIENTS, action=Action.READ, allowed_roles=_MANAGEMENT),
    RouteRule(path_prefix="/admin/projects", resource=Resource.PROJECTS, action=Action.READ, allowed_roles=_MANAGEMENT),
    RouteRule(path_prefix="/admin/hours", resource=Resource.TIMEENTRIES, action=Action.READ, allowed_roles=_MANAGEMENT),
    RouteRule(path_prefix="/admin/logs", resource=Resource.SETTINGS, action=Action.READ, allowed_roles=_ADMIN_ONLY),
    RouteRule(path_prefix="/admin", resource=Resource.SETTINGS, action=Action.READ, allowed_roles=_ADMIN_ONLY),
    # Management sections
    RouteRule(path_prefix="/invoices", resource=Resource.INVOICES, action=Action.READ, allowed_roles=_MANAGEMENT),
    RouteRule(path_prefix="/quotes", resource=Resource.INVOICES, action=Action.READ, allowed_roles=_MANAGEMENT),
    RouteRule(path_prefix="/crm", resource=Resource.LEADS, action=Action.READ, allowed_roles=_MANAGEMENT),
    RouteRule(path_prefix="/analytics", resource=Resource.ANALYTICS, action=Action.READ, allowed_roles=_MANAGEMENT),
    # Finance
    RouteRule(path_prefix="/finance", resource=Resource.INVOICES, action=Action.READ, allowed_roles=_ADMIN_ONLY),
    RouteRule(path_prefix="/expenses/approve", resource=Resource.EXPENSES, action=Action.APPROVE, allowed_roles=_ADMIN_ONLY),
    # Any authenticated role holding the grant
    RouteRule(path_prefix="/dashboard", resource=Resource.PROJECTS, action=Action.READ),
    RouteRule(path_prefix="/tasks", resource=Resource.TASKS, action=Action.READ),
    RouteRule(path_prefix="/hours", resource=Resource.TIMEENTRIES, action=Action.READ),
    RouteRule(path_prefix="/documents", resource=Resource.DOCUMENTS, action=Action.READ),
    RouteRule(path_prefix="/calendar", resource=Resource.TASKS, action=Action.READ),
    RouteRule(path_prefix="/notifications", resource=Resource.SETTINGS, action=Action.READ),
    RouteRule(path_prefix="/settings", resource=Resource.SETTINGS, action=Action.READ),
    RouteRule(path_prefix="/chat", resource=Resource.TASKS, action=Action.READ),
)


def validate_rule_order(rules: Sequence[RouteRule]) -> list[tuple[str, str]]:
    """Find rules that can never match under first-match ordering.

    Returns:
        ``(earlier_prefix, later_prefix)`` pairs where the earlier rule's
        prefix is a prefix of the later one, so the later rule is shadowed.
    """
    shadowed = []
    for i, earlier in enumerate(rules):
        for later in rules[i + 1:]:
            if later.path_prefix.startswith(earlier.path_prefix):
                shadowed.append((earlier.path_prefix, later.path_prefix))
    return shadowed


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class RouteAccessResolver:
    """Decides whether the current principal may load a page.

    Args:
        identity: Zero-argument callable returning the current principal.
        evaluator: Decision function.  Defaults to the compiled-in policy.
        rules: Route table in declaration order.
        settings: Matching strategy, public paths and redirect targets.
        redirect: Called as ``redirect(path, reason, location)`` when
            ``require_access`` denies.  The default raises ``RouteForbidden``.
    """

    def __init__(
        self,
        identity: IdentityAccessor,
        evaluator: Optional[PermissionEvaluator] = None,
        rules: Sequence[RouteRule] = DEFAULT_ROUTE_RULES,
        settings: AuthzSettings = DEFAULT_SETTINGS,
        redirect: RedirectHandler = _raise_redirect,
    ) -> None:
        self._identity = identity
        self._evaluator = evaluator or PermissionEvaluator()
        self._rules = tuple(rules)
        self._settings = settings
        self._redirect = redirect

    @property
    def rules(self) -> tuple[RouteRule, ...]:
        return self._rules

    def is_public(self, path: str) -> bool:
        """True if ``path`` falls under one of the configured public prefixes."""
        return any(path.startswith(prefix) for prefix in self._settings.public_paths)

    def match(self, path: str) -> Optional[RouteRule]:
        """Return the rule governing ``path``, or None if no prefix matches."""
        candidates = (rule for rule in self._rules if path.startswith(rule.path_prefix))
        if self._settings.route_matching == "longest":
            return max(candidates, key=lambda rule: len(rule.path_prefix), default=None)
        return next(candidates, None)

    def resolve(self, path: str) -> RouteDecision:
        """Decide access to ``path`` for the current principal.

        Public paths are allowed before any identity lookup.  Otherwise an
        absent principal is denied, an unmatched path is allowed, a role
        outside the rule's allow-list is denied, and the rule's grant
        decides the rest.
        """
        if self.is_public(path):
            return RouteDecision(allowed=True)

        principal = self._identity()
        if principal is None:
            return RouteDecision(allowed=False, reason=NOT_AUTHENTICATED)

        rule = self.match(path)
        if rule is None:
            return RouteDecision(allowed=True)

        if rule.allowed_roles is not None and principal.role not in rule.allowed_roles:
            required = " or ".join(sorted(rule.allowed_roles))
            return RouteDecision(
                allowed=False,
                reason=f"access restricted: requires role {required}",
                rule=rule,
            )

        grant = self._evaluator.evaluate(principal.role, rule.resource, rule.action)
        if grant is Grant.DENY:
            return RouteDecision(
                allowed=False,
                reason=f"no permission to access {rule.resource.value}",
                rule=rule,
            )

        return RouteDecision(allowed=True, rule=rule)

    def redirect_location(self, path: str, decision: RouteDecision) -> str:
        """Build the redirect target for a denied decision."""
        if decision.reason == NOT_AUTHENTICATED:
            return f"{self._settings.login_path}?{urlencode({'callbackUrl': path})}"
        return f"{self._settings.fallback_path}?{urlencode({'error': self._settings.denied_flag})}"

    def require_access(self, path: str) -> RouteDecision:
        """Gate a page load; redirect via the handler when denied.

        Returns:
            The decision.  When it denies, the redirect handler has already
            been invoked; the default handler raises ``RouteForbidden``, so
            a denying decision is only returned by handlers that do not raise.
        """
        decision = self.resolve(path)
        if not decision.allowed:
            logger.warning("Route access denied to %s: %s", path, decision.reason)
            self._redirect(path, decision.reason, self.redirect_location(path, decision))
        return decision


def resolve_route_access(identity: IdentityAccessor, path: str) -> RouteDecision:
    """Resolve ``path`` against the compiled-in route table."""
    return RouteAccessResolver(identity).resolve(path)


def require_route_access(identity: IdentityAccessor, path: str) -> RouteDecision:
    """Gate ``path`` against the compiled-in route table, raising ``RouteForbidden``."""
    return RouteAccessResolver(identity).require_access(path)
