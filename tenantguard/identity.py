"""
Identity accessors -- how the core learns who is acting.

The authentication provider is an external collaborator.  The core only
needs a zero-argument callable returning the current ``Principal`` or
``None``; every gate and resolver receives one explicitly instead of
reaching into ambient session state.
"""

from __future__ import annotations

import contextlib
import contextvars
from collections.abc import Iterator
from typing import Callable, Optional

from tenantguard.models import Principal, Role


IdentityAccessor = Callable[[], Optional[Principal]]


# Principal bound to the current request
_current_principal: contextvars.ContextVar[Optional[Principal]] = contextvars.ContextVar(
    "tenantguard_principal", default=None
)


class StaticIdentity:
    """Accessor that always returns the same principal (or ``None``)."""

    def __init__(self, principal: Optional[Principal]) -> None:
        self._principal = principal

    def __call__(self) -> Optional[Principal]:
        return self._principal


class ContextIdentity:
    """Request-scoped accessor backed by a module-level ``ContextVar``.

    A request handler binds the authenticated principal for the duration of
    the request; concurrent requests (threads or asyncio tasks) each see
    their own binding.  All instances read the same variable, so any
    instance sees a principal bound through another.
    """

    def __call__(self) -> Optional[Principal]:
        return _current_principal.get()

    def bind(self, principal: Optional[Principal]) -> contextvars.Token:
        return _current_principal.set(principal)

    def reset(self, token: contextvars.Token) -> None:
        _current_principal.reset(token)

    @contextlib.contextmanager
    def session(self, principal: Optional[Principal]) -> Iterator[Optional[Principal]]:
        """Bind ``principal`` for the duration of a ``with`` block."""
        token = self.bind(principal)
        try:
            yield principal
        finally:
            self.reset(token)


def get_current_user(identity: IdentityAccessor) -> Optional[Principal]:
    """Resolve the current principal, or ``None`` when not authenticated."""
    return identity()


def has_role(identity: IdentityAccessor, *roles: Role | str) -> bool:
    """Return True if the current principal holds one of ``roles``.

    Comparison is exact on the raw tag; ``"admin"`` does not match ``ADMIN``.
    """
    principal = identity()
    if principal is None:
        return False
    wanted = {r.value if isinstance(r, Role) else r for r in roles}
    return principal.role in wanted
