"""
Tests for tenantguard.gate -- the permission gate.

Covers: unauthenticated callers, plain denials, the ownership qualifier,
audit-on-deny, audit isolation from sink failures, the non-raising
``is_allowed`` variant, and fresh evaluation on every call.
"""

from __future__ import annotations

import logging

import pytest

from tenantguard.audit import AuditLog, AuditLogger
from tenantguard.gate import (
    AuthorizationError,
    OwnershipRequired,
    PermissionDenied,
    PermissionGate,
    Unauthenticated,
)
from tenantguard.identity import ContextIdentity, StaticIdentity
from tenantguard.matrix import DEFAULT_MATRIX
from tenantguard.models import Action, Grant, Principal, Resource, Role


def _principal(role: str = "WORKER", user_id: str = "user-1") -> Principal:
    return Principal(id=user_id, role=role, company_id="acme")


def _gate(
    principal: Principal | None,
    sink=None,
) -> tuple[PermissionGate, AuditLog]:
    log = sink if sink is not None else AuditLog()
    gate = PermissionGate(StaticIdentity(principal), AuditLogger(log))
    return gate, log


class _BrokenSink:
    def __init__(self) -> None:
        self.calls = 0

    def append(self, record):
        self.calls += 1
        raise RuntimeError("database unavailable")


# ---------------------------------------------------------------------------
# 1. Unauthenticated
# ---------------------------------------------------------------------------

class TestUnauthenticated:
    def test_no_principal_raises_unauthenticated(self):
        gate, log = _gate(None)
        with pytest.raises(Unauthenticated):
            gate.assert_permission("projects", "read")
        assert len(log) == 0

    def test_unauthenticated_is_not_a_permission_denial(self):
        gate, _ = _gate(None)
        with pytest.raises(AuthorizationError) as exc_info:
            gate.assert_permission("projects", "read")
        assert not isinstance(exc_info.value, PermissionDenied)

    def test_is_allowed_false_without_principal(self):
        gate, _ = _gate(None)
        assert gate.is_allowed("projects", "read") is False


# ---------------------------------------------------------------------------
# 2. Denials
# ---------------------------------------------------------------------------

class TestDenials:
    def test_worker_cannot_read_invoices(self):
        gate, _ = _gate(_principal("WORKER"))
        with pytest.raises(PermissionDenied) as exc_info:
            gate.assert_permission("invoices", "read")
        assert exc_info.value.resource == "invoices"
        assert exc_info.value.action == "read"

    def test_denial_message_names_only_resource_and_action(self):
        gate, _ = _gate(_principal("CLIENT", user_id="secret-user"))
        with pytest.raises(PermissionDenied) as exc_info:
            gate.assert_permission(Resource.USERS, Action.DELETE, owner_id="secret-owner")
        message = str(exc_info.value)
        assert "users" in message and "delete" in message
        assert "secret" not in message

    def test_authorization_errors_are_permission_errors(self):
        gate, _ = _gate(_principal("CLIENT"))
        with pytest.raises(PermissionError):
            gate.assert_permission("leads", "create")

    def test_lowercase_role_is_denied(self):
        gate, _ = _gate(_principal("admin"))
        with pytest.raises(PermissionDenied):
            gate.assert_permission("users", "read")

    def test_unknown_resource_is_denied(self):
        gate, _ = _gate(_principal("ADMIN"))
        with pytest.raises(PermissionDenied):
            gate.assert_permission("payroll", "read")

    def test_admin_allowed(self):
        gate, log = _gate(_principal("ADMIN"))
        gate.assert_permission("invoices", "delete")
        assert len(log) == 0


# ---------------------------------------------------------------------------
# 3. Ownership qualifier
# ---------------------------------------------------------------------------

_OWN_ONLY_CELLS = [
    (role, resource, action)
    for role in Role
    for resource in Resource
    for action in Action
    if DEFAULT_MATRIX.lookup(role, resource, action) is Grant.ALLOW_OWN_ONLY
]


class TestOwnership:
    def test_worker_updates_own_timeentry(self):
        gate, log = _gate(_principal("WORKER", "w-1"))
        gate.assert_permission("timeentries", "update", owner_id="w-1")
        assert len(log) == 0

    def test_worker_cannot_update_other_timeentry(self):
        gate, _ = _gate(_principal("WORKER", "w-1"))
        with pytest.raises(OwnershipRequired) as exc_info:
            gate.assert_permission("timeentries", "update", owner_id="w-2")
        assert exc_info.value.owner_id == "w-2"

    def test_client_reads_own_project(self):
        gate, _ = _gate(_principal("CLIENT", "c-1"))
        gate.assert_permission("projects", "read", owner_id="c-1")

    def test_manager_deletes_own_expense_only(self):
        gate, _ = _gate(_principal("MANAGER", "m-1"))
        gate.assert_permission("expenses", "delete", owner_id="m-1")
        with pytest.raises(OwnershipRequired):
            gate.assert_permission("expenses", "delete", owner_id="m-2")

    def test_missing_owner_id_rejected(self):
        gate, _ = _gate(_principal("WORKER", "w-1"))
        with pytest.raises(OwnershipRequired):
            gate.assert_permission("expenses", "read")

    def test_owner_id_ignored_when_fully_allowed(self):
        gate, _ = _gate(_principal("MANAGER", "m-1"))
        gate.assert_permission("tasks", "update", owner_id="someone-else")

    @pytest.mark.parametrize("role,resource,action", _OWN_ONLY_CELLS)
    def test_every_own_only_cell(self, role, resource, action):
        gate, _ = _gate(_principal(role.value, "me"))
        gate.assert_permission(resource, action, owner_id="me")
        with pytest.raises(OwnershipRequired):
            gate.assert_permission(resource, action, owner_id="not-me")
        with pytest.raises(OwnershipRequired):
            gate.assert_permission(resource, action)


# ---------------------------------------------------------------------------
# 4. Audit on deny
# ---------------------------------------------------------------------------

class TestAuditOnDeny:
    def test_permission_denied_writes_one_record(self):
        gate, log = _gate(_principal("WORKER", "w-1"))
        with pytest.raises(PermissionDenied):
            gate.assert_permission("invoices", "read")
        records = log.query()
        assert len(records) == 1
        assert records[0].principal_id == "w-1"
        assert records[0].action == "DENIED_READ"
        assert records[0].resource_type == "invoices"
        assert records[0].resource_id is None
        assert "invoices.read" in records[0].details

    def test_ownership_denial_writes_one_record(self):
        gate, log = _gate(_principal("WORKER", "w-1"))
        with pytest.raises(OwnershipRequired):
            gate.assert_permission("timeentries", "delete", owner_id="w-9")
        records = log.query()
        assert len(records) == 1
        assert records[0].action == "DENIED_DELETE"
        assert records[0].resource_type == "timeentries"
        assert records[0].resource_id == "w-9"
        assert "another user" in records[0].details

    def test_each_denial_is_recorded(self):
        gate, log = _gate(_principal("CLIENT", "c-1"))
        for _ in range(3):
            with pytest.raises(PermissionDenied):
                gate.assert_permission("expenses", "create")
        assert len(log) == 3

    def test_denial_logged_as_warning(self, caplog):
        gate, _ = _gate(_principal("CLIENT", "c-1"))
        with caplog.at_level(logging.WARNING, logger="tenantguard.gate"):
            with pytest.raises(PermissionDenied):
                gate.assert_permission("analytics", "read")
        assert "analytics.read" in caplog.text

    def test_gate_without_audit_logger_still_raises(self):
        gate = PermissionGate(StaticIdentity(_principal("CLIENT")))
        with pytest.raises(PermissionDenied):
            gate.assert_permission("analytics", "read")


# ---------------------------------------------------------------------------
# 5. Audit isolation
# ---------------------------------------------------------------------------

class TestAuditIsolation:
    def test_broken_sink_does_not_mask_permission_denied(self):
        sink = _BrokenSink()
        gate, _ = _gate(_principal("WORKER"), sink=sink)
        with pytest.raises(PermissionDenied):
            gate.assert_permission("invoices", "read")
        assert sink.calls == 1

    def test_broken_sink_does_not_mask_ownership_required(self):
        sink = _BrokenSink()
        gate, _ = _gate(_principal("WORKER", "w-1"), sink=sink)
        with pytest.raises(OwnershipRequired):
            gate.assert_permission("timeentries", "update", owner_id="w-2")

    def test_broken_sink_reported_on_fallback_channel(self, caplog):
        gate, _ = _gate(_principal("WORKER"), sink=_BrokenSink())
        with caplog.at_level(logging.ERROR, logger="tenantguard.audit"):
            with pytest.raises(PermissionDenied):
                gate.assert_permission("invoices", "read")
        assert "database unavailable" in caplog.text


# ---------------------------------------------------------------------------
# 6. is_allowed
# ---------------------------------------------------------------------------

class TestIsAllowed:
    def test_mirrors_assert_permission(self):
        gate, _ = _gate(_principal("WORKER", "w-1"))
        assert gate.is_allowed("tasks", "create") is True
        assert gate.is_allowed("invoices", "read") is False
        assert gate.is_allowed("timeentries", "update", owner_id="w-1") is True
        assert gate.is_allowed("timeentries", "update", owner_id="w-2") is False
        assert gate.is_allowed("timeentries", "update") is False

    def test_does_not_audit(self):
        gate, log = _gate(_principal("WORKER", "w-1"))
        assert gate.is_allowed("invoices", "read") is False
        assert gate.is_allowed("timeentries", "update", owner_id="w-2") is False
        assert len(log) == 0

    def test_identity_failure_returns_false(self, caplog):
        def broken_identity():
            raise RuntimeError("auth backend down")

        gate = PermissionGate(broken_identity, AuditLogger(AuditLog()))
        with caplog.at_level(logging.ERROR, logger="tenantguard.gate"):
            assert gate.is_allowed("tasks", "read") is False
        assert "auth backend down" in caplog.text

    def test_evaluator_failure_returns_false(self):
        class _BrokenEvaluator:
            def evaluate(self, role, resource, action):
                raise LookupError("permission store unreachable")

        gate = PermissionGate(StaticIdentity(_principal("ADMIN")), evaluator=_BrokenEvaluator())
        assert gate.is_allowed("tasks", "read") is False

    def test_identity_failure_still_raises_from_assert_permission(self):
        def broken_identity():
            raise RuntimeError("auth backend down")

        gate = PermissionGate(broken_identity)
        with pytest.raises(RuntimeError):
            gate.assert_permission("tasks", "read")


# ---------------------------------------------------------------------------
# 7. Fresh evaluation
# ---------------------------------------------------------------------------

class TestNoCaching:
    def test_role_change_between_calls_is_observed(self):
        identity = ContextIdentity()
        gate = PermissionGate(identity, AuditLogger(AuditLog()))

        with identity.session(_principal("MANAGER")):
            gate.assert_permission("invoices", "update")

        with identity.session(_principal("WORKER")):
            with pytest.raises(PermissionDenied):
                gate.assert_permission("invoices", "update")

        with pytest.raises(Unauthenticated):
            gate.assert_permission("invoices", "update")
