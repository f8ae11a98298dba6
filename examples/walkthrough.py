"""
Walkthrough: Authorizing Requests in a Multi-Tenant Back Office
===============================================================

This script exercises the tenantguard authorization core with synthetic
users from a single company.

Steps demonstrated:
  1. Load deployment settings from YAML
  2. Bind request-scoped principals and gate server actions
  3. Toggle UI affordances with ``is_allowed``
  4. Gate page navigation with the route resolver
  5. Record a successful mutation and inspect the audit log

Usage:
    python -m examples.walkthrough
    # or: python examples/walkthrough.py
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tenantguard.audit import AuditLog, AuditLogger
from tenantguard.config import DEFAULT_SETTINGS, load_settings_from_yaml
from tenantguard.gate import AuthorizationError, PermissionGate
from tenantguard.identity import ContextIdentity
from tenantguard.models import Principal, Role
from tenantguard.routes import RouteAccessResolver, RouteForbidden


def _banner(text: str) -> None:
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print(f"{'=' * 60}\n")


def _attempt(gate: PermissionGate, resource: str, action: str, owner_id: str | None = None) -> None:
    label = f"{action} {resource}" + (f" (owner={owner_id})" if owner_id else "")
    try:
        gate.assert_permission(resource, action, owner_id)
        print(f"  ALLOWED  {label}")
    except AuthorizationError as exc:
        print(f"  DENIED   {label}: {type(exc).__name__}: {exc}")


def main() -> None:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    # ------------------------------------------------------------------
    # Step 1: Settings
    # ------------------------------------------------------------------
    _banner("Step 1: Load Settings")

    sample_yaml = Path(__file__).parent / "authz_settings.yaml"
    settings = load_settings_from_yaml(sample_yaml) if sample_yaml.exists() else DEFAULT_SETTINGS
    print(f"Fallback redirect: {settings.fallback_path}?error={settings.denied_flag}")
    print(f"Route matching:    {settings.route_matching}")

    audit_log = AuditLog()
    audit_logger = AuditLogger.from_settings(audit_log, settings)
    identity = ContextIdentity()
    gate = PermissionGate(identity, audit_logger)
    resolver = RouteAccessResolver(identity, settings=settings)

    worker = Principal(id="u-worker", role=Role.WORKER, company_id="acme", name="Synthetic Worker")
    manager = Principal(id="u-manager", role=Role.MANAGER, company_id="acme", name="Synthetic Manager")
    client = Principal(id="u-client", role=Role.CLIENT, company_id="acme", name="Synthetic Client")

    # ------------------------------------------------------------------
    # Step 2: Server actions
    # ------------------------------------------------------------------
    _banner("Step 2: Server Actions")

    with identity.session(worker):
        print(f"As {worker.name} ({worker.role}):")
        _attempt(gate, "invoices", "read")
        _attempt(gate, "timeentries", "update", owner_id=worker.id)
        _attempt(gate, "timeentries", "update", owner_id=manager.id)

    with identity.session(manager):
        print(f"\nAs {manager.name} ({manager.role}):")
        _attempt(gate, "expenses", "delete", owner_id=manager.id)
        _attempt(gate, "expenses", "delete", owner_id=worker.id)
        _attempt(gate, "invoices", "approve")

    with identity.session(client):
        print(f"\nAs {client.name} ({client.role}):")
        _attempt(gate, "projects", "read", owner_id=client.id)
        _attempt(gate, "leads", "read")

    # ------------------------------------------------------------------
    # Step 3: UI affordances
    # ------------------------------------------------------------------
    _banner("Step 3: UI Affordances")

    with identity.session(worker):
        for resource, action in [("tasks", "create"), ("users", "read"), ("analytics", "read")]:
            shown = "show" if gate.is_allowed(resource, action) else "hide"
            print(f"  {resource}.{action:<8} -> {shown} button")

    # ------------------------------------------------------------------
    # Step 4: Page navigation
    # ------------------------------------------------------------------
    _banner("Step 4: Page Navigation")

    for principal, path in [
        (client, "/admin/users"),
        (manager, "/admin/clients/17"),
        (worker, "/crm/pipeline"),
        (worker, "/hours/daily"),
        (worker, "/profile"),
        (None, "/dashboard"),
    ]:
        who = principal.role if principal else "anonymous"
        with identity.session(principal):
            decision = resolver.resolve(path)
            print(f"  {who:<9} {path:<20} allowed={decision.allowed} reason={decision.reason}")
            try:
                resolver.require_access(path)
            except RouteForbidden as exc:
                print(f"  {'':<9} {'':<20} redirect -> {exc.location}")

    # ------------------------------------------------------------------
    # Step 5: Audit trail
    # ------------------------------------------------------------------
    _banner("Step 5: Audit Trail")

    audit_logger.record_mutation(
        manager, "UPDATE", "projects", "p-100", {"status": "ACTIVE", "budget": 12000}
    )

    for record in audit_log.query():
        print(
            f"  {record.timestamp:%H:%M:%S} {record.principal_id:<10} "
            f"{record.action:<14} {record.resource_type:<12} {record.details}"
        )

    valid, broken_at = audit_log.verify_chain()
    print(f"\nChain verification: valid={valid}, broken_at={broken_at}")


if __name__ == "__main__":
    main()
