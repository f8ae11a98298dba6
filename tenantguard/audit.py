"""
Append-Only Audit Logging (Hash-Chained).

Every denied permission check, and every successful mutation a caller
chooses to report, is recorded as an immutable ``AuditRecord``.  The
``AuditLogger`` front-end is best-effort: a failing sink is reported on the
``tenantguard.audit`` logger and swallowed, so a broken audit store never
turns into an authorization or business outage.

``AuditLog`` is the in-process sink.  Records are linked via a SHA-256 hash
chain: if any record is modified after the fact, ``verify_chain()`` detects
the inconsistency.  Production deployments plug in a database-backed sink
exposing the same ``append(record)`` method.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field

from tenantguard.config import AuthzSettings
from tenantguard.models import Action, Principal


logger = logging.getLogger(__name__)

DENIED_PREFIX = "DENIED_"

MUTATION_OPERATIONS = frozenset({"CREATE", "READ", "UPDATE", "DELETE"})


def denied_action_tag(action: Action | str) -> str:
    """Return the audit tag for a denied action, e.g. ``DENIED_UPDATE``."""
    value = action.value if isinstance(action, Action) else str(action)
    return f"{DENIED_PREFIX}{value.upper()}"


# ---------------------------------------------------------------------------
# Audit record model
# ---------------------------------------------------------------------------

class AuditRecord(BaseModel):
    """A single audit record: who did (or tried) what, on which resource, when."""

    record_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique identifier for this record (UUID).",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="UTC timestamp of the event.",
    )
    principal_id: str = Field(..., description="Identifier of the acting principal.")
    action: str = Field(
        ...,
        description="Event tag, e.g. 'DENIED_READ' or 'UPDATE'.",
    )
    resource_type: str = Field(..., description="Resource name, e.g. 'invoices'.")
    resource_id: Optional[str] = Field(
        default=None,
        description="Identifier of the specific instance, when known.",
    )
    details: Optional[str] = Field(
        default=None,
        description="Human-readable reason or a truncated change summary.",
    )
    previous_hash: str = Field(
        default="",
        description="SHA-256 hash of the previous record; empty for the first record.",
    )

    def canonical_bytes(self) -> bytes:
        """Return a deterministic byte representation for hashing."""
        data = {
            "record_id": self.record_id,
            "timestamp": self.timestamp.isoformat(),
            "principal_id": self.principal_id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "details": self.details,
            "previous_hash": self.previous_hash,
        }
        return json.dumps(data, sort_keys=True, default=str).encode("utf-8")

    def compute_hash(self) -> str:
        return hashlib.sha256(self.canonical_bytes()).hexdigest()


class AuditSink(Protocol):
    """Persistence collaborator.  ``append`` may raise; the logger absorbs it."""

    def append(self, record: AuditRecord) -> Any: ...


class AuditWriteFailed(Exception):
    """A sink failed to persist a record.  Never propagated past ``AuditLogger``."""

    def __init__(self, record: AuditRecord, cause: BaseException) -> None:
        super().__init__(
            f"Failed to persist audit record {record.action} on {record.resource_type}: {cause}"
        )
        self.record = record
        self.cause = cause


# ---------------------------------------------------------------------------
# In-process sink
# ---------------------------------------------------------------------------

class AuditLog:
    """Append-only, tamper-evident audit store with SHA-256 hash chaining.

    * **Append-only writes** -- there are no ``update()`` or ``delete()``
      methods.
    * **Hash chain verification** -- ``verify_chain()`` walks the full log
      and reports the first broken link.
    * **Copy-on-read** -- ``query()`` returns deep copies, so callers cannot
      mutate stored records.
    * **Thread-safe** -- one log is shared by every gate in the process;
      reads and writes are serialized under a lock so concurrent appends
      cannot interleave and break the chain.
    """

    def __init__(self) -> None:
        self._records: list[AuditRecord] = []
        self._hashes: list[str] = []
        self._lock = threading.Lock()

    def append(self, record: AuditRecord) -> AuditRecord:
        """Append a record, linking it to the previous one.

        Returns:
            The record with ``previous_hash`` populated.
        """
        with self._lock:
            record.previous_hash = self._hashes[-1] if self._hashes else ""
            self._records.append(record)
            self._hashes.append(record.compute_hash())
        return record

    def verify_chain(self) -> tuple[bool, Optional[int]]:
        """Walk the log and validate every hash link.

        Returns:
            ``(valid, broken_at)`` where ``broken_at`` is the index of the
            first broken link, or None if the chain is intact.
        """
        with self._lock:
            for i, record in enumerate(self._records):
                if i == 0:
                    if record.previous_hash != "":
                        return (False, 0)
                elif record.previous_hash != self._records[i - 1].compute_hash():
                    return (False, i)

                if self._hashes[i] != record.compute_hash():
                    return (False, i)

        return (True, None)

    def query(
        self,
        principal_id: Optional[str] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
    ) -> list[AuditRecord]:
        """Return copies of the records matching every given filter."""
        with self._lock:
            records = list(self._records)

        results = []
        for record in records:
            if principal_id is not None and record.principal_id != principal_id:
                continue
            if action is not None and record.action != action:
                continue
            if resource_type is not None and record.resource_type != resource_type:
                continue
            if time_start is not None and record.timestamp < time_start:
                continue
            if time_end is not None and record.timestamp > time_end:
                continue
            results.append(record.model_copy(deep=True))
        return results

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


# ---------------------------------------------------------------------------
# Best-effort front-end
# ---------------------------------------------------------------------------

class AuditLogger:
    """Records audit events into a sink without ever raising to the caller.

    Args:
        sink: Persistence collaborator exposing ``append(record)``.
        details_max_length: Cap for serialized change summaries written by
            ``record_mutation()``.
    """

    def __init__(self, sink: AuditSink, details_max_length: int = 500) -> None:
        self._sink = sink
        self._details_max_length = details_max_length

    @classmethod
    def from_settings(cls, sink: AuditSink, settings: AuthzSettings) -> AuditLogger:
        """Build a logger whose detail cap comes from ``settings``."""
        return cls(sink, details_max_length=settings.audit_details_max_length)

    @property
    def details_max_length(self) -> int:
        return self._details_max_length

    def record(
        self,
        principal_id: str,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[str] = None,
    ) -> Optional[AuditRecord]:
        """Append one record.  Returns it, or ``None`` if the write failed."""
        try:
            record = AuditRecord(
                principal_id=principal_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                details=details,
            )
        except Exception as exc:
            logger.error("Discarding malformed audit event %s on %s: %s", action, resource_type, exc)
            return None

        try:
            self._sink.append(record)
        except Exception as exc:
            failure = AuditWriteFailed(record, exc)
            logger.error("[audit] %s", failure, exc_info=exc)
            return None
        return record

    def _serialize_changes(self, changes: Optional[dict[str, Any]]) -> Optional[str]:
        if changes is None:
            return None
        try:
            serialized = json.dumps(changes, default=str)
        except (TypeError, ValueError) as exc:
            logger.error("Could not serialize audit change set: %s", exc)
            try:
                serialized = repr(changes)
            except Exception:
                return None
        return serialized[: self._details_max_length]

    def record_mutation(
        self,
        principal: Optional[Principal],
        operation: str,
        entity_type: str,
        entity_id: str,
        changes: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditRecord]:
        """Record a successful business operation.

        Callers decide when a mutation is worth recording.  Like
        ``record()``, this never raises: nothing is written when there is
        no authenticated principal or the operation tag is unknown, and a
        change set that cannot be serialized as JSON is stored as its
        truncated ``repr``.

        Args:
            principal: The acting principal, or None.
            operation: One of ``CREATE``, ``READ``, ``UPDATE``, ``DELETE``.
            entity_type: Resource name of the affected entity.
            entity_id: Identifier of the affected entity.
            changes: Optional change set, stored as truncated JSON.

        Returns:
            The written record, or ``None`` if nothing was written.
        """
        if operation not in MUTATION_OPERATIONS:
            logger.error(
                "Discarding audit event with unknown operation '%s' on %s (expected one of %s)",
                operation, entity_type, sorted(MUTATION_OPERATIONS),
            )
            return None
        if principal is None:
            return None

        details = self._serialize_changes(changes)
        return self.record(principal.id, operation, entity_type, entity_id, details)
