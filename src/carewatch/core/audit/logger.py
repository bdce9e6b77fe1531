"""Audit logger: permission decisions and alert state transitions.

The alert engine itself never writes logs; it returns
:class:`PermissionDecision` and :class:`AlertTransition` records. This
logger is the compliance collaborator that persists them: every permission
check with requester, category, action, outcome and reason, and every
acknowledge / escalate transition with whether the store actually applied
it. Tool invocations are recorded with their outcome and duration. No
alert message text or vital values are written here.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from carewatch.core.storage.database import AlertDatabase
from carewatch.domains.alerting.domain_logic.models import (
    AlertTransition,
    PermissionDecision,
)

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id",
    "timestamp",
    "action",
    "requester_id",
    "requester_role",
    "subject_id",
    "category",
    "operation",
    "allowed",
    "reason",
    "alert_id",
    "status",
    "metadata_json",
)


def _where(
    action: str | None = None,
    subject_id: str | None = None,
    since: str | None = None,
    extra: tuple[str, ...] = (),
) -> tuple[str, list[Any]]:
    """Build a WHERE clause and its parameters from the optional filters."""
    clauses = list(extra)
    params: list[Any] = []
    for column, op, value in (
        ("action", "=", action),
        ("subject_id", "=", subject_id),
        ("timestamp", ">=", since),
    ):
        if value:
            clauses.append(f"{column} {op} ?")
            params.append(value)
    return (" WHERE " + " AND ".join(clauses) if clauses else ""), params


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'permission_check' | 'alert_transition' | 'tool_invocation'
    requester_id: str | None = None
    requester_role: str | None = None
    subject_id: str | None = None
    category: str | None = None
    operation: str | None = None         # read/write/delete, or acknowledge/escalate
    allowed: bool | None = None
    reason: str | None = None
    alert_id: str | None = None
    status: str = "success"              # 'success' | 'noop' | 'failure'
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    All writes are committed immediately so no entry is lost on crash.

    Usage::

        audit = AuditLogger(alert_db)
        decision = permissions.evaluate_permission("cg-1", "secondary", "subj-1", "vitals")
        audit.log_permission_decision(decision)
    """

    def __init__(self, database: AlertDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID ("" if the write failed)."""
        event_id = str(uuid.uuid4())
        row = (
            event_id,
            datetime.now(timezone.utc).isoformat(),
            event.action,
            event.requester_id,
            event.requester_role,
            event.subject_id,
            event.category,
            event.operation,
            None if event.allowed is None else int(event.allowed),
            event.reason,
            event.alert_id,
            event.status,
            json.dumps(event.metadata, separators=(",", ":"), default=str)
            if event.metadata
            else None,
        )
        try:
            with self._db.transaction() as conn:
                conn.execute(
                    f"INSERT INTO audit_log ({', '.join(_COLUMNS)}) "
                    f"VALUES ({', '.join('?' * len(_COLUMNS))})",
                    row,
                )
        except Exception:
            logger.exception("Failed to write audit event, event lost")
            return ""
        return event_id

    def log_permission_decision(self, decision: PermissionDecision) -> str:
        return self.log_event(AuditEvent(
            action="permission_check",
            requester_id=decision.requester_id,
            requester_role=decision.requester_role,
            subject_id=decision.subject_id,
            category=decision.category,
            operation=decision.action,
            allowed=decision.allowed,
            reason=decision.reason,
            metadata={"required_permission": decision.required_permission},
        ))

    def log_alert_transition(self, transition: AlertTransition, *, applied: bool) -> str:
        """Log a transition; ``applied=False`` marks a duplicate the store ignored."""
        return self.log_event(AuditEvent(
            action="alert_transition",
            requester_id=transition.actor_id,
            subject_id=transition.subject_id,
            operation=transition.transition,
            alert_id=transition.alert_id,
            status="success" if applied else "noop",
            metadata={"decided_at": transition.decided_at.isoformat()},
        ))

    def log_tool_call(
        self,
        tool_name: str,
        *,
        subject_id: str | None = None,
        status: str = "success",
        metadata: dict[str, Any] | None = None,
        duration_ms: float | None = None,
    ) -> str:
        details = {**(metadata or {}), "tool_name": tool_name}
        if duration_ms is not None:
            details["duration_ms"] = round(duration_ms, 2)
        return self.log_event(AuditEvent(
            action="tool_invocation",
            subject_id=subject_id,
            status=status,
            metadata=details,
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        subject_id: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Newest-first events matching every filter given."""
        where, params = _where(action, subject_id, since)
        rows = self._db.connection.execute(
            f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?",
            [*params, limit],
        ).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, since: str | None = None) -> int:
        where, params = _where(since=since)
        return self._count(where, params)

    def count_denials(self, *, since: str | None = None) -> int:
        """Denied permission checks."""
        where, params = _where(
            "permission_check", since=since, extra=("allowed = 0",)
        )
        return self._count(where, params)

    def _count(self, where: str, params: list[Any]) -> int:
        return self._db.connection.execute(
            f"SELECT COUNT(*) FROM audit_log{where}", params
        ).fetchone()[0]
