"""MCP tools for care-circle permission checks."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from carewatch.domains.alerting.domain_logic.permissions import PERMISSION_MATRIX
from carewatch.domains.alerting.tools.payloads import decision_to_dict

if TYPE_CHECKING:
    from carewatch.core.audit.logger import AuditLogger
    from carewatch.domains.alerting.domain_logic.permissions import PermissionModel

logger = logging.getLogger(__name__)


def register_permission_tools(
    mcp: FastMCP,
    permissions: PermissionModel,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register permission tools on the MCP server."""

    @mcp.tool
    async def check_permission(
        ctx: Context,
        requester_id: str,
        subject_id: str,
        categories: list[str],
        requester_role: str = "secondary",
        action: str = "read",
    ) -> str:
        """Check a requester's access to one or more of a subject's data categories.

        Every category is evaluated, even after a denial.

        Args:
            requester_id: The user asking for access.
            subject_id: The monitored individual whose data is requested.
            categories: Any of vitals, medications, appointments, health_records,
                alerts, messages, devices.
            requester_role: 'primary' (the subject) or 'secondary' (caregiver).
            action: 'read', 'write' or 'delete'.
        """
        unknown = [c for c in categories if c not in PERMISSION_MATRIX]
        if unknown:
            return json.dumps({"status": "error", "error": f"Unknown categories: {unknown}"})
        if requester_role not in ("primary", "secondary"):
            return json.dumps({"status": "error", "error": f"Unknown role: {requester_role!r}"})
        if action not in ("read", "write", "delete"):
            return json.dumps({"status": "error", "error": f"Unknown action: {action!r}"})

        try:
            decisions = permissions.evaluate_multiple_permissions(
                requester_id, requester_role, subject_id, categories, action
            )
        except ValueError as exc:
            return json.dumps({"status": "error", "error": str(exc)})
        if audit_logger is not None:
            for decision in decisions.values():
                audit_logger.log_permission_decision(decision)

        return json.dumps({
            "status": "ok",
            "permissions": {c: d.allowed for c, d in decisions.items()},
            "decisions": [decision_to_dict(d) for d in decisions.values()],
        })

    @mcp.tool
    async def get_effective_permissions(
        ctx: Context,
        caregiver_id: str,
        subject_id: str,
    ) -> str:
        """Return a caregiver's permission set for a subject (null when not linked).

        Args:
            caregiver_id: The caregiver.
            subject_id: The monitored individual.
        """
        granted = permissions.get_effective_permissions(caregiver_id, subject_id)
        return json.dumps({
            "status": "ok",
            "member": granted is not None,
            "permissions": granted.as_dict() if granted is not None else None,
        })
