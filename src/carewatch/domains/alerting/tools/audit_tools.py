"""MCP tools for viewing the audit trail.

The trail records permission decisions and alert transitions: who asked
for what, the outcome and why. Alert message text and vital values are
never written to it.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from carewatch.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)


def register_audit_tools(
    mcp: FastMCP,
    audit_logger: AuditLogger,
) -> None:
    """Register audit trail tools on the MCP server."""

    @mcp.tool
    async def audit_summary(
        ctx: Context,
        days: int = 30,
        subject_id: str = "",
    ) -> str:
        """View recent permission decisions and alert transitions.

        Args:
            days: Number of days to look back (default: 30).
            subject_id: Restrict to one monitored individual.
        """
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()

        recent_events = audit_logger.get_events(
            subject_id=subject_id or None, since=since, limit=20
        )
        display_events = [
            {
                "timestamp": event.get("timestamp"),
                "action": event.get("action"),
                "requester_id": event.get("requester_id"),
                "subject_id": event.get("subject_id"),
                "category": event.get("category"),
                "operation": event.get("operation"),
                "allowed": None if event.get("allowed") is None else bool(event["allowed"]),
                "reason": event.get("reason"),
                "alert_id": event.get("alert_id"),
                "status": event.get("status"),
            }
            for event in recent_events
        ]

        return json.dumps({
            "period_days": days,
            "total_events": audit_logger.count_events(since=since),
            "permission_denials": audit_logger.count_denials(since=since),
            "recent_events": display_events,
        }, indent=2)
