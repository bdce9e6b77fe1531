"""MCP tools exposing the alert decision engine.

Each tool converts JSON payloads into engine models and runs the pure
engine functions. With a store configured, tools also persist new alerts
and apply transitions with conditional updates; with an audit logger they
record the decisions taken and each invocation of the pipeline tools.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from carewatch.domains.alerting.domain_logic.anomaly_classifier import (
    ReadingValidationError,
)
from carewatch.domains.alerting.domain_logic.models import Alert, VitalsReading
from carewatch.domains.alerting.domain_logic.prioritizer import (
    acknowledge_alert as acknowledge,
    calculate_alert_priority,
    consolidate_alerts as consolidate,
    create_consolidated_message,
    prioritize_alerts as prioritize,
)
from carewatch.domains.alerting.tools.payloads import (
    PayloadError,
    alert_from_payload,
    alert_to_dict,
    baseline_from_payload,
    decision_to_dict,
    finding_to_dict,
    instruction_to_dict,
    parse_timestamp,
)

if TYPE_CHECKING:
    from carewatch.core.audit.logger import AuditLogger
    from carewatch.core.storage.repository import CareRepository
    from carewatch.domains.alerting.domain_logic.dispatch_planner import DispatchPlanner

logger = logging.getLogger(__name__)


def _error(message: str, **extra: Any) -> str:
    return json.dumps({"status": "error", "error": message, **extra})


def register_alert_tools(
    mcp: FastMCP,
    planner: DispatchPlanner,
    repository: CareRepository | None = None,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register the alert engine tools on the MCP server."""

    def _audit_call(
        tool_name: str,
        started: float,
        *,
        subject_id: str = "",
        status: str = "success",
        **metadata: Any,
    ) -> None:
        if audit_logger is not None:
            audit_logger.log_tool_call(
                tool_name,
                subject_id=subject_id or None,
                status=status,
                metadata=metadata,
                duration_ms=(time.monotonic() - started) * 1000,
            )

    def _load_alerts(alerts: list[dict[str, Any]] | None, subject_id: str) -> list[Alert]:
        if alerts is not None:
            return [alert_from_payload(a) for a in alerts]
        if repository is None:
            raise PayloadError("No alerts supplied and no alert store configured")
        return repository.list_alerts(subject_id=subject_id or None, open_only=True)

    @mcp.tool
    async def evaluate_vitals(
        ctx: Context,
        subject_id: str,
        heart_rate: float | None = None,
        systolic_bp: float | None = None,
        diastolic_bp: float | None = None,
        temperature: float | None = None,
        oxygen_saturation: float | None = None,
        weight: float | None = None,
        source: str = "manual",
        timestamp: str = "",
        baseline: dict[str, Any] | None = None,
    ) -> str:
        """Classify a vitals reading and raise alerts for medium+ findings.

        Args:
            subject_id: Monitored individual.
            heart_rate: Beats per minute.
            systolic_bp: Systolic blood pressure (mmHg).
            diastolic_bp: Diastolic blood pressure (mmHg).
            temperature: Body temperature (°F).
            oxygen_saturation: SpO2 percentage.
            weight: Body weight (lb); only classified against a baseline.
            source: 'manual', 'device' or 'wearable'.
            timestamp: ISO 8601 reading time. Defaults to now.
            baseline: Optional personal ranges, e.g. {"heart_rate": {"min": 50, "max": 90}}.
        """
        started = time.monotonic()
        if source not in ("manual", "device", "wearable"):
            _audit_call("evaluate_vitals", started, subject_id=subject_id, status="failure")
            return _error(f"Unknown reading source: {source!r}")
        try:
            reading = VitalsReading(
                subject_id=subject_id,
                timestamp=parse_timestamp(timestamp),
                heart_rate=heart_rate,
                systolic_bp=systolic_bp,
                diastolic_bp=diastolic_bp,
                temperature=temperature,
                oxygen_saturation=oxygen_saturation,
                weight=weight,
                source=source,
            )
            evaluation = planner.evaluate_reading(
                reading, baseline_from_payload(subject_id, baseline)
            )
        except ReadingValidationError as exc:
            _audit_call("evaluate_vitals", started, subject_id=subject_id, status="failure")
            return _error("invalid_reading", details=exc.errors)
        except ValueError as exc:
            _audit_call("evaluate_vitals", started, subject_id=subject_id, status="failure")
            return _error(str(exc))

        if repository is not None:
            for alert in evaluation.alerts:
                repository.save_alert(alert)
        logger.info(
            "Evaluated vitals for %s: %d finding(s), %d alert(s)",
            subject_id,
            len(evaluation.findings),
            len(evaluation.alerts),
        )
        _audit_call(
            "evaluate_vitals",
            started,
            subject_id=subject_id,
            findings=len(evaluation.findings),
            alerts=len(evaluation.alerts),
        )
        return json.dumps({
            "status": "ok",
            "findings": [finding_to_dict(f) for f in evaluation.findings],
            "should_alert": evaluation.should_alert,
            "highest_severity": evaluation.highest_severity,
            "alerts": [alert_to_dict(a) for a in evaluation.alerts],
            "persisted": repository is not None,
        })

    @mcp.tool
    async def prioritize_alerts(
        ctx: Context,
        alerts: list[dict[str, Any]] | None = None,
        subject_id: str = "",
    ) -> str:
        """Rank alerts by priority score (highest first).

        Args:
            alerts: Alert payloads. When omitted, open alerts are read from the store.
            subject_id: Restrict stored alerts to one subject.
        """
        try:
            batch = _load_alerts(alerts, subject_id)
        except PayloadError as exc:
            return _error(str(exc))
        now = datetime.now(timezone.utc)
        ranked = prioritize(batch, now)
        return json.dumps({
            "status": "ok",
            "alerts": [
                {**alert_to_dict(a), "priority": round(calculate_alert_priority(a, now), 2)}
                for a in ranked
            ],
        })

    @mcp.tool
    async def consolidate_alerts(
        ctx: Context,
        alerts: list[dict[str, Any]] | None = None,
        subject_id: str = "",
    ) -> str:
        """Group related alerts and summarize each group.

        Args:
            alerts: Alert payloads. When omitted, open alerts are read from the store.
            subject_id: Restrict stored alerts to one subject.
        """
        try:
            batch = _load_alerts(alerts, subject_id)
        except PayloadError as exc:
            return _error(str(exc))
        groups = consolidate(batch)
        return json.dumps({
            "status": "ok",
            "groups": [
                {
                    "alert_ids": [a.id for a in group],
                    "message": create_consolidated_message(group),
                }
                for group in groups
            ],
        })

    @mcp.tool
    async def plan_alert_dispatch(
        ctx: Context,
        alerts: list[dict[str, Any]] | None = None,
        subject_id: str = "",
        candidate_ids: list[str] | None = None,
    ) -> str:
        """Decide who gets which alert on which channels.

        Args:
            alerts: Alert payloads. When omitted, open alerts are read from the store.
            subject_id: Restrict stored alerts to one subject.
            candidate_ids: Recipients to consider. Defaults to each subject's care circle.
        """
        started = time.monotonic()
        try:
            batch = _load_alerts(alerts, subject_id)
        except PayloadError as exc:
            _audit_call("plan_alert_dispatch", started, subject_id=subject_id, status="failure")
            return _error(str(exc))

        plan = planner.plan_dispatch(batch, candidate_ids)
        if audit_logger is not None:
            for decision in plan.permission_decisions:
                audit_logger.log_permission_decision(decision)
        _audit_call(
            "plan_alert_dispatch",
            started,
            subject_id=subject_id,
            alerts=len(batch),
            instructions=len(plan.instructions),
        )

        return json.dumps({
            "status": "ok",
            "instructions": [instruction_to_dict(i) for i in plan.instructions],
            "permission_decisions": [decision_to_dict(d) for d in plan.permission_decisions],
            "suppressed_by_preference": [
                {"alert_id": aid, "recipient_id": rid}
                for aid, rid in plan.suppressed_by_preference
            ],
        })

    @mcp.tool
    async def escalation_sweep(
        ctx: Context,
        subject_id: str = "",
    ) -> str:
        """Escalate stored alerts left unacknowledged past the threshold.

        Args:
            subject_id: Restrict the sweep to one subject.
        """
        started = time.monotonic()
        if repository is None:
            _audit_call("escalation_sweep", started, subject_id=subject_id, status="failure")
            return _error("Escalation sweep requires the alert store (set ENCRYPTION_KEY)")

        open_alerts = repository.list_alerts(subject_id=subject_id or None, open_only=True)
        escalated_ids: list[str] = []
        for alert, transition in planner.plan_escalations(open_alerts):
            applied = repository.apply_transition(transition)
            if audit_logger is not None:
                audit_logger.log_alert_transition(transition, applied=applied)
            if applied:
                escalated_ids.append(alert.id)

        if escalated_ids:
            logger.info("Escalated %d alert(s)", len(escalated_ids))
        _audit_call(
            "escalation_sweep",
            started,
            subject_id=subject_id,
            checked=len(open_alerts),
            escalated=len(escalated_ids),
        )
        return json.dumps({"status": "ok", "escalated": escalated_ids})

    @mcp.tool
    async def acknowledge_alert(
        ctx: Context,
        alert_id: str,
        requester_id: str,
        requester_role: str = "secondary",
    ) -> str:
        """Acknowledge a stored alert.

        The requester must be the subject or a caregiver allowed to receive
        the subject's alerts.

        Args:
            alert_id: Alert to acknowledge.
            requester_id: Who is acknowledging.
            requester_role: 'primary' (the subject) or 'secondary' (caregiver).
        """
        if repository is None:
            return _error("Acknowledging requires the alert store (set ENCRYPTION_KEY)")
        if not requester_id:
            return _error("requester_id must not be empty")
        if requester_role not in ("primary", "secondary"):
            return _error(f"Unknown requester role: {requester_role!r}")

        alert = repository.get_alert(alert_id)
        if alert is None:
            return _error("Alert not found", alert_id=alert_id)

        decision = planner.permissions.evaluate_permission(
            requester_id, requester_role, alert.subject_id, "alerts"
        )
        if audit_logger is not None:
            audit_logger.log_permission_decision(decision)
        if not decision.allowed:
            return _error("permission_denied", reason=decision.reason)

        _, transition = acknowledge(alert, requester_id)
        applied = False
        if transition is not None:
            applied = repository.apply_transition(transition)
            if audit_logger is not None:
                audit_logger.log_alert_transition(transition, applied=applied)
        return json.dumps({"status": "ok", "alert_id": alert_id, "changed": applied})
