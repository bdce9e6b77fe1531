"""Conversion between MCP tool payloads (plain JSON) and engine models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from carewatch.domains.alerting.domain_logic.models import (
    ALERT_TYPES,
    METRICS,
    SEVERITY_ORDER,
    Alert,
    AnomalyFinding,
    BaselineRange,
    DispatchInstruction,
    PermissionDecision,
    Range,
    related_data_from_dict,
    related_data_to_dict,
)


class PayloadError(ValueError):
    """Raised when a tool payload cannot be converted."""


def parse_timestamp(value: str | None) -> datetime:
    """ISO 8601 -> aware datetime; naive values are taken as UTC, empty means now."""
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise PayloadError(f"Invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def alert_from_payload(payload: dict[str, Any]) -> Alert:
    try:
        alert_type = payload["type"]
        severity = payload["severity"]
        if alert_type not in ALERT_TYPES:
            raise PayloadError(f"Unknown alert type: {alert_type!r}")
        if severity not in SEVERITY_ORDER:
            raise PayloadError(f"Unknown severity: {severity!r}")
        return Alert(
            id=str(payload["id"]),
            subject_id=str(payload["subject_id"]),
            type=alert_type,
            severity=severity,
            timestamp=parse_timestamp(payload.get("timestamp")),
            message=str(payload.get("message", "")),
            acknowledged=bool(payload.get("acknowledged", False)),
            escalated=bool(payload.get("escalated", False)),
            related_data=related_data_from_dict(alert_type, payload.get("related_data")),
        )
    except KeyError as exc:
        raise PayloadError(f"Alert payload missing field: {exc.args[0]}") from exc


def alert_to_dict(alert: Alert) -> dict[str, Any]:
    return {
        "id": alert.id,
        "subject_id": alert.subject_id,
        "type": alert.type,
        "severity": alert.severity,
        "timestamp": alert.timestamp.isoformat(),
        "message": alert.message,
        "acknowledged": alert.acknowledged,
        "escalated": alert.escalated,
        "related_data": related_data_to_dict(alert.related_data),
    }


def baseline_from_payload(subject_id: str, payload: dict[str, Any] | None) -> BaselineRange | None:
    """``{"heart_rate": {"min": 55, "max": 95}, ...}`` -> :class:`BaselineRange`."""
    if not payload:
        return None
    ranges = {}
    for metric, band in payload.items():
        if metric not in METRICS:
            raise PayloadError(f"Unknown baseline metric: {metric!r}")
        try:
            ranges[metric] = Range(float(band["min"]), float(band["max"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise PayloadError(f"Invalid baseline range for {metric}") from exc
    return BaselineRange(subject_id=subject_id, ranges=ranges)


def finding_to_dict(finding: AnomalyFinding) -> dict[str, Any]:
    return {
        "metric": finding.metric,
        "observed_value": finding.observed_value,
        "expected_range": {"min": finding.expected_range.min, "max": finding.expected_range.max},
        "severity": finding.severity,
        "direction": finding.direction,
        "description": finding.description,
    }


def decision_to_dict(decision: PermissionDecision) -> dict[str, Any]:
    return {
        "requester_id": decision.requester_id,
        "subject_id": decision.subject_id,
        "category": decision.category,
        "action": decision.action,
        "allowed": decision.allowed,
        "required_permission": decision.required_permission,
        "reason": decision.reason,
    }


def instruction_to_dict(instruction: DispatchInstruction) -> dict[str, Any]:
    return {
        "alert_id": instruction.alert.id,
        "recipient_id": instruction.recipient_id,
        "channels": sorted(instruction.channels),
        "priority": round(instruction.priority, 2),
        "severity": instruction.alert.severity,
        "type": instruction.alert.type,
        "message": instruction.message,
        "grouped_alert_ids": list(instruction.grouped_alert_ids),
    }
