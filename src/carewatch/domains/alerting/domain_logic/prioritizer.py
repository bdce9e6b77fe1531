"""Alert scoring, ranking, consolidation and escalation.

Operates on an in-memory batch of alerts supplied per call; nothing here
keeps state between calls, so every function is safe to retry on the same
input. Time-dependent functions take an optional ``now`` so a whole batch
is evaluated against one clock reading.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from carewatch.domains.alerting.domain_logic.models import (
    RELATED_DATA_BY_TYPE,
    SEVERITY_ORDER,
    Alert,
    AlertTransition,
    AlertType,
    Severity,
    as_utc,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Weight tables
# ---------------------------------------------------------------------------

SEVERITY_WEIGHT: dict[Severity, int] = {
    "critical": 4,
    "high": 3,
    "medium": 2,
    "low": 1,
}

TYPE_WEIGHT: dict[AlertType, int] = {
    "emergency": 7,
    "fall_detection": 6,
    "vital_signs": 5,
    "check_in": 4,
    "medication": 3,
    "device": 2,
    "appointment": 1,
}

ESCALATED_BONUS = 20
UNACKNOWLEDGED_BONUS = 10
RECENCY_WINDOW_HOURS = 5.0

RELATION_WINDOW = timedelta(minutes=15)
DEFAULT_ESCALATION_MINUTES = 30


def _clock(now: datetime | None) -> datetime:
    return as_utc(now) if now else datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Scoring & ranking
# ---------------------------------------------------------------------------

def recency_bonus(alert: Alert, now: datetime) -> float:
    """Linear decay from 5 points (brand new) to 0 after five hours."""
    age_hours = max(0.0, (now - alert.timestamp).total_seconds() / 3600)
    return max(0.0, RECENCY_WINDOW_HOURS - age_hours)


def calculate_alert_priority(alert: Alert, now: datetime | None = None) -> float:
    """Priority score for ``alert``; higher means more urgent."""
    now = _clock(now)
    score = SEVERITY_WEIGHT[alert.severity] * 10 + TYPE_WEIGHT[alert.type]
    if alert.escalated:
        score += ESCALATED_BONUS
    if not alert.acknowledged:
        score += UNACKNOWLEDGED_BONUS
    return score + recency_bonus(alert, now)


def prioritize_alerts(alerts: list[Alert], now: datetime | None = None) -> list[Alert]:
    """Return ``alerts`` ordered by descending priority, newer first on ties.

    The sort is stable: alerts with identical score and timestamp keep their
    input order. The input list is not modified.
    """
    now = _clock(now)
    return sorted(
        alerts,
        key=lambda a: (-calculate_alert_priority(a, now), -a.timestamp.timestamp()),
    )


# ---------------------------------------------------------------------------
# Relation & consolidation
# ---------------------------------------------------------------------------

def are_alerts_related(a: Alert, b: Alert, window: timedelta = RELATION_WINDOW) -> bool:
    """Whether two alerts describe the same underlying issue.

    Same subject, same type and timestamps within ``window``. When both
    alerts carry the related-data variant for their type, the identifiers
    must match too; otherwise subject, type and time decide alone.
    """
    if a.subject_id != b.subject_id or a.type != b.type:
        return False
    if abs(a.timestamp - b.timestamp) > window:
        return False

    expected = RELATED_DATA_BY_TYPE.get(a.type)
    if expected is None:
        return True
    if isinstance(a.related_data, expected) and isinstance(b.related_data, expected):
        return a.related_data == b.related_data
    return True


def consolidate_alerts(
    alerts: list[Alert], window: timedelta = RELATION_WINDOW
) -> list[list[Alert]]:
    """Group related alerts, seed by seed.

    Each not-yet-grouped alert (in input order) seeds a group and pulls in
    every other ungrouped alert related *to the seed*. Membership is not
    transitive: an alert related only to a non-seed member starts its own
    group later.
    """
    groups: list[list[Alert]] = []
    grouped: set[int] = set()

    for i, seed in enumerate(alerts):
        if i in grouped:
            continue
        group = [seed]
        grouped.add(i)
        for j in range(i + 1, len(alerts)):
            if j in grouped:
                continue
            if are_alerts_related(seed, alerts[j], window):
                group.append(alerts[j])
                grouped.add(j)
        groups.append(group)

    logger.debug("Consolidated %d alert(s) into %d group(s)", len(alerts), len(groups))
    return groups


def highest_alert_severity(alerts: list[Alert]) -> Severity:
    if not alerts:
        raise ValueError("Cannot compute the severity of an empty alert group")
    return max((a.severity for a in alerts), key=SEVERITY_ORDER.index)


def create_consolidated_message(group: list[Alert]) -> str:
    """Human-readable summary for a consolidated group."""
    if not group:
        raise ValueError("Cannot build a message for an empty alert group")
    first = group[0]
    if len(group) == 1:
        return first.message

    count = len(group)
    type_label = first.type.replace("_", " ")
    return (
        f"{count} {type_label} alerts ({highest_alert_severity(group)} severity): "
        f"{first.message} and {count - 1} more"
    )


# ---------------------------------------------------------------------------
# Escalation & acknowledgement
# ---------------------------------------------------------------------------

def get_alerts_needing_escalation(
    alerts: list[Alert],
    threshold_minutes: float = DEFAULT_ESCALATION_MINUTES,
    now: datetime | None = None,
) -> list[Alert]:
    """Unescalated, unacknowledged alerts above low severity older than the threshold.

    Raises:
        ValueError: If ``threshold_minutes`` is negative.
    """
    if threshold_minutes < 0:
        raise ValueError("threshold_minutes must not be negative")
    now = _clock(now)
    threshold = timedelta(minutes=threshold_minutes)

    return [
        alert
        for alert in alerts
        if not alert.escalated
        and not alert.acknowledged
        and alert.severity != "low"
        and now - alert.timestamp >= threshold
    ]


def mark_escalated(
    alert: Alert, now: datetime | None = None
) -> tuple[Alert, AlertTransition | None]:
    """Escalate ``alert``. Already-escalated alerts are returned unchanged with no transition."""
    if alert.escalated:
        return alert, None
    transition = AlertTransition(
        alert_id=alert.id,
        subject_id=alert.subject_id,
        transition="escalate",
        condition="escalated",
        decided_at=_clock(now),
    )
    return replace(alert, escalated=True), transition


def acknowledge_alert(
    alert: Alert, actor_id: str, now: datetime | None = None
) -> tuple[Alert, AlertTransition | None]:
    """Acknowledge ``alert`` on behalf of ``actor_id``; idempotent like :func:`mark_escalated`."""
    if not actor_id:
        raise ValueError("actor_id must not be empty")
    if alert.acknowledged:
        return alert, None
    transition = AlertTransition(
        alert_id=alert.id,
        subject_id=alert.subject_id,
        transition="acknowledge",
        condition="acknowledged",
        decided_at=_clock(now),
        actor_id=actor_id,
    )
    return replace(alert, acknowledged=True), transition
