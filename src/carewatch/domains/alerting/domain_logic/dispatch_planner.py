"""End-to-end decision pipeline: readings -> alerts -> recipient-scoped dispatch plan.

The planner glues the classifier, prioritizer, permission model and
preference filter together. It performs no I/O of its own beyond the
read-only sources injected into the permission and preference components,
and it never delivers anything: the returned plan is handed to the
external notification dispatcher.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from carewatch.domains.alerting.domain_logic.anomaly_classifier import (
    build_vitals_alerts,
    detect_anomalies,
    get_highest_severity,
    should_trigger_alert,
)
from carewatch.domains.alerting.domain_logic.models import (
    Alert,
    AlertTransition,
    AnomalyFinding,
    BaselineRange,
    DispatchInstruction,
    PermissionCategory,
    PermissionDecision,
    Severity,
    VitalsReading,
    as_utc,
)
from carewatch.domains.alerting.domain_logic.permissions import (
    ALERT_DATA_CATEGORY,
    PermissionModel,
)
from carewatch.domains.alerting.domain_logic.preference_filter import PreferenceFilter
from carewatch.domains.alerting.domain_logic.prioritizer import (
    DEFAULT_ESCALATION_MINUTES,
    RELATION_WINDOW,
    calculate_alert_priority,
    consolidate_alerts,
    create_consolidated_message,
    get_alerts_needing_escalation,
    mark_escalated,
    prioritize_alerts,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadingEvaluation:
    """Classifier output for one reading plus the alerts it should raise."""

    findings: list[AnomalyFinding]
    should_alert: bool
    highest_severity: Severity | None
    alerts: list[Alert]


@dataclass
class DispatchPlan:
    """Ordered instructions plus every permission decision taken to build them."""

    instructions: list[DispatchInstruction] = field(default_factory=list)
    permission_decisions: list[PermissionDecision] = field(default_factory=list)
    suppressed_by_preference: list[tuple[str, str]] = field(default_factory=list)


class DispatchPlanner:
    """Composes the alert engine components.

    Usage::

        planner = DispatchPlanner(PermissionModel(circle), PreferenceFilter(prefs))
        evaluation = planner.evaluate_reading(reading, baseline)
        plan = planner.plan_dispatch(evaluation.alerts)
    """

    def __init__(
        self,
        permissions: PermissionModel,
        preferences: PreferenceFilter,
        *,
        escalation_minutes: float = DEFAULT_ESCALATION_MINUTES,
        relation_window: timedelta = RELATION_WINDOW,
    ) -> None:
        if escalation_minutes < 0:
            raise ValueError("escalation_minutes must not be negative")
        self._permissions = permissions
        self._preferences = preferences
        self._escalation_minutes = escalation_minutes
        self._window = relation_window

    @property
    def permissions(self) -> PermissionModel:
        return self._permissions

    @property
    def preferences(self) -> PreferenceFilter:
        return self._preferences

    def evaluate_reading(
        self, reading: VitalsReading, baseline: BaselineRange | None = None
    ) -> ReadingEvaluation:
        findings = detect_anomalies(reading, baseline)
        trigger = should_trigger_alert(findings)
        alerts = build_vitals_alerts(reading, findings) if trigger else []
        return ReadingEvaluation(
            findings=findings,
            should_alert=trigger,
            highest_severity=get_highest_severity(findings),
            alerts=alerts,
        )

    def plan_dispatch(
        self,
        alerts: list[Alert],
        candidate_ids: list[str] | None = None,
        now: datetime | None = None,
    ) -> DispatchPlan:
        """Build the ordered, recipient-scoped dispatch plan for ``alerts``.

        Related alerts are consolidated first; each group is represented by
        its highest-priority member and carries the consolidated message.
        Groups are emitted in priority order. For each group, every
        candidate must pass the permission model (``alerts`` plus the data
        category the alert type carries, see :data:`ALERT_DATA_CATEGORY`)
        and then the preference filter. Candidates default to the subject's
        whole care circle.
        """
        now = as_utc(now) if now else datetime.now(timezone.utc)
        plan = DispatchPlan()

        groups = consolidate_alerts(alerts, self._window)
        representatives = [prioritize_alerts(group, now)[0] for group in groups]
        group_of = {id(rep): group for rep, group in zip(representatives, groups)}

        for rep in prioritize_alerts(representatives, now):
            group = group_of[id(rep)]
            message = create_consolidated_message(group)
            priority = calculate_alert_priority(rep, now)
            recipients = (
                candidate_ids
                if candidate_ids is not None
                else self._permissions.list_care_circle(rep.subject_id)
            )

            for recipient_id in recipients:
                if not self._may_receive(plan, recipient_id, rep):
                    continue
                if not self._preferences.should_send_alert(recipient_id, rep, now):
                    plan.suppressed_by_preference.append((rep.id, recipient_id))
                    continue
                channels = self._preferences.get_notification_channels(recipient_id, rep)
                if not channels:
                    plan.suppressed_by_preference.append((rep.id, recipient_id))
                    continue
                plan.instructions.append(
                    DispatchInstruction(
                        alert=rep,
                        recipient_id=recipient_id,
                        channels=channels,
                        priority=priority,
                        message=message,
                        grouped_alert_ids=tuple(a.id for a in group),
                    )
                )

        logger.debug(
            "Planned %d instruction(s) for %d alert(s) in %d group(s)",
            len(plan.instructions),
            len(alerts),
            len(groups),
        )
        return plan

    def _may_receive(self, plan: DispatchPlan, recipient_id: str, alert: Alert) -> bool:
        categories: list[PermissionCategory] = ["alerts"]
        data_category = ALERT_DATA_CATEGORY.get(alert.type)
        if data_category is not None:
            categories.append(data_category)
        for category in categories:
            decision = self._permissions.evaluate_permission(
                recipient_id, "secondary", alert.subject_id, category
            )
            plan.permission_decisions.append(decision)
            if not decision.allowed:
                return False
        return True

    def plan_escalations(
        self, alerts: list[Alert], now: datetime | None = None
    ) -> list[tuple[Alert, AlertTransition]]:
        """Escalated copies of the overdue alerts, with the transitions to apply."""
        now = as_utc(now) if now else datetime.now(timezone.utc)
        due = get_alerts_needing_escalation(alerts, self._escalation_minutes, now)
        results: list[tuple[Alert, AlertTransition]] = []
        for alert in due:
            escalated, transition = mark_escalated(alert, now)
            if transition is not None:
                results.append((escalated, transition))
        return results
