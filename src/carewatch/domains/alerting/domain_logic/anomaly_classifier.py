"""Deterministic anomaly classification: vitals reading -> typed findings.

Each metric present in a reading is compared against the subject's
baseline for that metric, falling back to a clinical default band. Values
outside the band become an :class:`AnomalyFinding` whose severity depends
on how far outside the band the value lies, relative to the band's width.

All formulas are deterministic: no learning, no randomness.
"""

from __future__ import annotations

import logging
import math
import uuid

from carewatch.domains.alerting.domain_logic.models import (
    METRIC_LABELS,
    SEVERITY_ORDER,
    Alert,
    AnomalyFinding,
    BaselineRange,
    Direction,
    Metric,
    Range,
    Severity,
    VitalsReading,
    VitalSignsContext,
    severity_rank,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

# Population defaults. Weight is deliberately absent: it is only classified
# against a personal baseline.
DEFAULT_NORMAL_RANGES: dict[Metric, Range] = {
    "heart_rate": Range(60, 100),
    "systolic_bp": Range(90, 140),
    "diastolic_bp": Range(60, 90),
    "temperature": Range(97.0, 99.5),
    "oxygen_saturation": Range(95, 100),
}

# Readings outside these limits are treated as malformed input, not anomalies.
PLAUSIBLE_LIMITS: dict[Metric, Range] = {
    "heart_rate": Range(20, 300),
    "systolic_bp": Range(40, 300),
    "diastolic_bp": Range(20, 200),
    "temperature": Range(80.0, 115.0),
    "oxygen_saturation": Range(50, 100),
    "weight": Range(0, 1500),
}

# (upper bound exclusive, severity); relative deviation >= last bound -> critical
SEVERITY_BANDS: tuple[tuple[float, Severity], ...] = (
    (0.15, "low"),
    (0.35, "medium"),
    (0.60, "high"),
)

ALERT_TRIGGER_SEVERITY: Severity = "medium"


class ReadingValidationError(ValueError):
    """Raised when a vitals reading is malformed or physiologically implausible."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("Invalid vitals reading: " + "; ".join(errors))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_reading(reading: VitalsReading) -> None:
    """Reject readings that cannot be classified.

    Collects every problem before raising so callers can report them all.

    Raises:
        ValueError: If the reading has no subject id (contract violation).
        ReadingValidationError: If any metric is non-finite or implausible.
    """
    if not reading.subject_id:
        raise ValueError("VitalsReading.subject_id must not be empty")

    errors: list[str] = []
    for metric, value in reading.present_metrics().items():
        label = METRIC_LABELS[metric]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{label} must be numeric")
            continue
        if not math.isfinite(value):
            errors.append(f"{label} must be a finite number")
            continue
        limits = PLAUSIBLE_LIMITS[metric]
        if metric == "weight" and value <= 0:
            errors.append(f"{label} must be positive")
        elif not limits.contains(value):
            errors.append(
                f"{label} must be between {limits.min:g} and {limits.max:g}"
            )

    if errors:
        raise ReadingValidationError(errors)


def _check_baseline(baseline: BaselineRange) -> None:
    for metric, band in baseline.ranges.items():
        if band.min >= band.max:
            raise ValueError(
                f"Baseline for {metric} has min >= max ({band.min} >= {band.max})"
            )


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def resolve_range(metric: Metric, baseline: BaselineRange | None = None) -> Range | None:
    """Active band for ``metric``: personal baseline first, then clinical default."""
    if baseline is not None:
        personal = baseline.for_metric(metric)
        if personal is not None:
            return personal
    return DEFAULT_NORMAL_RANGES.get(metric)


def relative_deviation(value: float, band: Range) -> float:
    """Distance outside the nearest bound divided by the band width (0 if inside)."""
    distance = max(band.min - value, value - band.max, 0.0)
    return distance / band.width


def severity_for_deviation(deviation: float) -> Severity:
    """Map a relative deviation onto the fixed severity bands."""
    for upper, severity in SEVERITY_BANDS:
        if deviation < upper:
            return severity
    return "critical"


def _describe(metric: Metric, value: float, band: Range, direction: Direction,
              severity: Severity) -> str:
    label = METRIC_LABELS[metric]
    if direction == "above":
        return f"{label} is above normal range ({value:g} > {band.max:g}). Severity: {severity}."
    return f"{label} is below normal range ({value:g} < {band.min:g}). Severity: {severity}."


def detect_anomalies(
    reading: VitalsReading,
    baseline: BaselineRange | None = None,
) -> list[AnomalyFinding]:
    """Classify every metric in ``reading`` against its active range.

    Args:
        reading: The vitals reading to classify.
        baseline: Optional personal baseline; metrics it does not cover use
            :data:`DEFAULT_NORMAL_RANGES`.

    Returns:
        One finding per out-of-range metric, in :data:`METRICS` order.
        Empty when everything is within range.

    Raises:
        ReadingValidationError: If the reading is malformed.
        ValueError: If the baseline contains an inverted band.
    """
    validate_reading(reading)
    if baseline is not None:
        _check_baseline(baseline)

    findings: list[AnomalyFinding] = []
    for metric, value in reading.present_metrics().items():
        band = resolve_range(metric, baseline)
        if band is None or band.contains(value):
            continue

        severity = severity_for_deviation(relative_deviation(value, band))
        direction: Direction = "above" if value > band.max else "below"
        findings.append(
            AnomalyFinding(
                metric=metric,
                observed_value=value,
                expected_range=band,
                severity=severity,
                direction=direction,
                description=_describe(metric, value, band, direction, severity),
            )
        )

    logger.debug(
        "Classified reading for %s: %d finding(s)", reading.subject_id, len(findings)
    )
    return findings


def should_trigger_alert(findings: list[AnomalyFinding]) -> bool:
    """True iff any finding is medium severity or worse."""
    threshold = severity_rank(ALERT_TRIGGER_SEVERITY)
    return any(severity_rank(f.severity) >= threshold for f in findings)


def get_highest_severity(findings: list[AnomalyFinding]) -> Severity | None:
    """Worst severity among ``findings``; ``None`` when there are none."""
    if not findings:
        return None
    return max((f.severity for f in findings), key=SEVERITY_ORDER.index)


def build_vitals_alerts(
    reading: VitalsReading,
    findings: list[AnomalyFinding],
) -> list[Alert]:
    """Turn triggering findings into ``vital_signs`` alerts.

    Low-severity findings are left to trend analysis and never become alerts.
    """
    threshold = severity_rank(ALERT_TRIGGER_SEVERITY)
    return [
        Alert(
            id=str(uuid.uuid4()),
            subject_id=reading.subject_id,
            type="vital_signs",
            severity=finding.severity,
            timestamp=reading.timestamp,
            message=finding.description,
            related_data=VitalSignsContext(metric=finding.metric),
        )
        for finding in findings
        if severity_rank(finding.severity) >= threshold
    ]
