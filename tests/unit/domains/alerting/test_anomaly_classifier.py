"""Tests for the anomaly classifier: vitals readings to typed findings."""

from __future__ import annotations

import math
from datetime import datetime, timezone

import pytest

from carewatch.domains.alerting.domain_logic.anomaly_classifier import (
    DEFAULT_NORMAL_RANGES,
    ReadingValidationError,
    build_vitals_alerts,
    detect_anomalies,
    get_highest_severity,
    relative_deviation,
    resolve_range,
    severity_for_deviation,
    should_trigger_alert,
    validate_reading,
)
from carewatch.domains.alerting.domain_logic.models import (
    AnomalyFinding,
    BaselineRange,
    Range,
    VitalsReading,
    VitalSignsContext,
)

_TS = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)


def _reading(**metrics) -> VitalsReading:
    return VitalsReading(subject_id="subj-1", timestamp=_TS, **metrics)


def _finding(severity: str, metric: str = "heart_rate") -> AnomalyFinding:
    return AnomalyFinding(
        metric=metric,
        observed_value=0.0,
        expected_range=Range(0, 1),
        severity=severity,
        direction="above",
    )


class TestSeverityBands:
    @pytest.mark.parametrize(
        "deviation, expected",
        [
            (0.0, "low"),
            (0.149, "low"),
            (0.15, "medium"),
            (0.349, "medium"),
            (0.35, "high"),
            (0.599, "high"),
            (0.60, "critical"),
            (3.0, "critical"),
        ],
    )
    def test_band_edges(self, deviation, expected):
        assert severity_for_deviation(deviation) == expected

    def test_relative_deviation_inside_band_is_zero(self):
        assert relative_deviation(80, Range(60, 100)) == 0.0

    def test_relative_deviation_uses_nearest_bound(self):
        assert relative_deviation(130, Range(60, 100)) == pytest.approx(0.75)
        assert relative_deviation(50, Range(60, 100)) == pytest.approx(0.25)


class TestResolveRange:
    def test_default_when_no_baseline(self):
        assert resolve_range("heart_rate") == Range(60, 100)

    def test_personal_baseline_wins(self):
        baseline = BaselineRange("subj-1", {"heart_rate": Range(50, 110)})
        assert resolve_range("heart_rate", baseline) == Range(50, 110)

    def test_metric_missing_from_baseline_falls_back(self):
        baseline = BaselineRange("subj-1", {"heart_rate": Range(50, 110)})
        assert resolve_range("systolic_bp", baseline) == DEFAULT_NORMAL_RANGES["systolic_bp"]

    def test_weight_has_no_default(self):
        assert resolve_range("weight") is None


class TestDetectAnomalies:
    def test_high_heart_rate_is_critical(self):
        findings = detect_anomalies(_reading(heart_rate=130))
        assert len(findings) == 1
        finding = findings[0]
        assert finding.metric == "heart_rate"
        assert finding.severity == "critical"
        assert finding.direction == "above"
        assert finding.observed_value == 130
        assert finding.expected_range == Range(60, 100)
        assert finding.description == (
            "heart rate is above normal range (130 > 100). Severity: critical."
        )

    def test_all_normal_returns_empty(self):
        reading = _reading(
            heart_rate=72,
            systolic_bp=118,
            diastolic_bp=76,
            temperature=98.6,
            oxygen_saturation=98,
        )
        assert detect_anomalies(reading) == []

    def test_band_boundary_is_normal(self):
        assert detect_anomalies(_reading(heart_rate=100, oxygen_saturation=95)) == []

    def test_empty_reading_returns_empty(self):
        assert detect_anomalies(_reading()) == []

    def test_low_value_direction_below(self):
        findings = detect_anomalies(_reading(oxygen_saturation=93))
        assert findings[0].direction == "below"
        assert findings[0].severity == "high"  # 2 / 5 = 0.4
        assert "(93 < 95)" in findings[0].description

    def test_findings_follow_metric_order(self):
        findings = detect_anomalies(
            _reading(oxygen_saturation=90, heart_rate=110, systolic_bp=160)
        )
        assert [f.metric for f in findings] == [
            "heart_rate",
            "systolic_bp",
            "oxygen_saturation",
        ]

    def test_baseline_suppresses_default_anomaly(self):
        baseline = BaselineRange("subj-1", {"heart_rate": Range(50, 110)})
        assert detect_anomalies(_reading(heart_rate=105), baseline) == []

    def test_baseline_narrower_than_default(self):
        baseline = BaselineRange("subj-1", {"systolic_bp": Range(100, 120)})
        findings = detect_anomalies(_reading(systolic_bp=130), baseline)
        assert findings[0].severity == "high"  # 10 / 20 = 0.5
        assert findings[0].expected_range == Range(100, 120)

    def test_weight_only_classified_against_baseline(self):
        assert detect_anomalies(_reading(weight=180)) == []

        baseline = BaselineRange("subj-1", {"weight": Range(150, 170)})
        findings = detect_anomalies(_reading(weight=180), baseline)
        assert findings[0].metric == "weight"
        assert findings[0].severity == "high"

    def test_inverted_baseline_raises(self):
        baseline = BaselineRange("subj-1", {"heart_rate": Range(100, 60)})
        with pytest.raises(ValueError, match="min >= max"):
            detect_anomalies(_reading(heart_rate=80), baseline)

    def test_deterministic(self):
        reading = _reading(heart_rate=115, temperature=99.8)
        assert detect_anomalies(reading) == detect_anomalies(reading)


class TestValidateReading:
    def test_valid_reading_passes(self):
        validate_reading(_reading(heart_rate=72, weight=160))

    def test_implausible_value_rejected(self):
        with pytest.raises(ReadingValidationError) as exc_info:
            validate_reading(_reading(heart_rate=500))
        assert exc_info.value.errors == ["heart rate must be between 20 and 300"]

    def test_non_finite_rejected(self):
        with pytest.raises(ReadingValidationError) as exc_info:
            validate_reading(_reading(temperature=math.nan))
        assert "temperature must be a finite number" in exc_info.value.errors

    def test_non_positive_weight_rejected(self):
        with pytest.raises(ReadingValidationError) as exc_info:
            validate_reading(_reading(weight=0))
        assert exc_info.value.errors == ["weight must be positive"]

    def test_collects_every_error(self):
        with pytest.raises(ReadingValidationError) as exc_info:
            validate_reading(_reading(heart_rate=5, diastolic_bp=400))
        assert len(exc_info.value.errors) == 2

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            detect_anomalies(_reading(oxygen_saturation=120))

    def test_empty_subject_rejected(self):
        with pytest.raises(ValueError, match="subject_id"):
            validate_reading(VitalsReading(subject_id="", timestamp=_TS, heart_rate=70))


class TestTriggerAndSeverity:
    def test_empty_findings_do_not_trigger(self):
        assert should_trigger_alert([]) is False

    def test_low_only_does_not_trigger(self):
        assert should_trigger_alert([_finding("low"), _finding("low")]) is False

    def test_medium_triggers(self):
        assert should_trigger_alert([_finding("low"), _finding("medium")]) is True

    def test_highest_severity_empty_is_none(self):
        assert get_highest_severity([]) is None

    def test_highest_severity(self):
        findings = [_finding("medium"), _finding("critical"), _finding("low")]
        assert get_highest_severity(findings) == "critical"


class TestBuildVitalsAlerts:
    def test_low_findings_do_not_become_alerts(self):
        reading = _reading(heart_rate=130, temperature=99.8)
        findings = detect_anomalies(reading)
        assert {f.severity for f in findings} == {"critical", "low"}

        alerts = build_vitals_alerts(reading, findings)
        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.type == "vital_signs"
        assert alert.severity == "critical"
        assert alert.subject_id == "subj-1"
        assert alert.timestamp == _TS
        assert alert.related_data == VitalSignsContext(metric="heart_rate")
        assert alert.message == findings[0].description
        assert not alert.acknowledged
        assert not alert.escalated

    def test_alert_ids_are_unique(self):
        reading = _reading(heart_rate=130, systolic_bp=170)
        alerts = build_vitals_alerts(reading, detect_anomalies(reading))
        assert len({a.id for a in alerts}) == 2
