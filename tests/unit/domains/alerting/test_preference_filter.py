"""Tests for notification-preference filtering."""

from __future__ import annotations

from datetime import datetime, time, timezone

import pytest

from carewatch.core.cache.read_through import TTLCache
from carewatch.domains.alerting.connectors.memory import InMemoryPreferences
from carewatch.domains.alerting.domain_logic.models import (
    ALL_CHANNELS,
    Alert,
    AlertTypePreference,
    NotificationPreference,
    QuietHours,
)
from carewatch.domains.alerting.domain_logic.preference_filter import (
    PreferenceFilter,
    alert_allowed_by_preference,
    filter_alerts_by_preferences,
    is_within_quiet_hours,
    parse_clock,
)

NOON = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _at(hour: int, minute: int = 0) -> datetime:
    return NOON.replace(hour=hour, minute=minute)


def _alert(severity: str = "medium", type: str = "vital_signs", id: str = "a1") -> Alert:
    return Alert(
        id=id,
        subject_id="subj-1",
        type=type,
        severity=severity,
        timestamp=NOON,
        message="test",
    )


def _prefs(**overrides) -> NotificationPreference:
    defaults = dict(recipient_id="cg-1", channels=frozenset({"push"}))
    defaults.update(overrides)
    return NotificationPreference(**defaults)


class _CountingPreferences:
    def __init__(self, inner):
        self.inner = inner
        self.lookups = 0

    def get_preferences(self, recipient_id):
        self.lookups += 1
        return self.inner.get_preferences(recipient_id)


class TestParseClock:
    def test_valid(self):
        assert parse_clock("22:05") == time(22, 5)

    @pytest.mark.parametrize("value", ["25:00", "noon", "7", ""])
    def test_invalid(self, value):
        with pytest.raises(ValueError, match="HH:MM"):
            parse_clock(value)


class TestQuietHours:
    def test_none_is_never_quiet(self):
        assert is_within_quiet_hours(None, NOON) is False

    def test_same_day_window(self):
        qh = QuietHours("13:00", "14:00")
        assert is_within_quiet_hours(qh, _at(13, 30))
        assert not is_within_quiet_hours(qh, _at(12, 59))

    @pytest.mark.parametrize(
        "hour, minute, expected",
        [
            (22, 0, True),
            (23, 30, True),
            (0, 0, True),
            (7, 0, True),
            (7, 1, False),
            (12, 0, False),
            (21, 59, False),
        ],
    )
    def test_window_spanning_midnight(self, hour, minute, expected):
        qh = QuietHours("22:00", "07:00")
        assert is_within_quiet_hours(qh, _at(hour, minute)) is expected


class TestAlertAllowedByPreference:
    def test_no_preferences_allows(self):
        assert alert_allowed_by_preference(None, _alert())

    def test_unconfigured_type_allows(self):
        assert alert_allowed_by_preference(_prefs(), _alert(type="device"))

    def test_disabled_type_blocks(self):
        prefs = _prefs(alert_types={"check_in": AlertTypePreference(enabled=False)})
        assert not alert_allowed_by_preference(prefs, _alert(type="check_in"))

    def test_excluded_severity_blocks(self):
        prefs = _prefs(
            alert_types={
                "vital_signs": AlertTypePreference(
                    allowed_severities=frozenset({"high", "critical"})
                )
            }
        )
        assert not alert_allowed_by_preference(prefs, _alert("medium"))
        assert alert_allowed_by_preference(prefs, _alert("high"))

    def test_filter_alerts_preserves_order(self):
        prefs = _prefs(alert_types={"device": AlertTypePreference(enabled=False)})
        alerts = [
            _alert(id="a", type="medication"),
            _alert(id="b", type="device"),
            _alert(id="c", type="vital_signs"),
        ]
        assert [a.id for a in filter_alerts_by_preferences(alerts, prefs)] == ["a", "c"]


class TestShouldSendAlert:
    def test_missing_preferences_means_send(self):
        assert PreferenceFilter(InMemoryPreferences()).should_send_alert("cg-1", _alert(), NOON)

    def test_disabled_type_suppressed(self):
        source = InMemoryPreferences(
            [_prefs(alert_types={"vital_signs": AlertTypePreference(enabled=False)})]
        )
        assert not PreferenceFilter(source).should_send_alert("cg-1", _alert(), NOON)

    def test_disabled_type_suppresses_critical_too(self):
        source = InMemoryPreferences(
            [_prefs(alert_types={"vital_signs": AlertTypePreference(enabled=False)})]
        )
        assert not PreferenceFilter(source).should_send_alert(
            "cg-1", _alert("critical"), NOON
        )

    def test_quiet_hours_hold_non_critical(self):
        source = InMemoryPreferences([_prefs(quiet_hours=QuietHours("22:00", "07:00"))])
        prefs = PreferenceFilter(source)
        assert not prefs.should_send_alert("cg-1", _alert("high"), _at(23))
        assert prefs.should_send_alert("cg-1", _alert("high"), _at(9))

    def test_critical_bypasses_quiet_hours(self):
        source = InMemoryPreferences([_prefs(quiet_hours=QuietHours("22:00", "07:00"))])
        assert PreferenceFilter(source).should_send_alert("cg-1", _alert("critical"), _at(23))


class TestNotificationChannels:
    def test_missing_preferences_all_channels(self):
        channels = PreferenceFilter(InMemoryPreferences()).get_notification_channels(
            "cg-1", _alert()
        )
        assert channels == ALL_CHANNELS

    def test_recipient_default_channels(self):
        source = InMemoryPreferences([_prefs(channels=frozenset({"sms", "email"}))])
        channels = PreferenceFilter(source).get_notification_channels("cg-1", _alert())
        assert channels == frozenset({"sms", "email"})

    def test_type_override(self):
        source = InMemoryPreferences(
            [
                _prefs(
                    alert_types={
                        "medication": AlertTypePreference(channels=frozenset({"email"}))
                    }
                )
            ]
        )
        prefs = PreferenceFilter(source)
        assert prefs.get_notification_channels("cg-1", _alert(type="medication")) == {"email"}
        assert prefs.get_notification_channels("cg-1", _alert(type="device")) == {"push"}

    def test_critical_uses_every_channel(self):
        source = InMemoryPreferences([_prefs()])
        channels = PreferenceFilter(source).get_notification_channels(
            "cg-1", _alert("critical")
        )
        assert channels == ALL_CHANNELS

    def test_opted_out_returns_empty(self):
        source = InMemoryPreferences(
            [_prefs(alert_types={"vital_signs": AlertTypePreference(enabled=False)})]
        )
        assert PreferenceFilter(source).get_notification_channels("cg-1", _alert()) == frozenset()


class TestFilterCareCircle:
    def test_keeps_order_and_drops_opted_out(self):
        source = InMemoryPreferences(
            [
                _prefs(
                    recipient_id="cg-b",
                    alert_types={"vital_signs": AlertTypePreference(enabled=False)},
                )
            ]
        )
        result = PreferenceFilter(source).filter_care_circle_by_preferences(
            ["cg-c", "cg-b", "cg-a"], _alert(), NOON
        )
        assert result == ["cg-c", "cg-a"]

    def test_preferences_read_through_cache(self):
        source = _CountingPreferences(InMemoryPreferences([_prefs()]))
        prefs = PreferenceFilter(source, cache=TTLCache(ttl_seconds=60))
        prefs.should_send_alert("cg-1", _alert(), NOON)
        prefs.get_notification_channels("cg-1", _alert())
        assert source.lookups == 1
