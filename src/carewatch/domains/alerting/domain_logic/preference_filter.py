"""Notification-preference filtering of alert recipients and channels.

Preferences narrow delivery; they never widen it. Recipients reaching this
filter have already passed the permission model. Missing preferences mean
"send": the absence of an explicit opt-out never suppresses an alert.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timezone

from carewatch.core.cache.read_through import NullCache, ReadThroughCache
from carewatch.domains.alerting.connectors import PreferenceSource
from carewatch.domains.alerting.domain_logic.models import (
    ALL_CHANNELS,
    Alert,
    Channel,
    NotificationPreference,
    QuietHours,
)

logger = logging.getLogger(__name__)


def parse_clock(value: str) -> time:
    """Parse an ``HH:MM`` string.

    Raises:
        ValueError: If the string is not a valid 24-hour clock time.
    """
    try:
        hours, minutes = value.split(":")
        return time(int(hours), int(minutes))
    except (ValueError, AttributeError) as exc:
        raise ValueError(f"Invalid HH:MM time: {value!r}") from exc


def is_within_quiet_hours(quiet_hours: QuietHours | None, now: datetime) -> bool:
    """Whether ``now`` (wall-clock time of day) falls inside the window.

    Both ends are inclusive. A window whose start is after its end wraps
    around midnight.
    """
    if quiet_hours is None:
        return False
    start = parse_clock(quiet_hours.start)
    end = parse_clock(quiet_hours.end)
    current = now.time().replace(second=0, microsecond=0)
    if start > end:
        return current >= start or current <= end
    return start <= current <= end


def alert_allowed_by_preference(
    preference: NotificationPreference | None, alert: Alert
) -> bool:
    """Type/severity opt-outs only; quiet hours are not considered here."""
    if preference is None:
        return True
    type_pref = preference.for_type(alert.type)
    if type_pref is None:
        return True
    if not type_pref.enabled:
        return False
    return alert.severity in type_pref.allowed_severities


def filter_alerts_by_preferences(
    alerts: list[Alert], preferences: NotificationPreference | None
) -> list[Alert]:
    """Keep the alerts one recipient wants in their feed, preserving order."""
    return [a for a in alerts if alert_allowed_by_preference(preferences, a)]


class PreferenceFilter:
    """Recipient-side gate backed by a :class:`PreferenceSource`.

    Usage::

        prefs = PreferenceFilter(preference_source)
        recipients = prefs.filter_care_circle_by_preferences(permitted_ids, alert)
    """

    def __init__(
        self,
        preferences: PreferenceSource,
        cache: ReadThroughCache | None = None,
    ) -> None:
        self._source = preferences
        self._cache = cache or NullCache()

    def _get(self, recipient_id: str) -> NotificationPreference | None:
        return self._cache.get_or_load(
            f"prefs:{recipient_id}",
            lambda: self._source.get_preferences(recipient_id),
        )

    def should_send_alert(
        self, recipient_id: str, alert: Alert, now: datetime | None = None
    ) -> bool:
        """True unless the recipient opted out of this alert.

        Non-critical alerts are held back during the recipient's quiet
        hours; critical alerts always go through. ``now`` should carry the
        recipient's local time of day.
        """
        preference = self._get(recipient_id)
        if preference is None:
            return True
        if not alert_allowed_by_preference(preference, alert):
            return False
        if alert.severity == "critical":
            return True
        return not is_within_quiet_hours(
            preference.quiet_hours, now or datetime.now(timezone.utc)
        )

    def get_notification_channels(
        self, recipient_id: str, alert: Alert
    ) -> frozenset[Channel]:
        """Channels to use for ``alert``; empty when the recipient opted out.

        Critical alerts go out on every channel.
        """
        preference = self._get(recipient_id)
        if preference is None:
            return ALL_CHANNELS
        if not alert_allowed_by_preference(preference, alert):
            return frozenset()
        if alert.severity == "critical":
            return ALL_CHANNELS

        type_pref = preference.for_type(alert.type)
        if type_pref is not None and type_pref.channels is not None:
            return frozenset(type_pref.channels)
        return frozenset(preference.channels)

    def filter_care_circle_by_preferences(
        self,
        candidate_ids: list[str],
        alert: Alert,
        now: datetime | None = None,
    ) -> list[str]:
        """Candidates willing to receive ``alert``, in input order.

        Candidates must already have passed the permission model.
        """
        now = now or datetime.now(timezone.utc)
        return [rid for rid in candidate_ids if self.should_send_alert(rid, alert, now)]
