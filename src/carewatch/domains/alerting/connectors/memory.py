"""In-memory care-circle and preference sources.

Used by tests and by the server when no persistent store is configured.
"""

from __future__ import annotations

from carewatch.domains.alerting.domain_logic.models import (
    CareCircleLink,
    NotificationPreference,
)


class InMemoryCareCircle:
    """Dict-backed :class:`CareCircleSource`, keyed by (subject, caregiver)."""

    def __init__(self, links: list[CareCircleLink] | None = None) -> None:
        self._links: dict[tuple[str, str], CareCircleLink] = {}
        for link in links or []:
            self.put_link(link)

    def put_link(self, link: CareCircleLink) -> None:
        """Insert or replace the link for its (subject, caregiver) pair."""
        self._links[(link.subject_id, link.caregiver_id)] = link

    def remove_link(self, subject_id: str, caregiver_id: str) -> bool:
        return self._links.pop((subject_id, caregiver_id), None) is not None

    def get_link(self, subject_id: str, caregiver_id: str) -> CareCircleLink | None:
        return self._links.get((subject_id, caregiver_id))

    def list_links(self, subject_id: str) -> list[CareCircleLink]:
        return [link for (sid, _), link in self._links.items() if sid == subject_id]


class InMemoryPreferences:
    """Dict-backed :class:`PreferenceSource`."""

    def __init__(self, preferences: list[NotificationPreference] | None = None) -> None:
        self._prefs: dict[str, NotificationPreference] = {
            p.recipient_id: p for p in preferences or []
        }

    def put_preferences(self, preference: NotificationPreference) -> None:
        self._prefs[preference.recipient_id] = preference

    def get_preferences(self, recipient_id: str) -> NotificationPreference | None:
        return self._prefs.get(recipient_id)
