"""Alert engine connectors: read-only views of care-circle and preference data."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from carewatch.domains.alerting.domain_logic.models import (
    CareCircleLink,
    NotificationPreference,
)


@runtime_checkable
class CareCircleSource(Protocol):
    """Read access to care-circle links.

    The engine never creates, updates or removes links; the care-circle
    management collaborator owns those writes.
    """

    def get_link(self, subject_id: str, caregiver_id: str) -> CareCircleLink | None:
        """The link between ``subject_id`` and ``caregiver_id``, or ``None``."""
        ...

    def list_links(self, subject_id: str) -> list[CareCircleLink]:
        """Every caregiver link of ``subject_id``."""
        ...


@runtime_checkable
class PreferenceSource(Protocol):
    """Read access to per-recipient notification preferences."""

    def get_preferences(self, recipient_id: str) -> NotificationPreference | None:
        """Preferences of ``recipient_id``, or ``None`` if never configured."""
        ...
