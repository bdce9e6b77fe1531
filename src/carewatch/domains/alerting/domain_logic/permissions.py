"""Permission model for caregiver access to a subject's data categories.

A subject (``primary`` role) always sees their own data. Anyone else needs
a care-circle link to the subject whose permission flag for the requested
category is set; writes and deletes additionally need the category to be
explicitly elevated on that link. A missing link is "no access", never an
error.

Decisions come back as :class:`PermissionDecision` records so the audit
collaborator can log what was checked, the outcome and why. This module
does not write audit entries itself.
"""

from __future__ import annotations

import logging
from typing import TypeVar

from carewatch.core.cache.read_through import NullCache, ReadThroughCache
from carewatch.domains.alerting.connectors import CareCircleSource
from carewatch.domains.alerting.domain_logic.models import (
    Action,
    AlertType,
    CareCircleLink,
    PermissionCategory,
    PermissionDecision,
    PermissionSet,
    RequesterRole,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Category -> permission flag
# ---------------------------------------------------------------------------

PERMISSION_MATRIX: dict[PermissionCategory, str] = {
    "vitals": "can_view_vitals",
    "medications": "can_view_medications",
    "appointments": "can_view_appointments",
    "health_records": "can_view_health_records",
    "alerts": "can_receive_alerts",
    "messages": "can_send_messages",
    "devices": "can_manage_devices",
}

WRITE_ACTIONS: frozenset[str] = frozenset({"write", "delete"})

# Alert types whose message carries data from a gated category. Delivering
# one needs that category as well as "alerts". Device alerts report device
# status only; "devices" is a management capability.
ALERT_DATA_CATEGORY: dict[AlertType, PermissionCategory] = {
    "vital_signs": "vitals",
    "medication": "medications",
    "appointment": "appointments",
}

# Reason codes carried on PermissionDecision
REASON_SELF_ACCESS = "self_access"
REASON_NOT_IN_CARE_CIRCLE = "not_in_care_circle"
REASON_GRANTED = "permission_granted"
REASON_DENIED = "permission_denied"
REASON_WRITE_NOT_ELEVATED = "write_not_elevated"


# ---------------------------------------------------------------------------
# Onboarding presets (seed values only)
# ---------------------------------------------------------------------------

FULL_ACCESS_PERMISSIONS = PermissionSet(
    can_view_vitals=True,
    can_view_medications=True,
    can_view_appointments=True,
    can_view_health_records=True,
    can_receive_alerts=True,
    can_send_messages=True,
    can_manage_devices=True,
)

DEFAULT_PERMISSIONS = PermissionSet(
    can_view_vitals=True,
    can_view_medications=True,
    can_view_appointments=True,
    can_view_health_records=False,  # sensitive, opt-in
    can_receive_alerts=True,
    can_send_messages=True,
    can_manage_devices=False,
)

LIMITED_ACCESS_PERMISSIONS = PermissionSet(
    can_view_vitals=True,
    can_view_medications=False,
    can_view_appointments=False,
    can_view_health_records=False,
    can_receive_alerts=True,
    can_send_messages=False,
    can_manage_devices=False,
)

PERMISSION_PRESETS: dict[str, PermissionSet] = {
    "full": FULL_ACCESS_PERMISSIONS,
    "default": DEFAULT_PERMISSIONS,
    "limited": LIMITED_ACCESS_PERMISSIONS,
}


def required_permission(category: PermissionCategory) -> str:
    """Permission flag gating ``category``.

    Raises:
        ValueError: For a category outside :data:`PERMISSION_MATRIX`.
    """
    try:
        return PERMISSION_MATRIX[category]
    except KeyError:
        raise ValueError(f"Unknown permission category: {category!r}") from None


def has_category(permissions: PermissionSet, category: PermissionCategory) -> bool:
    return bool(getattr(permissions, required_permission(category)))


T = TypeVar("T")


def filter_data_by_permissions(
    record: dict[str, T],
    permissions: PermissionSet,
    category_map: dict[str, PermissionCategory],
) -> dict[str, T]:
    """Keep only the fields ``permissions`` allows.

    Fields mapped to a category survive only if that category's flag is set.
    Unmapped fields are treated as non-sensitive and always pass through.
    """
    filtered: dict[str, T] = {}
    for key, value in record.items():
        category = category_map.get(key)
        if category is None or has_category(permissions, category):
            filtered[key] = value
    return filtered


class PermissionModel:
    """Evaluates caregiver access using a :class:`CareCircleSource`.

    Usage::

        model = PermissionModel(care_circle, cache=TTLCache(ttl_seconds=60))
        if model.check_permission("cg-1", "secondary", "subj-1", "vitals"):
            ...
    """

    def __init__(
        self,
        care_circle: CareCircleSource,
        cache: ReadThroughCache | None = None,
    ) -> None:
        self._circle = care_circle
        self._cache = cache or NullCache()

    def _get_link(self, subject_id: str, caregiver_id: str) -> CareCircleLink | None:
        return self._cache.get_or_load(
            f"link:{subject_id}:{caregiver_id}",
            lambda: self._circle.get_link(subject_id, caregiver_id),
        )

    def evaluate_permission(
        self,
        requester_id: str,
        requester_role: RequesterRole,
        subject_id: str,
        category: PermissionCategory,
        action: Action = "read",
    ) -> PermissionDecision:
        """Decide one access request and explain the outcome.

        Raises:
            ValueError: If an id is empty or the category is unknown.
        """
        if not requester_id or not subject_id:
            raise ValueError("requester_id and subject_id must not be empty")
        permission_key = required_permission(category)

        def decision(allowed: bool, reason: str) -> PermissionDecision:
            return PermissionDecision(
                requester_id=requester_id,
                requester_role=requester_role,
                subject_id=subject_id,
                category=category,
                action=action,
                allowed=allowed,
                required_permission=permission_key,
                reason=reason,
            )

        if requester_role == "primary" and requester_id == subject_id:
            return decision(True, REASON_SELF_ACCESS)

        link = self._get_link(subject_id, requester_id)
        if link is None:
            return decision(False, REASON_NOT_IN_CARE_CIRCLE)
        if not getattr(link.permissions, permission_key):
            return decision(False, REASON_DENIED)
        if action in WRITE_ACTIONS and category not in link.write_categories:
            return decision(False, REASON_WRITE_NOT_ELEVATED)
        return decision(True, REASON_GRANTED)

    def check_permission(
        self,
        requester_id: str,
        requester_role: RequesterRole,
        subject_id: str,
        category: PermissionCategory,
        action: Action = "read",
    ) -> bool:
        return self.evaluate_permission(
            requester_id, requester_role, subject_id, category, action
        ).allowed

    def evaluate_multiple_permissions(
        self,
        requester_id: str,
        requester_role: RequesterRole,
        subject_id: str,
        categories: list[PermissionCategory],
        action: Action = "read",
    ) -> dict[PermissionCategory, PermissionDecision]:
        """Evaluate every category; a denial never short-circuits the rest."""
        return {
            category: self.evaluate_permission(
                requester_id, requester_role, subject_id, category, action
            )
            for category in categories
        }

    def check_multiple_permissions(
        self,
        requester_id: str,
        requester_role: RequesterRole,
        subject_id: str,
        categories: list[PermissionCategory],
        action: Action = "read",
    ) -> dict[PermissionCategory, bool]:
        decisions = self.evaluate_multiple_permissions(
            requester_id, requester_role, subject_id, categories, action
        )
        return {category: d.allowed for category, d in decisions.items()}

    def get_effective_permissions(
        self, caregiver_id: str, subject_id: str
    ) -> PermissionSet | None:
        """The caregiver's permission set for ``subject_id``, or ``None`` without a link."""
        link = self._get_link(subject_id, caregiver_id)
        return link.permissions if link is not None else None

    def verify_care_circle_membership(self, caregiver_id: str, subject_id: str) -> bool:
        return self._get_link(subject_id, caregiver_id) is not None

    def list_care_circle(self, subject_id: str) -> list[str]:
        """Caregiver ids linked to ``subject_id`` (uncached; membership changes often)."""
        return [link.caregiver_id for link in self._circle.list_links(subject_id)]
