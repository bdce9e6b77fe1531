"""Alert engine models and domain constants.

Everything here is an immutable value object. State transitions on alerts
(acknowledge / escalate) produce new values; persisting them is the job of
the external alert store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Union


# ---------------------------------------------------------------------------
# Enumerations (as Literal string types)
# ---------------------------------------------------------------------------

Severity = Literal["low", "medium", "high", "critical"]
AlertType = Literal[
    "emergency",
    "fall_detection",
    "vital_signs",
    "check_in",
    "medication",
    "device",
    "appointment",
]
Direction = Literal["above", "below"]
ReadingSource = Literal["manual", "device", "wearable"]
Channel = Literal["push", "sms", "email"]
RequesterRole = Literal["primary", "secondary"]
Action = Literal["read", "write", "delete"]
Metric = Literal[
    "heart_rate",
    "systolic_bp",
    "diastolic_bp",
    "temperature",
    "oxygen_saturation",
    "weight",
]
PermissionCategory = Literal[
    "vitals",
    "medications",
    "appointments",
    "health_records",
    "alerts",
    "messages",
    "devices",
]

# Ascending order; index doubles as the comparison rank.
SEVERITY_ORDER: tuple[Severity, ...] = ("low", "medium", "high", "critical")

ALERT_TYPES: tuple[AlertType, ...] = (
    "emergency",
    "fall_detection",
    "vital_signs",
    "check_in",
    "medication",
    "device",
    "appointment",
)

METRICS: tuple[Metric, ...] = (
    "heart_rate",
    "systolic_bp",
    "diastolic_bp",
    "temperature",
    "oxygen_saturation",
    "weight",
)

ALL_CHANNELS: frozenset[Channel] = frozenset({"push", "sms", "email"})

METRIC_LABELS: dict[Metric, str] = {
    "heart_rate": "heart rate",
    "systolic_bp": "systolic blood pressure",
    "diastolic_bp": "diastolic blood pressure",
    "temperature": "temperature",
    "oxygen_saturation": "oxygen saturation",
    "weight": "weight",
}


def severity_rank(severity: Severity) -> int:
    """Position of ``severity`` in :data:`SEVERITY_ORDER` (low = 0)."""
    return SEVERITY_ORDER.index(severity)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones pass through unchanged."""
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Vitals
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VitalsReading:
    """A single vitals measurement for one subject."""

    subject_id: str
    timestamp: datetime
    heart_rate: float | None = None          # bpm
    systolic_bp: float | None = None         # mmHg
    diastolic_bp: float | None = None        # mmHg
    temperature: float | None = None         # °F
    oxygen_saturation: float | None = None   # %
    weight: float | None = None              # lb
    source: ReadingSource = "manual"

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", as_utc(self.timestamp))

    def present_metrics(self) -> dict[Metric, float]:
        """Return the metrics carried by this reading, in :data:`METRICS` order."""
        values: dict[Metric, float] = {}
        for metric in METRICS:
            value = getattr(self, metric)
            if value is not None:
                values[metric] = value
        return values


@dataclass(frozen=True)
class Range:
    """Inclusive numeric band ``[min, max]``."""

    min: float
    max: float

    @property
    def width(self) -> float:
        return self.max - self.min

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


@dataclass(frozen=True)
class BaselineRange:
    """Subject-specific normal ranges; metrics left unset use clinical defaults."""

    subject_id: str
    ranges: dict[Metric, Range] = field(default_factory=dict)

    def for_metric(self, metric: Metric) -> Range | None:
        return self.ranges.get(metric)


@dataclass(frozen=True)
class AnomalyFinding:
    """One metric that fell outside its active range."""

    metric: Metric
    observed_value: float
    expected_range: Range
    severity: Severity
    direction: Direction
    description: str = ""


# ---------------------------------------------------------------------------
# Related data (tagged by alert type)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VitalSignsContext:
    metric: str


@dataclass(frozen=True)
class MedicationContext:
    medication_id: str


@dataclass(frozen=True)
class DeviceContext:
    device_id: str


RelatedData = Union[VitalSignsContext, MedicationContext, DeviceContext]

# Which context variant is comparable for each alert type.
RELATED_DATA_BY_TYPE: dict[AlertType, type] = {
    "vital_signs": VitalSignsContext,
    "medication": MedicationContext,
    "device": DeviceContext,
}


def related_data_to_dict(data: RelatedData | None) -> dict[str, str] | None:
    """Serialize a related-data variant to a plain dict (store / wire form)."""
    if data is None:
        return None
    if isinstance(data, VitalSignsContext):
        return {"metric": data.metric}
    if isinstance(data, MedicationContext):
        return {"medication_id": data.medication_id}
    return {"device_id": data.device_id}


def related_data_from_dict(
    alert_type: AlertType, payload: dict | None
) -> RelatedData | None:
    """Rebuild the variant for ``alert_type`` from a plain dict.

    Keys that do not belong to the alert type's variant are ignored, so a
    malformed or foreign payload simply yields ``None``.
    """
    if not payload:
        return None
    if alert_type == "vital_signs" and payload.get("metric"):
        return VitalSignsContext(metric=str(payload["metric"]))
    if alert_type == "medication" and payload.get("medication_id"):
        return MedicationContext(medication_id=str(payload["medication_id"]))
    if alert_type == "device" and payload.get("device_id"):
        return DeviceContext(device_id=str(payload["device_id"]))
    return None


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Alert:
    """A notification-worthy event about one subject."""

    id: str
    subject_id: str
    type: AlertType
    severity: Severity
    timestamp: datetime
    message: str
    acknowledged: bool = False
    escalated: bool = False
    related_data: RelatedData | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", as_utc(self.timestamp))


@dataclass(frozen=True)
class AlertTransition:
    """A one-way state change the alert store should apply.

    ``condition`` names the flag that must still be false for the update to
    apply (``UPDATE ... WHERE <condition> = 0``), which makes concurrent
    duplicate decisions harmless.
    """

    alert_id: str
    subject_id: str
    transition: Literal["acknowledge", "escalate"]
    condition: Literal["acknowledged", "escalated"]
    decided_at: datetime
    actor_id: str | None = None


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PermissionSet:
    """Per-category capabilities a subject grants one caregiver."""

    can_view_vitals: bool = False
    can_view_medications: bool = False
    can_view_appointments: bool = False
    can_view_health_records: bool = False
    can_receive_alerts: bool = False
    can_send_messages: bool = False
    can_manage_devices: bool = False

    def as_dict(self) -> dict[str, bool]:
        return {
            "can_view_vitals": self.can_view_vitals,
            "can_view_medications": self.can_view_medications,
            "can_view_appointments": self.can_view_appointments,
            "can_view_health_records": self.can_view_health_records,
            "can_receive_alerts": self.can_receive_alerts,
            "can_send_messages": self.can_send_messages,
            "can_manage_devices": self.can_manage_devices,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PermissionSet:
        known = cls().as_dict().keys()
        return cls(**{k: bool(v) for k, v in data.items() if k in known})


@dataclass(frozen=True)
class CareCircleLink:
    """A caregiver's accepted membership in a subject's care circle."""

    subject_id: str
    caregiver_id: str
    relationship_type: str
    permissions: PermissionSet
    joined_at: datetime | None = None
    last_active_at: datetime | None = None
    # Categories explicitly elevated for caregiver writes (e.g. "devices").
    write_categories: frozenset[str] = frozenset()


@dataclass(frozen=True)
class PermissionDecision:
    """Outcome of one permission check, with enough detail for an audit trail."""

    requester_id: str
    requester_role: RequesterRole
    subject_id: str
    category: PermissionCategory
    action: Action
    allowed: bool
    required_permission: str
    reason: str


# ---------------------------------------------------------------------------
# Notification preferences
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AlertTypePreference:
    """A recipient's settings for one alert type."""

    enabled: bool = True
    allowed_severities: frozenset[Severity] = frozenset(SEVERITY_ORDER)
    channels: frozenset[Channel] | None = None  # None = use recipient default


@dataclass(frozen=True)
class QuietHours:
    """Daily ``HH:MM`` window; ``start > end`` means it spans midnight."""

    start: str
    end: str


@dataclass(frozen=True)
class NotificationPreference:
    """All notification settings of one recipient."""

    recipient_id: str
    channels: frozenset[Channel] = ALL_CHANNELS
    alert_types: dict[AlertType, AlertTypePreference] = field(default_factory=dict)
    quiet_hours: QuietHours | None = None

    def for_type(self, alert_type: AlertType) -> AlertTypePreference | None:
        return self.alert_types.get(alert_type)


# ---------------------------------------------------------------------------
# Dispatch plan
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DispatchInstruction:
    """One (alert, recipient, channels) tuple for the notification dispatcher."""

    alert: Alert
    recipient_id: str
    channels: frozenset[Channel]
    priority: float
    message: str
    grouped_alert_ids: tuple[str, ...] = ()
