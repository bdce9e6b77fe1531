"""Alert store repository: care circle, preferences and alerts in SQLite.

Implements the read-side protocols the engine consumes
(:class:`CareCircleSource`, :class:`PreferenceSource`) and applies alert
transitions with conditional updates so duplicate decisions are harmless.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any

from carewatch.core.storage.database import AlertDatabase
from carewatch.core.storage.encryption import FieldEncryptor
from carewatch.domains.alerting.domain_logic.models import (
    ALERT_TYPES,
    Alert,
    AlertTransition,
    AlertTypePreference,
    CareCircleLink,
    NotificationPreference,
    PermissionSet,
    QuietHours,
    related_data_from_dict,
    related_data_to_dict,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class CareRepository:
    """CRUD repository for the alert store.

    Usage::

        db = AlertDatabase(":memory:")
        db.initialize()
        repo = CareRepository(db, FieldEncryptor(key="..."))

        repo.put_link(link)
        repo.save_alert(alert)
        repo.apply_transition(transition)
    """

    def __init__(self, database: AlertDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    # ------------------------------------------------------------------
    # Care circle
    # ------------------------------------------------------------------

    def put_link(self, link: CareCircleLink) -> None:
        """Insert or replace the link for (subject, caregiver)."""
        with self._db.transaction() as conn:
            conn.execute(
                """INSERT INTO care_circle_links (
                    subject_id, caregiver_id, relationship_type, permissions_json,
                    write_categories_json, joined_at, last_active_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(subject_id, caregiver_id) DO UPDATE SET
                    relationship_type = excluded.relationship_type,
                    permissions_json = excluded.permissions_json,
                    write_categories_json = excluded.write_categories_json,
                    last_active_at = excluded.last_active_at""",
                (
                    link.subject_id,
                    link.caregiver_id,
                    link.relationship_type,
                    json.dumps(link.permissions.as_dict()),
                    json.dumps(sorted(link.write_categories)),
                    _iso(link.joined_at),
                    _iso(link.last_active_at),
                ),
            )

    def remove_link(self, subject_id: str, caregiver_id: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM care_circle_links WHERE subject_id = ? AND caregiver_id = ?",
                (subject_id, caregiver_id),
            )
        return cursor.rowcount > 0

    def get_link(self, subject_id: str, caregiver_id: str) -> CareCircleLink | None:
        row = self._db.connection.execute(
            "SELECT * FROM care_circle_links WHERE subject_id = ? AND caregiver_id = ?",
            (subject_id, caregiver_id),
        ).fetchone()
        return self._row_to_link(row) if row else None

    def list_links(self, subject_id: str) -> list[CareCircleLink]:
        rows = self._db.connection.execute(
            "SELECT * FROM care_circle_links WHERE subject_id = ? ORDER BY joined_at, caregiver_id",
            (subject_id,),
        ).fetchall()
        return [self._row_to_link(r) for r in rows]

    @staticmethod
    def _row_to_link(row: sqlite3.Row) -> CareCircleLink:
        return CareCircleLink(
            subject_id=row["subject_id"],
            caregiver_id=row["caregiver_id"],
            relationship_type=row["relationship_type"],
            permissions=PermissionSet.from_dict(json.loads(row["permissions_json"])),
            joined_at=_parse_dt(row["joined_at"]),
            last_active_at=_parse_dt(row["last_active_at"]),
            write_categories=frozenset(json.loads(row["write_categories_json"])),
        )

    # ------------------------------------------------------------------
    # Notification preferences
    # ------------------------------------------------------------------

    def put_preferences(self, preference: NotificationPreference) -> None:
        alert_types = {
            alert_type: {
                "enabled": pref.enabled,
                "allowed_severities": sorted(pref.allowed_severities),
                "channels": sorted(pref.channels) if pref.channels is not None else None,
            }
            for alert_type, pref in preference.alert_types.items()
        }
        quiet = preference.quiet_hours
        with self._db.transaction() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO notification_preferences
                   (recipient_id, channels_json, alert_types_json, quiet_start, quiet_end)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    preference.recipient_id,
                    json.dumps(sorted(preference.channels)),
                    json.dumps(alert_types),
                    quiet.start if quiet else None,
                    quiet.end if quiet else None,
                ),
            )

    def get_preferences(self, recipient_id: str) -> NotificationPreference | None:
        row = self._db.connection.execute(
            "SELECT * FROM notification_preferences WHERE recipient_id = ?",
            (recipient_id,),
        ).fetchone()
        if row is None:
            return None

        alert_types: dict[Any, AlertTypePreference] = {}
        for alert_type, raw in json.loads(row["alert_types_json"]).items():
            if alert_type not in ALERT_TYPES:
                logger.warning("Ignoring preference for unknown alert type %r", alert_type)
                continue
            channels = raw.get("channels")
            alert_types[alert_type] = AlertTypePreference(
                enabled=bool(raw.get("enabled", True)),
                allowed_severities=frozenset(raw.get("allowed_severities", [])),
                channels=frozenset(channels) if channels is not None else None,
            )

        quiet = None
        if row["quiet_start"] and row["quiet_end"]:
            quiet = QuietHours(start=row["quiet_start"], end=row["quiet_end"])

        return NotificationPreference(
            recipient_id=row["recipient_id"],
            channels=frozenset(json.loads(row["channels_json"])),
            alert_types=alert_types,
            quiet_hours=quiet,
        )

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def save_alert(self, alert: Alert) -> str:
        """Persist a new alert with its message and related data encrypted.

        Raises:
            RepositoryError: If an alert with the same id already exists.
        """
        row = (
            alert.id,
            alert.subject_id,
            alert.type,
            alert.severity,
            alert.timestamp.isoformat(),
            self._enc.encrypt(alert.message),
            self._enc.encrypt(related_data_to_dict(alert.related_data)) or None,
            1 if alert.acknowledged else 0,
            1 if alert.escalated else 0,
        )
        try:
            with self._db.transaction() as conn:
                conn.execute(
                    """INSERT INTO alerts (
                        id, subject_id, type, severity, timestamp,
                        message_enc, related_enc, acknowledged, escalated
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    row,
                )
        except sqlite3.IntegrityError as exc:
            raise RepositoryError(f"Alert {alert.id} already exists") from exc
        logger.debug("Saved alert %s (%s/%s)", alert.id, alert.type, alert.severity)
        return alert.id

    def get_alert(self, alert_id: str) -> Alert | None:
        row = self._db.connection.execute(
            "SELECT * FROM alerts WHERE id = ?", (alert_id,)
        ).fetchone()
        return self._row_to_alert(row) if row else None

    def list_alerts(
        self,
        *,
        subject_id: str | None = None,
        open_only: bool = False,
        limit: int = 100,
    ) -> list[Alert]:
        """Alerts newest first; ``open_only`` skips acknowledged ones."""
        conditions: list[str] = []
        params: list[Any] = []
        if subject_id:
            conditions.append("subject_id = ?")
            params.append(subject_id)
        if open_only:
            conditions.append("acknowledged = 0")

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        params.append(limit)
        rows = self._db.connection.execute(
            f"SELECT * FROM alerts{where} ORDER BY timestamp DESC LIMIT ?", params
        ).fetchall()
        return [self._row_to_alert(r) for r in rows]

    def apply_transition(self, transition: AlertTransition) -> bool:
        """Apply an acknowledge/escalate transition if it has not happened yet.

        Returns:
            ``True`` if this call changed the alert, ``False`` if it was
            already in the target state (or does not exist).
        """
        when = transition.decided_at.isoformat()
        if transition.transition == "escalate":
            sql = (
                "UPDATE alerts SET escalated = 1, escalated_at = ? "
                "WHERE id = ? AND escalated = 0"
            )
            params: tuple[Any, ...] = (when, transition.alert_id)
        elif transition.transition == "acknowledge":
            sql = (
                "UPDATE alerts SET acknowledged = 1, acknowledged_at = ?, acknowledged_by = ? "
                "WHERE id = ? AND acknowledged = 0"
            )
            params = (when, transition.actor_id, transition.alert_id)
        else:
            raise RepositoryError(f"Unknown transition: {transition.transition!r}")

        with self._db.transaction() as conn:
            cursor = conn.execute(sql, params)
        return cursor.rowcount > 0

    def reseal_alerts(self) -> int:
        """Re-encrypt every stored alert under the current key.

        Run after moving the old key to ``previous_keys``. Returns the number
        of rows rewritten.

        Raises:
            EncryptionError: If a row was sealed with a key this repository
                does not hold; nothing is rewritten in that case.
        """
        rows = self._db.connection.execute(
            "SELECT id, message_enc, related_enc FROM alerts"
        ).fetchall()
        updates = [
            (
                self._enc.rotate(row["message_enc"]),
                self._enc.rotate(row["related_enc"] or "") or None,
                row["id"],
            )
            for row in rows
        ]
        with self._db.transaction() as conn:
            conn.executemany(
                "UPDATE alerts SET message_enc = ?, related_enc = ? WHERE id = ?", updates
            )
        logger.info("Re-sealed %d alert(s) under the current key", len(updates))
        return len(updates)

    def count_alerts(self) -> int:
        return self._db.connection.execute("SELECT COUNT(*) FROM alerts").fetchone()[0]

    def _row_to_alert(self, row: sqlite3.Row) -> Alert:
        return Alert(
            id=row["id"],
            subject_id=row["subject_id"],
            type=row["type"],
            severity=row["severity"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            message=self._enc.decrypt(row["message_enc"]) or "",
            acknowledged=bool(row["acknowledged"]),
            escalated=bool(row["escalated"]),
            related_data=related_data_from_dict(
                row["type"], self._enc.decrypt(row["related_enc"] or "")
            ),
        )
