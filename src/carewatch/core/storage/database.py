"""SQLite backing store for care-circle links, preferences, alerts and the audit trail.

The schema is built from an ordered list of migrations; each one is
applied at most once and recorded in ``schema_version``.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------

_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

# V1: care circle, preferences, alerts. Alert message and related data are
# stored encrypted; flags stay in the clear so open alerts can be queried.
_V1_ALERT_STORE = """
CREATE TABLE IF NOT EXISTS care_circle_links (
    subject_id            TEXT NOT NULL,
    caregiver_id          TEXT NOT NULL,
    relationship_type     TEXT NOT NULL,
    permissions_json      TEXT NOT NULL,
    write_categories_json TEXT NOT NULL DEFAULT '[]',
    joined_at             TEXT,
    last_active_at        TEXT,
    PRIMARY KEY (subject_id, caregiver_id)
);

CREATE TABLE IF NOT EXISTS notification_preferences (
    recipient_id      TEXT PRIMARY KEY,
    channels_json     TEXT NOT NULL,
    alert_types_json  TEXT NOT NULL DEFAULT '{}',
    quiet_start       TEXT,
    quiet_end         TEXT,
    updated_at        TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS alerts (
    id               TEXT PRIMARY KEY,
    subject_id       TEXT NOT NULL,
    type             TEXT NOT NULL,
    severity         TEXT NOT NULL,
    timestamp        TEXT NOT NULL,
    message_enc      TEXT NOT NULL,
    related_enc      TEXT,
    acknowledged     INTEGER NOT NULL DEFAULT 0,
    acknowledged_by  TEXT,
    acknowledged_at  TEXT,
    escalated        INTEGER NOT NULL DEFAULT 0,
    escalated_at     TEXT,
    created_at       TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_links_subject     ON care_circle_links(subject_id);
CREATE INDEX IF NOT EXISTS idx_alerts_subject    ON alerts(subject_id);
CREATE INDEX IF NOT EXISTS idx_alerts_timestamp  ON alerts(timestamp);
CREATE INDEX IF NOT EXISTS idx_alerts_open       ON alerts(acknowledged, escalated);
"""

# V2: audit trail of permission decisions and alert transitions
_V2_AUDIT_TRAIL = """
CREATE TABLE IF NOT EXISTS audit_log (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL,
    action          TEXT NOT NULL,
    requester_id    TEXT,
    requester_role  TEXT,
    subject_id      TEXT,
    category        TEXT,
    operation       TEXT,
    allowed         INTEGER,
    reason          TEXT,
    alert_id        TEXT,
    status          TEXT NOT NULL DEFAULT 'success',
    metadata_json   TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_log_time    ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_log_action  ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_log_subject ON audit_log(subject_id);
"""

MIGRATIONS: tuple[tuple[int, str, str], ...] = (
    (1, "alert store", _V1_ALERT_STORE),
    (2, "audit trail", _V2_AUDIT_TRAIL),
)

SCHEMA_VERSION = MIGRATIONS[-1][0]


class DatabaseError(Exception):
    """Raised when the alert database is used before it is open."""


class AlertDatabase:
    """Owns the SQLite connection of the alert store.

    Pass ``":memory:"`` (the default) for a throwaway database in tests;
    any other path is expanded and its parent directory created.

    Usage::

        with AlertDatabase("~/.carewatch/alerts.db") as db:
            with db.transaction() as conn:
                conn.execute(...)
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        """The open connection.

        Raises:
            DatabaseError: If :meth:`initialize` has not been called.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def _connect(self) -> sqlite3.Connection:
        target = self._db_path
        if target != ":memory:":
            path = Path(target).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            target = str(path)
        # The MCP server runs sync tools on worker threads.
        conn = sqlite3.connect(target, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    def initialize(self) -> None:
        """Open the connection and apply pending migrations. Safe to call twice."""
        if self._conn is not None:
            return
        self._conn = self._connect()
        self._migrate()
        logger.info("Alert database ready: %s (schema v%d)", self._db_path, SCHEMA_VERSION)

    def _migrate(self) -> None:
        conn = self.connection
        conn.executescript(_VERSION_TABLE)
        current = self.get_schema_version()
        for version, name, script in MIGRATIONS:
            if version <= current:
                continue
            conn.executescript(script)
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
            conn.commit()
            logger.info("Applied schema migration v%d: %s", version, name)

    def get_schema_version(self) -> int:
        version = self.connection.execute(
            "SELECT COALESCE(MAX(version), 0) FROM schema_version"
        ).fetchone()[0]
        return int(version)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back and re-raise on any error."""
        conn = self.connection
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()

    def close(self) -> None:
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        logger.info("Alert database closed")

    def __enter__(self) -> AlertDatabase:
        self.initialize()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
