"""Shared test fixtures for CareWatch tests."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("DB_PATH", ":memory:")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from carewatch.domains.alerting.connectors.memory import (  # noqa: E402
    InMemoryCareCircle,
    InMemoryPreferences,
)
from carewatch.domains.alerting.domain_logic.models import (  # noqa: E402
    CareCircleLink,
    PermissionSet,
)
from carewatch.domains.alerting.domain_logic.permissions import (  # noqa: E402
    DEFAULT_PERMISSIONS,
    FULL_ACCESS_PERMISSIONS,
)

# Fixed clock for every time-dependent test
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _link(
    caregiver_id: str = "cg-1",
    subject_id: str = "subj-1",
    permissions: PermissionSet = DEFAULT_PERMISSIONS,
    write_categories: frozenset[str] = frozenset(),
    relationship_type: str = "child",
) -> CareCircleLink:
    return CareCircleLink(
        subject_id=subject_id,
        caregiver_id=caregiver_id,
        relationship_type=relationship_type,
        permissions=permissions,
        joined_at=NOW - timedelta(days=30),
        last_active_at=NOW - timedelta(days=1),
        write_categories=write_categories,
    )


@pytest.fixture
def now() -> datetime:
    return NOW


# ---------------------------------------------------------------------------
# In-memory sources
# ---------------------------------------------------------------------------

@pytest.fixture
def care_circle() -> InMemoryCareCircle:
    """subj-1 with a default-access child, a full-access spouse and a no-alerts friend."""
    return InMemoryCareCircle([
        _link("cg-child", permissions=DEFAULT_PERMISSIONS),
        _link(
            "cg-spouse",
            permissions=FULL_ACCESS_PERMISSIONS,
            write_categories=frozenset({"devices"}),
            relationship_type="spouse",
        ),
        _link(
            "cg-friend",
            permissions=PermissionSet(can_view_appointments=True, can_send_messages=True),
            relationship_type="friend",
        ),
    ])


@pytest.fixture
def preference_source() -> InMemoryPreferences:
    return InMemoryPreferences()


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def alert_db():
    """Create an in-memory AlertDatabase for testing."""
    from carewatch.core.storage.database import AlertDatabase

    db = AlertDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from carewatch.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def care_repository(alert_db, field_encryptor):
    """Create a CareRepository backed by in-memory SQLite."""
    from carewatch.core.storage.repository import CareRepository

    return CareRepository(alert_db, field_encryptor)


@pytest.fixture
def audit_logger(alert_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from carewatch.core.audit.logger import AuditLogger

    return AuditLogger(alert_db)
