"""CareWatch alert engine MCP server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastmcp import FastMCP

from carewatch.core.audit.logger import AuditLogger
from carewatch.core.cache.read_through import TTLCache
from carewatch.core.config.settings import get_settings
from carewatch.core.storage.database import AlertDatabase
from carewatch.core.storage.encryption import EncryptionError, FieldEncryptor
from carewatch.core.storage.repository import CareRepository
from carewatch.domains.alerting.connectors import CareCircleSource, PreferenceSource
from carewatch.domains.alerting.connectors.memory import (
    InMemoryCareCircle,
    InMemoryPreferences,
)
from carewatch.domains.alerting.domain_logic.dispatch_planner import DispatchPlanner
from carewatch.domains.alerting.domain_logic.permissions import PermissionModel
from carewatch.domains.alerting.domain_logic.preference_filter import PreferenceFilter
from carewatch.domains.alerting.tools.alert_tools import register_alert_tools
from carewatch.domains.alerting.tools.permission_tools import register_permission_tools

logger = logging.getLogger(__name__)


def create_app(
    *,
    care_circle_override: CareCircleSource | None = None,
    preferences_override: PreferenceSource | None = None,
    repository_override: CareRepository | None = None,
    audit_logger_override: AuditLogger | None = None,
) -> FastMCP:
    """Create and configure the CareWatch MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Initializes the encrypted alert store and audit trail (if configured)
    3. Wires the care-circle / preference sources behind read-through caches
    4. Builds the dispatch planner
    5. Registers all tools
    """
    settings = get_settings()

    server = FastMCP(
        "CareWatch Alert Engine",
        instructions=(
            "Health-alert decision engine. Classifies vitals against personal "
            "baselines, ranks and consolidates alerts, decides escalations, and "
            "plans which care-circle members receive which alert on which channel."
        ),
    )

    # --- Alert store + audit trail ---
    repository: CareRepository | None = repository_override
    audit_logger: AuditLogger | None = audit_logger_override
    if repository is None and settings.encryption_key:
        try:
            encryptor = FieldEncryptor(
                settings.encryption_key, previous_keys=settings.previous_keys
            )
            alert_db = AlertDatabase(settings.db_path)
            alert_db.initialize()
            repository = CareRepository(alert_db, encryptor)
            if settings.previous_keys:
                repository.reseal_alerts()
            if audit_logger is None:
                audit_logger = AuditLogger(alert_db)
            logger.info(
                "Alert store initialized: %s (schema v%d)",
                settings.db_path,
                alert_db.get_schema_version(),
            )
        except EncryptionError as exc:
            logger.error("Failed to initialize storage: %s", exc)
            repository = None
            logger.warning("Continuing without persistence; alerts will not be stored")
    elif repository is None:
        logger.info(
            "No ENCRYPTION_KEY configured, running without persistence. "
            "Set ENCRYPTION_KEY to enable the alert store."
        )

    # --- Read-side sources ---
    if care_circle_override is not None:
        care_circle: CareCircleSource = care_circle_override
    elif repository is not None:
        care_circle = repository
    else:
        care_circle = InMemoryCareCircle()
        logger.info("Using empty in-memory care circle")

    if preferences_override is not None:
        preferences: PreferenceSource = preferences_override
    elif repository is not None:
        preferences = repository
    else:
        preferences = InMemoryPreferences()

    permissions = PermissionModel(
        care_circle,
        cache=TTLCache(settings.cache_ttl_seconds, settings.cache_max_entries),
    )
    preference_filter = PreferenceFilter(
        preferences,
        cache=TTLCache(settings.cache_ttl_seconds, settings.cache_max_entries),
    )
    planner = DispatchPlanner(
        permissions,
        preference_filter,
        escalation_minutes=settings.escalation_threshold_minutes,
        relation_window=timedelta(minutes=settings.relation_window_minutes),
    )

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        status = {
            "status": "ok",
            "server": "CareWatch Alert Engine",
            "version": "0.1.0",
            "storage_enabled": repository is not None,
            "audit_enabled": audit_logger is not None,
            "escalation_threshold_minutes": settings.escalation_threshold_minutes,
        }
        if repository is not None:
            status["alerts_stored"] = repository.count_alerts()
        return status

    register_alert_tools(server, planner, repository, audit_logger)
    register_permission_tools(server, permissions, audit_logger)
    logger.info("Alert engine tools registered")

    if audit_logger is not None:
        from carewatch.domains.alerting.tools.audit_tools import register_audit_tools

        register_audit_tools(server, audit_logger)
        logger.info("Audit tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
