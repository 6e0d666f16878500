"""Core application configuration and utilities."""

from app.core.audit import AuditAction, AuditEvent, log_analysis_run, log_audit, log_transition
from app.core.config import settings
from app.core.database import Base, get_db
from app.core.security import (
    OrganizationContext,
    RequireAuth,
    RequireOrganization,
    verify_api_key,
)

__all__ = [
    # Config
    "settings",
    # Database
    "Base",
    "get_db",
    # Security
    "OrganizationContext",
    "RequireAuth",
    "RequireOrganization",
    "verify_api_key",
    # Audit
    "AuditAction",
    "AuditEvent",
    "log_analysis_run",
    "log_audit",
    "log_transition",
]
