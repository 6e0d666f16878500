"""Audit logging for revenue ledger operations.

Provides logging for:
- Analysis runs and the findings they persist
- Lifecycle transitions on findings and recommendations
- Fee schedule changes

Financial recommendations must be explainable after the fact, so every
ledger write and every status change goes through ``log_audit``. This log
should be shipped to an append-only store in production.
"""

import logging
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

# Separate audit logger for ledger events
audit_logger = logging.getLogger("audit")


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Data access
    READ = "read"
    CREATE = "create"
    UPDATE = "update"

    # Ledger
    ANALYZE = "analyze"
    TRANSITION = "transition"
    IMPLEMENT = "implement"

    # System
    ERROR = "error"


class AuditEvent(BaseModel):
    """Audit event record.

    Contains all relevant context for an auditable action.
    """

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    action: AuditAction = Field(..., description="Type of action performed")
    resource_type: str = Field(..., description="Type of ledger record")
    resource_id: str | None = Field(None, description="ID of specific record")
    organization_id: str | None = Field(None, description="Owning organization")
    user_id: str | None = Field(None, description="User who performed action")
    details: dict | None = Field(None, description="Additional context")
    success: bool = Field(True, description="Whether action succeeded")


def log_audit(
    action: AuditAction,
    resource_type: str,
    resource_id: str | None = None,
    organization_id: str | None = None,
    user_id: str | None = None,
    details: dict | None = None,
    success: bool = True,
) -> AuditEvent:
    """Log an audit event.

    Args:
        action: Type of action being audited
        resource_type: The type of ledger record involved
        resource_id: Specific record identifier
        organization_id: Organization that owns the record
        user_id: User performing the action
        details: Additional context
        success: Whether the action succeeded

    Returns:
        The created AuditEvent
    """
    event = AuditEvent(
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        user_id=user_id,
        details=details,
        success=success,
    )

    log_level = logging.INFO if success else logging.WARNING
    audit_logger.log(
        log_level,
        f"AUDIT: {action.value} {resource_type}"
        f"{f'/{resource_id}' if resource_id else ''}"
        f"{f' org={organization_id}' if organization_id else ''}"
        f" success={success}",
        extra={"audit_event": event.model_dump(mode="json")},
    )

    return event


def log_analysis_run(
    analyzer: str,
    organization_id: str,
    persisted: int,
    failed: int = 0,
    user_id: str | None = None,
) -> AuditEvent:
    """Log the persistence phase of an analysis run.

    Args:
        analyzer: Name of the analyzer that produced the findings
        organization_id: Organization analyzed
        persisted: Number of ledger records written
        failed: Number of records that could not be written
        user_id: User who requested the run

    Returns:
        The created AuditEvent
    """
    return log_audit(
        action=AuditAction.ANALYZE,
        resource_type=analyzer,
        organization_id=organization_id,
        user_id=user_id,
        details={"persisted": persisted, "failed": failed},
        success=failed == 0,
    )


def log_transition(
    resource_type: str,
    resource_id: str,
    from_status: str,
    to_status: str,
    organization_id: str | None = None,
    user_id: str | None = None,
) -> AuditEvent:
    """Log a lifecycle transition on a ledger record.

    Args:
        resource_type: Ledger record type (leakage, fee_analysis, opportunity)
        resource_id: Record identifier
        from_status: Status before the transition
        to_status: Status after the transition
        organization_id: Owning organization
        user_id: User performing the transition

    Returns:
        The created AuditEvent
    """
    return log_audit(
        action=AuditAction.TRANSITION,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        user_id=user_id,
        details={"from": from_status, "to": to_status},
    )
