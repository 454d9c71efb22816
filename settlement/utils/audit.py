"""
Structured Audit Logging Utility.

Every disbursement state change and every settlement is logged as one
structured JSON audit line.  Provides a Pydantic-validated model and a
single function for consistent audit trail entries.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional, Union

from pydantic import BaseModel, Field

from settlement.logger import StructuredLogger

__all__ = ["AuditAction", "AuditEvent", "log_audit_event"]

# Flat scalars only; nested structures belong in their own models.
DetailValue = Union[str, int, float, bool, None]


class AuditAction(StrEnum):
    SETTLE = "SETTLE"
    VERDICT = "VERDICT"
    RELEASE = "RELEASE"
    FREEZE = "FREEZE"
    DEFER = "DEFER"
    REJECT = "REJECT"
    TRUNCATE = "TRUNCATE"


class AuditEvent(BaseModel):
    """Schema-validated representation of a single audit trail entry."""

    timestamp: str
    action: AuditAction
    entity_type: str
    entity_id: str
    actor_id: str
    details: dict[str, DetailValue] = Field(default_factory=dict)


def log_audit_event(
    logger: StructuredLogger,
    action: Union[AuditAction, str],
    entity_type: str,
    entity_id: str,
    actor_id: str,
    details: Optional[dict[str, DetailValue]] = None,
) -> AuditEvent:
    """Validate and log a structured JSON audit event.

    Args:
        logger: The logger instance to write to.
        action: What happened (``SETTLE``, ``RELEASE``, ``REJECT``...).
        entity_type: Type of entity affected (``"Order"``,
            ``"RewardDisbursement"``).
        entity_id: Identifier of the affected entity, e.g. ``"O-1/main"``.
        actor_id: Who triggered the change (a user id or ``"system"``).
        details: Optional additional context (amounts, reasons).

    Returns:
        The validated ``AuditEvent``.
    """
    event = AuditEvent(
        timestamp=datetime.now(timezone.utc).isoformat(),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        details=details or {},
    )
    logger.info("AUDIT: %s", json.dumps(event.model_dump(mode="json"), default=str))
    return event
