"""
Base Service Class.

Shared plumbing for the boundary services: an injected logger and the
audit switch read from ``AppConfig.AUDIT_LOG_ENABLED``.
"""

from __future__ import annotations

from typing import Optional

from settlement.logger import StructuredLogger
from settlement.utils.audit import AuditAction, DetailValue, log_audit_event


class BaseService:
    """Base class for all service classes. Provides a logger and audit hook."""

    def __init__(self, logger: StructuredLogger, audit_enabled: bool = True) -> None:
        self._logger: StructuredLogger = logger
        self._audit_enabled: bool = audit_enabled

    def _audit(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        actor_id: str,
        details: Optional[dict[str, DetailValue]] = None,
    ) -> None:
        if not self._audit_enabled:
            return
        log_audit_event(
            logger=self._logger,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            details=details,
        )
