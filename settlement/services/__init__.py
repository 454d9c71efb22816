"""
Settlement Services Package.

Pure engine components (tier classification, calibration, reward,
payout scheduling, anti-fraud gate, commission) plus the boundary
services that hold disbursement state.

The ``create_services()`` factory wires the boundary services together
for one rule snapshot and returns a typed dict that entry points (CLI,
workers) can consume without knowing the dependency graph.
"""

from __future__ import annotations

from typing import Optional, TypedDict

from settlement.config import AppConfig, get_config
from settlement.logger import StructuredLogger, get_logger
from settlement.models.rule_config import RuleSnapshot
from settlement.services.release_service import DisbursementReleaseService
from settlement.services.rule_loader import default_rule_snapshot, load_snapshot_file
from settlement.services.settlement_service import SettlementService


class ServiceContainer(TypedDict):
    """Typed container for the boundary services."""

    snapshot: RuleSnapshot
    release_service: DisbursementReleaseService
    settlement_service: SettlementService


def resolve_snapshot(config: AppConfig) -> RuleSnapshot:
    """Load the snapshot named by ``RULES_SNAPSHOT_PATH``, else the defaults."""
    path = config.rules_snapshot_path
    if path is None:
        return default_rule_snapshot()
    return load_snapshot_file(path)


def create_services(
    config: Optional[AppConfig] = None,
    snapshot: Optional[RuleSnapshot] = None,
    logger: Optional[StructuredLogger] = None,
) -> ServiceContainer:
    """
    Wire the boundary services together.

    Args:
        config: Process settings; defaults to the cached ``get_config()``.
        snapshot: Rule snapshot shared by every calculation of this
            container; resolved from ``config`` when omitted.
        logger: Logger injected into every service.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.

    Raises:
        ConfigurationError: The configured snapshot file is invalid.
    """
    cfg: AppConfig = config or get_config()
    log: StructuredLogger = logger or get_logger("settlement.services")
    rules: RuleSnapshot = snapshot or resolve_snapshot(cfg)

    release_service = DisbursementReleaseService(
        logger=log,
        antifraud=rules.antifraud,
        audit_enabled=cfg.AUDIT_LOG_ENABLED,
        lock_timeout_s=cfg.RELEASE_LOCK_TIMEOUT_S,
    )
    settlement_service = SettlementService(
        logger=log,
        snapshot=rules,
        release_service=release_service,
        audit_enabled=cfg.AUDIT_LOG_ENABLED,
    )

    log.info("Services ready (rule snapshot %s)", rules.version)
    return ServiceContainer(
        snapshot=rules,
        release_service=release_service,
        settlement_service=settlement_service,
    )


__all__ = ["ServiceContainer", "create_services", "resolve_snapshot"]
