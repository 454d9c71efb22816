"""
Data Models Package.

Re-exports the settlement models for short imports:
    from settlement.models import OrderSnapshot, RuleSnapshot, RewardDisbursement
    from settlement.models import DisbursementStatus, ReviewStage, VehicleTier
"""

from __future__ import annotations

from settlement.models.disbursement import RewardDisbursement, TruncationRecord
from settlement.models.enums import (
    BlacklistType,
    CommissionAdjustment,
    ComplexityLevelId,
    ContentQuality,
    DisbursementStatus,
    GateOutcome,
    OrderTier,
    ReviewStage,
    ReviewVerdict,
    TruncationReason,
    VehicleTier,
)
from settlement.models.order import (
    BlacklistEntry,
    ComplianceSnapshot,
    OrderLineItem,
    OrderSnapshot,
    UserRiskSnapshot,
    ViolationRecord,
)
from settlement.models.rule_config import (
    AntiFraudConfig,
    CalibrationMatrix,
    CommissionRuleConfig,
    ComplexityLevel,
    RewardRuleConfig,
    RuleSnapshot,
)
from settlement.models.service_models import (
    CommissionDecision,
    GateContext,
    GateDecision,
    ItemReward,
    RewardBreakdown,
    ServiceResult,
    SettlementResult,
    TierClassification,
)

__all__ = [
    "AntiFraudConfig",
    "BlacklistEntry",
    "BlacklistType",
    "CalibrationMatrix",
    "CommissionAdjustment",
    "CommissionDecision",
    "GateContext",
    "CommissionRuleConfig",
    "ComplexityLevel",
    "ComplexityLevelId",
    "ComplianceSnapshot",
    "ContentQuality",
    "DisbursementStatus",
    "GateDecision",
    "GateOutcome",
    "ItemReward",
    "OrderLineItem",
    "OrderSnapshot",
    "OrderTier",
    "ReviewStage",
    "ReviewVerdict",
    "RewardBreakdown",
    "RewardDisbursement",
    "RewardRuleConfig",
    "RuleSnapshot",
    "ServiceResult",
    "SettlementResult",
    "TierClassification",
    "TruncationReason",
    "TruncationRecord",
    "UserRiskSnapshot",
    "VehicleTier",
    "ViolationRecord",
]
