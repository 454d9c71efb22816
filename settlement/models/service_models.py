"""
Service Layer Data Transfer Objects.

Pydantic models for the outputs of the settlement engine components and
the ``ServiceResult`` envelope returned at the service boundary.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from settlement.models.disbursement import RewardDisbursement, TruncationRecord
from settlement.models.enums import (
    CommissionAdjustment,
    ComplexityLevelId,
    GateOutcome,
    OrderTier,
    VehicleTier,
)
from settlement.models.order import BlacklistEntry, ComplianceSnapshot, UserRiskSnapshot
from settlement.models.rule_config import AntiFraudConfig
from settlement.utils.clock import ensure_utc, ensure_utc_optional

T = TypeVar("T")

__all__ = [
    "CommissionDecision",
    "GateContext",
    "GateDecision",
    "ItemReward",
    "RewardBreakdown",
    "ServiceResult",
    "SettlementResult",
    "TierClassification",
]


class _OutputModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


# ---------------------------------------------------------------------------
# Classification & reward
# ---------------------------------------------------------------------------

class TierClassification(_OutputModel):
    """Output of the tier classifier."""

    order_tier: OrderTier
    vehicle_tier: VehicleTier


class ItemReward(_OutputModel):
    """Per line-item reward with every intermediate value kept for replay."""

    level_id: ComplexityLevelId
    attributable_amount: Decimal
    calibration: Decimal
    effective_float_ratio: Decimal
    uncapped_reward: Decimal
    item_cap: Decimal
    reward: Decimal


class RewardBreakdown(_OutputModel):
    """Output of the reward calculator for one order."""

    items: tuple[ItemReward, ...]
    raw_order_reward: Decimal
    order_cap: Decimal
    order_reward: Decimal
    resolved_level: ComplexityLevelId
    premium_float: Decimal = Decimal("0")
    truncations: tuple[TruncationRecord, ...] = ()


# ---------------------------------------------------------------------------
# Commission
# ---------------------------------------------------------------------------

class CommissionDecision(_OutputModel):
    """Merchant commission for one order (rates in percentage points)."""

    base_rate: Decimal
    rate: Decimal
    amount: Decimal
    adjustment: CommissionAdjustment = CommissionAdjustment.NONE
    capped_by_red_line: bool = False


# ---------------------------------------------------------------------------
# Anti-fraud
# ---------------------------------------------------------------------------

class GateContext(_OutputModel):
    """Frozen inputs the anti-fraud gate evaluates a release against.

    ``l1_released_in_window`` is the authoritative trailing-window total
    kept by the release service.  When it is ``None`` the gate falls back
    to the figure carried on the user's risk snapshot.
    """

    now: datetime
    config: AntiFraudConfig = Field(default_factory=AntiFraudConfig)
    user: UserRiskSnapshot
    compliance: ComplianceSnapshot = Field(default_factory=ComplianceSnapshot)
    blacklist: tuple[BlacklistEntry, ...] = ()
    l1_released_in_window: Optional[Decimal] = None

    @field_validator("now")
    @classmethod
    def _as_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class GateDecision(_OutputModel):
    """Outcome of a single release attempt through the anti-fraud gate."""

    outcome: GateOutcome
    amount: Decimal
    reasons: tuple[str, ...] = ()
    truncations: tuple[TruncationRecord, ...] = ()
    release_not_before: Optional[datetime] = None

    @field_validator("release_not_before")
    @classmethod
    def _as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc_optional(v)


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

class SettlementResult(_OutputModel):
    """Complete, all-or-nothing result of settling one order."""

    order_id: str
    snapshot_version: str
    tiers: TierClassification
    reward: RewardBreakdown
    commission: CommissionDecision
    order_reward: Decimal
    disbursements: tuple[RewardDisbursement, ...]
    truncations: tuple[TruncationRecord, ...] = Field(default=())


# ---------------------------------------------------------------------------
# Generic service models
# ---------------------------------------------------------------------------

class ServiceResult(BaseModel, Generic[T]):
    """
    Standard service return envelope.

    All service methods return this, providing a consistent contract
    for callers at the boundary (HTTP handlers, workers, the CLI).
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    status_code: int = 200
