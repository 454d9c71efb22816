"""
Disbursement Record Model.

One ``RewardDisbursement`` exists per (order, review stage).  Records are
frozen; every status change produces a new record through
``settlement.services.payout_scheduler.transition`` so that the state
machine is the only writer.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from settlement.models.enums import (
    ComplexityLevelId,
    DisbursementStatus,
    ReviewStage,
    TruncationReason,
)
from settlement.utils.clock import ensure_utc_optional

__all__ = ["DisbursementKey", "RewardDisbursement", "TruncationRecord"]

DisbursementKey = tuple[str, ReviewStage]


class TruncationRecord(BaseModel):
    """Audit entry for an amount reduced by a cap or ceiling."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    order_id: str
    reason: TruncationReason
    before: Decimal
    after: Decimal
    stage: Optional[ReviewStage] = None
    detail: str = ""


class RewardDisbursement(BaseModel):
    """A single milestone payout and its lifecycle state."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    order_id: str
    user_id: str
    merchant_id: str = ""
    stage: ReviewStage
    complexity_level: ComplexityLevelId
    scheduled_amount: Decimal = Field(ge=0)
    amount: Decimal = Field(ge=0)
    tax_deducted: Decimal = Field(default=Decimal("0"), ge=0)
    status: DisbursementStatus = DisbursementStatus.AWAITING_REVIEW
    pending_since: Optional[datetime] = None
    release_time: Optional[datetime] = None
    reason: Optional[str] = None
    sampling_cleared: bool = False

    @field_validator("pending_since", "release_time")
    @classmethod
    def _as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc_optional(v)

    @property
    def key(self) -> DisbursementKey:
        return (self.order_id, self.stage)
