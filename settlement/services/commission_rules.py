"""
Commission Rules Engine.

Pure-function module computing the merchant commission for a repair
order and the compliance red line it imposes on the owner's reward.

Rates are percentage points (``Decimal("8")`` means 8% of the order
amount).  The compliance adjustment moves the base tier rate by a fixed
number of points and is bounded relative to that base rate:

    down : base - downPercent, never below base * downMinRatio / 100
    up   : base + upPercent,   never above base * upMaxRatio / 100

Functions are stateless: input data -> output result, no side effects.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from settlement.logger import StructuredLogger
from settlement.models.disbursement import TruncationRecord
from settlement.models.enums import CommissionAdjustment, TruncationReason
from settlement.models.order import ComplianceSnapshot
from settlement.models.rule_config import CommissionRuleConfig, RewardRuleConfig
from settlement.models.service_models import CommissionDecision
from settlement.utils.money import ZERO, clamp_non_negative, percent_of, to_cents

__all__ = [
    "COMPLAINT_RATE_DOWN_MAX",
    "COMPLIANCE_RATE_DOWN_MIN",
    "COMPLIANCE_RATE_UP_BELOW",
    "apply_red_line",
    "base_commission_rate",
    "calculate_commission",
    "TRUST_LEVEL_RED_LINES",
    "red_line_ceiling",
    "red_line_percent",
    "select_adjustment",
]

# Compliance thresholds, in percent.
COMPLIANCE_RATE_DOWN_MIN: Decimal = Decimal("95")
COMPLAINT_RATE_DOWN_MAX: Decimal = Decimal("1")
COMPLIANCE_RATE_UP_BELOW: Decimal = Decimal("80")

# Red line (percent of commission) for trusted requesters; lower levels use
# the configured complianceRedLine.
TRUST_LEVEL_RED_LINES: dict[int, Decimal] = {
    2: Decimal("80"),
    3: Decimal("90"),
    4: Decimal("100"),
}


def base_commission_rate(order_amount: Decimal, config: CommissionRuleConfig) -> Decimal:
    """Return the amount-tier rate (upper bounds inclusive)."""
    if order_amount <= config.commission_tier1_max:
        return config.commission_tier1_rate
    if order_amount <= config.commission_tier2_max:
        return config.commission_tier2_rate
    return config.commission_tier3_rate


def select_adjustment(compliance: Optional[ComplianceSnapshot]) -> CommissionAdjustment:
    """Pick the compliance adjustment for a merchant.

    Up-adjustment (poor compliance or any open violation) wins over the
    down-adjustment.  Unknown rates never trigger an adjustment by
    themselves.
    """
    if compliance is None:
        return CommissionAdjustment.NONE

    compliance_rate: Optional[Decimal] = compliance.compliance_rate
    complaint_rate: Optional[Decimal] = compliance.complaint_rate

    if compliance.has_open_violation or (
        compliance_rate is not None and compliance_rate < COMPLIANCE_RATE_UP_BELOW
    ):
        return CommissionAdjustment.UP

    if (
        compliance_rate is not None
        and complaint_rate is not None
        and compliance_rate >= COMPLIANCE_RATE_DOWN_MIN
        and complaint_rate <= COMPLAINT_RATE_DOWN_MAX
    ):
        return CommissionAdjustment.DOWN

    return CommissionAdjustment.NONE


def calculate_commission(
    order_amount: Decimal,
    compliance: Optional[ComplianceSnapshot],
    config: CommissionRuleConfig,
    logger: Optional[StructuredLogger] = None,
) -> CommissionDecision:
    """
    Calculate the merchant commission for one order.

    Args:
        order_amount: Order total (negative values are treated as zero).
        compliance: Merchant compliance state, or ``None`` when unknown.
        config: Commission rules from the active snapshot.
        logger: Optional logger for adjustment decisions.

    Returns:
        ``CommissionDecision`` with base rate, effective rate and amount.
        The effective rate always lies within
        ``[base * downMinRatio%, base * upMaxRatio%]``.
    """
    amount: Decimal = clamp_non_negative(order_amount)
    base_rate: Decimal = base_commission_rate(amount, config)
    adjustment: CommissionAdjustment = select_adjustment(compliance)

    rate: Decimal = base_rate
    if adjustment == CommissionAdjustment.DOWN:
        floor: Decimal = percent_of(base_rate, config.commission_down_min_ratio)
        rate = max(base_rate - config.commission_down_percent, floor)
    elif adjustment == CommissionAdjustment.UP:
        ceiling: Decimal = percent_of(base_rate, config.commission_up_max_ratio)
        rate = min(base_rate + config.commission_up_percent, ceiling)

    if logger is not None and adjustment != CommissionAdjustment.NONE:
        logger.debug(
            "Commission rate adjusted %s: %s%% -> %s%%", adjustment, base_rate, rate
        )

    return CommissionDecision(
        base_rate=base_rate,
        rate=rate,
        amount=to_cents(percent_of(amount, rate)),
        adjustment=adjustment,
    )


def red_line_percent(config: RewardRuleConfig, trust_level: Optional[int] = None) -> Decimal:
    """Share of the commission the reward may reach for a requester of *trust_level*."""
    if trust_level is None:
        return config.compliance_red_line
    return max(
        config.compliance_red_line,
        TRUST_LEVEL_RED_LINES.get(trust_level, config.compliance_red_line),
    )


def red_line_ceiling(
    commission_amount: Decimal,
    config: RewardRuleConfig,
    trust_level: Optional[int] = None,
) -> Decimal:
    """Maximum reward allowed for an order by the compliance red line."""
    return to_cents(percent_of(commission_amount, red_line_percent(config, trust_level)))


def apply_red_line(
    reward: Decimal,
    decision: CommissionDecision,
    config: RewardRuleConfig,
    order_id: str = "",
    logger: Optional[StructuredLogger] = None,
    trust_level: Optional[int] = None,
) -> tuple[Decimal, CommissionDecision, Optional[TruncationRecord]]:
    """Keep the reward within the red-line percent of the commission.

    The percent is ``complianceRedLine``, raised to 80/90/100 for requesters
    at trust level 2/3/4.

    Returns:
        Tuple of (reward, decision, truncation).  When the reward was
        reduced the decision comes back with ``capped_by_red_line`` set and
        a ``TruncationRecord`` describes the reduction; otherwise the
        inputs are returned unchanged and the truncation is ``None``.
    """
    percent: Decimal = red_line_percent(config, trust_level)
    ceiling: Decimal = red_line_ceiling(decision.amount, config, trust_level)
    if reward <= ceiling:
        return reward, decision, None

    capped: Decimal = max(ZERO, ceiling)
    truncation = TruncationRecord(
        order_id=order_id,
        reason=TruncationReason.COMPLIANCE_RED_LINE,
        before=reward,
        after=capped,
        detail=f"{percent}% of commission {decision.amount}",
    )
    if logger is not None:
        logger.warning(
            "Order %s: reward %s exceeds compliance red line, capped at %s",
            order_id, reward, capped,
        )
    return capped, decision.model_copy(update={"capped_by_red_line": True}), truncation
