"""
Settlement Engine.

Composes the engine components into one order settlement.  Pure logic:
order + rule snapshot + compliance -> ``SettlementResult``, no side
effects.  Either a complete result is returned or an exception is raised;
there is no partial result.

    classify -> calibrate/reward -> commission -> red line -> schedule
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from settlement.exceptions import SettlementError
from settlement.logger import StructuredLogger
from settlement.models.disbursement import RewardDisbursement, TruncationRecord
from settlement.models.order import ComplianceSnapshot, OrderSnapshot
from settlement.models.rule_config import RuleSnapshot
from settlement.models.service_models import (
    CommissionDecision,
    RewardBreakdown,
    SettlementResult,
    TierClassification,
)
from settlement.services.commission_rules import apply_red_line, calculate_commission
from settlement.services.payout_scheduler import schedule_disbursements
from settlement.services.reward_calculator import calculate_reward
from settlement.services.tier_classifier import classify

__all__ = ["calculate_settlement"]


def calculate_settlement(
    order: OrderSnapshot,
    snapshot: RuleSnapshot,
    compliance: Optional[ComplianceSnapshot] = None,
    logger: Optional[StructuredLogger] = None,
) -> SettlementResult:
    """Settle one order against a single rule snapshot.

    Args:
        order: The repair order.
        snapshot: The rule snapshot every step of this calculation uses.
        compliance: Merchant compliance state; ``None`` means unknown and
            leaves the commission at its base rate.
        logger: Optional logger passed down to the components.

    Returns:
        ``SettlementResult`` with the tier classification, reward
        breakdown, commission decision, final order reward, the scheduled
        ``awaiting_review`` disbursements and every truncation applied.

    Raises:
        ConfigurationMismatchError: The order references an unknown level.
        SettlementError: *compliance* belongs to another merchant.
    """
    if compliance is not None and compliance.merchant_id and (
        compliance.merchant_id != order.merchant_id
    ):
        raise SettlementError(
            f"Compliance snapshot for merchant '{compliance.merchant_id}' does not "
            f"belong to order {order.order_id} (merchant '{order.merchant_id}')."
        )

    tiers: TierClassification = classify(order, snapshot.reward)
    reward: RewardBreakdown = calculate_reward(order, tiers, snapshot.reward, logger)

    commission: CommissionDecision = calculate_commission(
        order.total_amount, compliance, snapshot.commission, logger
    )
    order_reward: Decimal
    red_line: Optional[TruncationRecord]
    order_reward, commission, red_line = apply_red_line(
        reward.order_reward,
        commission,
        snapshot.reward,
        order.order_id,
        logger,
        trust_level=order.trust_level,
    )

    disbursements: list[RewardDisbursement] = schedule_disbursements(
        order, order_reward, tiers.order_tier, reward.resolved_level
    )

    truncations: list[TruncationRecord] = list(reward.truncations)
    if red_line is not None:
        truncations.append(red_line)

    if logger is not None:
        logger.info(
            "Settled order %s (snapshot %s): tier %d/%s, reward %s over %d stage(s), "
            "commission %s at %s%%",
            order.order_id,
            snapshot.version,
            int(tiers.order_tier),
            tiers.vehicle_tier,
            order_reward,
            len(disbursements),
            commission.amount,
            commission.rate,
        )

    return SettlementResult(
        order_id=order.order_id,
        snapshot_version=snapshot.version,
        tiers=tiers,
        reward=reward,
        commission=commission,
        order_reward=order_reward,
        disbursements=tuple(disbursements),
        truncations=tuple(truncations),
    )
