"""
Tier Classifier.

Maps an order's total amount and its vehicle's declared price to ordinal
tiers.  Pure and total: amounts are clamped to non-negative and a missing
vehicle price falls back to the neutral ``medium`` tier.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from settlement.models.enums import OrderTier, VehicleTier
from settlement.models.order import OrderSnapshot
from settlement.models.rule_config import RewardRuleConfig
from settlement.models.service_models import TierClassification
from settlement.utils.money import ZERO, clamp_non_negative

__all__ = ["classify", "classify_order_tier", "classify_vehicle_tier"]


def classify_order_tier(amount: Optional[Decimal], config: RewardRuleConfig) -> OrderTier:
    """Return the order tier for *amount* (upper bounds are inclusive)."""
    a: Decimal = clamp_non_negative(amount)
    if a <= config.order_tier1_max:
        return OrderTier.TIER_1
    if a <= config.order_tier2_max:
        return OrderTier.TIER_2
    if a <= config.order_tier3_max:
        return OrderTier.TIER_3
    return OrderTier.TIER_4


def classify_vehicle_tier(price: Optional[Decimal], config: RewardRuleConfig) -> VehicleTier:
    """Return the vehicle tier for a declared *price*.

    Missing or zero prices map to ``MEDIUM`` which carries no calibration
    boost or penalty.
    """
    p: Decimal = clamp_non_negative(price)
    if p == ZERO:
        return VehicleTier.MEDIUM
    if p <= config.vehicle_tier_low_max:
        return VehicleTier.LOW
    if p <= config.vehicle_tier_medium_max:
        return VehicleTier.MEDIUM
    return VehicleTier.HIGH


def classify(order: OrderSnapshot, config: RewardRuleConfig) -> TierClassification:
    """Classify *order* into ``(order_tier, vehicle_tier)``."""
    return TierClassification(
        order_tier=classify_order_tier(order.total_amount, config),
        vehicle_tier=classify_vehicle_tier(order.vehicle_price, config),
    )
