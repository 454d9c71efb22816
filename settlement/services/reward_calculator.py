"""
Reward Calculator.

Pure-function module turning an order's line items into a capped
per-item and per-order reward.

For each line item:

    float_ratio' = max(0, level.float_ratio + calibration(vehicle_tier, level))
    item_reward  = level.fixed_reward + attributable_amount * float_ratio' / 100
    item_reward  = min(item_reward, level.cap_amount * low-end cap-up)
    item_reward  = min(item_reward, level.fixed_reward * lowEndL4Amplify)   # low-end L4 only

and for the order:

    order_reward = min(sum(item_reward), orderTierCap[order_tier])
    order_reward = min(order_reward + quality_float, orderTierCap[order_tier])

The quality float is a percentage of the capped reward paid for premium or
viral review content; it never lifts the order above its tier cap.

Attributable amount policy: an item's own ``amount`` when the order
carries sub-amounts; otherwise the order total not claimed by explicit
sub-amounts, split evenly across the items that lack one.  This choice
materially changes payouts and is covered by dedicated tests.

Every cap that reduces an amount yields a ``TruncationRecord``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from settlement.exceptions import ConfigurationMismatchError
from settlement.logger import StructuredLogger
from settlement.models.disbursement import TruncationRecord
from settlement.models.enums import (
    ComplexityLevelId,
    ContentQuality,
    TruncationReason,
    VehicleTier,
)
from settlement.models.order import OrderLineItem, OrderSnapshot
from settlement.models.rule_config import ComplexityLevel, RewardRuleConfig
from settlement.models.service_models import (
    ItemReward,
    RewardBreakdown,
    TierClassification,
)
from settlement.services.calibration import lookup_calibration
from settlement.utils.money import (
    ZERO,
    clamp_non_negative,
    percent_of,
    to_cents,
    to_cents_floor,
)

__all__ = [
    "attributable_amounts",
    "calculate_item_reward",
    "calculate_reward",
    "premium_float_reward",
    "resolve_levels",
]

_ONE: Decimal = Decimal("1")
_HUNDRED: Decimal = Decimal("100")


def resolve_levels(
    order: OrderSnapshot,
    config: RewardRuleConfig,
) -> list[ComplexityLevel]:
    """Look up the configured level of every line item.

    Raises:
        ConfigurationMismatchError: On the first item whose level id is not
            defined in the snapshot.  No partial result is produced.
    """
    levels: list[ComplexityLevel] = []
    for item in order.items:
        level: Optional[ComplexityLevel] = config.level(item.level_id)
        if level is None:
            raise ConfigurationMismatchError(order.order_id, item.level_id)
        levels.append(level)
    return levels


def attributable_amounts(order: OrderSnapshot) -> list[Decimal]:
    """Return the amount each line item's float percentage applies to."""
    items: tuple[OrderLineItem, ...] = order.items
    total: Decimal = clamp_non_negative(order.total_amount)
    explicit: Decimal = sum(
        (item.amount for item in items if item.amount is not None), ZERO
    )
    unattributed_count: int = sum(1 for item in items if item.amount is None)

    share: Decimal = ZERO
    if unattributed_count:
        share = max(ZERO, total - explicit) / unattributed_count

    return [item.amount if item.amount is not None else share for item in items]


def calculate_item_reward(
    level: ComplexityLevel,
    attributable: Decimal,
    vehicle_tier: VehicleTier,
    config: RewardRuleConfig,
) -> tuple[ItemReward, list[tuple[TruncationReason, Decimal, Decimal]]]:
    """Compute the capped reward for one line item.

    Returns:
        Tuple of (item reward, truncations) where each truncation is
        ``(reason, before, after)``.
    """
    calibration: Decimal = lookup_calibration(
        config.float_calibration, vehicle_tier, level.id
    )
    effective_ratio: Decimal = max(ZERO, level.float_ratio + calibration)
    uncapped: Decimal = level.fixed_reward + percent_of(attributable, effective_ratio)

    truncations: list[tuple[TruncationReason, Decimal, Decimal]] = []

    item_cap: Decimal = level.cap_amount
    if vehicle_tier == VehicleTier.LOW:
        item_cap = level.cap_amount * (_ONE + config.vehicle_tier_low_cap_up / _HUNDRED)

    reward: Decimal = uncapped
    if reward > item_cap:
        truncations.append((TruncationReason.ITEM_CAP, reward, item_cap))
        reward = item_cap

    ceiling: Decimal = item_cap
    if vehicle_tier == VehicleTier.LOW and level.id == ComplexityLevelId.L4:
        amplify_ceiling: Decimal = level.fixed_reward * config.low_end_l4_amplify
        ceiling = min(item_cap, amplify_ceiling)
        if reward > amplify_ceiling:
            truncations.append(
                (TruncationReason.LOW_END_L4_AMPLIFY, reward, amplify_ceiling)
            )
            reward = amplify_ceiling

    item = ItemReward(
        level_id=level.id,
        attributable_amount=attributable,
        calibration=calibration,
        effective_float_ratio=effective_ratio,
        uncapped_reward=to_cents(uncapped),
        item_cap=to_cents(ceiling),
        reward=to_cents(reward),
    )
    return item, truncations


def premium_float_reward(
    base: Decimal,
    quality: ContentQuality,
    config: RewardRuleConfig,
) -> Decimal:
    """Extra float earned by premium or viral review content on *base*."""
    if quality == ContentQuality.VIRAL:
        ratio: Decimal = config.viral_float_ratio
    elif quality == ContentQuality.PREMIUM:
        ratio = config.premium_float_ratio
    else:
        return ZERO
    return to_cents(percent_of(base, ratio))


def calculate_reward(
    order: OrderSnapshot,
    tiers: TierClassification,
    config: RewardRuleConfig,
    logger: Optional[StructuredLogger] = None,
) -> RewardBreakdown:
    """Compute the per-item and per-order reward for *order*.

    Args:
        order: The order snapshot (total amount and line items).
        tiers: Output of the tier classifier for the same order.
        config: Reward rules from the active snapshot.
        logger: Optional logger; truncations are logged when provided.

    Returns:
        ``RewardBreakdown`` whose ``order_reward`` is non-negative and never
        exceeds the order tier cap.

    Raises:
        ConfigurationMismatchError: A line item references an unknown level.
    """
    levels: list[ComplexityLevel] = resolve_levels(order, config)
    amounts: list[Decimal] = attributable_amounts(order)

    items: list[ItemReward] = []
    truncations: list[TruncationRecord] = []

    for index, (level, attributable) in enumerate(zip(levels, amounts)):
        item, item_truncations = calculate_item_reward(
            level, attributable, tiers.vehicle_tier, config
        )
        items.append(item)
        for reason, before, after in item_truncations:
            truncations.append(TruncationRecord(
                order_id=order.order_id,
                reason=reason,
                before=to_cents(before),
                after=to_cents(after),
                detail=f"item {index} ({level.id})",
            ))
            if logger is not None:
                logger.warning(
                    "Order %s item %d (%s): %s ceiling reduced %s -> %s",
                    order.order_id, index, level.id, reason, to_cents(before), to_cents(after),
                )

    raw_order_reward: Decimal = sum((item.reward for item in items), ZERO)
    order_cap: Decimal = config.order_tier_cap(tiers.order_tier)
    order_reward: Decimal = raw_order_reward
    if order_reward > order_cap:
        truncations.append(TruncationRecord(
            order_id=order.order_id,
            reason=TruncationReason.ORDER_TIER_CAP,
            before=raw_order_reward,
            after=order_cap,
            detail=f"order tier {int(tiers.order_tier)}",
        ))
        if logger is not None:
            logger.warning(
                "Order %s: reward %s capped at tier %d ceiling %s",
                order.order_id, raw_order_reward, int(tiers.order_tier), order_cap,
            )
        order_reward = order_cap

    quality_float: Decimal = premium_float_reward(
        to_cents_floor(order_reward), order.content_quality, config
    )
    if quality_float > ZERO:
        with_float: Decimal = order_reward + quality_float
        if with_float > order_cap:
            truncations.append(TruncationRecord(
                order_id=order.order_id,
                reason=TruncationReason.ORDER_TIER_CAP,
                before=to_cents(with_float),
                after=order_cap,
                detail=f"order tier {int(tiers.order_tier)} with {order.content_quality} float",
            ))
            if logger is not None:
                logger.warning(
                    "Order %s: %s float %s capped at tier %d ceiling %s",
                    order.order_id, order.content_quality, quality_float,
                    int(tiers.order_tier), order_cap,
                )
            with_float = order_cap
        order_reward = with_float

    resolved_level: ComplexityLevelId = max(
        (level.id for level in levels),
        key=lambda level_id: level_id.rank,
        default=ComplexityLevelId.L1,
    )

    return RewardBreakdown(
        items=tuple(items),
        raw_order_reward=raw_order_reward,
        order_cap=order_cap,
        order_reward=to_cents_floor(max(ZERO, order_reward)),
        resolved_level=resolved_level,
        premium_float=quality_float,
        truncations=tuple(truncations),
    )
