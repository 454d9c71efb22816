"""
Payout Scheduler.

Splits an order's reward across review milestones and owns the
disbursement state machine.

Split by order tier:

    tier 1-2 : main 100%
    tier 3   : main 50%, 1m 50%
    tier 4   : main 50%, 1m 30%, 3m 20%

Non-final milestones are rounded down to the cent; the final milestone
takes whatever remains so the stage amounts add up to the order reward
exactly.

Every status change goes through ``transition``.  Records are frozen,
``transition`` returns a new record and never touches the old one.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from settlement.exceptions import InvalidTransitionError
from settlement.logger import StructuredLogger
from settlement.models.disbursement import RewardDisbursement
from settlement.models.enums import (
    ComplexityLevelId,
    DisbursementStatus,
    OrderTier,
    ReviewStage,
    ReviewVerdict,
)
from settlement.models.order import OrderSnapshot
from settlement.utils.clock import ensure_utc
from settlement.utils.money import ZERO, percent_of, to_cents, to_cents_floor

__all__ = [
    "ALLOWED_TRANSITIONS",
    "MILESTONE_SPLITS",
    "TAX_THRESHOLD",
    "apply_review_verdict",
    "can_transition",
    "compute_tax",
    "schedule_disbursements",
    "transition",
]

# Amount above which the platform withholds tax on a single disbursement.
TAX_THRESHOLD: Decimal = Decimal("800")

MILESTONE_SPLITS: dict[OrderTier, tuple[tuple[ReviewStage, Decimal], ...]] = {
    OrderTier.TIER_1: ((ReviewStage.MAIN, Decimal("100")),),
    OrderTier.TIER_2: ((ReviewStage.MAIN, Decimal("100")),),
    OrderTier.TIER_3: (
        (ReviewStage.MAIN, Decimal("50")),
        (ReviewStage.ONE_MONTH, Decimal("50")),
    ),
    OrderTier.TIER_4: (
        (ReviewStage.MAIN, Decimal("50")),
        (ReviewStage.ONE_MONTH, Decimal("30")),
        (ReviewStage.THREE_MONTHS, Decimal("20")),
    ),
}

ALLOWED_TRANSITIONS: dict[DisbursementStatus, frozenset[DisbursementStatus]] = {
    DisbursementStatus.AWAITING_REVIEW: frozenset({
        DisbursementStatus.PENDING,
        DisbursementStatus.REJECTED,
    }),
    DisbursementStatus.PENDING: frozenset({
        DisbursementStatus.FROZEN,
        DisbursementStatus.RELEASED,
        DisbursementStatus.REJECTED,
    }),
    DisbursementStatus.FROZEN: frozenset({
        DisbursementStatus.RELEASED,
        DisbursementStatus.REJECTED,
    }),
    DisbursementStatus.RELEASED: frozenset(),
    DisbursementStatus.REJECTED: frozenset(),
}


def compute_tax(amount: Decimal) -> Decimal:
    """Return the tax withheld on a disbursement of *amount*."""
    return to_cents(max(ZERO, amount - TAX_THRESHOLD))


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------

def schedule_disbursements(
    order: OrderSnapshot,
    order_reward: Decimal,
    order_tier: OrderTier,
    level: ComplexityLevelId,
) -> list[RewardDisbursement]:
    """Create one ``awaiting_review`` record per milestone of *order_tier*.

    Args:
        order: The settled order (ids are copied onto every record).
        order_reward: Final order reward after every cap.
        order_tier: Tier that selects the milestone split.
        level: Complexity level recorded on the disbursements; the
            anti-fraud gate keys its L1/L2 rules on it.

    Returns:
        Records ordered main, 1m, 3m whose amounts sum to ``order_reward``.
    """
    total: Decimal = to_cents(max(ZERO, order_reward))
    splits = MILESTONE_SPLITS[order_tier]

    records: list[RewardDisbursement] = []
    allocated: Decimal = ZERO
    for index, (stage, share) in enumerate(splits):
        is_final: bool = index == len(splits) - 1
        if is_final:
            amount = total - allocated
        else:
            amount = to_cents_floor(percent_of(total, share))
            allocated += amount

        records.append(RewardDisbursement(
            order_id=order.order_id,
            user_id=order.user_id,
            merchant_id=order.merchant_id,
            stage=stage,
            complexity_level=level,
            scheduled_amount=amount,
            amount=amount,
            tax_deducted=compute_tax(amount),
        ))
    return records


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

def can_transition(source: DisbursementStatus, target: DisbursementStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[source]


def transition(
    record: RewardDisbursement,
    target: DisbursementStatus,
    *,
    amount: Optional[Decimal] = None,
    reason: Optional[str] = None,
    pending_since: Optional[datetime] = None,
    release_time: Optional[datetime] = None,
    sampling_cleared: Optional[bool] = None,
) -> RewardDisbursement:
    """Return a copy of *record* moved to *target*.

    ``amount`` replaces the payable amount (tax is recomputed from it).
    A rejection always zeroes the amount.

    Raises:
        InvalidTransitionError: *target* is not reachable from the
            record's current status.
    """
    if not can_transition(record.status, target):
        raise InvalidTransitionError(record.status.value, target.value)

    new_amount: Decimal = record.amount if amount is None else to_cents(max(ZERO, amount))
    if target == DisbursementStatus.REJECTED:
        new_amount = ZERO

    update: dict[str, object] = {
        "status": target,
        "amount": new_amount,
        "tax_deducted": compute_tax(new_amount),
    }
    if reason is not None:
        update["reason"] = reason
    # model_copy skips validation, so timestamps are normalised here.
    if pending_since is not None:
        update["pending_since"] = ensure_utc(pending_since)
    if release_time is not None:
        update["release_time"] = ensure_utc(release_time)
    if sampling_cleared is not None:
        update["sampling_cleared"] = sampling_cleared

    return record.model_copy(update=update)


def apply_review_verdict(
    record: RewardDisbursement,
    verdict: ReviewVerdict,
    now: datetime,
    logger: Optional[StructuredLogger] = None,
) -> RewardDisbursement:
    """Apply the review-audit outcome for one milestone.

    ``pass`` moves the record to ``pending`` and starts its freeze clock;
    ``reject`` rejects it with a zero amount.  A verdict for a record that
    already left ``awaiting_review`` is a no-op and the record is returned
    unchanged.
    """
    if record.status != DisbursementStatus.AWAITING_REVIEW:
        if logger is not None:
            logger.info(
                "Ignoring %s verdict for %s/%s: record is already %s",
                verdict, record.order_id, record.stage, record.status,
            )
        return record

    if verdict == ReviewVerdict.PASS:
        return transition(record, DisbursementStatus.PENDING, pending_since=now)
    return transition(record, DisbursementStatus.REJECTED, reason="review_rejected")
