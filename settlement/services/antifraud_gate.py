"""
Anti-Fraud Gate.

Decides whether one milestone disbursement may be released now.  Checks
run in a fixed order and the first failing check wins:

    1. blacklist            -> reject
    2. trust level 1        -> pay half, keep going
       L1 monthly cap       -> truncate to remaining headroom, keep going
    3. L1/L2 freeze window  -> defer until pending_since + freeze days
       L1/L2 sampling       -> freeze for manual audit
    4. severe open violation against this user or this merchant -> reject
    5. trust level 0        -> defer (withheld until the level rises)
    6. otherwise            -> release

The gate is a pure function of the record and a frozen ``GateContext``;
applying the decision is the release service's job.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from settlement.logger import StructuredLogger
from settlement.models.disbursement import RewardDisbursement, TruncationRecord
from settlement.models.enums import (
    BlacklistType,
    ComplexityLevelId,
    GateOutcome,
    ReviewStage,
    TruncationReason,
)
from settlement.models.order import BlacklistEntry, UserRiskSnapshot
from settlement.models.service_models import GateContext, GateDecision
from settlement.utils.money import ZERO, percent_of, to_cents_floor

__all__ = [
    "FREEZE_LEVELS",
    "TRUST_LEVEL_SHARES",
    "blacklist_hits",
    "eligibility_percent",
    "evaluate_release",
    "is_sampled",
    "l1_headroom",
]

FREEZE_LEVELS: frozenset[ComplexityLevelId] = frozenset({
    ComplexityLevelId.L1,
    ComplexityLevelId.L2,
})

_FULL_SHARE: Decimal = Decimal("100")

# Percent of each milestone a requester may receive, by trust level.
# Unlisted and unrated levels receive everything.
TRUST_LEVEL_SHARES: dict[int, Decimal] = {
    0: Decimal("0"),
    1: Decimal("50"),
}


def is_sampled(order_id: str, stage: ReviewStage, sample_rate: Decimal) -> bool:
    """Deterministically pick ``sample_rate`` percent of (order, stage) pairs.

    The bucket is derived from a sha256 digest so replaying the same
    record always gives the same answer.
    """
    if sample_rate <= 0:
        return False
    digest: str = hashlib.sha256(f"{order_id}:{stage.value}".encode("utf-8")).hexdigest()
    bucket: int = int(digest, 16) % 100
    return bucket < sample_rate


def blacklist_hits(
    user: UserRiskSnapshot,
    blacklist: tuple[BlacklistEntry, ...],
) -> list[BlacklistType]:
    """Return the identifier kinds of *user* that appear on *blacklist*."""
    listed: set[tuple[BlacklistType, str]] = {
        (entry.kind, entry.value) for entry in blacklist
    }
    return [kind for kind, value in user.identifiers() if (kind, value) in listed]


def eligibility_percent(trust_level: Optional[int]) -> Decimal:
    if trust_level is None:
        return _FULL_SHARE
    return TRUST_LEVEL_SHARES.get(trust_level, _FULL_SHARE)


def l1_headroom(config_cap: Decimal, released_in_window: Decimal) -> Decimal:
    return max(ZERO, config_cap - released_in_window)


def evaluate_release(
    record: RewardDisbursement,
    context: GateContext,
    logger: Optional[StructuredLogger] = None,
) -> GateDecision:
    """Run every release check against *record*.

    Args:
        record: A ``pending`` (or ``frozen``) disbursement.
        context: Risk snapshots, blacklist, anti-fraud rules and clock.
        logger: Optional logger for rejections and truncations.

    Returns:
        ``GateDecision``.  ``amount`` is the payable amount after trust
        eligibility and the monthly cap (zero on rejection).  Truncations
        are carried on the decision whatever the outcome, but only take
        effect when the record is actually released.
    """
    cfg = context.config

    # 0. No verdict yet: nothing to release.
    if record.pending_since is None:
        return GateDecision(
            outcome=GateOutcome.DEFER,
            amount=record.amount,
            reasons=("awaiting_review",),
        )

    # 1. Blacklist
    hits: list[BlacklistType] = blacklist_hits(context.user, context.blacklist)
    if hits:
        reasons = tuple(f"blacklisted:{kind.value}" for kind in hits)
        if logger is not None:
            logger.info(
                "Release of %s/%s rejected: %s",
                record.order_id, record.stage, ", ".join(reasons),
            )
        return GateDecision(outcome=GateOutcome.REJECT, amount=ZERO, reasons=reasons)

    amount: Decimal = record.amount
    truncations: list[TruncationRecord] = []

    # 2a. Trust eligibility
    trust_level: Optional[int] = context.user.trust_level
    share: Decimal = eligibility_percent(trust_level)
    if ZERO < share < _FULL_SHARE:
        eligible: Decimal = to_cents_floor(percent_of(amount, share))
        if eligible < amount:
            truncations.append(TruncationRecord(
                order_id=record.order_id,
                reason=TruncationReason.TRUST_LEVEL,
                before=amount,
                after=eligible,
                stage=record.stage,
                detail=f"trust level {trust_level} receives {share}%",
            ))
            if logger is not None:
                logger.warning(
                    "Release of %s/%s reduced for trust level %s: %s -> %s",
                    record.order_id, record.stage, trust_level, amount, eligible,
                )
            amount = eligible

    # 2b. L1 monthly cap
    if record.complexity_level == ComplexityLevelId.L1:
        released: Decimal = (
            context.l1_released_in_window
            if context.l1_released_in_window is not None
            else context.user.l1_released_in_window
        )
        headroom: Decimal = l1_headroom(cfg.l1_monthly_cap, released)
        if amount > headroom:
            truncations.append(TruncationRecord(
                order_id=record.order_id,
                reason=TruncationReason.MONTHLY_CAP,
                before=amount,
                after=headroom,
                stage=record.stage,
                detail=f"{released} already released in {cfg.l1_cap_window_days} days",
            ))
            if logger is not None:
                logger.warning(
                    "Release of %s/%s truncated by L1 monthly cap: %s -> %s",
                    record.order_id, record.stage, amount, headroom,
                )
            amount = headroom

    # 3. L1/L2 freeze window and sampling
    if record.complexity_level in FREEZE_LEVELS:
        not_before: datetime = record.pending_since + timedelta(days=cfg.l1l2_freeze_days)
        if context.now < not_before:
            return GateDecision(
                outcome=GateOutcome.DEFER,
                amount=amount,
                reasons=("freeze_window",),
                truncations=tuple(truncations),
                release_not_before=not_before,
            )
        if not record.sampling_cleared and is_sampled(
            record.order_id, record.stage, cfg.l1l2_sample_rate
        ):
            return GateDecision(
                outcome=GateOutcome.FREEZE,
                amount=amount,
                reasons=("sampling_audit",),
                truncations=tuple(truncations),
            )

    # 4. Severe open violations against this user or this merchant
    worst: int = max(
        context.user.open_violation_level(record.user_id),
        context.compliance.open_violation_level(record.merchant_id),
    )
    if worst >= cfg.severe_violation_level:
        if logger is not None:
            logger.info(
                "Release of %s/%s rejected: open violation level %d",
                record.order_id, record.stage, worst,
            )
        return GateDecision(
            outcome=GateOutcome.REJECT,
            amount=ZERO,
            reasons=(f"violation_level_{worst}",),
            truncations=tuple(truncations),
        )

    # 5. Withheld until the requester reaches an eligible trust level
    if share == ZERO:
        if logger is not None:
            logger.info(
                "Release of %s/%s withheld: trust level %s",
                record.order_id, record.stage, trust_level,
            )
        return GateDecision(
            outcome=GateOutcome.DEFER,
            amount=amount,
            reasons=(f"trust_level_{trust_level}",),
            truncations=tuple(truncations),
        )

    return GateDecision(
        outcome=GateOutcome.RELEASE, amount=amount, truncations=tuple(truncations)
    )
