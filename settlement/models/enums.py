"""
Shared Enumerations for Settlement Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents,
so config payloads like ``{"id": "L1"}`` validate directly.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class ComplexityLevelId(StrEnum):
    """Repair line-item complexity levels supported by the engine."""

    L1 = "L1"
    L2 = "L2"
    L3 = "L3"
    L4 = "L4"

    @property
    def rank(self) -> int:
        return int(self.value[1:])


class VehicleTier(StrEnum):
    """Vehicle price band used for calibration and low-end caps."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class OrderTier(IntEnum):
    """Order-amount band driving the order cap and the payout split."""

    TIER_1 = 1
    TIER_2 = 2
    TIER_3 = 3
    TIER_4 = 4


class ReviewStage(StrEnum):
    """Review milestones at which a share of the reward becomes eligible."""

    MAIN = "main"
    ONE_MONTH = "1m"
    THREE_MONTHS = "3m"


class ReviewVerdict(StrEnum):
    """Outcome supplied by the external review-audit collaborator."""

    PASS = "pass"
    REJECT = "reject"


class DisbursementStatus(StrEnum):
    """Lifecycle of a single milestone disbursement.

    ``AWAITING_REVIEW`` is the state of a freshly scheduled milestone whose
    review verdict has not arrived yet.  ``RELEASED`` and ``REJECTED`` are
    terminal.
    """

    AWAITING_REVIEW = "awaiting_review"
    PENDING = "pending"
    FROZEN = "frozen"
    RELEASED = "released"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (DisbursementStatus.RELEASED, DisbursementStatus.REJECTED)


class BlacklistType(StrEnum):
    """Identifier kinds a blacklist entry can match on."""

    USER_ID = "user_id"
    PHONE = "phone"
    DEVICE_ID = "device_id"
    ID_CARD = "id_card"


class GateOutcome(StrEnum):
    """Decision produced by the anti-fraud gate for one release attempt."""

    RELEASE = "release"
    REJECT = "reject"
    FREEZE = "freeze"
    DEFER = "defer"


class TruncationReason(StrEnum):
    """Why an amount was reduced.  Recorded for audit, never dropped."""

    ITEM_CAP = "item_cap"
    LOW_END_L4_AMPLIFY = "low_end_l4_amplify"
    ORDER_TIER_CAP = "order_tier_cap"
    COMPLIANCE_RED_LINE = "compliance_red_line"
    MONTHLY_CAP = "monthly_cap"
    TRUST_LEVEL = "trust_level"


class CommissionAdjustment(StrEnum):
    """Compliance modulation applied to the base commission rate."""

    NONE = "none"
    DOWN = "down"
    UP = "up"


class ContentQuality(StrEnum):
    """Review content grade that earns an extra float reward."""

    STANDARD = "standard"
    PREMIUM = "premium"
    VIRAL = "viral"
