"""
Order and Compliance Input Models.

Read-only snapshots handed to the engine by the caller: the repair order,
the merchant's compliance state, the requesting user's risk state and the
blacklist.  None of them are mutated by the engine.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from settlement.models.enums import BlacklistType, ContentQuality

__all__ = [
    "BlacklistEntry",
    "ComplianceSnapshot",
    "OrderLineItem",
    "OrderSnapshot",
    "UserRiskSnapshot",
    "ViolationRecord",
]


class _InputModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class OrderLineItem(_InputModel):
    """One repaired line item with its assigned complexity level.

    ``level_id`` is kept as a plain string so that an id missing from the
    rule snapshot is reported as a configuration mismatch by the reward
    calculator rather than as a generic validation error.
    """

    level_id: str = Field(min_length=1)
    amount: Optional[Decimal] = Field(default=None, ge=0)
    name: str = ""

    @field_validator("level_id", mode="before")
    @classmethod
    def _normalise_level(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().upper()
        return v


class OrderSnapshot(_InputModel):
    """The repair order as seen at calculation time."""

    order_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    merchant_id: str = ""
    total_amount: Decimal
    vehicle_price: Optional[Decimal] = None
    items: tuple[OrderLineItem, ...] = ()
    # Requester trust level (0-4) when the order is settled; selects the red line.
    trust_level: Optional[int] = Field(default=None, ge=0, le=4)
    content_quality: ContentQuality = ContentQuality.STANDARD


class ViolationRecord(_InputModel):
    """A recorded violation against a user or a merchant (levels 1-4)."""

    target_type: str = Field(pattern="^(user|merchant)$")
    target_id: str
    level: int = Field(ge=1, le=4)
    open: bool = True

    def is_open_against(self, target_type: str, target_id: str) -> bool:
        return self.open and self.target_type == target_type and self.target_id == target_id


class ComplianceSnapshot(_InputModel):
    """Merchant compliance state at calculation time.

    Rates are percentages.  ``None`` means the metric is unknown, which
    never triggers an adjustment on its own.
    """

    merchant_id: str = ""
    compliance_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    complaint_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    violations: tuple[ViolationRecord, ...] = ()

    @property
    def has_open_violation(self) -> bool:
        """Whether the merchant itself has any open violation."""
        return any(
            v.open and v.target_type == "merchant"
            and (not self.merchant_id or v.target_id == self.merchant_id)
            for v in self.violations
        )

    def open_violation_level(self, merchant_id: str) -> int:
        """Highest open violation level recorded against *merchant_id* (0 if none)."""
        return max(
            (v.level for v in self.violations if v.is_open_against("merchant", merchant_id)),
            default=0,
        )


class UserRiskSnapshot(_InputModel):
    """Identifiers and behavioural history of the reward recipient."""

    user_id: str = Field(min_length=1)
    phone: Optional[str] = None
    device_id: Optional[str] = None
    id_card: Optional[str] = None
    violations: tuple[ViolationRecord, ...] = ()
    l1_released_in_window: Decimal = Field(default=Decimal("0"), ge=0)
    # 0 withholds every reward, 1 halves it, 2-4 pay in full; None means unrated.
    trust_level: Optional[int] = Field(default=None, ge=0, le=4)

    def identifiers(self) -> list[tuple[BlacklistType, str]]:
        """Return every non-empty identifier paired with its blacklist type."""
        candidates: list[tuple[BlacklistType, Optional[str]]] = [
            (BlacklistType.USER_ID, self.user_id),
            (BlacklistType.PHONE, self.phone),
            (BlacklistType.DEVICE_ID, self.device_id),
            (BlacklistType.ID_CARD, self.id_card),
        ]
        return [
            (kind, value.strip())
            for kind, value in candidates
            if value is not None and value.strip()
        ]

    def open_violation_level(self, user_id: str) -> int:
        """Highest open violation level recorded against *user_id* (0 if none)."""
        return max(
            (v.level for v in self.violations if v.is_open_against("user", user_id)),
            default=0,
        )


class BlacklistEntry(_InputModel):
    """A blacklisted identifier."""

    kind: BlacklistType = Field(alias="type")
    value: str = Field(min_length=1)
    reason: str = ""

    @field_validator("value", mode="before")
    @classmethod
    def _strip_value(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip()
        return v
