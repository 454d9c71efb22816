"""
Rule Snapshot Models.

Pydantic models for the reward, commission and anti-fraud rule
configuration.  A ``RuleSnapshot`` is validated once when it is loaded
and is immutable afterwards; every calculation receives it explicitly.

Field names are snake_case; the camelCase keys used by the admin
configuration store (``vehicleTierLowMax``, ``orderTier1Cap``...) are
accepted as aliases.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from settlement.models.enums import ComplexityLevelId, OrderTier
from settlement.utils.money import to_cents_floor

__all__ = [
    "CALIBRATION_WILDCARD",
    "AntiFraudConfig",
    "CalibrationMatrix",
    "CommissionRuleConfig",
    "ComplexityLevel",
    "RewardRuleConfig",
    "RuleSnapshot",
]

CALIBRATION_WILDCARD: str = "*"

_LEVEL_KEYS: frozenset[str] = frozenset(level.value for level in ComplexityLevelId)


class _RuleModel(BaseModel):
    """Common configuration for all rule models: frozen, camelCase aliases."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Reward rules
# ---------------------------------------------------------------------------

class ComplexityLevel(_RuleModel):
    """Fixed/float reward parameters and per-item cap for one level."""

    id: ComplexityLevelId
    name: str = ""
    fixed_reward: Decimal = Field(ge=0)
    float_ratio: Decimal = Field(ge=0)
    cap_amount: Decimal = Field(ge=0)

    @field_validator("id", mode="before")
    @classmethod
    def _normalise_id(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().upper()
        return v


class CalibrationMatrix(_RuleModel):
    """Signed float-ratio adjustments keyed by vehicle tier and level.

    Each row maps a level id (``"L1"``..``"L4"``) or the wildcard ``"*"``
    to a percentage-point adjustment.  The ``low`` and ``high`` rows must
    cover all four levels, either explicitly or through a wildcard, so a
    missing entry is a load-time error rather than a silent zero.  The
    ``medium`` row exists only for compatibility with stored configs and
    must be all zeros.
    """

    low: dict[str, Decimal]
    medium: dict[str, Decimal] = Field(default_factory=dict)
    high: dict[str, Decimal]

    @field_validator("low", "medium", "high", mode="before")
    @classmethod
    def _normalise_keys(cls, v: object) -> object:
        if isinstance(v, dict):
            return {str(key).strip().upper(): value for key, value in v.items()}
        return v

    @model_validator(mode="after")
    def _check_exhaustive(self) -> "CalibrationMatrix":
        allowed: frozenset[str] = _LEVEL_KEYS | {CALIBRATION_WILDCARD}
        rows: dict[str, dict[str, Decimal]] = {
            "low": self.low,
            "medium": self.medium,
            "high": self.high,
        }
        for tier_name, row in rows.items():
            unknown = sorted(set(row) - allowed)
            if unknown:
                raise ValueError(
                    f"floatCalibration.{tier_name} has unknown level keys {unknown}"
                )

        for tier_name in ("low", "high"):
            row = rows[tier_name]
            if CALIBRATION_WILDCARD in row:
                continue
            missing = sorted(_LEVEL_KEYS - set(row))
            if missing:
                raise ValueError(
                    f"floatCalibration.{tier_name} lacks entries for {missing}"
                )

        non_zero = sorted(key for key, value in self.medium.items() if value != 0)
        if non_zero:
            raise ValueError(
                f"floatCalibration.medium must be neutral, got non-zero entries {non_zero}"
            )
        return self


class RewardRuleConfig(_RuleModel):
    """Aggregate reward configuration: levels, tiers, calibration and caps."""

    complexity_levels: tuple[ComplexityLevel, ...]

    # Vehicle tiers
    vehicle_tier_low_max: Decimal = Field(gt=0)
    vehicle_tier_medium_max: Decimal = Field(gt=0)
    vehicle_tier_low_cap_up: Decimal = Field(ge=0)
    low_end_l4_amplify: Decimal = Field(alias="lowEndL4Amplify", gt=0)
    float_calibration: CalibrationMatrix

    # Order tiers
    order_tier1_max: Decimal = Field(alias="orderTier1Max", gt=0)
    order_tier2_max: Decimal = Field(alias="orderTier2Max", gt=0)
    order_tier3_max: Decimal = Field(alias="orderTier3Max", gt=0)
    order_tier1_cap: Decimal = Field(alias="orderTier1Cap", ge=0)
    order_tier2_cap: Decimal = Field(alias="orderTier2Cap", ge=0)
    order_tier3_cap: Decimal = Field(alias="orderTier3Cap", ge=0)
    order_tier4_cap: Decimal = Field(alias="orderTier4Cap", ge=0)

    # Content-quality float, percent of the capped order reward
    premium_float_ratio: Decimal = Field(default=Decimal("50"), ge=0)
    viral_float_ratio: Decimal = Field(default=Decimal("100"), ge=0)

    # Compliance red line: reward <= this % of realised commission
    compliance_red_line: Decimal = Field(gt=0, le=100)

    @field_validator(
        "order_tier1_cap", "order_tier2_cap", "order_tier3_cap", "order_tier4_cap"
    )
    @classmethod
    def _whole_cents(cls, v: Decimal) -> Decimal:
        # Rounded down so a paid reward can never exceed the configured cap.
        return to_cents_floor(v)

    @model_validator(mode="after")
    def _check_consistency(self) -> "RewardRuleConfig":
        ids = [level.id for level in self.complexity_levels]
        duplicates = sorted({i.value for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"complexityLevels has duplicate ids {duplicates}")
        missing = sorted(_LEVEL_KEYS - {i.value for i in ids})
        if missing:
            raise ValueError(f"complexityLevels lacks levels {missing}")

        if not self.vehicle_tier_low_max < self.vehicle_tier_medium_max:
            raise ValueError(
                "vehicleTierLowMax must be lower than vehicleTierMediumMax "
                f"(got {self.vehicle_tier_low_max} >= {self.vehicle_tier_medium_max})"
            )
        if not self.order_tier1_max < self.order_tier2_max < self.order_tier3_max:
            raise ValueError(
                "orderTier1Max < orderTier2Max < orderTier3Max is required "
                f"(got {self.order_tier1_max}, {self.order_tier2_max}, "
                f"{self.order_tier3_max})"
            )
        return self

    def level(self, level_id: str) -> Optional[ComplexityLevel]:
        """Return the level with *level_id*, or ``None`` when undefined."""
        for level in self.complexity_levels:
            if level.id == level_id:
                return level
        return None

    def order_tier_cap(self, tier: OrderTier) -> Decimal:
        caps: dict[OrderTier, Decimal] = {
            OrderTier.TIER_1: self.order_tier1_cap,
            OrderTier.TIER_2: self.order_tier2_cap,
            OrderTier.TIER_3: self.order_tier3_cap,
            OrderTier.TIER_4: self.order_tier4_cap,
        }
        return caps[tier]


# ---------------------------------------------------------------------------
# Commission rules
# ---------------------------------------------------------------------------

class CommissionRuleConfig(_RuleModel):
    """Amount-tier commission rates and compliance adjustment bounds.

    Rates and adjustments are percentage points; ``*Ratio`` bounds are
    percentages of the base tier rate.
    """

    commission_tier1_max: Decimal = Field(alias="commissionTier1Max", gt=0)
    commission_tier2_max: Decimal = Field(alias="commissionTier2Max", gt=0)
    commission_tier1_rate: Decimal = Field(alias="commissionTier1Rate", ge=0, le=100)
    commission_tier2_rate: Decimal = Field(alias="commissionTier2Rate", ge=0, le=100)
    commission_tier3_rate: Decimal = Field(alias="commissionTier3Rate", ge=0, le=100)

    commission_down_percent: Decimal = Field(ge=0)
    commission_down_min_ratio: Decimal = Field(ge=0, le=100)
    commission_up_percent: Decimal = Field(ge=0)
    commission_up_max_ratio: Decimal = Field(ge=100)

    @model_validator(mode="after")
    def _check_thresholds(self) -> "CommissionRuleConfig":
        if not self.commission_tier1_max < self.commission_tier2_max:
            raise ValueError(
                "commissionTier1Max must be lower than commissionTier2Max "
                f"(got {self.commission_tier1_max} >= {self.commission_tier2_max})"
            )
        return self


# ---------------------------------------------------------------------------
# Anti-fraud rules
# ---------------------------------------------------------------------------

class AntiFraudConfig(_RuleModel):
    """Release gate parameters.  Defaults match the platform settings table."""

    l1_monthly_cap: Decimal = Field(default=Decimal("100"), alias="l1MonthlyCap", ge=0)
    l1_cap_window_days: int = Field(default=30, alias="l1CapWindowDays", ge=1)
    l1l2_freeze_days: int = Field(default=0, alias="l1l2FreezeDays", ge=0)
    l1l2_sample_rate: Decimal = Field(
        default=Decimal("5"), alias="l1l2SampleRate", ge=0, le=100
    )
    severe_violation_level: int = Field(default=3, ge=1, le=4)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

class RuleSnapshot(_RuleModel):
    """One immutable, versioned configuration used for a whole calculation."""

    version: str = Field(min_length=1)
    reward: RewardRuleConfig = Field(alias="rewardRules")
    commission: CommissionRuleConfig = Field(alias="commissionRules")
    antifraud: AntiFraudConfig = Field(default_factory=AntiFraudConfig)
