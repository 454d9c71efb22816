"""Calibration matrix lookup (vehicle tier x complexity level -> float adjustment)."""

from __future__ import annotations

from decimal import Decimal
from typing import Union

from settlement.models.enums import ComplexityLevelId, VehicleTier
from settlement.models.rule_config import CALIBRATION_WILDCARD, CalibrationMatrix
from settlement.utils.money import ZERO

__all__ = ["lookup_calibration"]


def lookup_calibration(
    matrix: CalibrationMatrix,
    vehicle_tier: VehicleTier,
    level_id: Union[ComplexityLevelId, str],
) -> Decimal:
    """Return the signed percentage-point adjustment for a tier/level pair.

    ``MEDIUM`` is always neutral.  A specific level entry wins over the
    wildcard; anything not present resolves to zero.  Completeness of the
    ``low``/``high`` rows is enforced when the snapshot is loaded.
    """
    if vehicle_tier == VehicleTier.MEDIUM:
        return ZERO

    row: dict[str, Decimal] = (
        matrix.low if vehicle_tier == VehicleTier.LOW else matrix.high
    )
    key: str = str(level_id)
    if key in row:
        return row[key]
    return row.get(CALIBRATION_WILDCARD, ZERO)
