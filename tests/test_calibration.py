"""Tests for the calibration matrix: lookup rules and load-time completeness."""

import copy
from decimal import Decimal

import pytest
from pydantic import ValidationError

from settlement.exceptions import ConfigurationError
from settlement.models.enums import ComplexityLevelId, VehicleTier
from settlement.models.rule_config import CalibrationMatrix, RuleSnapshot
from settlement.services.calibration import lookup_calibration
from settlement.services.rule_loader import load_rule_snapshot


class TestLookup:
    def test_default_low_row(self, snapshot: RuleSnapshot) -> None:
        matrix = snapshot.reward.float_calibration
        assert lookup_calibration(matrix, VehicleTier.LOW, ComplexityLevelId.L1) == Decimal("0.5")
        assert lookup_calibration(matrix, VehicleTier.LOW, ComplexityLevelId.L3) == Decimal("0.8")

    def test_default_high_row(self, snapshot: RuleSnapshot) -> None:
        matrix = snapshot.reward.float_calibration
        assert lookup_calibration(matrix, VehicleTier.HIGH, ComplexityLevelId.L4) == Decimal("-1")

    @pytest.mark.parametrize("level", list(ComplexityLevelId))
    def test_medium_is_always_neutral(self, snapshot: RuleSnapshot, level: ComplexityLevelId) -> None:
        matrix = snapshot.reward.float_calibration
        assert lookup_calibration(matrix, VehicleTier.MEDIUM, level) == Decimal("0")

    def test_specific_entry_beats_wildcard(self) -> None:
        matrix = CalibrationMatrix(
            low={"*": "0.3", "L4": "1"},
            high={"*": "-0.2"},
        )
        assert lookup_calibration(matrix, VehicleTier.LOW, ComplexityLevelId.L1) == Decimal("0.3")
        assert lookup_calibration(matrix, VehicleTier.LOW, ComplexityLevelId.L4) == Decimal("1")
        assert lookup_calibration(matrix, VehicleTier.HIGH, ComplexityLevelId.L2) == Decimal("-0.2")

    def test_plain_string_level_id(self, snapshot: RuleSnapshot) -> None:
        matrix = snapshot.reward.float_calibration
        assert lookup_calibration(matrix, VehicleTier.HIGH, "L2") == Decimal("-0.5")


class TestMatrixValidation:
    def test_lowercase_keys_are_normalised(self) -> None:
        matrix = CalibrationMatrix(
            low={"l1": "1", "l2": "1", "l3": "1", "l4": "1"},
            high={"*": "0"},
        )
        assert set(matrix.low) == {"L1", "L2", "L3", "L4"}

    def test_row_missing_a_level_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="lacks entries"):
            CalibrationMatrix(
                low={"L1": "0.5", "L2": "0.5", "L3": "0.8"},
                high={"*": "-1"},
            )

    def test_unknown_level_key_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="unknown level keys"):
            CalibrationMatrix(
                low={"*": "0.5", "L5": "1"},
                high={"*": "-1"},
            )

    def test_non_neutral_medium_row_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="must be neutral"):
            CalibrationMatrix(
                low={"*": "0.5"},
                medium={"L1": "0.1"},
                high={"*": "-1"},
            )

    def test_incomplete_matrix_fails_snapshot_load(self, rules_mapping: dict) -> None:
        mapping = copy.deepcopy(rules_mapping)
        del mapping["rewardRules"]["floatCalibration"]["high"]["L4"]
        with pytest.raises(ConfigurationError, match="floatCalibration"):
            load_rule_snapshot(mapping)
