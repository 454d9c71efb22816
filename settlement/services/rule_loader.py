"""
Rule Snapshot Loader.

Builds an immutable ``RuleSnapshot`` from the shapes the admin
configuration store produces:

- a nested mapping ``{"version", "rewardRules", "commissionRules", "antifraud"}``
- flat key/value rows (``rule_key`` / ``rule_value``) whose values are
  usually JSON-encoded strings, plus optional complexity-level rows
- a JSON file holding the nested mapping

Any validation failure is raised as ``ConfigurationError`` so a bad
configuration rejects the calculation up front.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from decimal import Decimal
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from settlement.exceptions import ConfigurationError
from settlement.models.rule_config import RuleSnapshot

__all__ = [
    "ANTIFRAUD_KEY_PREFIX",
    "default_rule_snapshot",
    "default_rules_mapping",
    "load_rule_snapshot",
    "load_snapshot_file",
    "load_snapshot_from_rows",
]

# Anti-fraud settings share the flat store with reward rules under this prefix.
ANTIFRAUD_KEY_PREFIX: str = "antifraud_"

RowValue = Union[str, int, float, Decimal, bool, None, list, dict]


def _format_validation_error(exc: ValidationError) -> str:
    parts: list[str] = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{location}: {err.get('msg', 'invalid value')}")
    return "; ".join(parts)


def load_rule_snapshot(data: Mapping[str, object]) -> RuleSnapshot:
    """Validate a nested rules mapping into a ``RuleSnapshot``.

    Raises:
        ConfigurationError: Missing keys, invalid values or inconsistent
            thresholds (including an incomplete calibration matrix).
    """
    try:
        return RuleSnapshot.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid rule snapshot: {_format_validation_error(exc)}"
        ) from exc


def _decode_value(raw: RowValue) -> RowValue:
    """Decode a stored value; JSON strings become Python values."""
    if not isinstance(raw, str):
        return raw
    text = raw.strip()
    if not text:
        return None
    try:
        return json.loads(text, parse_float=Decimal)
    except json.JSONDecodeError:
        return raw


def _row_key_value(row: Mapping[str, RowValue]) -> tuple[Optional[str], RowValue]:
    key = row.get("rule_key", row.get("key"))
    value = row.get("rule_value", row.get("value"))
    return (str(key) if key else None), value


def load_snapshot_from_rows(
    rows: Iterable[Mapping[str, RowValue]],
    version: str,
    level_rows: Optional[Iterable[Mapping[str, RowValue]]] = None,
) -> RuleSnapshot:
    """Build a snapshot from flat key/value rows.

    Args:
        rows: Rows with ``rule_key``/``rule_value`` (or ``key``/``value``).
            Reward and commission keys share one namespace; keys starting
            with ``antifraud_`` feed the anti-fraud section.
        version: Version label stamped on the snapshot.
        level_rows: Optional complexity-level rows
            (``id``, ``fixed_reward``, ``float_ratio``, ``cap_amount``).
            They take precedence over a ``complexityLevels`` rule row.

    Raises:
        ConfigurationError: The merged rules do not form a valid snapshot.
    """
    rules: dict[str, RowValue] = {}
    antifraud: dict[str, RowValue] = {}
    for row in rows:
        key, raw = _row_key_value(row)
        if key is None:
            continue
        value = _decode_value(raw)
        if key.startswith(ANTIFRAUD_KEY_PREFIX):
            antifraud[key[len(ANTIFRAUD_KEY_PREFIX):]] = value
        else:
            rules[key] = value

    if level_rows is not None:
        rules["complexityLevels"] = [dict(level) for level in level_rows]

    return load_rule_snapshot({
        "version": version,
        "rewardRules": rules,
        "commissionRules": rules,
        "antifraud": antifraud,
    })


def load_snapshot_file(path: Union[str, Path]) -> RuleSnapshot:
    """Load a snapshot from a JSON file holding the nested mapping.

    Raises:
        ConfigurationError: The file cannot be read, is not valid JSON or
            does not validate.
    """
    file_path = Path(path)
    try:
        with file_path.open("r", encoding="utf-8") as fh:
            data = json.load(fh, parse_float=Decimal)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read rule snapshot '{file_path}': {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Rule snapshot '{file_path}' is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Rule snapshot '{file_path}' must hold a JSON object.")
    data.setdefault("version", file_path.stem)
    return load_rule_snapshot(data)


# ---------------------------------------------------------------------------
# Platform defaults (as shipped with the admin console)
# ---------------------------------------------------------------------------

def default_rules_mapping(version: str = "default") -> dict[str, object]:
    """Return the nested mapping of the platform's default rules."""
    return {
        "version": version,
        "rewardRules": {
            "complexityLevels": [
                {"id": "L1", "name": "Very low complexity", "fixedReward": "10", "floatRatio": "1", "capAmount": "30"},
                {"id": "L2", "name": "Low complexity", "fixedReward": "20", "floatRatio": "2", "capAmount": "150"},
                {"id": "L3", "name": "Medium complexity", "fixedReward": "50", "floatRatio": "3", "capAmount": "800"},
                {"id": "L4", "name": "High complexity", "fixedReward": "100", "floatRatio": "4", "capAmount": "2000"},
            ],
            "vehicleTierLowMax": "100000",
            "vehicleTierMediumMax": "300000",
            "vehicleTierLowCapUp": "20",
            "lowEndL4Amplify": "2.5",
            "floatCalibration": {
                "low": {"L1": "0.5", "L2": "0.5", "L3": "0.8", "L4": "1"},
                "medium": {"L1": "0", "L2": "0", "L3": "0", "L4": "0"},
                "high": {"L1": "-0.5", "L2": "-0.5", "L3": "-0.8", "L4": "-1"},
            },
            "orderTier1Max": "1000",
            "orderTier2Max": "5000",
            "orderTier3Max": "20000",
            "orderTier1Cap": "30",
            "orderTier2Cap": "150",
            "orderTier3Cap": "800",
            "orderTier4Cap": "2000",
            "premiumFloatRatio": "50",
            "viralFloatRatio": "100",
            "complianceRedLine": "70",
        },
        "commissionRules": {
            "commissionTier1Max": "5000",
            "commissionTier2Max": "20000",
            "commissionTier1Rate": "8",
            "commissionTier2Rate": "10",
            "commissionTier3Rate": "12",
            "commissionDownPercent": "1",
            "commissionDownMinRatio": "50",
            "commissionUpPercent": "2",
            "commissionUpMaxRatio": "120",
        },
        "antifraud": {
            "l1MonthlyCap": "100",
            "l1CapWindowDays": 30,
            "l1l2FreezeDays": 0,
            "l1l2SampleRate": "5",
            "severeViolationLevel": 3,
        },
    }


def default_rule_snapshot(version: str = "default") -> RuleSnapshot:
    """Return the platform defaults as a validated snapshot."""
    return load_rule_snapshot(default_rules_mapping(version))
