"""
Settlement Engine Command-Line Entry Point.

Settles one repair order against a rule snapshot and prints the
``SettlementResult`` as JSON.  The dependency graph is wired here; no
module-level globals.

Usage::

    python main.py --order order.json [--rules rules.json] [--compliance compliance.json]

Without ``--rules`` the snapshot named by ``SETTLEMENT_RULES_SNAPSHOT_PATH``
is used, falling back to the platform defaults.
"""

from __future__ import annotations

import argparse
import json
import sys
from decimal import Decimal
from pathlib import Path
from typing import Optional, Sequence

from settlement.config import get_config
from settlement.exceptions import ConfigurationError
from settlement.logger import StructuredLogger
from settlement.models.rule_config import RuleSnapshot
from settlement.services import create_services
from settlement.services.rule_loader import load_snapshot_file
from settlement.utils.general import dump_document


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="settlement",
        description="Settle a repair order: reward schedule and merchant commission.",
    )
    parser.add_argument("--order", required=True, type=Path, help="Order snapshot JSON file.")
    parser.add_argument("--rules", type=Path, default=None, help="Rule snapshot JSON file.")
    parser.add_argument(
        "--compliance", type=Path, default=None, help="Merchant compliance snapshot JSON file."
    )
    parser.add_argument("--indent", type=int, default=2, help="JSON output indentation.")
    return parser


def _read_json(path: Path) -> dict[str, object]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh, parse_float=Decimal)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read '{path}': {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"'{path}' is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"'{path}' must hold a JSON object.")
    return data


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point; returns the process exit code."""
    args = _build_parser().parse_args(argv)
    # Logs go to stderr so stdout carries only the result document.
    logger: StructuredLogger = StructuredLogger(name="settlement.cli", stream=sys.stderr)
    config = get_config()

    try:
        snapshot: Optional[RuleSnapshot] = (
            load_snapshot_file(args.rules) if args.rules is not None else None
        )
        services = create_services(config=config, snapshot=snapshot, logger=logger)
        order = _read_json(args.order)
        compliance = _read_json(args.compliance) if args.compliance is not None else None
    except ConfigurationError as exc:
        logger.error("Cannot start settlement: %s", exc)
        print(json.dumps({"success": False, "error": str(exc)}), file=sys.stderr)
        return 2

    result = services["settlement_service"].settle_order(order, compliance)
    if not result.success:
        print(
            json.dumps({"success": False, "error": result.error, "status_code": result.status_code}),
            file=sys.stderr,
        )
        return 1

    print(dump_document(result.data, indent=args.indent))
    return 0


if __name__ == "__main__":
    sys.exit(main())
