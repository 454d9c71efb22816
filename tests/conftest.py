"""Shared fixtures: default rule snapshot, order factory and a fixed clock."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterator, Optional, Sequence

import pytest

from settlement.config import reset_config
from settlement.logger import StructuredLogger
from settlement.models.order import OrderLineItem, OrderSnapshot
from settlement.models.rule_config import AntiFraudConfig, RuleSnapshot
from settlement.services.rule_loader import default_rules_mapping, load_rule_snapshot

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)

OrderFactory = Callable[..., OrderSnapshot]


@pytest.fixture(autouse=True)
def _fresh_config() -> Iterator[None]:
    reset_config()
    yield
    reset_config()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def rules_mapping() -> dict[str, object]:
    """Platform defaults with sampling switched off for predictable releases."""
    mapping = default_rules_mapping("test-v1")
    mapping["antifraud"]["l1l2SampleRate"] = "0"
    return mapping


@pytest.fixture
def snapshot(rules_mapping: dict[str, object]) -> RuleSnapshot:
    return load_rule_snapshot(rules_mapping)


@pytest.fixture
def antifraud(snapshot: RuleSnapshot) -> AntiFraudConfig:
    return snapshot.antifraud


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger(name="settlement.tests")


@pytest.fixture
def make_order() -> OrderFactory:
    def _make(
        total: str = "800",
        price: Optional[str] = "50000",
        levels: Sequence[str] = ("L1",),
        amounts: Optional[Sequence[Optional[str]]] = None,
        order_id: str = "O-1",
        user_id: str = "U-1",
        merchant_id: str = "M-1",
    ) -> OrderSnapshot:
        item_amounts = amounts if amounts is not None else [None] * len(levels)
        return OrderSnapshot(
            order_id=order_id,
            user_id=user_id,
            merchant_id=merchant_id,
            total_amount=Decimal(total),
            vehicle_price=Decimal(price) if price is not None else None,
            items=tuple(
                OrderLineItem(
                    level_id=level,
                    amount=Decimal(amount) if amount is not None else None,
                )
                for level, amount in zip(levels, item_amounts)
            ),
        )

    return _make
