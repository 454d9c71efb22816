"""Tests for the boundary service envelope and the service factory."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from settlement.config import AppConfig
from settlement.models.enums import DisbursementStatus, ReviewStage
from settlement.models.rule_config import RuleSnapshot
from settlement.services import create_services
from settlement.services.settlement_service import SettlementService

ORDER_PAYLOAD = {
    "orderId": "O-100",
    "userId": "U-7",
    "merchantId": "M-3",
    "totalAmount": "15000",
    "vehiclePrice": "600000",
    "items": [{"levelId": "l4"}],
}


@pytest.fixture
def service(snapshot: RuleSnapshot, logger) -> SettlementService:
    container = create_services(config=AppConfig(), snapshot=snapshot, logger=logger)
    return container["settlement_service"]


class TestSettleOrder:
    def test_camel_case_payload(self, service: SettlementService) -> None:
        result = service.settle_order(ORDER_PAYLOAD)
        assert result.success is True
        assert result.status_code == 200
        assert result.data.order_reward == Decimal("550.00")
        assert len(result.data.disbursements) == 2

    def test_invalid_payload(self, service: SettlementService) -> None:
        result = service.settle_order({"userId": "U-7", "totalAmount": "10"})
        assert result.success is False
        assert result.status_code == 422

    def test_unknown_level(self, service: SettlementService) -> None:
        payload = dict(ORDER_PAYLOAD, items=[{"levelId": "L7"}])
        result = service.settle_order(payload)
        assert result.status_code == 422
        assert "L7" in result.error

    def test_compliance_payload(self, service: SettlementService) -> None:
        result = service.settle_order(
            ORDER_PAYLOAD, {"merchantId": "M-3", "complianceRate": "60"}
        )
        assert result.data.commission.rate == Decimal("12")


class TestDisbursementFlow:
    def test_full_flow(self, service: SettlementService, now: datetime) -> None:
        service.settle_order(ORDER_PAYLOAD)
        verdict = service.submit_verdict("O-100", "main", "pass", now)
        assert verdict.data.status == DisbursementStatus.PENDING

        released = service.release_disbursement("O-100", "main", {"userId": "U-7"}, now=now)
        assert released.success is True
        assert released.data.status == DisbursementStatus.RELEASED
        assert released.data.amount == Decimal("275.00")

        records = service.get_disbursements("O-100").data
        assert [r.status for r in records] == [
            DisbursementStatus.RELEASED, DisbursementStatus.AWAITING_REVIEW,
        ]

    def test_unknown_record(self, service: SettlementService) -> None:
        assert service.submit_verdict("nope", ReviewStage.MAIN, "pass").status_code == 404
        assert service.get_disbursements("nope").status_code == 404

    def test_bad_stage(self, service: SettlementService) -> None:
        assert service.submit_verdict("O-100", "6m", "pass").status_code == 422

    def test_illegal_transition(self, service: SettlementService, now: datetime) -> None:
        service.settle_order(ORDER_PAYLOAD)
        service.submit_verdict("O-100", "main", "pass", now)
        result = service.resolve_sampling("O-100", "main", True, {"userId": "U-7"}, now=now)
        assert result.success is False
        assert result.status_code == 409

    def test_foreign_merchant_compliance_is_unprocessable(
        self, service: SettlementService, now: datetime
    ) -> None:
        service.settle_order(ORDER_PAYLOAD)
        service.submit_verdict("O-100", "main", "pass", now)
        result = service.release_disbursement(
            "O-100", "main", {"userId": "U-7"}, {"merchantId": "M-4"}, now=now
        )
        assert result.success is False
        assert result.status_code == 422
        assert "M-4" in result.error

    def test_other_merchants_violation_does_not_block(
        self, service: SettlementService, now: datetime
    ) -> None:
        service.settle_order(ORDER_PAYLOAD)
        service.submit_verdict("O-100", "main", "pass", now)
        compliance = {
            "merchantId": "M-3",
            "violations": [{"targetType": "merchant", "targetId": "M-4", "level": 4}],
        }
        result = service.release_disbursement(
            "O-100", "main", {"userId": "U-7"}, compliance, now=now
        )
        assert result.data.status == DisbursementStatus.RELEASED

    def test_naive_verdict_time_then_default_clock(self, service: SettlementService) -> None:
        service.settle_order(ORDER_PAYLOAD)
        verdict_at = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(minutes=5)
        assert service.submit_verdict("O-100", "main", "pass", verdict_at).success is True
        result = service.release_disbursement("O-100", "main", {"userId": "U-7"})
        assert result.status_code == 200
        assert result.data.status == DisbursementStatus.RELEASED


class TestFactory:
    def test_container_shares_snapshot(self, snapshot: RuleSnapshot, logger) -> None:
        container = create_services(config=AppConfig(), snapshot=snapshot, logger=logger)
        assert container["settlement_service"].snapshot is snapshot
        assert container["snapshot"] is snapshot

    def test_defaults_without_snapshot_path(self, logger) -> None:
        container = create_services(config=AppConfig(RULES_SNAPSHOT_PATH=""), logger=logger)
        assert container["snapshot"].version == "default"
