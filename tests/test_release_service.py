"""Tests for the release service: idempotence, locking and the monthly L1 counter."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from settlement.exceptions import InvalidTransitionError, RecordNotFoundError, SettlementError
from settlement.logger import StructuredLogger
from settlement.models.enums import BlacklistType, DisbursementStatus, ReviewStage, ReviewVerdict
from settlement.models.order import (
    BlacklistEntry,
    ComplianceSnapshot,
    UserRiskSnapshot,
    ViolationRecord,
)
from settlement.models.rule_config import AntiFraudConfig, RuleSnapshot
from settlement.services.release_service import (
    DisbursementLedger,
    DisbursementReleaseService,
    MonthlyReleaseCounter,
)
from settlement.services.settlement_engine import calculate_settlement

USER = UserRiskSnapshot(user_id="U-1", phone="13800000000")


def _service(
    logger: StructuredLogger,
    now: datetime,
    sample_rate: str = "0",
    audit_enabled: bool = True,
) -> DisbursementReleaseService:
    return DisbursementReleaseService(
        logger=logger,
        antifraud=AntiFraudConfig(l1l2_sample_rate=Decimal(sample_rate)),
        audit_enabled=audit_enabled,
        clock=lambda: now,
    )


def _settle_and_pass(service, snapshot: RuleSnapshot, order, now: datetime) -> None:
    service.register(calculate_settlement(order, snapshot))
    service.apply_verdict(order.order_id, ReviewStage.MAIN, ReviewVerdict.PASS, now)


class TestLifecycle:
    def test_release_after_review(self, logger, snapshot, make_order, now: datetime) -> None:
        service = _service(logger, now)
        _settle_and_pass(service, snapshot, make_order(), now)
        record = service.release("O-1", ReviewStage.MAIN, USER)
        assert record.status == DisbursementStatus.RELEASED
        assert record.amount == Decimal("22.00")
        assert record.release_time == now
        assert service.counter.released_in_window("U-1", now, 30) == Decimal("22.00")

    def test_release_is_idempotent(self, logger, snapshot, make_order, now: datetime) -> None:
        service = _service(logger, now)
        _settle_and_pass(service, snapshot, make_order(), now)
        first = service.release("O-1", ReviewStage.MAIN, USER)
        second = service.release("O-1", ReviewStage.MAIN, USER)
        assert second == first
        assert service.counter.released_in_window("U-1", now, 30) == Decimal("22.00")

    def test_release_before_review_is_deferred(self, logger, snapshot, make_order, now) -> None:
        service = _service(logger, now)
        service.register(calculate_settlement(make_order(), snapshot))
        record = service.release("O-1", ReviewStage.MAIN, USER)
        assert record.status == DisbursementStatus.AWAITING_REVIEW

    def test_rejected_review_cannot_be_released(self, logger, snapshot, make_order, now) -> None:
        service = _service(logger, now)
        service.register(calculate_settlement(make_order(), snapshot))
        service.apply_verdict("O-1", ReviewStage.MAIN, ReviewVerdict.REJECT, now)
        record = service.release("O-1", ReviewStage.MAIN, USER)
        assert record.status == DisbursementStatus.REJECTED
        assert record.amount == Decimal("0")

    def test_register_twice_keeps_records(self, logger, snapshot, make_order, now) -> None:
        service = _service(logger, now)
        result = calculate_settlement(make_order(total="15000", price="600000", levels=("L4",)), snapshot)
        service.register(result)
        service.apply_verdict("O-1", ReviewStage.MAIN, ReviewVerdict.PASS, now)
        records = service.register(result)
        assert len(service.ledger) == 2
        assert records[0].status == DisbursementStatus.PENDING
        assert [r.stage for r in records] == [ReviewStage.MAIN, ReviewStage.ONE_MONTH]

    def test_unknown_record(self, logger, now: datetime) -> None:
        with pytest.raises(RecordNotFoundError):
            _service(logger, now).release("missing", ReviewStage.MAIN, USER)

    def test_foreign_user_snapshot_is_refused(self, logger, snapshot, make_order, now) -> None:
        service = _service(logger, now)
        _settle_and_pass(service, snapshot, make_order(), now)
        with pytest.raises(SettlementError):
            service.release("O-1", ReviewStage.MAIN, UserRiskSnapshot(user_id="U-2"))

    def test_blacklisted_user_is_rejected(self, logger, snapshot, make_order, now) -> None:
        service = _service(logger, now)
        _settle_and_pass(service, snapshot, make_order(), now)
        blacklist = [BlacklistEntry(kind=BlacklistType.PHONE, value="13800000000")]
        record = service.release("O-1", ReviewStage.MAIN, USER, blacklist=blacklist)
        assert record.status == DisbursementStatus.REJECTED
        assert record.reason == "blacklisted:phone"
        assert service.counter.released_in_window("U-1", now, 30) == Decimal("0")

    def test_foreign_compliance_snapshot_is_refused(self, logger, snapshot, make_order, now) -> None:
        service = _service(logger, now)
        _settle_and_pass(service, snapshot, make_order(), now)
        with pytest.raises(SettlementError):
            service.release(
                "O-1", ReviewStage.MAIN, USER, compliance=ComplianceSnapshot(merchant_id="M-9")
            )
        assert service.ledger.get("O-1", ReviewStage.MAIN).status == DisbursementStatus.PENDING

    def test_violations_against_others_do_not_reject(
        self, logger, snapshot, make_order, now
    ) -> None:
        service = _service(logger, now)
        _settle_and_pass(service, snapshot, make_order(), now)
        user = USER.model_copy(update={
            "violations": (ViolationRecord(target_type="user", target_id="U-2", level=4),),
        })
        compliance = ComplianceSnapshot(
            merchant_id="M-1",
            violations=(ViolationRecord(target_type="merchant", target_id="M-2", level=4),),
        )
        record = service.release("O-1", ReviewStage.MAIN, user, compliance=compliance)
        assert record.status == DisbursementStatus.RELEASED
        assert record.amount == Decimal("22.00")

    def test_trust_level_zero_is_held_then_paid(self, logger, snapshot, make_order, now) -> None:
        service = _service(logger, now)
        _settle_and_pass(service, snapshot, make_order(), now)
        held = service.release("O-1", ReviewStage.MAIN, USER.model_copy(update={"trust_level": 0}))
        assert held.status == DisbursementStatus.PENDING
        paid = service.release("O-1", ReviewStage.MAIN, USER.model_copy(update={"trust_level": 1}))
        assert paid.status == DisbursementStatus.RELEASED
        assert paid.amount == Decimal("11.00")
        assert paid.scheduled_amount == Decimal("22.00")
        assert paid.reason == "trust_level"


class TestSampling:
    def test_sampled_record_freezes_then_releases(self, logger, snapshot, make_order, now) -> None:
        service = _service(logger, now, sample_rate="100")
        _settle_and_pass(service, snapshot, make_order(), now)
        frozen = service.release("O-1", ReviewStage.MAIN, USER)
        assert frozen.status == DisbursementStatus.FROZEN
        assert service.release("O-1", ReviewStage.MAIN, USER).status == DisbursementStatus.FROZEN

        released = service.resolve_sampling("O-1", ReviewStage.MAIN, True, USER)
        assert released.status == DisbursementStatus.RELEASED
        assert released.sampling_cleared is True

    def test_failed_sampling_rejects(self, logger, snapshot, make_order, now) -> None:
        service = _service(logger, now, sample_rate="100")
        _settle_and_pass(service, snapshot, make_order(), now)
        service.release("O-1", ReviewStage.MAIN, USER)
        rejected = service.resolve_sampling("O-1", ReviewStage.MAIN, False, USER)
        assert rejected.status == DisbursementStatus.REJECTED
        assert rejected.reason == "sampling_rejected"

    def test_sampling_result_requires_frozen_record(self, logger, snapshot, make_order, now) -> None:
        service = _service(logger, now)
        _settle_and_pass(service, snapshot, make_order(), now)
        with pytest.raises(InvalidTransitionError):
            service.resolve_sampling("O-1", ReviewStage.MAIN, True, USER)


class TestMonthlyCounter:
    def test_trailing_window(self, now: datetime) -> None:
        counter = MonthlyReleaseCounter()
        counter.record("U-1", Decimal("40"), now - timedelta(days=31))
        counter.record("U-1", Decimal("25"), now - timedelta(days=29))
        counter.record("U-1", Decimal("5"), now)
        counter.record("U-2", Decimal("99"), now)
        assert counter.released_in_window("U-1", now, 30) == Decimal("30")

    def test_zero_amounts_not_recorded(self, now: datetime) -> None:
        counter = MonthlyReleaseCounter()
        counter.record("U-1", Decimal("0"), now)
        assert counter.released_in_window("U-1", now, 30) == Decimal("0")

    def test_future_query_keeps_entries(self, now: datetime) -> None:
        counter = MonthlyReleaseCounter()
        counter.record("U-1", Decimal("25"), now)
        assert counter.released_in_window("U-1", now + timedelta(days=90), 30) == Decimal("0")
        assert counter.released_in_window("U-1", now, 30) == Decimal("25")

    def test_old_entries_are_pruned(self, now: datetime) -> None:
        counter = MonthlyReleaseCounter()
        counter.record("U-1", Decimal("40"), now - timedelta(days=45))
        counter.record("U-1", Decimal("5"), now)
        assert counter.released_in_window("U-1", now, 30) == Decimal("5")
        assert counter.released_in_window("U-1", now - timedelta(days=40), 30) == Decimal("0")

    def test_cap_spans_orders(self, logger, snapshot, make_order, now) -> None:
        service = _service(logger, now)
        amounts = []
        for i in range(6):
            order = make_order(order_id=f"O-{i}")
            _settle_and_pass(service, snapshot, order, now)
            amounts.append(service.release(order.order_id, ReviewStage.MAIN, USER).amount)
        assert amounts == [
            Decimal("22.00"), Decimal("22.00"), Decimal("22.00"), Decimal("22.00"),
            Decimal("12.00"), Decimal("0.00"),
        ]
        last = service.ledger.get("O-5", ReviewStage.MAIN)
        assert last.status == DisbursementStatus.RELEASED
        assert last.reason == "monthly_cap"


class TestConcurrency:
    def test_concurrent_releases_respect_monthly_cap(self, logger, snapshot, make_order, now) -> None:
        service = _service(logger, now)
        order_ids = [f"O-{i}" for i in range(10)]
        for order_id in order_ids:
            _settle_and_pass(service, snapshot, make_order(order_id=order_id), now)

        with ThreadPoolExecutor(max_workers=8) as pool:
            records = list(pool.map(
                lambda oid: service.release(oid, ReviewStage.MAIN, USER), order_ids
            ))

        assert all(r.status == DisbursementStatus.RELEASED for r in records)
        assert sum(r.amount for r in records) == Decimal("100")
        assert service.counter.released_in_window("U-1", now, 30) == Decimal("100")

    def test_duplicate_release_requests_pay_once(self, logger, snapshot, make_order, now) -> None:
        service = _service(logger, now)
        _settle_and_pass(service, snapshot, make_order(), now)

        with ThreadPoolExecutor(max_workers=8) as pool:
            records = list(pool.map(
                lambda _: service.release("O-1", ReviewStage.MAIN, USER), range(16)
            ))

        assert {r.status for r in records} == {DisbursementStatus.RELEASED}
        assert service.counter.released_in_window("U-1", now, 30) == Decimal("22.00")

    def test_ledger_compare_and_set(self, snapshot, make_order) -> None:
        ledger = DisbursementLedger()
        record = calculate_settlement(make_order(), snapshot).disbursements[0]
        assert ledger.add(record) is True
        assert ledger.add(record) is False
        changed = record.model_copy(update={"reason": "x"})
        assert ledger.compare_and_set(DisbursementStatus.PENDING, changed) is False
        assert ledger.compare_and_set(DisbursementStatus.AWAITING_REVIEW, changed) is True
        assert ledger.get("O-1", ReviewStage.MAIN).reason == "x"


class TestAudit:
    def test_release_is_audited(self, logger, snapshot, make_order, now, caplog) -> None:
        service = _service(logger, now)
        with caplog.at_level(logging.INFO, logger="settlement.tests"):
            _settle_and_pass(service, snapshot, make_order(), now)
            service.release("O-1", ReviewStage.MAIN, USER)
        audit_lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("AUDIT")]
        assert any('"action": "SETTLE"' in line for line in audit_lines)
        assert any('"action": "VERDICT"' in line for line in audit_lines)
        assert any('"action": "RELEASE"' in line for line in audit_lines)

    def test_audit_can_be_disabled(self, logger, snapshot, make_order, now, caplog) -> None:
        service = _service(logger, now, audit_enabled=False)
        with caplog.at_level(logging.INFO, logger="settlement.tests"):
            _settle_and_pass(service, snapshot, make_order(), now)
            service.release("O-1", ReviewStage.MAIN, USER)
        assert not any(r.getMessage().startswith("AUDIT") for r in caplog.records)


class TestLockRegistry:
    def test_terminal_record_gives_up_its_lock(self, snapshot, make_order) -> None:
        ledger = DisbursementLedger()
        record = calculate_settlement(make_order(), snapshot).disbursements[0]
        ledger.add(record)
        lock = ledger.lock_for(record.key)
        rejected = record.model_copy(update={
            "status": DisbursementStatus.REJECTED, "amount": Decimal("0"),
        })
        assert ledger.compare_and_set(DisbursementStatus.AWAITING_REVIEW, rejected) is True
        assert ledger.lock_for(record.key) is not lock

    def test_live_record_keeps_its_lock(self, snapshot, make_order) -> None:
        ledger = DisbursementLedger()
        record = calculate_settlement(make_order(), snapshot).disbursements[0]
        ledger.add(record)
        lock = ledger.lock_for(record.key)
        changed = record.model_copy(update={"reason": "x"})
        assert ledger.compare_and_set(DisbursementStatus.AWAITING_REVIEW, changed) is True
        assert ledger.lock_for(record.key) is lock


class TestNaiveTimestamps:
    def test_naive_verdict_then_release_on_default_clock(
        self, logger, snapshot, make_order
    ) -> None:
        service = DisbursementReleaseService(
            logger=logger, antifraud=AntiFraudConfig(l1l2_sample_rate=Decimal("0"))
        )
        order = make_order(total="15000", price="600000", levels=("L4",))
        service.register(calculate_settlement(order, snapshot))
        verdict_at = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=1)
        pending = service.apply_verdict("O-1", ReviewStage.MAIN, ReviewVerdict.PASS, verdict_at)
        assert pending.pending_since == verdict_at.replace(tzinfo=timezone.utc)

        record = service.release("O-1", ReviewStage.MAIN, USER)
        assert record.status == DisbursementStatus.RELEASED
        assert record.release_time.tzinfo is timezone.utc

    def test_naive_release_time_counts_in_window(self, logger, snapshot, make_order, now) -> None:
        service = _service(logger, now)
        _settle_and_pass(service, snapshot, make_order(), now)
        service.release("O-1", ReviewStage.MAIN, USER, now=now.replace(tzinfo=None))
        assert service.counter.released_in_window("U-1", now, 30) == Decimal("22.00")
