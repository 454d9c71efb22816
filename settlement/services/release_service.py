"""
Disbursement Release Service.

Boundary service that owns the disbursement records of settled orders and
drives them through review verdicts, the anti-fraud gate and sampling
audits.

Concurrency model:

- ``DisbursementLedger`` guards each (order, stage) record with its own
  re-entrant lock.  Every status change is a compare-and-set on the
  expected current status.
- ``MonthlyReleaseCounter`` is the authoritative record of L1 releases
  per user.  It is read and updated under a per-user lock held in the
  same critical section as the release transition, so two concurrent
  releases for one user never both see the same headroom.

Lock order is always record lock, then user lock.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from settlement.exceptions import (
    InvalidTransitionError,
    LockTimeoutError,
    RecordNotFoundError,
    SettlementError,
)
from settlement.logger import StructuredLogger
from settlement.models.disbursement import DisbursementKey, RewardDisbursement
from settlement.models.enums import (
    ComplexityLevelId,
    DisbursementStatus,
    GateOutcome,
    ReviewStage,
    ReviewVerdict,
)
from settlement.models.order import BlacklistEntry, ComplianceSnapshot, UserRiskSnapshot
from settlement.models.rule_config import AntiFraudConfig
from settlement.models.service_models import GateContext, GateDecision, SettlementResult
from settlement.services.antifraud_gate import evaluate_release
from settlement.services.base_service import BaseService
from settlement.services.payout_scheduler import apply_review_verdict, transition
from settlement.utils.audit import AuditAction
from settlement.utils.clock import ensure_utc, utc_now
from settlement.utils.money import ZERO

__all__ = [
    "DisbursementLedger",
    "DisbursementReleaseService",
    "MonthlyReleaseCounter",
]

_ENTITY: str = "RewardDisbursement"
_SYSTEM_ACTOR: str = "system"


@contextmanager
def _hold(lock: threading.RLock, timeout_s: float, what: str) -> Iterator[None]:
    if not lock.acquire(timeout=timeout_s):
        raise LockTimeoutError(f"Timed out after {timeout_s}s waiting for lock on {what}.")
    try:
        yield
    finally:
        lock.release()


def _entity_id(key: DisbursementKey) -> str:
    return f"{key[0]}/{key[1].value}"


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class DisbursementLedger:
    """In-memory store of disbursement records with per-record locks."""

    def __init__(self) -> None:
        self._records: dict[DisbursementKey, RewardDisbursement] = {}
        self._locks: dict[DisbursementKey, threading.RLock] = {}
        self._registry_lock: threading.Lock = threading.Lock()

    def lock_for(self, key: DisbursementKey) -> threading.RLock:
        """Lock guarding *key*.  Terminal records give theirs up, see ``_forget_lock``."""
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    def add(self, record: RewardDisbursement) -> bool:
        """Insert *record* unless its key is already present.

        Returns:
            ``True`` when inserted, ``False`` when a record already existed
            (the existing record is kept).
        """
        with self.lock_for(record.key):
            if record.key in self._records:
                return False
            self._records[record.key] = record
            return True

    def get(self, order_id: str, stage: ReviewStage) -> RewardDisbursement:
        key: DisbursementKey = (order_id, ReviewStage(stage))
        record = self._records.get(key)
        if record is None:
            raise RecordNotFoundError(
                f"No disbursement for order '{order_id}' stage '{key[1].value}'."
            )
        return record

    def compare_and_set(
        self,
        expected_status: DisbursementStatus,
        new_record: RewardDisbursement,
    ) -> bool:
        """Replace the stored record only if it is still in *expected_status*."""
        with self.lock_for(new_record.key):
            current = self._records.get(new_record.key)
            if current is None or current.status != expected_status:
                return False
            self._records[new_record.key] = new_record
            if new_record.status.is_terminal:
                self._forget_lock(new_record.key)
            return True

    def _forget_lock(self, key: DisbursementKey) -> None:
        # A terminal record never changes again: later callers only read it,
        # and compare_and_set rejects any write, so a fresh lock is harmless.
        with self._registry_lock:
            self._locks.pop(key, None)

    def for_order(self, order_id: str) -> list[RewardDisbursement]:
        stages: list[ReviewStage] = list(ReviewStage)
        records = [r for (oid, _), r in list(self._records.items()) if oid == order_id]
        return sorted(records, key=lambda r: stages.index(r.stage))

    def __len__(self) -> int:
        return len(self._records)


# ---------------------------------------------------------------------------
# Monthly L1 counter
# ---------------------------------------------------------------------------

class MonthlyReleaseCounter:
    """Trailing-window totals of L1 amounts released per user.

    Keeps one lock per user seen.  Unlike record locks these are never
    dropped: two releases for one user must always contend on the same
    lock, so the map grows with the number of distinct users only.
    """

    def __init__(self) -> None:
        self._entries: dict[str, list[tuple[datetime, Decimal]]] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock: threading.Lock = threading.Lock()

    def lock_for(self, user_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[user_id] = lock
            return lock

    def released_in_window(self, user_id: str, now: datetime, window_days: int) -> Decimal:
        """Sum of releases in ``(now - window_days, now]``.

        Entries are pruned relative to the latest recorded release, never
        to the queried *now*, so asking about a future instant does not
        drop entries that a later query for an earlier instant still counts.
        """
        now = ensure_utc(now)
        window = timedelta(days=window_days)
        with self.lock_for(user_id):
            entries = self._entries.get(user_id, [])
            if entries:
                latest: datetime = max(when for when, _ in entries)
                entries = [e for e in entries if e[0] > latest - window]
                self._entries[user_id] = entries
            cutoff: datetime = now - window
            return sum((amount for when, amount in entries if cutoff < when <= now), ZERO)

    def record(self, user_id: str, amount: Decimal, when: datetime) -> None:
        if amount <= 0:
            return
        with self.lock_for(user_id):
            self._entries.setdefault(user_id, []).append((ensure_utc(when), amount))


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class DisbursementReleaseService(BaseService):
    """Applies verdicts and release decisions to ledger records."""

    def __init__(
        self,
        logger: StructuredLogger,
        antifraud: Optional[AntiFraudConfig] = None,
        ledger: Optional[DisbursementLedger] = None,
        counter: Optional[MonthlyReleaseCounter] = None,
        audit_enabled: bool = True,
        lock_timeout_s: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(logger, audit_enabled)
        self._antifraud: AntiFraudConfig = antifraud or AntiFraudConfig()
        self._ledger: DisbursementLedger = ledger if ledger is not None else DisbursementLedger()
        self._counter: MonthlyReleaseCounter = counter if counter is not None else MonthlyReleaseCounter()
        self._lock_timeout_s: float = lock_timeout_s
        self._clock: Callable[[], datetime] = clock

    @property
    def ledger(self) -> DisbursementLedger:
        return self._ledger

    @property
    def counter(self) -> MonthlyReleaseCounter:
        return self._counter

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, result: SettlementResult) -> list[RewardDisbursement]:
        """Store the scheduled disbursements of a settled order.

        Registering the same order again keeps the existing records.
        """
        stored: list[RewardDisbursement] = []
        for record in result.disbursements:
            if self._ledger.add(record):
                stored.append(record)
            else:
                self._logger.info(
                    "Disbursement %s already registered; keeping existing record",
                    _entity_id(record.key),
                )
        if stored:
            self._audit(
                AuditAction.SETTLE,
                "Order",
                result.order_id,
                stored[0].user_id,
                {
                    "snapshot_version": result.snapshot_version,
                    "order_reward": str(result.order_reward),
                    "stages": len(stored),
                    "commission": str(result.commission.amount),
                    "truncations": len(result.truncations),
                },
            )
        return self._ledger.for_order(result.order_id)

    # ------------------------------------------------------------------
    # Review verdicts
    # ------------------------------------------------------------------

    def apply_verdict(
        self,
        order_id: str,
        stage: ReviewStage,
        verdict: ReviewVerdict,
        now: Optional[datetime] = None,
    ) -> RewardDisbursement:
        """Apply a review verdict; duplicates and late verdicts are no-ops."""
        at: datetime = ensure_utc(now or self._clock())
        record = self._ledger.get(order_id, stage)
        with _hold(self._ledger.lock_for(record.key), self._lock_timeout_s, _entity_id(record.key)):
            record = self._ledger.get(order_id, stage)
            updated = apply_review_verdict(record, verdict, at, self._logger)
            if updated is record:
                return record
            self._store(record.status, updated)
            self._audit(
                AuditAction.VERDICT,
                _ENTITY,
                _entity_id(record.key),
                record.user_id,
                {"verdict": verdict.value, "status": updated.status.value},
            )
            return updated

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def release(
        self,
        order_id: str,
        stage: ReviewStage,
        user: UserRiskSnapshot,
        compliance: Optional[ComplianceSnapshot] = None,
        blacklist: Iterable[BlacklistEntry] = (),
        now: Optional[datetime] = None,
    ) -> RewardDisbursement:
        """Run the anti-fraud gate for one milestone and apply its decision.

        Releasing a record that is already released (or rejected) returns
        it unchanged.

        Returns:
            The record after the decision.  Deferred and re-frozen records
            come back unchanged.
        """
        at: datetime = ensure_utc(now or self._clock())
        record = self._ledger.get(order_id, stage)
        with _hold(self._ledger.lock_for(record.key), self._lock_timeout_s, _entity_id(record.key)):
            record = self._ledger.get(order_id, stage)
            if record.status.is_terminal:
                self._logger.info(
                    "Release of %s ignored: record is already %s",
                    _entity_id(record.key), record.status,
                )
                return record
            return self._release_locked(record, user, compliance, tuple(blacklist), at)

    def resolve_sampling(
        self,
        order_id: str,
        stage: ReviewStage,
        passed: bool,
        user: UserRiskSnapshot,
        compliance: Optional[ComplianceSnapshot] = None,
        blacklist: Iterable[BlacklistEntry] = (),
        now: Optional[datetime] = None,
    ) -> RewardDisbursement:
        """Apply the outcome of a manual sampling audit to a frozen record.

        A failed audit rejects the record.  A passed audit clears it from
        sampling and sends it through the remaining gate checks, which
        release or reject it.

        Raises:
            InvalidTransitionError: The record is not frozen.
        """
        at: datetime = ensure_utc(now or self._clock())
        record = self._ledger.get(order_id, stage)
        with _hold(self._ledger.lock_for(record.key), self._lock_timeout_s, _entity_id(record.key)):
            record = self._ledger.get(order_id, stage)
            if record.status.is_terminal:
                return record
            if record.status != DisbursementStatus.FROZEN:
                raise InvalidTransitionError(record.status.value, DisbursementStatus.RELEASED.value)

            if not passed:
                rejected = transition(record, DisbursementStatus.REJECTED, reason="sampling_rejected")
                self._store(record.status, rejected)
                self._audit(
                    AuditAction.REJECT,
                    _ENTITY,
                    _entity_id(record.key),
                    record.user_id,
                    {"reason": "sampling_rejected"},
                )
                return rejected

            cleared = record.model_copy(update={"sampling_cleared": True})
            self._store(record.status, cleared)
            return self._release_locked(cleared, user, compliance, tuple(blacklist), at)

    # ------------------------------------------------------------------
    # Internals (caller holds the record lock)
    # ------------------------------------------------------------------

    def _store(self, expected: DisbursementStatus, new_record: RewardDisbursement) -> None:
        if not self._ledger.compare_and_set(expected, new_record):
            current = self._ledger.get(new_record.order_id, new_record.stage)
            raise InvalidTransitionError(current.status.value, new_record.status.value)

    def _release_locked(
        self,
        record: RewardDisbursement,
        user: UserRiskSnapshot,
        compliance: Optional[ComplianceSnapshot],
        blacklist: tuple[BlacklistEntry, ...],
        now: datetime,
    ) -> RewardDisbursement:
        if user.user_id != record.user_id:
            raise SettlementError(
                f"Risk snapshot for user '{user.user_id}' does not belong to "
                f"disbursement {_entity_id(record.key)} (user '{record.user_id}')."
            )
        if compliance is not None and compliance.merchant_id and (
            compliance.merchant_id != record.merchant_id
        ):
            raise SettlementError(
                f"Compliance snapshot for merchant '{compliance.merchant_id}' does not "
                f"belong to disbursement {_entity_id(record.key)} "
                f"(merchant '{record.merchant_id}')."
            )

        entity_id: str = _entity_id(record.key)
        user_lock = self._counter.lock_for(record.user_id)
        with _hold(user_lock, self._lock_timeout_s, f"user {record.user_id}"):
            released = self._counter.released_in_window(
                record.user_id, now, self._antifraud.l1_cap_window_days
            )
            context = GateContext(
                now=now,
                config=self._antifraud,
                user=user,
                compliance=compliance or ComplianceSnapshot(),
                blacklist=blacklist,
                l1_released_in_window=released,
            )
            decision: GateDecision = evaluate_release(record, context, self._logger)

            if decision.outcome == GateOutcome.DEFER:
                self._audit(
                    AuditAction.DEFER,
                    _ENTITY,
                    entity_id,
                    _SYSTEM_ACTOR,
                    {
                        "reasons": ",".join(decision.reasons),
                        "release_not_before": (
                            decision.release_not_before.isoformat()
                            if decision.release_not_before else None
                        ),
                    },
                )
                return record

            if decision.outcome == GateOutcome.FREEZE:
                if record.status == DisbursementStatus.FROZEN:
                    return record
                frozen = transition(record, DisbursementStatus.FROZEN, reason="sampling_audit")
                self._store(record.status, frozen)
                self._audit(AuditAction.FREEZE, _ENTITY, entity_id, _SYSTEM_ACTOR, {
                    "amount": str(frozen.amount),
                })
                return frozen

            if decision.outcome == GateOutcome.REJECT:
                rejected = transition(
                    record, DisbursementStatus.REJECTED, reason=";".join(decision.reasons)
                )
                self._store(record.status, rejected)
                self._audit(AuditAction.REJECT, _ENTITY, entity_id, _SYSTEM_ACTOR, {
                    "reason": rejected.reason,
                })
                return rejected

            reason: Optional[str] = None
            if decision.truncations:
                reason = ";".join(t.reason.value for t in decision.truncations)
            for truncation in decision.truncations:
                self._audit(AuditAction.TRUNCATE, _ENTITY, entity_id, _SYSTEM_ACTOR, {
                    "reason": truncation.reason.value,
                    "before": str(truncation.before),
                    "after": str(truncation.after),
                })

            released_record = transition(
                record,
                DisbursementStatus.RELEASED,
                amount=decision.amount,
                reason=reason,
                release_time=now,
            )
            self._store(record.status, released_record)
            if released_record.complexity_level == ComplexityLevelId.L1:
                self._counter.record(record.user_id, released_record.amount, now)

            self._audit(AuditAction.RELEASE, _ENTITY, entity_id, _SYSTEM_ACTOR, {
                "amount": str(released_record.amount),
                "tax_deducted": str(released_record.tax_deducted),
            })
            return released_record
