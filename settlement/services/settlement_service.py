"""
Settlement Service.

Boundary service used by HTTP handlers, workers and the CLI.  Wraps the
pure settlement engine and the release service, validates raw payloads and
reports every outcome through the ``ServiceResult`` envelope:

    422  configuration or input errors
    404  unknown disbursement record
    409  illegal status transition
    503  lock timeout
    500  unexpected failure
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Callable, Optional, TypeVar, Union

from pydantic import ValidationError

from settlement.exceptions import (
    ConfigurationError,
    ConfigurationMismatchError,
    InvalidTransitionError,
    LockTimeoutError,
    RecordNotFoundError,
    SettlementError,
)
from settlement.logger import StructuredLogger
from settlement.models.disbursement import RewardDisbursement
from settlement.models.enums import ReviewStage, ReviewVerdict
from settlement.models.order import (
    BlacklistEntry,
    ComplianceSnapshot,
    OrderSnapshot,
    UserRiskSnapshot,
)
from settlement.models.rule_config import RuleSnapshot
from settlement.models.service_models import ServiceResult, SettlementResult
from settlement.services.base_service import BaseService
from settlement.services.release_service import DisbursementReleaseService
from settlement.services.settlement_engine import calculate_settlement

__all__ = ["SettlementService"]

R = TypeVar("R")

OrderInput = Union[OrderSnapshot, Mapping[str, object]]
ComplianceInput = Union[ComplianceSnapshot, Mapping[str, object], None]
UserInput = Union[UserRiskSnapshot, Mapping[str, object]]
BlacklistInput = Iterable[Union[BlacklistEntry, Mapping[str, object]]]


def _status_for(exc: Exception) -> int:
    if isinstance(exc, (ValidationError, ConfigurationError, ConfigurationMismatchError)):
        return 422
    if isinstance(exc, RecordNotFoundError):
        return 404
    if isinstance(exc, InvalidTransitionError):
        return 409
    if isinstance(exc, LockTimeoutError):
        return 503
    if isinstance(exc, (SettlementError, ValueError)):
        return 422
    return 500


class SettlementService(BaseService):
    """Settles orders and drives their disbursements through release."""

    def __init__(
        self,
        logger: StructuredLogger,
        snapshot: RuleSnapshot,
        release_service: DisbursementReleaseService,
        audit_enabled: bool = True,
    ) -> None:
        super().__init__(logger, audit_enabled)
        self._snapshot: RuleSnapshot = snapshot
        self._release: DisbursementReleaseService = release_service

    @property
    def snapshot(self) -> RuleSnapshot:
        return self._snapshot

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run(self, operation: str, call: Callable[[], R]) -> ServiceResult[R]:
        try:
            return ServiceResult(success=True, data=call())
        except Exception as exc:
            status_code: int = _status_for(exc)
            if status_code == 500:
                self._logger.error(
                    "Unexpected error during %s: %s", operation, str(exc), exc_info=True
                )
                return ServiceResult(
                    success=False,
                    error=f"Internal error: {str(exc)}",
                    status_code=500,
                )
            self._logger.warning("%s failed (%d): %s", operation, status_code, str(exc))
            return ServiceResult(success=False, error=str(exc), status_code=status_code)

    @staticmethod
    def _order(payload: OrderInput) -> OrderSnapshot:
        if isinstance(payload, OrderSnapshot):
            return payload
        return OrderSnapshot.model_validate(dict(payload))

    @staticmethod
    def _compliance(payload: ComplianceInput) -> Optional[ComplianceSnapshot]:
        if payload is None or isinstance(payload, ComplianceSnapshot):
            return payload
        return ComplianceSnapshot.model_validate(dict(payload))

    @staticmethod
    def _user(payload: UserInput) -> UserRiskSnapshot:
        if isinstance(payload, UserRiskSnapshot):
            return payload
        return UserRiskSnapshot.model_validate(dict(payload))

    @staticmethod
    def _blacklist(entries: BlacklistInput) -> tuple[BlacklistEntry, ...]:
        return tuple(
            entry if isinstance(entry, BlacklistEntry) else BlacklistEntry.model_validate(dict(entry))
            for entry in entries
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def settle_order(
        self,
        order: OrderInput,
        compliance: ComplianceInput = None,
    ) -> ServiceResult[SettlementResult]:
        """Settle *order* and register its disbursements for release."""

        def _settle() -> SettlementResult:
            result = calculate_settlement(
                self._order(order), self._snapshot, self._compliance(compliance), self._logger
            )
            self._release.register(result)
            return result

        return self._run("settle_order", _settle)

    def submit_verdict(
        self,
        order_id: str,
        stage: Union[ReviewStage, str],
        verdict: Union[ReviewVerdict, str],
        now: Optional[datetime] = None,
    ) -> ServiceResult[RewardDisbursement]:
        return self._run(
            "submit_verdict",
            lambda: self._release.apply_verdict(
                order_id, ReviewStage(stage), ReviewVerdict(verdict), now
            ),
        )

    def release_disbursement(
        self,
        order_id: str,
        stage: Union[ReviewStage, str],
        user: UserInput,
        compliance: ComplianceInput = None,
        blacklist: BlacklistInput = (),
        now: Optional[datetime] = None,
    ) -> ServiceResult[RewardDisbursement]:
        """Run the anti-fraud gate for one milestone and apply the decision."""
        return self._run(
            "release_disbursement",
            lambda: self._release.release(
                order_id,
                ReviewStage(stage),
                self._user(user),
                self._compliance(compliance),
                self._blacklist(blacklist),
                now,
            ),
        )

    def resolve_sampling(
        self,
        order_id: str,
        stage: Union[ReviewStage, str],
        passed: bool,
        user: UserInput,
        compliance: ComplianceInput = None,
        blacklist: BlacklistInput = (),
        now: Optional[datetime] = None,
    ) -> ServiceResult[RewardDisbursement]:
        return self._run(
            "resolve_sampling",
            lambda: self._release.resolve_sampling(
                order_id,
                ReviewStage(stage),
                passed,
                self._user(user),
                self._compliance(compliance),
                self._blacklist(blacklist),
                now,
            ),
        )

    def get_disbursements(self, order_id: str) -> ServiceResult[list[RewardDisbursement]]:
        def _lookup() -> list[RewardDisbursement]:
            records = self._release.ledger.for_order(order_id)
            if not records:
                raise RecordNotFoundError(f"No disbursements for order '{order_id}'.")
            return records

        return self._run("get_disbursements", _lookup)
