"""
Settlement Engine Exceptions.

Only genuine failures are exceptions.  Policy rejections (blacklist,
severe violations) and cap truncations are normal outcomes and are
reported through records, never raised.
"""

from __future__ import annotations

__all__ = [
    "ConfigurationError",
    "ConfigurationMismatchError",
    "InvalidTransitionError",
    "LockTimeoutError",
    "RecordNotFoundError",
    "SettlementError",
]


class SettlementError(ValueError):
    """Base class for all settlement engine errors."""


class ConfigurationError(SettlementError):
    """The rule snapshot is missing values or is internally inconsistent.

    Raised when the snapshot is loaded so that a bad configuration rejects
    the whole calculation instead of producing a guessed amount.
    """


class ConfigurationMismatchError(SettlementError):
    """An order references a complexity level the snapshot does not define."""

    def __init__(self, order_id: str, level_id: str) -> None:
        self.order_id = order_id
        self.level_id = level_id
        super().__init__(
            f"Order '{order_id}' references unknown complexity level "
            f"'{level_id}'; the reward calculation was rejected."
        )


class InvalidTransitionError(SettlementError):
    """A disbursement status change is not allowed by the state machine."""

    def __init__(self, source: str, target: str) -> None:
        self.source = source
        self.target = target
        super().__init__(
            f"Illegal disbursement transition '{source}' -> '{target}'."
        )


class RecordNotFoundError(SettlementError):
    """No disbursement record exists for the requested (order, stage)."""


class LockTimeoutError(SettlementError):
    """A disbursement or user lock could not be acquired in time."""
