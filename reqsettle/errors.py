"""reqsettle error taxonomy.

Funding, approval and payment errors are fatal to a settlement run and are
never retried inside the package. A poll that runs out of time is not an
error: it ends the run with a TimedOut outcome instead.
"""

from __future__ import annotations

from typing import Optional


class SettlementError(Exception):
    """Base class for everything raised by reqsettle."""


class FundingError(SettlementError):
    """The payer cannot cover the expected amount. Top up and start again."""

    def __init__(self, payer: str, required: int, available: int):
        self.payer = payer
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient funds: {payer} has {available}, needs {required} "
            f"(short {self.shortfall})"
        )

    @property
    def shortfall(self) -> int:
        return max(self.required - self.available, 0)


class ApprovalError(SettlementError):
    """The allowance transaction failed or did not confirm in time."""

    def __init__(self, reason: str, tx_hash: Optional[str] = None):
        self.reason = reason
        self.tx_hash = tx_hash
        message = f"Approval failed: {reason}"
        if tx_hash:
            message += f" (tx {tx_hash})"
        super().__init__(message)


class PaymentError(SettlementError):
    """The transfer failed, reverted, or did not confirm in time.

    Funds may already be in flight; reconcile manually using `tx_hash`.
    """

    def __init__(self, reason: str, tx_hash: Optional[str] = None):
        self.reason = reason
        self.tx_hash = tx_hash
        message = f"Payment failed: {reason}"
        if tx_hash:
            message += f" (tx {tx_hash})"
        super().__init__(message)


class SettlementInProgressError(SettlementError):
    """Another settlement run for the same request is still in flight."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Settlement already in progress for request {request_id}")


class InvalidTransition(SettlementError):
    def __init__(self, old, new):
        self.old = old
        self.new = new
        super().__init__(f"Illegal settlement transition: {old.value} -> {new.value}")


class RequestLedgerError(SettlementError):
    """The request ledger could not be read or written."""


class ConfigError(ValueError):
    """Raised when the supplied configuration is invalid."""
