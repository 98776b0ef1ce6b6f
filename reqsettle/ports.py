"""Interfaces of the collaborators the settlement workflow consumes.

Interfaces only. Concrete adapters live in reqsettle.payments; tests use
in-memory stubs. Implementations must be safe to share between concurrent
settlement runs.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol

from .types import ConfirmationStatus, Currency, ObservedBalance, TransactionHandle


class LedgerClient(Protocol):
    async def get_balance(self, identity: str, currency: Currency) -> int:
        ...

    async def get_allowance(self, spender: str, owner: str, currency: Currency) -> int:
        ...

    async def submit_approval(
        self, owner: str, spender: str, currency: Currency, amount: int
    ) -> TransactionHandle:
        ...

    async def submit_transfer(
        self,
        sender: str,
        recipient: str,
        currency: Currency,
        amount: int,
        *,
        reference: Optional[str] = None,
        spender: Optional[str] = None,
    ) -> TransactionHandle:
        """Send `amount` to `recipient`.

        With a `spender`, the transfer is pulled by that contract out of the
        allowance the sender granted it; otherwise it is a direct transfer.
        """
        ...

    async def await_confirmations(
        self, handle: TransactionHandle, min_depth: int, deadline: float
    ) -> ConfirmationStatus:
        ...


class RequestLedgerClient(Protocol):
    async def refresh_observed_balance(self, request_id: str) -> ObservedBalance:
        ...


class StatusSink(Protocol):
    def __call__(self, state: Any, detail: Mapping[str, Any]) -> None:
        ...
