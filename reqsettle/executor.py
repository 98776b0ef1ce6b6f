"""Payment transfer submission and confirmation.

This is the one step after which funds may have left the payer's control.
A failed or unconfirmed transfer is never resubmitted from here: a blind
retry could pay the request twice.
"""

from __future__ import annotations

import logging
from typing import Optional

from .config import DEFAULT_CONFIRMATION_DEPTH, DEFAULT_CONFIRMATION_TIMEOUT
from .errors import PaymentError
from .ports import LedgerClient
from .types import ConfirmationStatus, PaymentRequest, TransactionHandle

logger = logging.getLogger(__name__)


class PaymentExecutor:
    """Moves the expected amount from payer to the request's recipient."""

    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger

    async def submit(self, request: PaymentRequest, payer: Optional[str] = None) -> TransactionHandle:
        """Submit the transfer transaction.

        Raises:
            PaymentError: If the ledger client rejects the submission
        """
        payer = payer or request.payer
        try:
            handle = await self.ledger.submit_transfer(
                payer,
                request.recipient,
                request.currency,
                request.expected_amount,
                reference=request.payment_reference,
                spender=request.spender,
            )
        except Exception as exc:
            raise PaymentError(f"submission failed: {exc}") from exc

        logger.info(
            "Payment submitted for %s: %s -> %s amount=%s (tx %s)",
            request.request_id, payer, request.recipient, request.expected_amount, handle.tx_hash,
        )
        return handle

    async def confirm(
        self,
        handle: TransactionHandle,
        *,
        confirmation_depth: int = DEFAULT_CONFIRMATION_DEPTH,
        timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
    ) -> TransactionHandle:
        """Wait until the transfer is `confirmation_depth` blocks deep.

        Raises:
            PaymentError: Reverted or not confirmed within `timeout`
        """
        try:
            status = await self.ledger.await_confirmations(handle, confirmation_depth, timeout)
        except Exception as exc:
            raise PaymentError(f"confirmation wait failed: {exc}", handle.tx_hash) from exc

        if status is ConfirmationStatus.REVERTED:
            raise PaymentError("transaction reverted", handle.tx_hash)
        if status is ConfirmationStatus.TIMED_OUT:
            raise PaymentError(
                f"not confirmed {confirmation_depth} deep within {timeout:g}s", handle.tx_hash
            )

        logger.info("Payment %s confirmed (%s confirmations)", handle.tx_hash, confirmation_depth)
        return TransactionHandle(
            tx_hash=handle.tx_hash,
            confirmations=max(handle.confirmations, confirmation_depth),
            explorer_url=handle.explorer_url,
        )

    async def execute(
        self,
        request: PaymentRequest,
        payer: Optional[str] = None,
        *,
        confirmation_depth: int = DEFAULT_CONFIRMATION_DEPTH,
        timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
    ) -> TransactionHandle:
        """Submit the transfer and wait for it."""
        handle = await self.submit(request, payer)
        return await self.confirm(handle, confirmation_depth=confirmation_depth, timeout=timeout)
