"""Allowance grant for the settlement contract."""

from __future__ import annotations

import logging
from typing import Optional

from .config import DEFAULT_CONFIRMATION_DEPTH, DEFAULT_CONFIRMATION_TIMEOUT
from .errors import ApprovalError
from .ports import LedgerClient
from .types import ConfirmationStatus, PaymentRequest, TransactionHandle

logger = logging.getLogger(__name__)


class ApprovalCoordinator:
    """Grants the request's spender an allowance over the payer's tokens.

    Only run when the funding check reported NOT_APPROVED. Submits exactly
    one approval transaction and blocks until it reaches the confirmation
    depth. Nothing is retried here beyond what the ledger client itself does.
    """

    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger

    async def approve(
        self,
        request: PaymentRequest,
        payer: Optional[str] = None,
        *,
        confirmation_depth: int = DEFAULT_CONFIRMATION_DEPTH,
        timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
    ) -> TransactionHandle:
        """Submit the approval and wait for it.

        Args:
            request: Request whose expected amount is approved
            payer: Token owner (default: request.payer)
            confirmation_depth: Blocks required before the approval counts
            timeout: Seconds to wait for the confirmations

        Returns:
            Handle of the confirmed approval transaction

        Raises:
            ApprovalError: Submission failed, reverted, or timed out
        """
        payer = payer or request.payer

        try:
            handle = await self.ledger.submit_approval(
                payer, request.spender, request.currency, request.expected_amount
            )
        except Exception as exc:
            raise ApprovalError(f"submission failed: {exc}") from exc

        logger.info(
            "Approval submitted for %s: %s allows %s to spend %s (tx %s)",
            request.request_id, payer, request.spender, request.expected_amount, handle.tx_hash,
        )

        try:
            status = await self.ledger.await_confirmations(handle, confirmation_depth, timeout)
        except Exception as exc:
            raise ApprovalError(f"confirmation wait failed: {exc}", handle.tx_hash) from exc

        if status is ConfirmationStatus.REVERTED:
            raise ApprovalError("transaction reverted", handle.tx_hash)
        if status is ConfirmationStatus.TIMED_OUT:
            raise ApprovalError(
                f"not confirmed {confirmation_depth} deep within {timeout:g}s", handle.tx_hash
            )

        logger.info("Approval %s confirmed (%s confirmations)", handle.tx_hash, confirmation_depth)
        return handle
