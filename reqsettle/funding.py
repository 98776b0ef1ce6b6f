"""Funding checks run before anything is submitted on-chain."""

from __future__ import annotations

import logging
from typing import Optional

from .errors import FundingError
from .ports import LedgerClient
from .types import AllowanceStatus, BalanceStatus, FundingStatus, PaymentRequest

logger = logging.getLogger(__name__)


def _status(available: int, allowed: int, required: int) -> FundingStatus:
    return FundingStatus(
        balance=BalanceStatus.SUFFICIENT if available >= required else BalanceStatus.INSUFFICIENT,
        allowance=AllowanceStatus.APPROVED if allowed >= required else AllowanceStatus.NOT_APPROVED,
        available=available,
        allowed=allowed,
    )


class FundingVerifier:
    """Decides whether a payer can go ahead with a payment request.

    Read-only: only balance and allowance queries are issued.

    Example:
        verifier = FundingVerifier(ledger)
        status = await verifier.verify(request)
        if not status.approved:
            ...  # grant allowance first
    """

    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger

    async def assess(self, request: PaymentRequest, payer: Optional[str] = None) -> FundingStatus:
        """Query balance and allowance without treating either as fatal."""
        payer = payer or request.payer
        available = await self.ledger.get_balance(payer, request.currency)
        allowed = await self.ledger.get_allowance(request.spender, payer, request.currency)
        return _status(available, allowed, request.expected_amount)

    async def verify(self, request: PaymentRequest, payer: Optional[str] = None) -> FundingStatus:
        """Check the balance, then the allowance.

        Raises:
            FundingError: If the payer's balance is below the expected amount
        """
        payer = payer or request.payer
        required = request.expected_amount

        available = await self.ledger.get_balance(payer, request.currency)
        if available < required:
            logger.warning(
                "Insufficient funds for %s: %s has %s, needs %s",
                request.request_id, payer, available, required,
            )
            raise FundingError(payer, required, available)

        allowed = await self.ledger.get_allowance(request.spender, payer, request.currency)
        status = _status(available, allowed, required)
        logger.debug(
            "Funding for %s: balance=%s allowance=%s (%s) required=%s",
            request.request_id, available, allowed, status.allowance.value, required,
        )
        return status
