"""Settlement Poller.

Refreshes a request's observed balance until it covers the expected amount
or the deadline passes. Running out of time is a normal ending: the payment
may still land later, and a fresh poll can be started at any time.

Example:
    poller = SettlementPoller(request_ledger)
    outcome = await poller.poll(request, interval=1.0, deadline=5.0)
    if outcome.is_settled:
        print(f"Received {outcome.balance}")
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from .cancellation import acknowledge_cancel
from .config import DEFAULT_POLL_DEADLINE, DEFAULT_POLL_INTERVAL
from .errors import RequestLedgerError
from .ports import RequestLedgerClient
from .types import PaymentRequest, SettlementOutcome

logger = logging.getLogger(__name__)


class SettlementPoller:
    """Bounded balance poll against the request ledger.

    `clock` must be monotonic; `sleep` is awaited between refreshes. Both
    exist so tests can run the loop on a fake clock.
    """

    def __init__(
        self,
        request_ledger: RequestLedgerClient,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.request_ledger = request_ledger
        self._clock = clock
        self._sleep = sleep

    async def poll(
        self,
        request: PaymentRequest,
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
        deadline: float = DEFAULT_POLL_DEADLINE,
        tx_hash: Optional[str] = None,
        on_balance: Optional[Callable[[int], None]] = None,
    ) -> SettlementOutcome:
        """Poll until settled or `deadline` seconds have passed.

        Args:
            request: Request to watch
            interval: Seconds between refreshes
            deadline: Seconds after the first refresh before giving up
            tx_hash: Transfer hash recorded on the outcome
            on_balance: Called with every observed balance

        Returns:
            Settled with the final balance, or TimedOut with the last one.
            Cancelling the poll also ends in TimedOut. Request ledger errors
            are logged and retried; if the last refresh before the deadline
            failed, the TimedOut reason says so.
        """
        expected = request.expected_amount
        last_balance: Optional[int] = None
        last_error: Optional[RequestLedgerError] = None
        started = self._clock()
        attempts = 0

        try:
            while True:
                attempts += 1
                try:
                    observed = await self.request_ledger.refresh_observed_balance(request.request_id)
                except RequestLedgerError as exc:
                    # Funds may already be on their way; keep trying until the deadline
                    last_error = exc
                    logger.warning(
                        "Balance refresh %s for %s failed: %s", attempts, request.request_id, exc
                    )
                else:
                    last_error = None
                    last_balance = observed.balance
                    if on_balance is not None:
                        on_balance(last_balance)

                    if last_balance >= expected:
                        logger.info(
                            "Request %s settled: balance %s >= %s after %s refresh(es)",
                            request.request_id, last_balance, expected, attempts,
                        )
                        return SettlementOutcome.settled(request.request_id, last_balance, tx_hash=tx_hash)

                elapsed = self._clock() - started
                if elapsed >= deadline:
                    break

                logger.debug(
                    "Request %s balance %s/%s, retrying in %ss",
                    request.request_id, last_balance, expected, interval,
                )
                await self._sleep(min(interval, deadline - elapsed))
        except asyncio.CancelledError:
            acknowledge_cancel()
            logger.info("Poll for %s cancelled at balance %s", request.request_id, last_balance)
            return SettlementOutcome.timed_out(
                request.request_id, last_balance, tx_hash=tx_hash, reason="cancelled"
            )

        if last_error is not None:
            reason = f"request ledger unavailable: {last_error}"
        else:
            reason = "poll deadline reached"
        logger.info(
            "Request %s not settled within %ss (balance %s/%s): %s",
            request.request_id, deadline, last_balance, expected, reason,
        )
        return SettlementOutcome.timed_out(
            request.request_id, last_balance, tx_hash=tx_hash, reason=reason
        )
