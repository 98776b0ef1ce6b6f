"""Settlement Orchestrator.

Drives a payment request from "awaiting payment" to "funds observed":
    1. Funding check (balance must cover the amount)
    2. Allowance grant, only when the spender is not yet approved
    3. Transfer, confirmed to the configured depth
    4. Balance poll until settled or the deadline passes

Example:
    orchestrator = SettlementOrchestrator(ledger, request_ledger)
    outcome = await orchestrator.settle(request, status_sink=LoggingStatusSink())

    if outcome.is_settled:
        print(f"Settled: {outcome.balance} (tx {outcome.tx_hash})")
    elif outcome.is_timed_out:
        print("Still pending, poll again later")
    else:
        print(f"Failed: {outcome.reason}")
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

from .approval import ApprovalCoordinator
from .cancellation import acknowledge_cancel
from .config import SettlementConfig
from .errors import SettlementError, SettlementInProgressError
from .executor import PaymentExecutor
from .funding import FundingVerifier
from .poller import SettlementPoller
from .ports import LedgerClient, RequestLedgerClient, StatusSink
from .states import SettlementState, after_funding_check, after_poll, assert_transition
from .types import PaymentRequest, SettlementOutcome

logger = logging.getLogger(__name__)

S = SettlementState

T = TypeVar("T")


async def _ride_out(aw: Awaitable[T]) -> Tuple[T, bool]:
    """Await `aw` to completion even if the caller is cancelled meanwhile.

    Returns the result and whether a cancellation was absorbed. Used for
    steps that cannot be undone once started.
    """
    inner = asyncio.ensure_future(aw)
    cancelled = False
    while True:
        try:
            return await asyncio.shield(inner), cancelled
        except asyncio.CancelledError:
            if inner.cancelled():
                raise
            acknowledge_cancel()
            cancelled = True
            logger.info("Cancellation deferred until the in-flight transaction step completes")


class _Run:
    """State of a single settlement run: current state, history, sink."""

    def __init__(self, request: PaymentRequest, sink: Optional[StatusSink]):
        self.request = request
        self.sink = sink
        self.state = S.CREATED
        self.history: list[SettlementState] = [S.CREATED]
        self.approval_tx_hash: Optional[str] = None
        self.tx_hash: Optional[str] = None
        self.notify(S.CREATED, request_id=request.request_id, expected_amount=request.expected_amount)

    def advance(self, new: SettlementState, **detail: Any) -> None:
        assert_transition(self.state, new)
        logger.debug("Request %s: %s -> %s", self.request.request_id, self.state.value, new.value)
        self.state = new
        self.history.append(new)
        self.notify(new, **detail)

    def notify(self, state: SettlementState, **detail: Any) -> None:
        if self.sink is None:
            return
        try:
            self.sink(state, detail)
        except Exception:
            logger.exception("Status sink failed on %s for %s", state.value, self.request.request_id)

    def finish(self, outcome: SettlementOutcome) -> SettlementOutcome:
        return replace(
            outcome,
            tx_hash=outcome.tx_hash or self.tx_hash,
            approval_tx_hash=self.approval_tx_hash,
            history=tuple(self.history),
        )

    def fail(self, error: BaseException, reason: Optional[str] = None) -> SettlementOutcome:
        reason = reason or str(error)
        self.advance(S.FAILED, reason=reason, error=type(error).__name__)
        logger.error("Settlement of %s failed: %s", self.request.request_id, reason)
        return self.finish(SettlementOutcome.failed(self.request.request_id, error, reason=reason))


class SettlementOrchestrator:
    """Sequences funding, approval, payment and polling for payment requests.

    One orchestrator can settle many different requests concurrently, but
    only one run per request_id may be in flight at a time.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        request_ledger: RequestLedgerClient,
        *,
        config: Optional[SettlementConfig] = None,
        status_sink: Optional[StatusSink] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.funding = FundingVerifier(ledger)
        self.approval = ApprovalCoordinator(ledger)
        self.executor = PaymentExecutor(ledger)
        self.poller = SettlementPoller(request_ledger, clock=clock, sleep=sleep)
        self.config = config or SettlementConfig()
        self.status_sink = status_sink
        self._in_flight: set[str] = set()

    def in_flight(self, request_id: str) -> bool:
        return request_id in self._in_flight

    @contextmanager
    def _claim(self, request_id: str):
        if request_id in self._in_flight:
            raise SettlementInProgressError(request_id)
        self._in_flight.add(request_id)
        try:
            yield
        finally:
            self._in_flight.discard(request_id)

    def _resolve(self, config: Optional[SettlementConfig], **overrides: Any) -> SettlementConfig:
        return (config or self.config).with_overrides(**overrides)

    async def settle(
        self,
        request: PaymentRequest,
        payer: Optional[str] = None,
        *,
        config: Optional[SettlementConfig] = None,
        status_sink: Optional[StatusSink] = None,
        confirmation_depth: Optional[int] = None,
        poll_interval: Optional[float] = None,
        poll_deadline: Optional[float] = None,
        confirmation_timeout: Optional[float] = None,
    ) -> SettlementOutcome:
        """Pay a request and wait for the funds to be observed.

        Args:
            request: The payment request to settle
            payer: Paying identity (default: request.payer)
            config: Base settlement config (default: the orchestrator's)
            status_sink: Receives (state, detail) at every transition
            confirmation_depth: Override blocks required per transaction
            poll_interval: Override seconds between balance refreshes
            poll_deadline: Override seconds before the poll gives up
            confirmation_timeout: Override seconds to wait per transaction

        Returns:
            Exactly one SettlementOutcome: settled, timed out, or failed.
            Failures carry the FundingError/ApprovalError/PaymentError.
            A run cancelled after the transfer was sent ends TIMED_OUT with
            reason "cancelled" and balance None, since no poll was made.

        Raises:
            SettlementInProgressError: The request is already being settled
            asyncio.CancelledError: Cancelled before the transfer was sent
        """
        cfg = self._resolve(
            config,
            confirmation_depth=confirmation_depth,
            poll_interval=poll_interval,
            poll_deadline=poll_deadline,
            confirmation_timeout=confirmation_timeout,
        )
        with self._claim(request.request_id):
            run = _Run(request, status_sink or self.status_sink)
            return await self._settle(run, payer or request.payer, cfg)

    async def _settle(self, run: _Run, payer: str, cfg: SettlementConfig) -> SettlementOutcome:
        request = run.request

        # Nothing has been sent yet: errors and cancellation end the run here
        try:
            funding = await self.funding.verify(request, payer)
            run.advance(S.FUNDING_CHECKED, balance=funding.available, allowance=funding.allowed)

            if after_funding_check(funding) is S.APPROVAL_PENDING:
                run.advance(S.APPROVAL_PENDING, spender=request.spender, amount=request.expected_amount)
                approval = await self.approval.approve(
                    request,
                    payer,
                    confirmation_depth=cfg.confirmation_depth,
                    timeout=cfg.confirmation_timeout,
                )
                run.approval_tx_hash = approval.tx_hash

            run.advance(S.APPROVED, approval_tx_hash=run.approval_tx_hash)
        except SettlementError as exc:
            return run.fail(exc)
        except asyncio.CancelledError:
            run.advance(S.FAILED, reason="cancelled")
            logger.warning("Settlement of %s cancelled before payment", request.request_id)
            raise
        except Exception as exc:
            run.advance(S.FAILED, reason=str(exc), error=type(exc).__name__)
            raise

        # From here on the transfer may be on its way and cannot be recalled
        try:
            handle, cancelled = await _ride_out(self.executor.submit(request, payer))
            run.tx_hash = handle.tx_hash
            run.advance(S.PAYMENT_SUBMITTED, tx_hash=handle.tx_hash, explorer_url=handle.explorer_url)

            confirmed, cancelled_later = await _ride_out(
                self.executor.confirm(
                    handle,
                    confirmation_depth=cfg.confirmation_depth,
                    timeout=cfg.confirmation_timeout,
                )
            )
        except SettlementError as exc:
            return run.fail(exc)
        run.advance(S.PAYMENT_CONFIRMED, tx_hash=confirmed.tx_hash, confirmations=confirmed.confirmations)

        if cancelled or cancelled_later:
            logger.warning(
                "Settlement of %s cancelled after payment %s; skipping poll",
                request.request_id, handle.tx_hash,
            )
            # Never polled: balance stays None
            run.advance(S.TIMED_OUT, reason="cancelled")
            return run.finish(SettlementOutcome.timed_out(request.request_id, None, reason="cancelled"))

        return await self._poll(run, cfg)

    async def _poll(self, run: _Run, cfg: SettlementConfig) -> SettlementOutcome:
        request = run.request
        run.advance(S.POLLING, interval=cfg.poll_interval, deadline=cfg.poll_deadline)
        outcome = await self.poller.poll(
            request,
            interval=cfg.poll_interval,
            deadline=cfg.poll_deadline,
            tx_hash=run.tx_hash,
            on_balance=lambda balance: run.notify(S.POLLING, balance=balance),
        )
        run.advance(after_poll(outcome), balance=outcome.balance, reason=outcome.reason)
        return run.finish(outcome)

    async def watch(
        self,
        request: PaymentRequest,
        *,
        config: Optional[SettlementConfig] = None,
        status_sink: Optional[StatusSink] = None,
        poll_interval: Optional[float] = None,
        poll_deadline: Optional[float] = None,
        tx_hash: Optional[str] = None,
    ) -> SettlementOutcome:
        """Poll a request someone else pays, without sending anything.

        Read-only, so it does not count as an in-flight settlement.
        """
        cfg = self._resolve(config, poll_interval=poll_interval, poll_deadline=poll_deadline)
        run = _Run(request, status_sink or self.status_sink)
        run.tx_hash = tx_hash
        return await self._poll(run, cfg)


async def settle(
    request: PaymentRequest,
    ledger: LedgerClient,
    request_ledger: RequestLedgerClient,
    *,
    payer: Optional[str] = None,
    config: Optional[SettlementConfig] = None,
    status_sink: Optional[StatusSink] = None,
    **overrides: Any,
) -> SettlementOutcome:
    """One-shot helper: build an orchestrator and settle a single request."""
    orchestrator = SettlementOrchestrator(ledger, request_ledger, config=config)
    return await orchestrator.settle(request, payer, status_sink=status_sink, **overrides)
