"""End-to-end settlement runs against in-memory ledgers."""

from __future__ import annotations

import asyncio
import logging

import pytest

from reqsettle.config import SettlementConfig
from reqsettle.errors import (
    ApprovalError,
    FundingError,
    PaymentError,
    RequestLedgerError,
    SettlementInProgressError,
)
from reqsettle.orchestrator import SettlementOrchestrator, settle
from reqsettle.states import SettlementState as S
from reqsettle.status import QueueStatusSink
from reqsettle.types import ConfirmationStatus, OutcomeStatus
from tests.fixtures import ONE_TOKEN, StubLedgerClient, StubRequestLedger, make_request


async def _until(predicate, steps: int = 100) -> None:
    for _ in range(steps):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.mark.asyncio
async def test_full_run_with_missing_allowance(request_, funded_ledger, orchestrator_for) -> None:
    outcome = await orchestrator_for(funded_ledger).settle(request_)

    assert outcome.status is OutcomeStatus.SETTLED
    assert outcome.balance == ONE_TOKEN
    assert outcome.tx_hash == "0xtransfer1"
    assert outcome.approval_tx_hash == "0xapprove1"
    assert list(outcome.history) == [
        S.CREATED,
        S.FUNDING_CHECKED,
        S.APPROVAL_PENDING,
        S.APPROVED,
        S.PAYMENT_SUBMITTED,
        S.PAYMENT_CONFIRMED,
        S.POLLING,
        S.SETTLED,
    ]
    assert funded_ledger.approval_calls == 1
    assert funded_ledger.transfer_calls == 1


@pytest.mark.asyncio
async def test_insufficient_funds_fails_without_transactions(request_, orchestrator_for) -> None:
    ledger = StubLedgerClient(balance=request_.expected_amount // 2)
    orchestrator = orchestrator_for(ledger)

    outcome = await orchestrator.settle(request_)

    assert outcome.status is OutcomeStatus.FAILED
    assert isinstance(outcome.error, FundingError)
    assert outcome.error.shortfall == request_.expected_amount // 2
    assert list(outcome.history) == [S.CREATED, S.FAILED]
    assert ledger.approval_calls == 0
    assert ledger.transfer_calls == 0
    assert not orchestrator.in_flight(request_.request_id)
    with pytest.raises(FundingError):
        outcome.raise_for_failure()


@pytest.mark.asyncio
async def test_balance_never_observed_times_out(request_, request_ledger, clock, orchestrator_for) -> None:
    amount = request_.expected_amount
    ledger = StubLedgerClient(balance=amount * 2, allowance=amount * 2)

    outcome = await orchestrator_for(ledger).settle(request_)

    assert outcome.status is OutcomeStatus.TIMED_OUT
    assert outcome.balance == 0
    assert outcome.tx_hash == "0xtransfer1"
    assert outcome.approval_tx_hash is None
    assert list(outcome.history) == [
        S.CREATED,
        S.FUNDING_CHECKED,
        S.APPROVED,
        S.PAYMENT_SUBMITTED,
        S.PAYMENT_CONFIRMED,
        S.POLLING,
        S.TIMED_OUT,
    ]
    assert ledger.approval_calls == 0
    assert 5.0 <= clock.now < 6.0
    assert request_ledger.refreshes >= 2


@pytest.mark.asyncio
async def test_approval_failure_stops_before_transfer(request_, orchestrator_for) -> None:
    ledger = StubLedgerClient(
        balance=request_.expected_amount,
        approval_status=ConfirmationStatus.REVERTED,
    )

    outcome = await orchestrator_for(ledger).settle(request_)

    assert outcome.is_failed
    assert isinstance(outcome.error, ApprovalError)
    assert outcome.approval_tx_hash is None
    assert list(outcome.history) == [S.CREATED, S.FUNDING_CHECKED, S.APPROVAL_PENDING, S.FAILED]
    assert ledger.transfer_calls == 0


@pytest.mark.asyncio
async def test_reverted_transfer_fails_with_hash(request_, request_ledger, orchestrator_for) -> None:
    amount = request_.expected_amount
    ledger = StubLedgerClient(
        balance=amount,
        allowance=amount,
        transfer_status=ConfirmationStatus.REVERTED,
    )

    outcome = await orchestrator_for(ledger).settle(request_)

    assert outcome.is_failed
    assert isinstance(outcome.error, PaymentError)
    assert outcome.tx_hash == "0xtransfer1"
    assert outcome.history[-2:] == (S.PAYMENT_SUBMITTED, S.FAILED)
    assert ledger.transfer_calls == 1
    assert request_ledger.refreshes == 0


@pytest.mark.asyncio
async def test_rejected_transfer_fails_from_approved(request_, orchestrator_for) -> None:
    amount = request_.expected_amount
    ledger = StubLedgerClient(
        balance=amount,
        allowance=amount,
        transfer_error=RuntimeError("replacement transaction underpriced"),
    )

    outcome = await orchestrator_for(ledger).settle(request_)

    assert outcome.is_failed
    assert outcome.tx_hash is None
    assert outcome.history[-2:] == (S.APPROVED, S.FAILED)
    assert "underpriced" in outcome.reason


@pytest.mark.asyncio
async def test_unexpected_error_is_reported_then_raised(request_, orchestrator_for) -> None:
    class BrokenLedger(StubLedgerClient):
        async def get_allowance(self, spender, owner, currency):
            raise RuntimeError("node unreachable")

    sink = QueueStatusSink()
    orchestrator = orchestrator_for(BrokenLedger(balance=request_.expected_amount))

    with pytest.raises(RuntimeError, match="node unreachable"):
        await orchestrator.settle(request_, status_sink=sink)

    assert sink.drain()[-1].state is S.FAILED
    assert not orchestrator.in_flight(request_.request_id)


@pytest.mark.asyncio
async def test_same_request_cannot_run_twice(request_, funded_ledger, orchestrator_for) -> None:
    funded_ledger.confirm_gate = asyncio.Event()
    orchestrator = orchestrator_for(funded_ledger)

    first = asyncio.create_task(orchestrator.settle(request_))
    await _until(lambda: funded_ledger.count("await_confirmations") == 1)
    assert orchestrator.in_flight(request_.request_id)

    with pytest.raises(SettlementInProgressError):
        await orchestrator.settle(request_)

    funded_ledger.confirm_gate.set()
    outcome = await first

    assert outcome.is_settled
    assert funded_ledger.approval_calls == 1
    assert funded_ledger.transfer_calls == 1
    assert not orchestrator.in_flight(request_.request_id)


@pytest.mark.asyncio
async def test_different_requests_settle_concurrently(clock) -> None:
    ledger = StubLedgerClient(balance=ONE_TOKEN * 10, allowance=ONE_TOKEN * 10)
    request_ledger = StubRequestLedger(balance=ONE_TOKEN)
    orchestrator = SettlementOrchestrator(ledger, request_ledger, clock=clock, sleep=clock.sleep)

    first, second = await asyncio.gather(
        orchestrator.settle(make_request("req-a")),
        orchestrator.settle(make_request("req-b")),
    )

    assert first.is_settled and second.is_settled
    assert first.request_id == "req-a"
    assert second.request_id == "req-b"
    assert ledger.transfer_calls == 2


@pytest.mark.asyncio
async def test_cancel_before_submission_fails_run(request_, funded_ledger, orchestrator_for) -> None:
    funded_ledger.balance_gate = asyncio.Event()
    sink = QueueStatusSink()
    orchestrator = orchestrator_for(funded_ledger)

    task = asyncio.create_task(orchestrator.settle(request_, status_sink=sink))
    await _until(lambda: funded_ledger.count("get_balance") == 1)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    last = sink.drain()[-1]
    assert last.state is S.FAILED
    assert last.detail["reason"] == "cancelled"
    assert funded_ledger.transfer_calls == 0
    assert not orchestrator.in_flight(request_.request_id)


@pytest.mark.asyncio
async def test_cancel_after_submission_waits_for_confirmation(
    request_, funded_ledger, request_ledger, orchestrator_for
) -> None:
    funded_ledger.allowance = request_.expected_amount
    funded_ledger.confirm_gate = asyncio.Event()
    orchestrator = orchestrator_for(funded_ledger)

    task = asyncio.create_task(orchestrator.settle(request_))
    await _until(lambda: funded_ledger.count("await_confirmations") == 1)
    task.cancel()
    for _ in range(5):
        await asyncio.sleep(0)
    assert not task.done()

    funded_ledger.confirm_gate.set()
    outcome = await task

    assert outcome.status is OutcomeStatus.TIMED_OUT
    assert outcome.reason == "cancelled"
    assert outcome.balance is None
    assert outcome.tx_hash == "0xtransfer1"
    assert outcome.history[-2:] == (S.PAYMENT_CONFIRMED, S.TIMED_OUT)
    assert request_ledger.refreshes == 0
    assert funded_ledger.transfer_calls == 1


@pytest.mark.asyncio
async def test_sink_sees_every_transition(request_, funded_ledger, orchestrator_for) -> None:
    sink = QueueStatusSink()

    outcome = await orchestrator_for(funded_ledger, status_sink=sink).settle(request_)
    events = sink.drain()

    states = [event.state for event in events]
    deduped = [s for i, s in enumerate(states) if i == 0 or states[i - 1] is not s]
    assert deduped == list(outcome.history)
    assert events[0].detail["request_id"] == request_.request_id
    assert any(e.state is S.POLLING and e.detail.get("balance") == ONE_TOKEN for e in events)
    assert events[-1].state is S.SETTLED


@pytest.mark.asyncio
async def test_failing_sink_does_not_break_run(
    request_, funded_ledger, orchestrator_for, caplog: pytest.LogCaptureFixture
) -> None:
    def broken_sink(state, detail):
        raise RuntimeError("sink down")

    with caplog.at_level(logging.ERROR, logger="reqsettle.orchestrator"):
        outcome = await orchestrator_for(funded_ledger).settle(request_, status_sink=broken_sink)

    assert outcome.is_settled
    assert "Status sink failed" in caplog.text


@pytest.mark.asyncio
async def test_per_call_overrides(request_, request_ledger, clock, orchestrator_for) -> None:
    amount = request_.expected_amount
    ledger = StubLedgerClient(balance=amount, allowance=amount)
    orchestrator = orchestrator_for(ledger, config=SettlementConfig(poll_deadline=30))

    outcome = await orchestrator.settle(request_, confirmation_depth=5, poll_deadline=0)

    assert outcome.is_timed_out
    assert request_ledger.refreshes == 1
    assert clock.now == 0
    waits = [detail for name, detail in ledger.calls if name == "await_confirmations"]
    assert waits[0]["min_depth"] == 5


@pytest.mark.asyncio
async def test_orchestrator_config_is_used(request_, clock, orchestrator_for) -> None:
    amount = request_.expected_amount
    ledger = StubLedgerClient(balance=amount, allowance=amount)
    config = SettlementConfig(poll_interval=0.5, poll_deadline=2, confirmation_timeout=9)

    await orchestrator_for(ledger, config=config).settle(request_)

    assert clock.now == 2
    assert set(clock.sleeps) == {0.5}
    assert ledger.calls[-1][1]["deadline"] == 9


@pytest.mark.asyncio
async def test_watch_only_polls(request_, request_ledger, orchestrator_for) -> None:
    ledger = StubLedgerClient()
    request_ledger.credit(request_.request_id, request_.expected_amount)

    outcome = await orchestrator_for(ledger).watch(request_, tx_hash="0xpaid")

    assert outcome.is_settled
    assert outcome.tx_hash == "0xpaid"
    assert list(outcome.history) == [S.CREATED, S.POLLING, S.SETTLED]
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_module_level_settle(request_, funded_ledger, request_ledger) -> None:
    outcome = await settle(request_, funded_ledger, request_ledger, poll_deadline=0)

    assert outcome.is_settled
    assert outcome.balance == request_.expected_amount


@pytest.mark.asyncio
async def test_request_ledger_outage_after_payment_times_out(request_, clock) -> None:
    amount = request_.expected_amount
    ledger = StubLedgerClient(balance=amount, allowance=amount)
    request_ledger = StubRequestLedger(error=RequestLedgerError("gateway 503"))
    sink = QueueStatusSink()
    orchestrator = SettlementOrchestrator(ledger, request_ledger, clock=clock, sleep=clock.sleep)

    outcome = await orchestrator.settle(request_, status_sink=sink)

    assert outcome.status is OutcomeStatus.TIMED_OUT
    assert outcome.tx_hash == "0xtransfer1"
    assert "request ledger unavailable" in outcome.reason
    assert outcome.history[-2:] == (S.POLLING, S.TIMED_OUT)
    assert sink.drain()[-1].state is S.TIMED_OUT
    assert ledger.transfer_calls == 1
    assert not orchestrator.in_flight(request_.request_id)
