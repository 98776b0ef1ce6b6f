"""Shared pytest fixtures for settlement tests."""

from __future__ import annotations

import pytest

from reqsettle.orchestrator import SettlementOrchestrator
from reqsettle.types import PaymentRequest
from tests.fixtures import FakeClock, StubLedgerClient, StubRequestLedger, make_request


@pytest.fixture
def request_() -> PaymentRequest:
    """A request for one whole token (10**18 units)."""
    return make_request()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def request_ledger() -> StubRequestLedger:
    return StubRequestLedger(balance=0)


@pytest.fixture
def funded_ledger(request_: PaymentRequest, request_ledger: StubRequestLedger) -> StubLedgerClient:
    """Payer can afford the request; allowance missing; transfer credits the request."""
    return StubLedgerClient(
        balance=request_.expected_amount * 2,
        allowance=0,
        on_transfer=lambda recipient, amount: request_ledger.credit(request_.request_id, amount),
    )


@pytest.fixture
def orchestrator_for(request_ledger: StubRequestLedger, clock: FakeClock):
    """Build an orchestrator around a given ledger stub, on the fake clock."""

    def build(ledger: StubLedgerClient, **kwargs) -> SettlementOrchestrator:
        return SettlementOrchestrator(
            ledger, request_ledger, clock=clock, sleep=clock.sleep, **kwargs
        )

    return build
