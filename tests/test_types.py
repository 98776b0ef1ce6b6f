"""Tests for the settlement data model."""

from __future__ import annotations

import pytest

from reqsettle.errors import FundingError
from reqsettle.types import (
    Currency,
    FixedPayment,
    OutcomeStatus,
    PaymentRequest,
    SettlementOutcome,
    StreamPayment,
    parse_payment_network,
    to_amount,
)
from tests.fixtures import PAYEE, PAYER, SPENDER, TOKEN, make_request


def test_to_amount_accepts_int_and_decimal_string() -> None:
    assert to_amount(5) == 5
    assert to_amount("1000000000000000000") == 10**18


@pytest.mark.parametrize("value", [-1, 1.5, "1.5", "-3", True, None])
def test_to_amount_rejects_non_unsigned_integers(value) -> None:
    with pytest.raises(ValueError):
        to_amount(value)


def test_request_rejects_negative_amount() -> None:
    with pytest.raises(ValueError):
        make_request(expected_amount=-1)


def test_request_recipient_is_payment_address() -> None:
    other = "0x4444444444444444444444444444444444444444"
    request = make_request(payment_network=FixedPayment(payment_address=other, spender=SPENDER))

    assert request.recipient == other
    assert request.spender == SPENDER


def test_request_recipient_falls_back_to_payee() -> None:
    request = make_request(payment_network=FixedPayment(payment_address="", spender=SPENDER))

    assert request.recipient == PAYEE


def test_request_from_gateway_json() -> None:
    data = {
        "requestId": "01abc",
        "currency": {"type": "ERC20", "value": TOKEN, "network": "sepolia"},
        "expectedAmount": "1000000000000000000",
        "payee": {"type": "ethereumAddress", "value": PAYEE},
        "payer": {"type": "ethereumAddress", "value": PAYER},
        "timestamp": 1686873600,
        "paymentNetwork": {
            "id": "erc777-stream",
            "parameters": {
                "paymentAddress": PAYEE,
                "spender": SPENDER,
                "expectedFlowRate": "1000000",
                "expectedStartDate": 1686873600,
            },
        },
        "contentData": {"reason": "pizza"},
    }

    request = PaymentRequest.from_dict(data)

    assert request.request_id == "01abc"
    assert request.expected_amount == 10**18
    assert request.currency == Currency("ERC20", TOKEN, "sepolia")
    assert isinstance(request.payment_network, StreamPayment)
    assert request.payment_network.expected_flow_rate == 1_000_000
    assert request.content_data == {"reason": "pizza"}
    assert PaymentRequest.from_dict(request.to_dict()) == request


def test_parse_payment_network_rejects_unknown_id() -> None:
    with pytest.raises(ValueError, match="Unknown payment network"):
        parse_payment_network({"id": "btc-address-based", "parameters": {}})


def test_outcome_constructors_set_status() -> None:
    assert SettlementOutcome.settled("r", 10).status is OutcomeStatus.SETTLED
    assert SettlementOutcome.timed_out("r", 0).is_timed_out

    error = FundingError(PAYER, 10, 3)
    failed = SettlementOutcome.failed("r", error)
    assert failed.is_failed
    assert failed.reason == str(error)


def test_outcome_is_immutable() -> None:
    outcome = SettlementOutcome.settled("r", 10)

    with pytest.raises(AttributeError):
        outcome.balance = 0


def test_raise_for_failure() -> None:
    error = FundingError(PAYER, 10, 3)

    with pytest.raises(FundingError):
        SettlementOutcome.failed("r", error).raise_for_failure()

    settled = SettlementOutcome.settled("r", 10)
    assert settled.raise_for_failure() is settled


def test_funding_error_carries_shortfall() -> None:
    error = FundingError(PAYER, required=100, available=40)

    assert error.payer == PAYER
    assert error.shortfall == 60
    assert PAYER in str(error)
