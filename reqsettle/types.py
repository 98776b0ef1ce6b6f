"""reqsettle data model.

Everything here is a plain dataclass or enum. Amounts are always integers in
the token's smallest unit; nothing in this package scales them.

Two payment networks are supported:
- FixedPayment: one-time transfer through a fee proxy contract
- StreamPayment: continuous flow with a flow rate and start date
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Union


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def to_amount(value: Any, name: str = "amount") -> int:
    """Parse an unsigned smallest-unit amount (int or decimal string)."""
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            raise ValueError(f"{name} must be a non-negative integer string, got {value!r}")
        value = int(value)
    if not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


@dataclass(frozen=True)
class Currency:
    """Token kind plus contract/network reference.

    Example:
        Currency("ERC20", "0x370DE27fdb7D1Ff1e1BaA7D11c5820a324Cf623C", "sepolia")
    """
    kind: str
    value: str
    network: str

    def to_dict(self) -> dict:
        return {"type": self.kind, "value": self.value, "network": self.network}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Currency":
        return cls(
            kind=str(data.get("type", "ERC20")),
            value=str(data["value"]),
            network=str(data["network"]),
        )


@dataclass(frozen=True)
class FixedPayment:
    """One-time payment through a fee proxy contract.

    `spender` is the settlement contract that pulls the funds and therefore
    needs the allowance.
    """
    payment_address: str
    spender: str
    fee_address: str = ZERO_ADDRESS
    fee_amount: int = 0

    id = "erc20-fee-proxy-contract"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parameters": {
                "paymentAddress": self.payment_address,
                "spender": self.spender,
                "feeAddress": self.fee_address,
                "feeAmount": str(self.fee_amount),
            },
        }


@dataclass(frozen=True)
class StreamPayment:
    """Continuous-flow payment (ERC777 stream).

    Example:
        StreamPayment(
            payment_address="0x...",
            spender="0x...",
            expected_flow_rate=1_000_000,
            expected_start_date=1686873600,
        )
    """
    payment_address: str
    spender: str
    expected_flow_rate: int
    expected_start_date: int

    id = "erc777-stream"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parameters": {
                "paymentAddress": self.payment_address,
                "spender": self.spender,
                "expectedFlowRate": str(self.expected_flow_rate),
                "expectedStartDate": self.expected_start_date,
            },
        }


PaymentNetwork = Union[FixedPayment, StreamPayment]


def parse_payment_network(data: Mapping[str, Any]) -> PaymentNetwork:
    """Build a payment network from its dict form."""
    network_id = data.get("id")
    params = data.get("parameters", {})

    if network_id == FixedPayment.id:
        return FixedPayment(
            payment_address=params["paymentAddress"],
            spender=params["spender"],
            fee_address=params.get("feeAddress", ZERO_ADDRESS),
            fee_amount=to_amount(params.get("feeAmount", 0), "feeAmount"),
        )

    if network_id == StreamPayment.id:
        return StreamPayment(
            payment_address=params["paymentAddress"],
            spender=params["spender"],
            expected_flow_rate=to_amount(params["expectedFlowRate"], "expectedFlowRate"),
            expected_start_date=int(params["expectedStartDate"]),
        )

    raise ValueError(f"Unknown payment network: {network_id}")


@dataclass(frozen=True)
class PaymentRequest:
    """An off-chain record describing an expected transfer.

    Immutable once created. The funds received so far are not part of the
    record: ask the request ledger for an ObservedBalance instead.
    """
    request_id: str
    payee: str
    payer: str
    currency: Currency
    expected_amount: int
    payment_network: PaymentNetwork
    content_data: Mapping[str, Any] = field(default_factory=dict)
    payment_reference: Optional[str] = None
    timestamp: Optional[int] = None

    def __post_init__(self):
        to_amount(self.expected_amount, "expected_amount")

    @property
    def recipient(self) -> str:
        """Address the transfer is sent to."""
        return self.payment_network.payment_address or self.payee

    @property
    def spender(self) -> str:
        """Settlement contract that needs the payer's allowance."""
        return self.payment_network.spender

    def to_dict(self) -> dict:
        return {
            "requestId": self.request_id,
            "currency": self.currency.to_dict(),
            "expectedAmount": str(self.expected_amount),
            "payee": {"type": "ethereumAddress", "value": self.payee},
            "payer": {"type": "ethereumAddress", "value": self.payer},
            "timestamp": self.timestamp,
            "paymentNetwork": self.payment_network.to_dict(),
            "contentData": dict(self.content_data),
            "paymentReference": self.payment_reference,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaymentRequest":
        return cls(
            request_id=str(data["requestId"]),
            payee=_identity(data["payee"]),
            payer=_identity(data["payer"]),
            currency=Currency.from_dict(data["currency"]),
            expected_amount=to_amount(data["expectedAmount"], "expectedAmount"),
            payment_network=parse_payment_network(data["paymentNetwork"]),
            content_data=dict(data.get("contentData") or {}),
            payment_reference=data.get("paymentReference"),
            timestamp=data.get("timestamp"),
        )


def _identity(value: Any) -> str:
    # Gateways send identities either as bare addresses or {type, value}
    if isinstance(value, Mapping):
        return str(value["value"])
    return str(value)


@dataclass(frozen=True)
class ObservedBalance:
    """Funds the request ledger has attributed to a request so far."""
    balance: int
    refreshed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BalanceStatus(Enum):
    SUFFICIENT = "sufficient"
    INSUFFICIENT = "insufficient"


class AllowanceStatus(Enum):
    APPROVED = "approved"
    NOT_APPROVED = "not_approved"


@dataclass(frozen=True)
class FundingStatus:
    """Result of a funding check. Computed fresh on every run."""
    balance: BalanceStatus
    allowance: AllowanceStatus
    available: int
    allowed: int

    @property
    def sufficient(self) -> bool:
        return self.balance is BalanceStatus.SUFFICIENT

    @property
    def approved(self) -> bool:
        return self.allowance is AllowanceStatus.APPROVED


@dataclass(frozen=True)
class TransactionHandle:
    """A submitted transaction, as reported by the ledger client."""
    tx_hash: str
    confirmations: int = 0
    explorer_url: Optional[str] = None


class ConfirmationStatus(Enum):
    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"
    REVERTED = "reverted"


class OutcomeStatus(Enum):
    SETTLED = "settled"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(frozen=True)
class SettlementOutcome:
    """Terminal result of one settlement run.

    Build with settled(), timed_out() or failed(). `balance` is the final
    (or last observed) balance, None when the request was never polled;
    `history` lists the states the run went through.
    """
    status: OutcomeStatus
    request_id: str
    balance: Optional[int] = None
    tx_hash: Optional[str] = None
    approval_tx_hash: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[BaseException] = None
    history: tuple = ()

    @classmethod
    def settled(cls, request_id: str, balance: int, **kwargs) -> "SettlementOutcome":
        return cls(OutcomeStatus.SETTLED, request_id, balance=balance, **kwargs)

    @classmethod
    def timed_out(cls, request_id: str, balance: Optional[int], **kwargs) -> "SettlementOutcome":
        return cls(OutcomeStatus.TIMED_OUT, request_id, balance=balance, **kwargs)

    @classmethod
    def failed(cls, request_id: str, error: BaseException, **kwargs) -> "SettlementOutcome":
        kwargs.setdefault("reason", str(error))
        return cls(OutcomeStatus.FAILED, request_id, error=error, **kwargs)

    @property
    def is_settled(self) -> bool:
        return self.status is OutcomeStatus.SETTLED

    @property
    def is_timed_out(self) -> bool:
        return self.status is OutcomeStatus.TIMED_OUT

    @property
    def is_failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    def raise_for_failure(self) -> "SettlementOutcome":
        """Re-raise the carried error if the run failed."""
        if self.is_failed and self.error is not None:
            raise self.error
        return self

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "request_id": self.request_id,
            "balance": self.balance,
            "tx_hash": self.tx_hash,
            "approval_tx_hash": self.approval_tx_hash,
            "reason": self.reason,
            "history": [getattr(s, "value", s) for s in self.history],
        }
