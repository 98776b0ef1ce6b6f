"""reqsettle - settle payment requests on-chain.

Pays an off-chain payment request with an ERC-20 token and waits until the
request ledger has observed the funds:

    from reqsettle import SettlementOrchestrator, LoggingStatusSink
    from reqsettle.payments import Web3LedgerClient, HttpRequestLedgerClient

    ledger = Web3LedgerClient.from_env("PAYER_PRIVATE_KEY", network="sepolia")

    async with HttpRequestLedgerClient(gateway_url) as gateway:
        request = await gateway.get_request(request_id)
        orchestrator = SettlementOrchestrator(ledger, gateway)
        outcome = await orchestrator.settle(request, status_sink=LoggingStatusSink())

Outcomes:
    settled    - observed balance covers the expected amount
    timed_out  - payment sent, funds not observed before the poll deadline
    failed     - funding, approval or payment error (outcome.error)
"""

# Data model
from .types import (
    AllowanceStatus,
    BalanceStatus,
    ConfirmationStatus,
    Currency,
    FixedPayment,
    FundingStatus,
    ObservedBalance,
    OutcomeStatus,
    PaymentRequest,
    SettlementOutcome,
    StreamPayment,
    TransactionHandle,
    parse_payment_network,
)

# Errors
from .errors import (
    ApprovalError,
    ConfigError,
    FundingError,
    InvalidTransition,
    PaymentError,
    RequestLedgerError,
    SettlementError,
    SettlementInProgressError,
)

# Configuration
from .config import SettlementConfig, load_config

# Workflow steps
from .funding import FundingVerifier
from .approval import ApprovalCoordinator
from .executor import PaymentExecutor
from .poller import SettlementPoller

# Orchestration
from .states import SettlementState
from .orchestrator import SettlementOrchestrator, settle

# Status sinks
from .status import (
    CallbackStatusSink,
    CompositeStatusSink,
    LoggingStatusSink,
    QueueStatusSink,
    StatusEvent,
)

__all__ = [
    # Data model
    "AllowanceStatus",
    "BalanceStatus",
    "ConfirmationStatus",
    "Currency",
    "FixedPayment",
    "FundingStatus",
    "ObservedBalance",
    "OutcomeStatus",
    "PaymentRequest",
    "SettlementOutcome",
    "StreamPayment",
    "TransactionHandle",
    "parse_payment_network",

    # Errors
    "ApprovalError",
    "ConfigError",
    "FundingError",
    "InvalidTransition",
    "PaymentError",
    "RequestLedgerError",
    "SettlementError",
    "SettlementInProgressError",

    # Config
    "SettlementConfig",
    "load_config",

    # Steps
    "FundingVerifier",
    "ApprovalCoordinator",
    "PaymentExecutor",
    "SettlementPoller",

    # Orchestration
    "SettlementState",
    "SettlementOrchestrator",
    "settle",

    # Status
    "CallbackStatusSink",
    "CompositeStatusSink",
    "LoggingStatusSink",
    "QueueStatusSink",
    "StatusEvent",
]

__version__ = "0.1.0"
