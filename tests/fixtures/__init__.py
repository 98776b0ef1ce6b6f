from .stubs import (
    FakeClock,
    StubLedgerClient,
    StubRequestLedger,
    make_request,
    ONE_TOKEN,
    PAYER,
    PAYEE,
    SPENDER,
    TOKEN,
)

__all__ = [
    "FakeClock",
    "StubLedgerClient",
    "StubRequestLedger",
    "make_request",
    "ONE_TOKEN",
    "PAYER",
    "PAYEE",
    "SPENDER",
    "TOKEN",
]
