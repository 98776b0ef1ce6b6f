#!/usr/bin/env python3
"""reqsettle Demo - Pay a payment request on Sepolia

Needs PAYER_PRIVATE_KEY (funded with test ETH and FAU tokens) and
REQSETTLE_GATEWAY_URL pointing at a request gateway.

    python demo_testnet.py REQUEST_ID
"""

import asyncio
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from reqsettle import CallbackStatusSink, RequestLedgerError, SettlementOrchestrator
from reqsettle.payments import HttpRequestLedgerClient, Web3LedgerClient


# ─── Colors ───────────────────────────────────────────────────────────────────

class C:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    CYAN = "\033[96m"


def header(text: str):
    print(f"\n{C.CYAN}{'─'*60}{C.RESET}")
    print(f"{C.BOLD}{text}{C.RESET}")
    print(f"{C.CYAN}{'─'*60}{C.RESET}")


def show(event):
    detail = " ".join(f"{k}={v}" for k, v in event.detail.items() if v is not None)
    print(f"  {C.DIM}{event.at:%H:%M:%S}{C.RESET} {C.BOLD}{event.state.value:<18}{C.RESET} {detail}")


async def run_demo(request_id: str):
    header("reqsettle - Payment Request Settlement Demo")

    gateway_url = os.environ.get("REQSETTLE_GATEWAY_URL")
    if not gateway_url:
        print(f"\n{C.RED}Set REQSETTLE_GATEWAY_URL first{C.RESET}")
        return

    try:
        ledger = Web3LedgerClient.from_env("PAYER_PRIVATE_KEY", network="sepolia")
    except ValueError as e:
        print(f"\n{C.RED}{e}{C.RESET}")
        return

    print(f"Payer: {ledger.address}")

    async with HttpRequestLedgerClient(gateway_url) as gateway:
        try:
            request = await gateway.get_request(request_id)
        except RequestLedgerError as e:
            print(f"\n{C.RED}{e}{C.RESET}")
            return

        print(f"Request: {request.request_id}")
        print(f"Amount:  {request.expected_amount} (smallest unit) of {request.currency.value}")
        print(f"Payee:   {request.recipient}\n")

        orchestrator = SettlementOrchestrator(ledger, gateway)
        outcome = await orchestrator.settle(
            request,
            ledger.address,
            status_sink=CallbackStatusSink(show),
            poll_deadline=60,
            poll_interval=5,
        )

    if outcome.is_settled:
        print(f"\n{C.GREEN}Settled: balance {outcome.balance}{C.RESET}")
    elif outcome.is_timed_out:
        print(f"\n{C.YELLOW}Not observed yet ({outcome.reason}); run `reqsettle watch {request_id}` later{C.RESET}")
    else:
        print(f"\n{C.RED}Failed: {outcome.reason}{C.RESET}")

    if outcome.tx_hash:
        print(f"{C.DIM}tx: {outcome.tx_hash}{C.RESET}")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(1)
    asyncio.run(run_demo(sys.argv[1]))
