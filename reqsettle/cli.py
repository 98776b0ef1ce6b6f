"""
Command-line interface for settling payment requests.

    reqsettle pay REQUEST_ID --gateway URL --key-env PAYER_PRIVATE_KEY
    reqsettle watch REQUEST_ID --gateway URL

Exit codes: 0 settled, 2 timed out (payment may still land), 1 failed.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional, Sequence

from .config import SettlementConfig, load_config, load_env
from .errors import ConfigError, RequestLedgerError, SettlementError
from .orchestrator import SettlementOrchestrator
from .payments import DEFAULT_NETWORK, NETWORKS, HttpRequestLedgerClient, Web3LedgerClient
from .poller import SettlementPoller
from .ports import LedgerClient
from .status import LoggingStatusSink
from .types import OutcomeStatus, SettlementOutcome

logger = logging.getLogger("reqsettle.cli")

EXIT_CODES = {
    OutcomeStatus.SETTLED: 0,
    OutcomeStatus.FAILED: 1,
    OutcomeStatus.TIMED_OUT: 2,
}


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("request_id", help="Identifier of the payment request")
    common.add_argument(
        "--gateway",
        default=None,
        help="Request gateway base URL (default: $REQSETTLE_GATEWAY_URL)",
    )
    common.add_argument(
        "--config",
        default=None,
        help="YAML file with a 'settlement:' section",
    )
    common.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between balance refreshes (default: 1)",
    )
    common.add_argument(
        "--poll-deadline",
        type=float,
        default=None,
        help="Seconds before polling gives up (default: 5)",
    )
    common.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )

    parser = argparse.ArgumentParser(
        prog="reqsettle",
        description="Pay a payment request on-chain and wait for settlement",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    pay = commands.add_parser("pay", parents=[common], help="Fund, approve, pay, then poll")
    pay.add_argument(
        "--network",
        default=DEFAULT_NETWORK,
        choices=sorted(NETWORKS),
        help=f"Network to submit transactions on (default: {DEFAULT_NETWORK})",
    )
    pay.add_argument(
        "--key-env",
        default="REQSETTLE_PRIVATE_KEY",
        help="Environment variable holding the payer's private key",
    )
    pay.add_argument(
        "--confirmation-depth",
        type=int,
        default=None,
        help="Confirmations required per transaction (default: 2)",
    )
    pay.add_argument(
        "--confirmation-timeout",
        type=float,
        default=None,
        help="Seconds to wait for each transaction (default: 120)",
    )

    watch = commands.add_parser("watch", parents=[common], help="Only poll the request's balance")
    watch.add_argument("--tx-hash", default=None, help="Transfer hash to report with the outcome")
    return parser


def _resolve_config(args: argparse.Namespace) -> SettlementConfig:
    config = load_config(args.config)
    return config.with_overrides(
        poll_interval=args.poll_interval,
        poll_deadline=args.poll_deadline,
        confirmation_depth=getattr(args, "confirmation_depth", None),
        confirmation_timeout=getattr(args, "confirmation_timeout", None),
    )


def _report(outcome: SettlementOutcome) -> int:
    if outcome.is_settled:
        logger.info("Request %s settled with balance %s (tx %s)", outcome.request_id, outcome.balance, outcome.tx_hash)
    elif outcome.is_timed_out:
        logger.warning(
            "Request %s not settled yet: last balance %s (%s)",
            outcome.request_id, outcome.balance, outcome.reason,
        )
    else:
        logger.error("Request %s failed: %s", outcome.request_id, outcome.reason)
    return EXIT_CODES[outcome.status]


async def _run(
    args: argparse.Namespace,
    config: SettlementConfig,
    ledger: Optional[LedgerClient],
    request_ledger: HttpRequestLedgerClient,
) -> int:
    try:
        request = await request_ledger.get_request(args.request_id)
    except RequestLedgerError as exc:
        logger.error("Could not load request %s: %s", args.request_id, exc)
        return 1

    if args.command == "watch":
        poller = SettlementPoller(request_ledger)
        outcome = await poller.poll(
            request,
            interval=config.poll_interval,
            deadline=config.poll_deadline,
            tx_hash=args.tx_hash,
            on_balance=lambda balance: logger.info("Observed balance %s/%s", balance, request.expected_amount),
        )
        return _report(outcome)

    orchestrator = SettlementOrchestrator(ledger, request_ledger, config=config)
    payer = getattr(ledger, "address", None)
    try:
        outcome = await orchestrator.settle(request, payer, status_sink=LoggingStatusSink(logger))
    except SettlementError as exc:
        logger.error("Settlement of %s aborted: %s", args.request_id, exc)
        return 1
    return _report(outcome)


async def _run_with_gateway(args: argparse.Namespace, config: SettlementConfig, ledger: Optional[LedgerClient]) -> int:
    async with HttpRequestLedgerClient(args.gateway) as gateway:
        return await _run(args, config, ledger, gateway)


def run_cli(
    argv: Sequence[str] | None = None,
    *,
    ledger: Optional[LedgerClient] = None,
    request_ledger: Optional[HttpRequestLedgerClient] = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)
    load_env()

    try:
        config = _resolve_config(args)
    except ConfigError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    if args.command == "pay" and ledger is None:
        try:
            ledger = Web3LedgerClient.from_env(args.key_env, network=args.network)
        except ValueError as exc:
            logging.error("Invalid payer key: %s", exc)
            return 1

    if request_ledger is not None:
        return asyncio.run(_run(args, config, ledger, request_ledger))

    args.gateway = args.gateway or os.environ.get("REQSETTLE_GATEWAY_URL")
    if not args.gateway:
        logging.error("No gateway given: pass --gateway or set REQSETTLE_GATEWAY_URL")
        return 1
    return asyncio.run(_run_with_gateway(args, config, ledger))


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
