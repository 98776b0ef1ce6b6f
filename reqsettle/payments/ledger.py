"""Web3 ledger client - signs and submits ERC-20 transactions for one payer.

Example:
    # Load from environment
    ledger = Web3LedgerClient.from_env("PAYER_PRIVATE_KEY", network="sepolia")

    # Check balance (smallest unit)
    balance = await ledger.get_balance(ledger.address, currency)

    # Approve, transfer, wait
    handle = await ledger.submit_approval(ledger.address, spender, currency, amount)
    status = await ledger.await_confirmations(handle, min_depth=2, deadline=120)
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import TransactionNotFound
from web3.middleware import ExtraDataToPOAMiddleware

from ..config import load_env
from ..types import ZERO_ADDRESS, ConfirmationStatus, Currency, TransactionHandle
from .config import (
    DEFAULT_NETWORK,
    ERC20_ABI,
    ERC20_FEE_PROXY_ABI,
    POA_NETWORKS,
    get_explorer_url,
    get_network,
)

logger = logging.getLogger(__name__)

APPROVE_GAS = 100_000
TRANSFER_GAS = 100_000  # plain ERC-20 transfers typically use ~50k
PROXY_TRANSFER_GAS = 150_000


class Web3LedgerClient:
    """Ledger client backed by a JSON-RPC node and a local signing key.

    Only the wrapped account can be the owner of an approval or the sender
    of a transfer. Blocking RPC calls run in worker threads, and nonce
    allocation is serialised, so one instance can serve concurrent runs.
    """

    def __init__(
        self,
        account: LocalAccount,
        network: str = DEFAULT_NETWORK,
        *,
        web3: Optional[Web3] = None,
        fee_proxy: Optional[str] = None,
        receipt_poll_interval: float = 2.0,
    ):
        """Initialize with an eth-account LocalAccount.

        Use class methods to create:
            Web3LedgerClient.from_private_key(key)
            Web3LedgerClient.from_env(var_name)
        """
        self._account = account
        self._network = network
        self._web3 = web3
        self._fee_proxy = fee_proxy or get_network(network).erc20_fee_proxy
        self._receipt_poll_interval = receipt_poll_interval
        self._last_nonce: Optional[int] = None  # Track nonce locally
        self._nonce_lock = asyncio.Lock()

    @classmethod
    def from_private_key(cls, private_key: str, network: str = DEFAULT_NETWORK, **kwargs) -> "Web3LedgerClient":
        """Load from a hex-encoded private key (with or without 0x prefix)."""
        if not private_key.startswith("0x"):
            private_key = "0x" + private_key

        account = Account.from_key(private_key)
        return cls(account, network, **kwargs)

    @classmethod
    def from_env(
        cls, var_name: str = "REQSETTLE_PRIVATE_KEY", network: str = DEFAULT_NETWORK, **kwargs
    ) -> "Web3LedgerClient":
        """Load from an environment variable (a .env file is read first).

        Raises:
            ValueError: If the environment variable is not set
        """
        load_env()

        private_key = os.environ.get(var_name)
        if not private_key:
            raise ValueError(f"Environment variable {var_name} not set")

        return cls.from_private_key(private_key, network, **kwargs)

    @property
    def address(self) -> str:
        """Account address (checksummed)."""
        return self._account.address

    @property
    def network(self) -> str:
        return self._network

    def _get_web3(self) -> Web3:
        """Get or create Web3 instance."""
        if self._web3 is None:
            config = get_network(self._network)
            self._web3 = Web3(Web3.HTTPProvider(config.rpc_url))
            if self._network in POA_NETWORKS:
                self._web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return self._web3

    def _token(self, currency: Currency):
        w3 = self._get_web3()
        return w3.eth.contract(address=Web3.to_checksum_address(currency.value), abi=ERC20_ABI)

    def _check_owner(self, identity: str) -> None:
        if identity.lower() != self.address.lower():
            raise ValueError(f"Cannot sign for {identity}: client holds the key for {self.address}")

    async def get_balance(self, identity: str, currency: Currency) -> int:
        """Token balance in the smallest unit."""
        if currency.kind == "ETH":
            w3 = self._get_web3()
            return await asyncio.to_thread(w3.eth.get_balance, Web3.to_checksum_address(identity))
        token = self._token(currency)
        call = token.functions.balanceOf(Web3.to_checksum_address(identity)).call
        return await asyncio.to_thread(call)

    async def get_allowance(self, spender: str, owner: str, currency: Currency) -> int:
        """How much `spender` may still pull from `owner`."""
        token = self._token(currency)
        call = token.functions.allowance(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(spender),
        ).call
        return await asyncio.to_thread(call)

    async def submit_approval(
        self, owner: str, spender: str, currency: Currency, amount: int
    ) -> TransactionHandle:
        """Send an ERC-20 approve(spender, amount) from the owner."""
        self._check_owner(owner)
        token = self._token(currency)
        fn = token.functions.approve(Web3.to_checksum_address(spender), amount)
        return await self._send(fn, APPROVE_GAS)

    async def submit_transfer(
        self,
        sender: str,
        recipient: str,
        currency: Currency,
        amount: int,
        *,
        reference: Optional[str] = None,
        spender: Optional[str] = None,
    ) -> TransactionHandle:
        """Send the payment.

        The transfer goes through the fee proxy at `spender`, the same
        contract the allowance was granted to, tagged with the payment
        reference (empty when there is none). Without a spender, the
        network's default proxy is used when a reference is given;
        otherwise it is a plain ERC-20 transfer.
        """
        self._check_owner(sender)
        w3 = self._get_web3()
        to_address = Web3.to_checksum_address(recipient)

        proxy_address = spender or (self._fee_proxy if reference else None)
        if proxy_address:
            proxy = w3.eth.contract(
                address=Web3.to_checksum_address(proxy_address),
                abi=ERC20_FEE_PROXY_ABI,
            )
            fn = proxy.functions.transferFromWithReferenceAndFee(
                Web3.to_checksum_address(currency.value),
                to_address,
                amount,
                bytes.fromhex((reference or "").removeprefix("0x")),
                0,
                ZERO_ADDRESS,
            )
            return await self._send(fn, PROXY_TRANSFER_GAS)

        token = self._token(currency)
        return await self._send(token.functions.transfer(to_address, amount), TRANSFER_GAS)

    async def _send(self, fn, gas: int) -> TransactionHandle:
        """Build, sign and broadcast a contract call."""
        w3 = self._get_web3()
        config = get_network(self._network)

        async with self._nonce_lock:
            # Get nonce - use local tracking to avoid collisions
            chain_nonce = await asyncio.to_thread(w3.eth.get_transaction_count, self.address, "pending")
            if self._last_nonce is not None and self._last_nonce >= chain_nonce:
                nonce = self._last_nonce + 1
            else:
                nonce = chain_nonce

            # Get gas price and bump by 20% to avoid replacement issues
            gas_price = int(await asyncio.to_thread(lambda: w3.eth.gas_price) * 1.2)

            tx = fn.build_transaction({
                "chainId": config.chain_id,
                "from": self.address,
                "nonce": nonce,
                "gasPrice": gas_price,
                "gas": gas,
            })

            signed_tx = w3.eth.account.sign_transaction(tx, self._account.key)
            tx_hash = await asyncio.to_thread(w3.eth.send_raw_transaction, signed_tx.raw_transaction)
            self._last_nonce = nonce

        tx_hash_hex = "0x" + bytes(tx_hash).hex()
        logger.info("Broadcast %s (nonce %s) on %s", tx_hash_hex, nonce, self._network)
        return TransactionHandle(
            tx_hash=tx_hash_hex,
            confirmations=0,
            explorer_url=get_explorer_url(tx_hash_hex, self._network),
        )

    async def await_confirmations(
        self, handle: TransactionHandle, min_depth: int, deadline: float
    ) -> ConfirmationStatus:
        """Wait until the transaction is `min_depth` blocks deep.

        Returns REVERTED as soon as a failed receipt is seen, and TIMED_OUT
        when `deadline` seconds pass first.
        """
        w3 = self._get_web3()
        started = time.monotonic()

        while True:
            try:
                receipt = await asyncio.to_thread(w3.eth.get_transaction_receipt, handle.tx_hash)
            except TransactionNotFound:
                receipt = None

            if receipt is not None:
                if receipt["status"] != 1:
                    logger.warning("Transaction %s reverted", handle.tx_hash)
                    return ConfirmationStatus.REVERTED
                head = await asyncio.to_thread(lambda: w3.eth.block_number)
                depth = head - receipt["blockNumber"] + 1
                logger.debug("Transaction %s at depth %s/%s", handle.tx_hash, depth, min_depth)
                if depth >= min_depth:
                    return ConfirmationStatus.CONFIRMED

            elapsed = time.monotonic() - started
            if elapsed >= deadline:
                logger.warning("Transaction %s not confirmed within %ss", handle.tx_hash, deadline)
                return ConfirmationStatus.TIMED_OUT

            await asyncio.sleep(min(self._receipt_poll_interval, deadline - elapsed))

    def __repr__(self) -> str:
        return f"Web3LedgerClient({self.address[:10]}...{self.address[-6:]}, network={self._network})"
