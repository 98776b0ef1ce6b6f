"""reqsettle ledger adapters - ERC-20 over web3, requests over HTTP.

Example:
    from reqsettle.payments import Web3LedgerClient, HttpRequestLedgerClient

    ledger = Web3LedgerClient.from_env("PAYER_PRIVATE_KEY", network="sepolia")

    async with HttpRequestLedgerClient("https://gateway.example.org") as gateway:
        request = await gateway.get_request(request_id)
        outcome = await settle(request, ledger, gateway)
"""

from .ledger import Web3LedgerClient
from .gateway import HttpRequestLedgerClient
from .config import (
    get_network,
    get_explorer_url,
    NetworkConfig,
    NETWORKS,
    DEFAULT_NETWORK,
    ERC20_ABI,
    ERC20_FEE_PROXY_ABI,
)

__all__ = [
    # Clients
    "Web3LedgerClient",
    "HttpRequestLedgerClient",

    # Config
    "get_network",
    "get_explorer_url",
    "NetworkConfig",
    "NETWORKS",
    "DEFAULT_NETWORK",
    "ERC20_ABI",
    "ERC20_FEE_PROXY_ABI",
]
