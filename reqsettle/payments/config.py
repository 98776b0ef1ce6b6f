"""Network table and contract ABIs for the web3 ledger adapter.

Testnet Setup:
    1. Get test ETH: https://faucets.chain.link/sepolia
    2. Mint test FAU tokens from the token contract on Sepolia
    3. Set REQSETTLE_NETWORK=sepolia in .env
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class NetworkConfig:
    """Configuration for a blockchain network."""
    chain_id: int
    name: str
    rpc_url: str
    explorer_url: str
    erc20_fee_proxy: Optional[str] = None
    is_testnet: bool = False


# Supported networks
NETWORKS = {
    "mainnet": NetworkConfig(
        chain_id=1,
        name="Ethereum",
        rpc_url="https://eth.llamarpc.com",
        explorer_url="https://etherscan.io",
        erc20_fee_proxy="0x370DE27fdb7D1Ff1e1BaA7D11c5820a324Cf623C",
        is_testnet=False,
    ),
    "sepolia": NetworkConfig(
        chain_id=11155111,
        name="Ethereum Sepolia (Testnet)",
        rpc_url="https://rpc.sepolia.org",
        explorer_url="https://sepolia.etherscan.io",
        erc20_fee_proxy="0x399F5EE127ce7432E4921a61b8CF52b0af52cbfE",
        is_testnet=True,
    ),
    "base": NetworkConfig(
        chain_id=8453,
        name="Base",
        rpc_url="https://mainnet.base.org",
        explorer_url="https://basescan.org",
        is_testnet=False,
    ),
    "base-sepolia": NetworkConfig(
        chain_id=84532,
        name="Base Sepolia (Testnet)",
        rpc_url="https://sepolia.base.org",
        explorer_url="https://sepolia.basescan.org",
        is_testnet=True,
    ),
}

DEFAULT_NETWORK = "sepolia"

# Chains that need the proof-of-authority extraData middleware
POA_NETWORKS = {"base", "base-sepolia"}

# ERC20 ABI (minimal - just what we need)
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "_owner", "type": "address"},
            {"name": "_spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_spender", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
]

# Pulls approved tokens from the payer and tags the transfer with the
# request's payment reference
ERC20_FEE_PROXY_ABI = [
    {
        "inputs": [
            {"name": "_tokenAddress", "type": "address"},
            {"name": "_to", "type": "address"},
            {"name": "_amount", "type": "uint256"},
            {"name": "_paymentReference", "type": "bytes"},
            {"name": "_feeAmount", "type": "uint256"},
            {"name": "_feeAddress", "type": "address"},
        ],
        "name": "transferFromWithReferenceAndFee",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


def get_network(network: str = DEFAULT_NETWORK) -> NetworkConfig:
    """Get network configuration."""
    if network not in NETWORKS:
        raise ValueError(f"Unknown network: {network}. Supported: {list(NETWORKS.keys())}")
    return NETWORKS[network]


def get_explorer_url(tx_hash: str, network: str = DEFAULT_NETWORK) -> str:
    """Get block explorer URL for a transaction."""
    config = get_network(network)
    return f"{config.explorer_url}/tx/{tx_hash}"
