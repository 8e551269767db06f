"""
OmniKeyring Networks - Chain derivation table and per-chain providers

The derivation table is explicit and versioned: the same mnemonic must
produce the same address set for a fixed DERIVATION_TABLE_VERSION.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from web3 import Web3

from .errors import CollaboratorUnavailable, UnsupportedChain

logger = logging.getLogger(__name__)

# Bump only together with a migration - changing a path changes addresses
DERIVATION_TABLE_VERSION = 1

# Address encodings
ADDRESS_EVM = "evm"
ADDRESS_OMNICOIN = "omnicoin"

OMNICOIN_ADDRESS_PREFIX = "XOM"
OMNICOIN_ADDRESS_HASH_BYTES = 17

# Registry names are displayed as <username>.omnicoin
NATIVE_NAME_SUFFIX = "omnicoin"


# ============================================
# Chain Configurations
# ============================================

@dataclass(frozen=True)
class ChainConfig:
    """Derivation and network configuration for one chain."""
    chain_type: str
    display_name: str
    coin_type: int
    path_template: str    # BIP-44 path with {} for the address index
    address_format: str   # ADDRESS_EVM | ADDRESS_OMNICOIN
    chain_id: int
    rpc_url: str
    native_symbol: str
    native_decimals: int = 18
    signing_scheme: str = "evm"  # Only "evm" (secp256k1, EIP-191/155/1559) is supported

    def derivation_path(self, index: int = 0) -> str:
        """Concrete derivation path for an address index."""
        return self.path_template.format(index)


EVM_PATH = "m/44'/60'/0'/0/{}"

CHAINS = {
    "ethereum": ChainConfig(
        chain_type="ethereum",
        display_name="Ethereum",
        coin_type=60,
        path_template=EVM_PATH,
        address_format=ADDRESS_EVM,
        chain_id=1,
        rpc_url="https://ethereum.publicnode.com",
        native_symbol="ETH",
    ),
    "coti": ChainConfig(
        chain_type="coti",
        display_name="COTI",
        coin_type=60,  # Uses Ethereum's coin type
        path_template=EVM_PATH,
        address_format=ADDRESS_EVM,
        chain_id=7082400,
        rpc_url="https://testnet.coti.io/rpc",
        native_symbol="COTI",
    ),
    "omnicoin": ChainConfig(
        chain_type="omnicoin",
        display_name="OmniCoin",
        coin_type=9999,  # Custom coin type
        path_template="m/44'/9999'/0'/0/{}",
        address_format=ADDRESS_OMNICOIN,
        chain_id=999999,
        rpc_url="https://api.omnibazaar.com/rpc",
        native_symbol="XOM",
    ),
    "polygon": ChainConfig(
        chain_type="polygon",
        display_name="Polygon",
        coin_type=60,
        path_template=EVM_PATH,
        address_format=ADDRESS_EVM,
        chain_id=137,
        rpc_url="https://polygon-rpc.com",
        native_symbol="POL",
    ),
    "arbitrum": ChainConfig(
        chain_type="arbitrum",
        display_name="Arbitrum One",
        coin_type=60,
        path_template=EVM_PATH,
        address_format=ADDRESS_EVM,
        chain_id=42161,
        rpc_url="https://arb1.arbitrum.io/rpc",
        native_symbol="ETH",
    ),
    "optimism": ChainConfig(
        chain_type="optimism",
        display_name="Optimism",
        coin_type=60,
        path_template=EVM_PATH,
        address_format=ADDRESS_EVM,
        chain_id=10,
        rpc_url="https://mainnet.optimism.io",
        native_symbol="ETH",
    ),
    "bsc": ChainConfig(
        chain_type="bsc",
        display_name="BNB Smart Chain",
        coin_type=60,
        path_template=EVM_PATH,
        address_format=ADDRESS_EVM,
        chain_id=56,
        rpc_url="https://bsc-dataseed.binance.org",
        native_symbol="BNB",
    ),
    "avalanche": ChainConfig(
        chain_type="avalanche",
        display_name="Avalanche C-Chain",
        coin_type=60,
        path_template=EVM_PATH,
        address_format=ADDRESS_EVM,
        chain_id=43114,
        rpc_url="https://api.avax.network/ext/bc/C/rpc",
        native_symbol="AVAX",
    ),
}


def get_chain(chain_type: str) -> ChainConfig:
    """Get chain config by chain type, raising UnsupportedChain if unknown."""
    chain = CHAINS.get(chain_type.lower()) if chain_type else None
    if chain is None:
        raise UnsupportedChain(f"Unsupported chain: {chain_type}")
    return chain


# ============================================
# Address Encoding
# ============================================

def omnicoin_address(public_key_hex: str) -> str:
    """
    Encode an OmniCoin address: XOM + first 17 bytes of sha256(public key).

    The hash input is the 0x-prefixed compressed public key as text.
    """
    digest = hashlib.sha256(public_key_hex.encode('utf-8')).digest()
    return OMNICOIN_ADDRESS_PREFIX + digest[:OMNICOIN_ADDRESS_HASH_BYTES].hex()


def encode_address(chain: ChainConfig, public_key_hex: str, evm_address: str) -> str:
    """Chain-specific address for a derived key."""
    if chain.address_format == ADDRESS_EVM:
        return evm_address
    if chain.address_format == ADDRESS_OMNICOIN:
        return omnicoin_address(public_key_hex)
    raise UnsupportedChain(f"Unknown address format for {chain.chain_type}")


def format_balance(raw: int, decimals: int = 18) -> str:
    """Human-readable balance string."""
    return f"{raw / (10 ** decimals):.6f}"


# ============================================
# Chain Provider (balances and broadcast)
# ============================================

class ChainProvider:
    """Balance queries and raw transaction broadcast for one chain."""

    def __init__(self, chain: ChainConfig, rpc_url: Optional[str] = None,
                 timeout: float = 10.0):
        """
        Initialize chain provider.

        Args:
            chain: Chain configuration
            rpc_url: Custom RPC URL, or None to use chain default
            timeout: HTTP request timeout in seconds
        """
        self.chain = chain
        effective_rpc = rpc_url if rpc_url else chain.rpc_url
        self.w3 = Web3(Web3.HTTPProvider(effective_rpc, request_kwargs={"timeout": timeout}))

    def get_balance(self, address: str) -> int:
        """Native balance in the smallest unit."""
        try:
            return self.w3.eth.get_balance(Web3.to_checksum_address(address))
        except Exception as e:
            raise CollaboratorUnavailable(
                f"{self.chain.display_name} balance query failed"
            ) from e

    def send_transaction(self, signed_tx: str) -> str:
        """Broadcast a signed raw transaction, returning the tx hash."""
        try:
            tx_hash = self.w3.eth.send_raw_transaction(signed_tx)
        except Exception as e:
            raise CollaboratorUnavailable(
                f"{self.chain.display_name} broadcast failed"
            ) from e
        return Web3.to_hex(tx_hash)


def build_providers(chain_types: list[str],
                    custom_rpcs: Optional[dict[str, str]] = None,
                    timeout: float = 10.0) -> dict[str, ChainProvider]:
    """Create providers for the given chain types, skipping unknown ones."""
    custom_rpcs = custom_rpcs or {}
    providers = {}
    for chain_type in chain_types:
        chain = CHAINS.get(chain_type)
        if chain is None:
            logger.warning(f"No chain config for {chain_type}, skipping provider")
            continue
        providers[chain_type] = ChainProvider(chain, custom_rpcs.get(chain_type), timeout)
    return providers
