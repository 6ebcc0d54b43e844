"""
Network backend implementations.

Available backends:
- BitcoinCoreBackend: Bitcoin-family full node via RPC (no wallet, uses scantxoutset)
- EthereumBackend: Ethereum node via eth_* JSON-RPC
- RippleBackend: rippled via JSON-RPC
"""

from paywallet.backends.base import (
    UTXO,
    AccountBackend,
    AccountTransaction,
    BlockchainBackend,
    BlockInfo,
    ContractCallBackend,
    Transaction,
    TxInputRef,
    TxOutputRef,
)
from paywallet.backends.bitcoin_core import BitcoinCoreBackend, RpcError
from paywallet.backends.ethereum import EthereumBackend
from paywallet.backends.ripple import RippleBackend, RippledError

__all__ = [
    "AccountBackend",
    "AccountTransaction",
    "BitcoinCoreBackend",
    "BlockInfo",
    "BlockchainBackend",
    "ContractCallBackend",
    "EthereumBackend",
    "RippleBackend",
    "RippledError",
    "RpcError",
    "Transaction",
    "TxInputRef",
    "TxOutputRef",
    "UTXO",
]
