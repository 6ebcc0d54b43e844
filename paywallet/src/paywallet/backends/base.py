"""
Base network backend interfaces.

UTXO chains and account chains expose different primitives, so there is
one interface per ledger model. All amounts are integer base units.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class UTXO:
    txid: str
    vout: int
    value: int
    address: str
    confirmations: int
    scriptpubkey: str = ""
    height: int | None = None
    coinbase: bool = False


@dataclass
class TxInputRef:
    """A spent outpoint, with the prevout details when the node provides them."""

    txid: str
    vout: int
    address: str | None = None
    value: int | None = None


@dataclass
class TxOutputRef:
    n: int
    value: int
    address: str | None = None


@dataclass
class Transaction:
    txid: str
    raw: str
    confirmations: int
    block_height: int | None = None
    block_hash: str | None = None
    block_time: int | None = None
    inputs: list[TxInputRef] = field(default_factory=list)
    outputs: list[TxOutputRef] = field(default_factory=list)
    fee: int | None = None


@dataclass
class BlockInfo:
    """A block (or ledger) header: hash and unix timestamp."""

    height: int
    hash: str
    timestamp: int


@dataclass
class AccountTransaction:
    """A payment on an account-model chain."""

    txid: str
    from_address: str
    to_address: str | None
    value: int
    fee: int
    sequence: int
    height: int | None = None
    block_hash: str | None = None
    # None while the outcome is unknown (not yet mined/validated)
    executed: bool | None = None
    result_code: str | None = None
    source_tag: int | None = None
    destination_tag: int | None = None
    # contract call input, hex encoded
    data: str | None = None
    raw: dict = field(default_factory=dict)


class BlockchainBackend(ABC):
    """
    Backend for UTXO chains.
    Implementations provide access to blockchain data without requiring
    a node side wallet.
    """

    @abstractmethod
    async def get_utxos(self, addresses: list[str]) -> list[UTXO]:
        """Get UTXOs for given addresses"""

    @abstractmethod
    async def get_address_balance(self, address: str) -> int:
        """Get balance for an address in base units"""

    @abstractmethod
    async def broadcast_transaction(self, tx_hex: str) -> str:
        """Broadcast transaction, returns txid"""

    @abstractmethod
    async def get_transaction(self, txid: str) -> Transaction | None:
        """Get transaction by txid, None if the node does not know it"""

    @abstractmethod
    async def estimate_fee(self, target_blocks: int) -> int | None:
        """Estimate fee in base units per vbyte, None if the node cannot estimate"""

    @abstractmethod
    async def get_block_height(self) -> int:
        """Get current blockchain height"""

    @abstractmethod
    async def get_block_hash(self, block_height: int) -> str:
        """Get block hash for given height"""

    @abstractmethod
    async def get_block_time(self, block_height: int) -> int:
        """Get block time (unix timestamp) for given height"""

    async def get_block(self, block_height: int) -> BlockInfo:
        block_hash = await self.get_block_hash(block_height)
        timestamp = await self.get_block_time(block_height)
        return BlockInfo(height=block_height, hash=block_hash, timestamp=timestamp)

    async def close(self) -> None:
        """Close backend connection"""
        pass


class AccountBackend(ABC):
    """Backend for account/sequence based chains (Ethereum, Ripple)."""

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Balance in base units, 0 for accounts the ledger does not know"""

    @abstractmethod
    async def get_nonce(self, address: str) -> int:
        """Next sequence number (nonce) for the address"""

    @abstractmethod
    async def get_network_fee_rate(self) -> int:
        """Current network fee: gas price in wei, or base fee in drops"""

    @abstractmethod
    async def broadcast_transaction(self, signed_tx: str) -> str:
        """Submit a signed transaction, returns its id"""

    @abstractmethod
    async def get_transaction(self, txid: str) -> AccountTransaction | None:
        """Get transaction by id, None if not found"""

    @abstractmethod
    async def get_current_height(self) -> int:
        """Current block number or validated ledger index"""

    @abstractmethod
    async def get_block(self, height: int) -> BlockInfo:
        """Block or ledger header at the given height"""

    async def close(self) -> None:
        pass


class ContractCallBackend(AccountBackend):
    """Account backend that can also run read-only contract calls (Ethereum)."""

    @abstractmethod
    async def call(self, to: str, data: str) -> str:
        """Execute a call against the latest block, returns the hex encoded result"""
