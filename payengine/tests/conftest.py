"""
Test configuration for payengine tests.

Backends are in-memory fakes holding chain state that tests set directly.
"""

from __future__ import annotations

import pytest
from eth_abi import decode, encode
from eth_utils import decode_hex, encode_hex, to_checksum_address

from paywallet.backends.base import (
    UTXO,
    AccountBackend,
    AccountTransaction,
    BlockchainBackend,
    BlockInfo,
    ContractCallBackend,
    Transaction,
)
from paywallet.wallet.bip32 import HDKey, mnemonic_to_seed
from paywallet.wallet.signing import compute_txid, deserialize_transaction

SAMPLE_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)


class FakeUtxoBackend(BlockchainBackend):
    """Bitcoin-family node with a fixed utxo set and fee estimate."""

    def __init__(self, fee_rate: int | None = 21, height: int = 800_000):
        self.fee_rate = fee_rate
        self.height = height
        self.utxos: dict[str, list[UTXO]] = {}
        self.transactions: dict[str, Transaction] = {}
        self.broadcasts: list[str] = []
        self.broadcast_error: Exception | None = None
        self.closed = False

    def add_utxo(self, address: str, value: int, confirmations: int = 6, **kwargs) -> UTXO:
        index = sum(len(v) for v in self.utxos.values())
        utxo = UTXO(
            txid=kwargs.pop("txid", f"{index + 1:064x}"),
            vout=kwargs.pop("vout", 0),
            value=value,
            address=address,
            confirmations=confirmations,
            **kwargs,
        )
        self.utxos.setdefault(address, []).append(utxo)
        return utxo

    async def get_utxos(self, addresses: list[str]) -> list[UTXO]:
        return [u for a in addresses for u in self.utxos.get(a, [])]

    async def get_address_balance(self, address: str) -> int:
        return sum(u.value for u in self.utxos.get(address, []))

    async def broadcast_transaction(self, tx_hex: str) -> str:
        if self.broadcast_error is not None:
            raise self.broadcast_error
        self.broadcasts.append(tx_hex)
        txid = compute_txid(deserialize_transaction(bytes.fromhex(tx_hex)))
        self.transactions[txid] = Transaction(txid=txid, raw=tx_hex, confirmations=0)
        return txid

    async def get_transaction(self, txid: str) -> Transaction | None:
        return self.transactions.get(txid)

    async def estimate_fee(self, target_blocks: int) -> int | None:
        return self.fee_rate

    async def get_block_height(self) -> int:
        return self.height

    async def get_block_hash(self, block_height: int) -> str:
        return f"{block_height:064x}"

    async def get_block_time(self, block_height: int) -> int:
        return 1_700_000_000 + block_height * 600

    async def close(self) -> None:
        self.closed = True


class FakeAccountBackend(AccountBackend):
    """Ethereum or Ripple node with settable balances and nonces."""

    def __init__(self, network_fee: int, height: int = 1_000):
        self.network_fee = network_fee
        self.height = height
        self.balances: dict[str, int] = {}
        self.nonces: dict[str, int] = {}
        self.transactions: dict[str, AccountTransaction] = {}
        self.broadcasts: list[str] = []
        self.broadcast_error: Exception | None = None
        self.closed = False

    async def get_balance(self, address: str) -> int:
        return self.balances.get(address, 0)

    async def get_nonce(self, address: str) -> int:
        return self.nonces.get(address, 0)

    async def get_network_fee_rate(self) -> int:
        return self.network_fee

    async def broadcast_transaction(self, signed_tx: str) -> str:
        if self.broadcast_error is not None:
            raise self.broadcast_error
        self.broadcasts.append(signed_tx)
        return "0x" + "00" * 32

    async def get_transaction(self, txid: str) -> AccountTransaction | None:
        return self.transactions.get(txid)

    async def get_current_height(self) -> int:
        return self.height

    async def get_block(self, height: int) -> BlockInfo:
        return BlockInfo(height=height, hash=f"{height:064x}", timestamp=1_700_000_000 + height)

    async def close(self) -> None:
        self.closed = True


class FakeTokenBackend(FakeAccountBackend, ContractCallBackend):
    """Ethereum node that also answers ERC-20 balanceOf calls."""

    def __init__(self, network_fee: int, height: int = 1_000):
        super().__init__(network_fee, height)
        self.token_balances: dict[str, int] = {}
        self.calls: list[tuple[str, str]] = []

    async def call(self, to: str, data: str) -> str:
        self.calls.append((to, data))
        (owner,) = decode(["address"], decode_hex(data)[4:])
        balance = self.token_balances.get(to_checksum_address(owner), 0)
        return encode_hex(encode(["uint256"], [balance]))


@pytest.fixture
def sample_mnemonic() -> str:
    """Test mnemonic (not for production use!)."""
    return SAMPLE_MNEMONIC


@pytest.fixture
def master_key(sample_mnemonic: str) -> HDKey:
    return HDKey.from_seed(mnemonic_to_seed(sample_mnemonic))


@pytest.fixture
def xprv(master_key: HDKey) -> str:
    return master_key.to_extended_key("mainnet")


@pytest.fixture
def utxo_backend() -> FakeUtxoBackend:
    return FakeUtxoBackend()


@pytest.fixture
def eth_backend() -> FakeAccountBackend:
    # 20 gwei gas price
    return FakeAccountBackend(network_fee=20 * 10**9, height=1_000)


@pytest.fixture
def xrp_backend() -> FakeAccountBackend:
    # 10 drops open ledger fee
    return FakeAccountBackend(network_fee=10, height=80_000_000)


@pytest.fixture
def token_backend() -> FakeTokenBackend:
    return FakeTokenBackend(network_fee=20 * 10**9, height=1_000)
