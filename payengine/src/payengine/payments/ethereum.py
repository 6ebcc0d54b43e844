"""
Payments for Ethereum (native ether transfers).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import httpx
from coincurve import PrivateKey
from eth_account import Account
from eth_utils import to_checksum_address
from loguru import logger

from paycore.errors import (
    BroadcastFailure,
    InsufficientFunds,
    SigningKeyUnavailable,
    TransactionNotFound,
)
from paycore.models import (
    BalanceResult,
    BroadcastResult,
    CreateTransactionOptions,
    FeeLevel,
    FromTo,
    ResolvedFeeOption,
    SignedTransaction,
    TransactionInfo,
    TransactionStatus,
    UnsignedTransaction,
)
from paycore.units import ETH, ceil_decimal
from payengine.balance import account_balance
from payengine.config import EthereumPaymentsConfig
from payengine.fees import WeightFeeModel
from payengine.lifecycle import (
    assert_can_broadcast,
    assert_can_sign,
    classify_status,
    count_confirmations,
)
from payengine.payments.base import (
    AccountSigner,
    BasePayments,
    Destination,
    SignedPayload,
    to_timestamp,
)
from payengine.sequence import SequenceTracker
from payengine.tx_builder import build_unsigned_transaction, ensure_spendable
from paywallet.backends.base import AccountBackend, AccountTransaction
from paywallet.wallet.address import is_valid_ethereum_address, pubkey_to_ethereum_address
from paywallet.wallet.keyring import HdKeyring


def _hex_bytes(value: bytes) -> str:
    return "0x" + bytes(value).hex()


class EthereumSigner:
    """Signs legacy (EIP-155) transactions with eth-account."""

    def sign(self, payload: dict[str, Any], private_key: PrivateKey) -> SignedPayload:
        tx = {
            "to": to_checksum_address(payload["to"]),
            "value": int(payload["value"], 16),
            "gas": int(payload["gas"], 16),
            "gasPrice": int(payload["gasPrice"], 16),
            "nonce": int(payload["nonce"], 16),
            "chainId": int(payload["chainId"], 16),
        }
        if "data" in payload:
            tx["data"] = payload["data"]
        signed = Account.sign_transaction(tx, private_key.secret)
        return SignedPayload(
            id=_hex_bytes(signed.hash), serialized=_hex_bytes(signed.raw_transaction)
        )


class EthereumPayments(BasePayments):
    """
    HD wallet payments for ether.

    Each account index is its own address. Fees are gas price times the gas
    cost of a plain transfer.
    """

    denomination = ETH

    def __init__(
        self,
        config: EthereumPaymentsConfig,
        backend: AccountBackend,
        signer: AccountSigner | None = None,
    ):
        keyring = HdKeyring(
            config.hd_key,
            config.derivation_path,
            pubkey_to_ethereum_address,
            network=config.network.value,
        )
        fee_model = WeightFeeModel(
            ETH,
            self._estimate_gas_price,
            default_level=config.default_fee_level,
            reports_gas_price=True,
        )
        super().__init__(config, keyring, fee_model)
        self.config: EthereumPaymentsConfig = config
        self.backend = backend
        self.signer = signer or EthereumSigner()
        self.sequence_tracker = SequenceTracker(backend.get_nonce)

    def is_valid_address(self, address: str) -> bool:
        return is_valid_ethereum_address(address)

    async def _estimate_gas_price(self, level: FeeLevel) -> int:
        gas_price = await self.backend.get_network_fee_rate()
        multiplier = Decimal(self.config.fee_level_multipliers[level])
        return ceil_decimal(gas_price * multiplier)

    async def _resolve_gas_fee(
        self, options: CreateTransactionOptions, gas: int
    ) -> tuple[ResolvedFeeOption, int]:
        """Resolved fee charged for ``gas`` units, with its gas price."""
        resolved = await self.fee_model.resolve(options.fee_option(), gas)
        gas_price = resolved.gas_price or 0
        fee_base = gas_price * gas
        if fee_base != resolved.fee_base:
            resolved = resolved.model_copy(
                update={"fee_base": fee_base, "fee_main": ETH.to_main(fee_base)}
            )
        return resolved, gas_price

    async def _default_fee(self, gas: int) -> int:
        """Fee of the default level, used to tell whether a balance can be swept."""
        resolved, _ = await self._resolve_gas_fee(CreateTransactionOptions(), gas)
        return resolved.fee_base

    async def get_balance(self, payport: Destination) -> BalanceResult:
        resolved = await self.resolve_payport(payport)
        balance = await self.backend.get_balance(resolved.address)
        sweep_fee = await self._default_fee(self.config.gas_costs.transfer)
        return account_balance(balance, ETH, sweep_fee=sweep_fee)

    async def _build(
        self,
        from_to: FromTo,
        resolved: ResolvedFeeOption,
        gas: int,
        gas_price: int,
        options: CreateTransactionOptions,
        amount: str,
        call_to: str,
        value: int = 0,
        data: str | None = None,
    ) -> UnsignedTransaction:
        nonce = await self.sequence_tracker.next_sequence(
            from_to.from_address, options.sequence_number
        )
        payload = {
            "from": from_to.from_address,
            "to": call_to,
            "value": hex(value),
            "gas": hex(gas),
            "gasPrice": hex(gas_price),
            "nonce": hex(nonce),
            "chainId": hex(self.config.chain_id),  # type: ignore[arg-type]
        }
        if data is not None:
            payload["data"] = data
        return build_unsigned_transaction(
            from_to, resolved, amount, payload, sequence_number=nonce
        )

    async def _create(
        self,
        from_index: int,
        to: Destination,
        amount: int | None,
        options: CreateTransactionOptions | None,
    ) -> UnsignedTransaction:
        options = options or CreateTransactionOptions()
        from_to = await self.resolve_from_to(from_index, to)
        gas = self.config.gas_costs.transfer
        resolved, gas_price = await self._resolve_gas_fee(options, gas)
        balance = await self.backend.get_balance(from_to.from_address)

        if amount is None:
            amount = balance - resolved.fee_base
            if amount <= 0:
                raise InsufficientFunds(
                    f"Cannot sweep {ETH.to_main(balance)} ETH with a fee of {resolved.fee_main}",
                    address=from_to.from_address,
                    balance=ETH.to_main(balance),
                    fee=resolved.fee_main,
                )
        ensure_spendable(amount, resolved.fee_base, balance, address=from_to.from_address)

        return await self._build(
            from_to,
            resolved,
            gas,
            gas_price,
            options,
            ETH.to_main(amount),
            from_to.to_address,
            value=amount,
        )

    async def create_transaction(
        self,
        from_index: int,
        to: Destination,
        amount: str,
        options: CreateTransactionOptions | None = None,
    ) -> UnsignedTransaction:
        return await self._create(from_index, to, self.to_base_amount(amount), options)

    async def create_sweep_transaction(
        self,
        from_index: int,
        to: Destination,
        options: CreateTransactionOptions | None = None,
    ) -> UnsignedTransaction:
        return await self._create(from_index, to, None, options)

    async def sign_transaction(self, unsigned_tx: UnsignedTransaction) -> SignedTransaction:
        assert_can_sign(unsigned_tx)
        private_key = self.get_private_key(unsigned_tx.from_index)
        if self.keyring.get_address(unsigned_tx.from_index) != unsigned_tx.from_address:
            raise SigningKeyUnavailable(
                f"Key at index {unsigned_tx.from_index} does not own {unsigned_tx.from_address}",
                index=unsigned_tx.from_index,
                address=unsigned_tx.from_address,
            )
        signed = self.signer.sign(unsigned_tx.data, private_key)
        return self._signed(unsigned_tx, signed.id, {"hex": signed.serialized})

    async def broadcast_transaction(self, signed_tx: SignedTransaction) -> BroadcastResult:
        assert_can_broadcast(signed_tx)
        if await self.backend.get_transaction(signed_tx.id) is not None:
            logger.info(f"Transaction {signed_tx.id} already known to the network")
            return BroadcastResult(id=signed_tx.id, rebroadcast=True)

        try:
            txid = await self.backend.broadcast_transaction(signed_tx.data["hex"])
        except (ValueError, httpx.HTTPError) as e:
            raise BroadcastFailure(
                f"Failed to broadcast {signed_tx.id}: {e}", id=signed_tx.id
            ) from e

        if txid.lower() != signed_tx.id.lower():
            logger.warning(f"Node returned hash {txid}, expected {signed_tx.id}")
        return BroadcastResult(id=signed_tx.id)

    def _transfer_details(self, tx: AccountTransaction) -> tuple[str | None, str]:
        """Recipient and amount moved by a transaction."""
        return tx.to_address, ETH.to_main(tx.value)

    async def get_transaction_info(self, txid: str) -> TransactionInfo:
        tx = await self.backend.get_transaction(txid)
        if tx is None:
            raise TransactionNotFound(f"Transaction {txid} not found", id=txid)
        to_address, amount = self._transfer_details(tx)

        current_height = await self.backend.get_current_height()
        confirmations = count_confirmations(current_height, tx.height)
        mined = tx.height is not None
        status = classify_status(
            confirmations, self.config.min_confirmations, mined, tx.executed
        )

        block_time = None
        block_hash = tx.block_hash
        if mined:
            block = await self.backend.get_block(tx.height)  # type: ignore[arg-type]
            block_hash, block_time = block.hash, block.timestamp

        return TransactionInfo(
            status=status,
            id=tx.txid,
            from_address=tx.from_address,
            to_address=to_address,
            from_index=None,
            amount=amount,
            fee=ETH.to_main(tx.fee),
            sequence_number=tx.sequence,
            is_executed=tx.executed is not False,
            is_confirmed=status == TransactionStatus.CONFIRMED,
            confirmations=confirmations,
            confirmation_id=block_hash,
            confirmation_number=tx.height,
            confirmation_timestamp=to_timestamp(block_time),
            data=tx.raw,
        )

    async def close(self) -> None:
        await self.backend.close()
