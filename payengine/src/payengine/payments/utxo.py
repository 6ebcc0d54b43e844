"""
Payments for Bitcoin-family chains (Bitcoin, Litecoin, Dash).
"""

from __future__ import annotations

from decimal import ROUND_CEILING, Decimal
from typing import Any

import httpx
from coincurve import PublicKey
from loguru import logger

from paycore.errors import (
    BroadcastFailure,
    InvalidAddress,
    SigningKeyUnavailable,
    TransactionNotFound,
)
from paycore.models import (
    AddressType,
    BalanceResult,
    BroadcastResult,
    CreateTransactionOptions,
    FeeLevel,
    SignedTransaction,
    TransactionInfo,
    TransactionOutput,
    TransactionStatus,
    UnsignedTransaction,
    UtxoInfo,
)
from paycore.units import BTC, DASH, LTC, Denomination
from payengine.balance import is_spendable, utxo_balance
from payengine.config import UtxoPaymentsConfig
from payengine.fees import WeightFeeModel
from payengine.lifecycle import (
    assert_can_broadcast,
    assert_can_sign,
    classify_status,
    count_confirmations,
)
from payengine.payments.base import BasePayments, Destination, to_timestamp
from payengine.selection import (
    SWEEP,
    ChangeTarget,
    SelectionFee,
    SelectionModel,
    Sweep,
    UtxoSelection,
    filter_utxos,
    select_utxos,
    utxo_pool_shortfall,
    utxo_value,
    vbytes,
)
from payengine.tx_builder import (
    InputSigner,
    TxInput,
    TxOutput,
    UtxoTxBuilder,
    build_unsigned_transaction,
    ensure_spendable,
)
from paywallet.backends.base import BlockchainBackend
from paywallet.wallet.address import (
    address_type_of,
    get_network_params,
    is_valid_address,
    pubkey_to_address,
)
from paywallet.wallet.keyring import HdKeyring

DENOMINATIONS: dict[str, Denomination] = {
    "bitcoin": BTC,
    "litecoin": LTC,
    "dash": DASH,
}


class UtxoPayments(BasePayments):
    """
    HD wallet payments for one Bitcoin-family coin and address type.

    Every account index maps to one address on the receive chain of the
    account key. Change returns to the sending address.
    """

    def __init__(self, config: UtxoPaymentsConfig, backend: BlockchainBackend):
        self.params = get_network_params(config.coin, config.network)
        self.denomination = DENOMINATIONS[config.coin]
        self.address_type: AddressType = config.address_type  # type: ignore[assignment]
        self.backend = backend

        keyring = HdKeyring(
            config.hd_key,
            config.derivation_path,  # type: ignore[arg-type]
            self._encode_address,
            network=config.network.value,
        )
        fee_model = WeightFeeModel(
            self.denomination,
            self._estimate_fee_rate,
            default_level=config.default_fee_level,
            min_rate=config.min_tx_fee_rate,
        )
        super().__init__(config, keyring, fee_model)
        self.config: UtxoPaymentsConfig = config
        self.selection_model = SelectionModel(self.address_type)
        self.tx_builder = UtxoTxBuilder(self.params)

        logger.info(
            f"{config.coin} {config.network.value} payments ready "
            f"({self.address_type.value}, {config.derivation_path})"
        )

    def _encode_address(self, public_key: PublicKey) -> str:
        return pubkey_to_address(public_key.format(), self.address_type, self.params)

    def is_valid_address(self, address: str) -> bool:
        return is_valid_address(address, self.params)

    async def _estimate_fee_rate(self, level: FeeLevel) -> int:
        target = self.config.fee_level_block_targets[level]
        rate = await self.backend.estimate_fee(target)
        if rate is None:
            rate = self.config.fallback_fee_rates[level]
            logger.warning(
                f"Node cannot estimate fee for {target} blocks, using fallback {rate} sat/vB"
            )
        return rate

    # UTXOs

    async def get_utxos(self, destination: Destination) -> list[UtxoInfo]:
        payport = await self.resolve_payport(destination)
        backend_utxos = await self.backend.get_utxos([payport.address])
        return [
            UtxoInfo(
                txid=u.txid,
                vout=u.vout,
                value=self.denomination.to_main(u.value),
                satoshis=u.value,
                confirmations=u.confirmations,
                height=u.height,
                coinbase=u.coinbase,
            )
            for u in backend_utxos
        ]

    def _with_base_value(self, utxo: UtxoInfo) -> UtxoInfo:
        if utxo.satoshis is not None:
            return utxo
        return utxo.model_copy(update={"satoshis": self.denomination.to_base(utxo.value)})

    def _spend_min_confirmations(self, options: CreateTransactionOptions) -> int:
        # supplied utxos carry their own confirmation policy
        if options.utxos is not None:
            return 0
        use_unconfirmed = (
            options.use_unconfirmed_utxos
            if options.use_unconfirmed_utxos is not None
            else self.config.use_unconfirmed_utxos
        )
        return 0 if use_unconfirmed else self.config.spend_min_confirmations

    def _spendable_utxos(
        self, node_utxos: list[UtxoInfo], options: CreateTransactionOptions
    ) -> list[UtxoInfo]:
        if options.utxos is not None:
            # explicitly supplied utxos are used as-is
            return [self._with_base_value(u) for u in options.utxos]
        return filter_utxos(
            node_utxos, self.config.dust_threshold, self._spend_min_confirmations(options)
        )

    def _spendable_balance(
        self, node_utxos: list[UtxoInfo], options: CreateTransactionOptions
    ) -> int:
        """Spendable balance the node reports, unless the caller supplies one."""
        if options.payport_balance is not None:
            return self.denomination.to_base(options.payport_balance)
        min_confirmations = self._spend_min_confirmations(options)
        return sum(utxo_value(u) for u in node_utxos if is_spendable(u, min_confirmations))

    # Balance

    async def get_balance(self, payport: Destination) -> BalanceResult:
        utxos = await self.get_utxos(payport)
        spendable_count = sum(
            1 for u in utxos if is_spendable(u, self.config.spend_min_confirmations)
        )
        min_rate = SelectionFee(rate=Decimal(self.config.min_tx_fee_rate))
        sweep_fee = min_rate.fee_for(
            self.selection_model.tx_weight(spendable_count, [self.address_type])
        )
        return utxo_balance(
            utxos,
            self.denomination,
            spend_min_confirmations=self.config.spend_min_confirmations,
            sweep_fee=sweep_fee,
        )

    # Creation

    def _change_targets(
        self, from_address: str, utxos: list[UtxoInfo], options: CreateTransactionOptions
    ) -> list[ChangeTarget]:
        if options.change_outputs:
            targets = []
            for change in options.change_outputs:
                try:
                    change_type = address_type_of(change.address, self.params)
                except ValueError as e:
                    raise InvalidAddress(
                        f"Invalid change address: {change.address}", address=change.address
                    ) from e
                targets.append(ChangeTarget(change.address, change_type, change.weight))
            return targets

        count = max(1, utxo_pool_shortfall(utxos, self.config.target_utxo_pool_size))
        return [ChangeTarget(from_address, self.address_type) for _ in range(count)]

    async def _create(
        self,
        from_index: int,
        to: Destination,
        target: int | Sweep,
        options: CreateTransactionOptions | None,
    ) -> UnsignedTransaction:
        options = options or CreateTransactionOptions()
        from_to = await self.resolve_from_to(from_index, to)
        to_type = address_type_of(from_to.to_address, self.params)
        node_utxos = await self.get_utxos(from_index)
        utxos = self._spendable_utxos(node_utxos, options)

        # provisional size, selection re-prices with the real input count
        unit_cost = vbytes(self.selection_model.tx_weight(1, [to_type, self.address_type]))
        resolved = await self.fee_model.resolve(options.fee_option(), unit_cost)

        selection = select_utxos(
            utxos,
            target,
            SelectionFee.from_resolved(resolved),
            self.selection_model,
            to_type,
            change_targets=self._change_targets(from_to.from_address, utxos, options),
            min_change=self.denomination.to_base(self.config.min_change, rounding=ROUND_CEILING),
            dust_threshold=self.config.dust_threshold,
            use_all=options.use_all_utxos or target is SWEEP,
        )
        ensure_spendable(
            selection.amount,
            selection.fee,
            self._spendable_balance(node_utxos, options),
            address=from_to.from_address,
        )
        if selection.input_total != selection.amount + selection.fee + selection.change_total:
            raise ValueError("Selection does not balance inputs against outputs")

        resolved = resolved.model_copy(
            update={
                "fee_base": selection.fee,
                "fee_main": self.denomination.to_main(selection.fee),
            }
        )
        amount = self.denomination.to_main(selection.amount)
        external_outputs = [TransactionOutput(address=from_to.to_address, value=amount)]
        return build_unsigned_transaction(
            from_to,
            resolved,
            amount,
            self._payload(from_to.to_address, selection),
            input_utxos=selection.inputs,
            external_outputs=external_outputs,
        )

    def _payload(self, to_address: str, selection: UtxoSelection) -> dict[str, Any]:
        outputs = [TxOutput(to_address, selection.amount)]
        outputs += [TxOutput(c.address, c.value) for c in selection.change_outputs]
        raw = self.tx_builder.build_unsigned_tx(
            [TxInput(u.txid, u.vout, u.satoshis or 0) for u in selection.inputs], outputs
        )
        return {
            "inputs": [u.model_dump(mode="json") for u in selection.inputs],
            "external_outputs": [
                {"address": to_address, "value": self.denomination.to_main(selection.amount)}
            ],
            "change_outputs": [
                {"address": c.address, "value": self.denomination.to_main(c.value)}
                for c in selection.change_outputs
            ],
            "fee_base": selection.fee,
            "weight": selection.weight,
            "raw_hex": raw.hex(),
        }

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
        return await self._create(from_index, to, SWEEP, options)

    # Signing and broadcast

    async def sign_transaction(self, unsigned_tx: UnsignedTransaction) -> SignedTransaction:
        assert_can_sign(unsigned_tx)
        private_key = self.get_private_key(unsigned_tx.from_index)
        if self.keyring.get_address(unsigned_tx.from_index) != unsigned_tx.from_address:
            raise SigningKeyUnavailable(
                f"Key at index {unsigned_tx.from_index} does not own {unsigned_tx.from_address}",
                index=unsigned_tx.from_index,
                address=unsigned_tx.from_address,
            )

        signers = [
            InputSigner(self.address_type, utxo_value(self._with_base_value(u)), private_key)
            for u in unsigned_tx.input_utxos or []
        ]
        unsigned_raw = bytes.fromhex(unsigned_tx.data["raw_hex"])
        signed_raw = self.tx_builder.sign_tx(unsigned_raw, signers)
        txid = self.tx_builder.get_txid(signed_raw)
        return self._signed(
            unsigned_tx,
            txid,
            {
                "hex": signed_raw.hex(),
                "unsigned_tx_hash": self.tx_builder.get_txid(unsigned_raw),
                "partial": False,
            },
        )

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

        if txid != signed_tx.id:
            logger.warning(f"Node returned txid {txid}, expected {signed_tx.id}")
        return BroadcastResult(id=signed_tx.id)

    # Status

    async def get_transaction_info(self, txid: str) -> TransactionInfo:
        tx = await self.backend.get_transaction(txid)
        if tx is None:
            raise TransactionNotFound(f"Transaction {txid} not found", id=txid)

        current_height = await self.backend.get_block_height()
        confirmations = count_confirmations(current_height, tx.block_height)
        mined = tx.block_height is not None
        status = classify_status(confirmations, self.config.min_confirmations, mined)

        from_address = next((i.address for i in tx.inputs if i.address), None)
        external = [o for o in tx.outputs if o.address != from_address]
        amount = sum(o.value for o in external)

        fee = tx.fee
        if fee is None and all(i.value is not None for i in tx.inputs):
            fee = sum(i.value or 0 for i in tx.inputs) - sum(o.value for o in tx.outputs)
        if fee is None:
            logger.warning(f"Cannot determine fee of {txid}, input values unknown")
            fee = 0

        block_hash, block_time = tx.block_hash, tx.block_time
        if mined and (block_hash is None or block_time is None):
            block = await self.backend.get_block(tx.block_height)  # type: ignore[arg-type]
            block_hash, block_time = block.hash, block.timestamp

        return TransactionInfo(
            status=status,
            id=tx.txid,
            from_address=from_address,
            to_address=external[0].address if external else None,
            from_index=None,
            amount=self.denomination.to_main(amount),
            fee=self.denomination.to_main(fee),
            input_utxos=[
                UtxoInfo(
                    txid=i.txid,
                    vout=i.vout,
                    value=self.denomination.to_main(i.value),
                    satoshis=i.value,
                )
                for i in tx.inputs
                if i.value is not None
            ],
            external_outputs=[
                TransactionOutput(address=o.address, value=self.denomination.to_main(o.value))
                for o in external
                if o.address is not None
            ],
            is_executed=True,
            is_confirmed=status == TransactionStatus.CONFIRMED,
            confirmations=confirmations,
            confirmation_id=block_hash if mined else None,
            confirmation_number=tx.block_height,
            confirmation_timestamp=to_timestamp(block_time) if mined else None,
            data={"raw": tx.raw},
        )

    async def close(self) -> None:
        await self.backend.close()
