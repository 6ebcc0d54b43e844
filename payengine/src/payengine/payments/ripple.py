"""
Payments for Ripple (XRP).

Two addresses are derived: index 0 is the hot wallet, index 1 the deposit
address. Every account index other than 0 is a payport on the deposit
address tagged with the index as its destination tag.
"""

from __future__ import annotations

import httpx
from coincurve import PublicKey
from loguru import logger

from paycore.errors import (
    BroadcastFailure,
    InsufficientFunds,
    InvalidPayport,
    SigningKeyUnavailable,
    TransactionNotFound,
)
from paycore.models import (
    BalanceResult,
    BroadcastResult,
    CreateTransactionOptions,
    FeeOptionLevel,
    FromTo,
    Payport,
    ResolvedFeeOption,
    SignedTransaction,
    TransactionInfo,
    TransactionStatus,
    UnsignedTransaction,
)
from paycore.units import XRP
from payengine.balance import account_balance
from payengine.config import RipplePaymentsConfig
from payengine.fees import FlatFeeModel
from payengine.lifecycle import (
    assert_can_broadcast,
    assert_can_sign,
    classify_status,
    count_confirmations,
)
from payengine.payments.base import AccountSigner, BasePayments, Destination, to_timestamp
from payengine.sequence import SequenceTracker
from payengine.tx_builder import build_unsigned_transaction, ensure_spendable
from paywallet.backends.base import AccountBackend
from paywallet.wallet.address import is_valid_ripple_address, pubkey_to_ripple_address
from paywallet.wallet.keyring import HdKeyring

HOT_WALLET_INDEX = 0
DEPOSIT_KEY_INDEX = 1

# Destination tags are unsigned 32 bit integers
MAX_TAG = 2**32 - 1

# tfFullyCanonicalSig
PAYMENT_FLAGS = 0x80000000


def _encode_ripple_address(public_key: PublicKey) -> str:
    return pubkey_to_ripple_address(public_key.format())


class RipplePayments(BasePayments):
    """
    Ripple payments for a hot wallet and tagged deposit payports.

    Signing is delegated to an AccountSigner, which serializes the payment
    in the Ripple binary format. Without one, payments can be created and
    tracked but not signed.
    """

    denomination = XRP

    def __init__(
        self,
        config: RipplePaymentsConfig,
        backend: AccountBackend,
        signer: AccountSigner | None = None,
    ):
        keyring = HdKeyring(
            config.hd_key,
            config.derivation_path,
            _encode_ripple_address,
            network=config.network.value,
        )
        fee_model = FlatFeeModel(
            XRP,
            backend.get_network_fee_rate,
            config.fee_level_cushions,
            default_level=config.default_fee_level,
        )
        super().__init__(config, keyring, fee_model)
        self.config: RipplePaymentsConfig = config
        self.backend = backend
        self.signer = signer
        self.sequence_tracker = SequenceTracker(backend.get_nonce)
        self.min_balance = XRP.to_base(config.min_balance)

    @property
    def hot_wallet_address(self) -> str:
        return self.keyring.get_address(HOT_WALLET_INDEX)

    @property
    def deposit_address(self) -> str:
        return self.keyring.get_address(DEPOSIT_KEY_INDEX)

    def is_valid_address(self, address: str) -> bool:
        return is_valid_ripple_address(address)

    def is_valid_extra_id(self, extra_id: str) -> bool:
        return extra_id.isdigit() and int(extra_id) <= MAX_TAG

    async def get_payport(self, index: int) -> Payport:
        if index == HOT_WALLET_INDEX:
            return Payport(address=self.hot_wallet_address)
        return Payport(address=self.deposit_address, extra_id=str(index))

    def _key_index(self, address: str) -> int:
        if address == self.hot_wallet_address:
            return HOT_WALLET_INDEX
        if address == self.deposit_address:
            return DEPOSIT_KEY_INDEX
        raise SigningKeyUnavailable(f"No key for ripple address {address}", address=address)

    async def get_balance(self, payport: Destination) -> BalanceResult:
        resolved = await self.resolve_payport(payport)
        if resolved.extra_id is not None:
            raise InvalidPayport(
                f"Cannot get balance of ripple payport with extra id {resolved.extra_id}, "
                "the ledger only tracks address balances",
                address=resolved.address,
                extra_id=resolved.extra_id,
            )
        balance = await self.backend.get_balance(resolved.address)
        default_fee = await self.fee_model.resolve(FeeOptionLevel())
        return account_balance(
            balance, XRP, reserve=self.min_balance, sweep_fee=default_fee.fee_base
        )

    def _payport_balance(
        self, from_to: FromTo, options: CreateTransactionOptions, address_balance: int
    ) -> int:
        if options.payport_balance is not None:
            return XRP.to_base(options.payport_balance)
        if from_to.from_extra_id is not None:
            raise InvalidPayport(
                "payport_balance is required to send from a tagged ripple payport",
                address=from_to.from_address,
                extra_id=from_to.from_extra_id,
            )
        return address_balance

    async def _create(
        self,
        from_index: int,
        to: Destination,
        amount: int | None,
        options: CreateTransactionOptions | None,
    ) -> UnsignedTransaction:
        options = options or CreateTransactionOptions()
        from_to = await self.resolve_from_to(from_index, to)
        if from_to.from_address == from_to.to_address and (
            from_to.from_extra_id == from_to.to_extra_id
        ):
            raise InvalidPayport(
                f"Cannot send from a ripple payport to itself: {from_to.from_address}",
                address=from_to.from_address,
            )

        resolved = await self.fee_model.resolve(options.fee_option())
        fee = resolved.fee_base
        address_balance = await self.backend.get_balance(from_to.from_address)
        payport_balance = self._payport_balance(from_to, options, address_balance)

        if amount is None:
            amount = payport_balance - fee
            if from_to.from_extra_id is None:
                amount -= self.min_balance
            if amount <= 0:
                raise InsufficientFunds(
                    f"Insufficient balance to sweep {from_to.from_address} "
                    f"with a fee of {resolved.fee_main} XRP",
                    address=from_to.from_address,
                    extra_id=from_to.from_extra_id,
                    balance=XRP.to_main(payport_balance),
                    fee=resolved.fee_main,
                )

        self._check_balances(from_to, resolved, amount, address_balance, payport_balance)

        sequence = await self.sequence_tracker.next_sequence(
            from_to.from_address, options.sequence_number
        )
        current_ledger = await self.backend.get_current_height()
        payload: dict = {
            "TransactionType": "Payment",
            "Account": from_to.from_address,
            "Destination": from_to.to_address,
            "Amount": str(amount),
            "Fee": str(fee),
            "Sequence": sequence,
            "LastLedgerSequence": current_ledger + self.config.max_ledger_version_offset,
            "Flags": PAYMENT_FLAGS,
        }
        if from_to.from_extra_id is not None:
            payload["SourceTag"] = int(from_to.from_extra_id)
        if from_to.to_extra_id is not None:
            payload["DestinationTag"] = int(from_to.to_extra_id)

        return build_unsigned_transaction(
            from_to, resolved, XRP.to_main(amount), payload, sequence_number=sequence
        )

    def _check_balances(
        self,
        from_to: FromTo,
        resolved: ResolvedFeeOption,
        amount: int,
        address_balance: int,
        payport_balance: int,
    ) -> None:
        """The address must keep its reserve, and a tagged payport cannot overdraw."""
        if address_balance < self.min_balance:
            raise InsufficientFunds(
                f"Cannot send from ripple address with less than {self.config.min_balance} XRP",
                address=from_to.from_address,
                balance=XRP.to_main(address_balance),
            )
        ensure_spendable(
            amount,
            resolved.fee_base,
            address_balance - self.min_balance,
            address=from_to.from_address,
            reserve=self.config.min_balance,
        )
        if from_to.from_extra_id is not None:
            ensure_spendable(
                amount,
                resolved.fee_base,
                payport_balance,
                address=from_to.from_address,
                extra_id=from_to.from_extra_id,
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
        private_key = self.get_private_key(self._key_index(unsigned_tx.from_address))
        if self.signer is None:
            raise SigningKeyUnavailable(
                "No ripple signer configured", index=unsigned_tx.from_index
            )
        signed = self.signer.sign(unsigned_tx.data, private_key)
        return self._signed(unsigned_tx, signed.id, {"hex": signed.serialized})

    async def broadcast_transaction(self, signed_tx: SignedTransaction) -> BroadcastResult:
        assert_can_broadcast(signed_tx)
        if await self.backend.get_transaction(signed_tx.id) is not None:
            logger.info(f"Transaction {signed_tx.id} already known to the ledger")
            return BroadcastResult(id=signed_tx.id, rebroadcast=True)

        try:
            await self.backend.broadcast_transaction(signed_tx.data["hex"])
        except (ValueError, httpx.HTTPError) as e:
            raise BroadcastFailure(
                f"Failed to broadcast {signed_tx.id}: {e}", id=signed_tx.id
            ) from e
        return BroadcastResult(id=signed_tx.id)

    async def get_transaction_info(self, txid: str) -> TransactionInfo:
        tx = await self.backend.get_transaction(txid)
        if tx is None:
            raise TransactionNotFound(f"Transaction {txid} not found", id=txid)

        current_ledger = await self.backend.get_current_height()
        confirmations = count_confirmations(current_ledger, tx.height)
        mined = tx.height is not None
        status = classify_status(
            confirmations, self.config.min_confirmations, mined, tx.executed
        )

        block_hash = block_time = None
        if mined:
            ledger = await self.backend.get_block(tx.height)  # type: ignore[arg-type]
            block_hash, block_time = ledger.hash, ledger.timestamp

        to_index = None
        if tx.to_address == self.hot_wallet_address and tx.destination_tag is None:
            to_index = HOT_WALLET_INDEX
        elif tx.to_address == self.deposit_address and tx.destination_tag is not None:
            to_index = tx.destination_tag

        return TransactionInfo(
            status=status,
            id=tx.txid,
            from_address=tx.from_address,
            to_address=tx.to_address,
            from_index=None,
            to_index=to_index,
            from_extra_id=str(tx.source_tag) if tx.source_tag is not None else None,
            to_extra_id=str(tx.destination_tag) if tx.destination_tag is not None else None,
            amount=XRP.to_main(tx.value),
            fee=XRP.to_main(tx.fee),
            sequence_number=tx.sequence,
            is_executed=tx.executed is not False,
            is_confirmed=status == TransactionStatus.CONFIRMED,
            confirmations=confirmations,
            confirmation_id=block_hash,
            confirmation_number=tx.height,
            confirmation_timestamp=to_timestamp(block_time),
            data={"result_code": tx.result_code, **tx.raw},
        )

    async def close(self) -> None:
        await self.backend.close()
