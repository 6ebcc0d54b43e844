"""
Transaction building.

Assembles the unsigned transaction envelope shared by every chain, and the
raw serialization of Bitcoin-family transactions:
- inputs in selection order, each opting into RBF
- external outputs first, then change
"""

from __future__ import annotations

import struct
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from coincurve import PrivateKey
from loguru import logger

from paycore.constants import BITCOIN_SEQUENCE_RBF, BITCOIN_TX_LOCKTIME, BITCOIN_TX_VERSION
from paycore.errors import InsufficientFunds
from paycore.models import (
    AddressType,
    FromTo,
    ResolvedFeeOption,
    TransactionOutput,
    UnsignedTransaction,
    UtxoInfo,
)
from paywallet.wallet.address import NetworkParams, address_to_scriptpubkey
from paywallet.wallet.signing import (
    compute_txid,
    deserialize_transaction,
    encode_varint,
    serialize_transaction,
    sign_input,
)


@dataclass
class TxInput:
    """Transaction input."""

    txid: str
    vout: int
    value: int
    sequence: int = BITCOIN_SEQUENCE_RBF


@dataclass
class TxOutput:
    """Transaction output."""

    address: str
    value: int
    scriptpubkey: str = ""


@dataclass
class InputSigner:
    """What is needed to sign one input: the key and the spent output."""

    address_type: AddressType
    value: int
    private_key: PrivateKey


def serialize_outpoint(txid: str, vout: int) -> bytes:
    """Serialize outpoint (txid:vout)."""
    # txid is in RPC format (big-endian), need to reverse for raw tx
    txid_bytes = bytes.fromhex(txid)[::-1]
    return txid_bytes + struct.pack("<I", vout)


def serialize_input(inp: TxInput) -> bytes:
    """Serialize a transaction input with an empty scriptSig."""
    result = serialize_outpoint(inp.txid, inp.vout)
    result += bytes([0x00])
    result += struct.pack("<I", inp.sequence)
    return result


def serialize_output(out: TxOutput, params: NetworkParams) -> bytes:
    """Serialize a transaction output."""
    result = struct.pack("<Q", out.value)
    scriptpubkey = (
        bytes.fromhex(out.scriptpubkey)
        if out.scriptpubkey
        else address_to_scriptpubkey(out.address, params)
    )
    result += encode_varint(len(scriptpubkey))
    result += scriptpubkey
    return result


class UtxoTxBuilder:
    """Builds and signs raw transactions for one Bitcoin-family network."""

    def __init__(self, params: NetworkParams):
        self.params = params

    def build_unsigned_tx(self, inputs: Sequence[TxInput], outputs: Sequence[TxOutput]) -> bytes:
        """
        Serialize an unsigned transaction (no segwit marker, empty scriptSigs).
        """
        if not inputs:
            raise ValueError("Transaction needs at least one input")
        if not outputs:
            raise ValueError("Transaction needs at least one output")

        tx = struct.pack("<I", BITCOIN_TX_VERSION)
        tx += encode_varint(len(inputs))
        for inp in inputs:
            tx += serialize_input(inp)
        tx += encode_varint(len(outputs))
        for out in outputs:
            tx += serialize_output(out, self.params)
        tx += struct.pack("<I", BITCOIN_TX_LOCKTIME)
        return tx

    def sign_tx(self, unsigned_tx: bytes, signers: Sequence[InputSigner]) -> bytes:
        """Sign every input, returns the serialized signed transaction."""
        tx = deserialize_transaction(unsigned_tx)
        if len(signers) != len(tx.inputs):
            raise ValueError(
                f"Expected {len(tx.inputs)} input signers, got {len(signers)}"
            )
        for index, signer in enumerate(signers):
            sign_input(tx, index, signer.address_type, signer.value, signer.private_key)
        return serialize_transaction(tx)

    @staticmethod
    def get_txid(tx_bytes: bytes) -> str:
        return compute_txid(deserialize_transaction(tx_bytes))


def ensure_spendable(amount: int, fee: int, balance: int, **context: Any) -> None:
    """
    Pre-flight check that amount plus fee is covered by the balance.

    Runs before anything is returned to the caller, independent of how the
    amount and fee were computed.
    """
    if amount < 0 or fee < 0:
        raise ValueError(f"Negative amount {amount} or fee {fee}")
    if amount + fee > balance:
        raise InsufficientFunds(
            f"Insufficient funds: amount {amount} + fee {fee} exceeds balance {balance}",
            amount=amount,
            fee=fee,
            balance=balance,
            **context,
        )


def build_unsigned_transaction(
    from_to: FromTo,
    fee_option: ResolvedFeeOption,
    amount: str,
    data: dict[str, Any],
    sequence_number: int | None = None,
    input_utxos: list[UtxoInfo] | None = None,
    external_outputs: list[TransactionOutput] | None = None,
) -> UnsignedTransaction:
    """Common envelope around a chain specific unsigned payload."""
    tx = UnsignedTransaction(
        from_address=from_to.from_address,
        to_address=from_to.to_address,
        from_index=from_to.from_index,
        to_index=from_to.to_index,
        from_extra_id=from_to.from_extra_id,
        to_extra_id=from_to.to_extra_id,
        amount=amount,
        fee=fee_option.fee_main,
        sequence_number=sequence_number,
        input_utxos=input_utxos,
        external_outputs=external_outputs,
        target_fee_level=fee_option.target_fee_level,
        target_fee_rate=fee_option.target_fee_rate,
        target_fee_rate_type=fee_option.target_fee_rate_type,
        data=data,
    )
    logger.info(
        f"Created unsigned transaction {from_to.from_address} -> {from_to.to_address}: "
        f"amount={amount}, fee={fee_option.fee_main}"
    )
    return tx
