"""
Bitcoin-family transaction signing for P2PKH, P2SH-P2WPKH and P2WPKH inputs.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from coincurve import PrivateKey

from paycore.models import AddressType
from paywallet.wallet.address import hash160, p2pkh_script, p2sh_p2wpkh_redeem_script

SIGHASH_ALL = 1


class TransactionSigningError(Exception):
    pass


@dataclass
class ParsedInput:
    txid_le: bytes
    vout: int
    script_sig: bytes
    sequence: bytes
    witness: list[bytes] = field(default_factory=list)

    @property
    def txid(self) -> str:
        return self.txid_le[::-1].hex()


@dataclass
class ParsedOutput:
    value: int
    script: bytes


@dataclass
class ParsedTransaction:
    version: bytes
    marker_flag: bool
    inputs: list[ParsedInput]
    outputs: list[ParsedOutput]
    locktime: bytes


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        value = int.from_bytes(data[offset : offset + 2], "little")
        return value, offset + 2
    if first == 0xFE:
        value = int.from_bytes(data[offset : offset + 4], "little")
        return value, offset + 4
    value = int.from_bytes(data[offset : offset + 8], "little")
    return value, offset + 8


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def push_data(data: bytes) -> bytes:
    """Minimal push for data up to 75 bytes (signatures, pubkeys, redeem scripts)."""
    if len(data) > 75:
        raise TransactionSigningError(f"Push of {len(data)} bytes not supported")
    return bytes([len(data)]) + data


def deserialize_transaction(tx_bytes: bytes) -> ParsedTransaction:
    try:
        offset = 0
        version = tx_bytes[offset : offset + 4]
        offset += 4

        marker_flag = False
        if tx_bytes[offset] == 0x00 and tx_bytes[offset + 1] == 0x01:
            marker_flag = True
            offset += 2

        input_count, offset = read_varint(tx_bytes, offset)
        inputs: list[ParsedInput] = []

        for _ in range(input_count):
            txid_le = tx_bytes[offset : offset + 32]
            offset += 32

            vout = int.from_bytes(tx_bytes[offset : offset + 4], "little")
            offset += 4

            script_len, offset = read_varint(tx_bytes, offset)
            script_sig = tx_bytes[offset : offset + script_len]
            offset += script_len

            sequence = tx_bytes[offset : offset + 4]
            offset += 4

            inputs.append(ParsedInput(txid_le, vout, script_sig, sequence))

        output_count, offset = read_varint(tx_bytes, offset)
        outputs: list[ParsedOutput] = []

        for _ in range(output_count):
            value = int.from_bytes(tx_bytes[offset : offset + 8], "little")
            offset += 8

            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len

            outputs.append(ParsedOutput(value, script))

        if marker_flag:
            for inp in inputs:
                stack_count, offset = read_varint(tx_bytes, offset)
                for _ in range(stack_count):
                    item_len, offset = read_varint(tx_bytes, offset)
                    inp.witness.append(tx_bytes[offset : offset + item_len])
                    offset += item_len

        locktime = tx_bytes[offset : offset + 4]
        if len(locktime) != 4 or offset + 4 != len(tx_bytes):
            raise ValueError("Unexpected end of transaction data")
        return ParsedTransaction(version, marker_flag, inputs, outputs, locktime)

    except (IndexError, ValueError) as e:
        raise TransactionSigningError(f"Failed to parse transaction: {e}") from e


def serialize_transaction(tx: ParsedTransaction, include_witness: bool = True) -> bytes:
    """
    Serialize a parsed transaction. The segwit marker is written only when
    witness data is requested and at least one input carries a witness.
    """
    has_witness = include_witness and any(inp.witness for inp in tx.inputs)

    result = tx.version
    if has_witness:
        result += b"\x00\x01"

    result += encode_varint(len(tx.inputs))
    for inp in tx.inputs:
        result += inp.txid_le + inp.vout.to_bytes(4, "little")
        result += encode_varint(len(inp.script_sig)) + inp.script_sig
        result += inp.sequence

    result += encode_varint(len(tx.outputs))
    for out in tx.outputs:
        result += out.value.to_bytes(8, "little")
        result += encode_varint(len(out.script)) + out.script

    if has_witness:
        for inp in tx.inputs:
            result += encode_varint(len(inp.witness))
            for item in inp.witness:
                result += encode_varint(len(item)) + item

    return result + tx.locktime


def compute_txid(tx: ParsedTransaction) -> str:
    """Double SHA256 of the non-witness serialization, byte reversed."""
    return hash256(serialize_transaction(tx, include_witness=False))[::-1].hex()


def compute_sighash_legacy(
    tx: ParsedTransaction,
    input_index: int,
    script_code: bytes,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    if input_index >= len(tx.inputs):
        raise TransactionSigningError("Input index out of range")

    preimage = tx.version + encode_varint(len(tx.inputs))
    for i, inp in enumerate(tx.inputs):
        script = script_code if i == input_index else b""
        preimage += inp.txid_le + inp.vout.to_bytes(4, "little")
        preimage += encode_varint(len(script)) + script
        preimage += inp.sequence

    preimage += encode_varint(len(tx.outputs))
    for out in tx.outputs:
        preimage += out.value.to_bytes(8, "little")
        preimage += encode_varint(len(out.script)) + out.script

    preimage += tx.locktime + sighash_type.to_bytes(4, "little")
    return hash256(preimage)


def compute_sighash_segwit(
    tx: ParsedTransaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """BIP143 signature hash."""
    if input_index >= len(tx.inputs):
        raise TransactionSigningError("Input index out of range")

    hash_prevouts = hash256(
        b"".join(inp.txid_le + inp.vout.to_bytes(4, "little") for inp in tx.inputs)
    )
    hash_sequence = hash256(b"".join(inp.sequence for inp in tx.inputs))
    hash_outputs = hash256(
        b"".join(
            out.value.to_bytes(8, "little") + encode_varint(len(out.script)) + out.script
            for out in tx.outputs
        )
    )

    target_input = tx.inputs[input_index]

    preimage = (
        tx.version
        + hash_prevouts
        + hash_sequence
        + target_input.txid_le
        + target_input.vout.to_bytes(4, "little")
        + encode_varint(len(script_code))
        + script_code
        + value.to_bytes(8, "little")
        + target_input.sequence
        + hash_outputs
        + tx.locktime
        + sighash_type.to_bytes(4, "little")
    )

    return hash256(preimage)


def create_p2wpkh_script_code(pubkey_bytes: bytes) -> bytes:
    """scriptCode for P2WPKH signing (BIP143) is the P2PKH script of the key."""
    return p2pkh_script(hash160(pubkey_bytes))


def _sign_digest(digest: bytes, private_key: PrivateKey, sighash_type: int) -> bytes:
    # digest is already SHA256d, hasher=None skips hashing
    return private_key.sign(digest, hasher=None) + bytes([sighash_type])


def sign_input(
    tx: ParsedTransaction,
    input_index: int,
    address_type: AddressType,
    value: int,
    private_key: PrivateKey,
    sighash_type: int = SIGHASH_ALL,
) -> None:
    """
    Sign one input in place, setting its scriptSig and witness.

    Args:
        tx: Parsed transaction, modified in place
        input_index: Index of the input to sign
        address_type: Type of the output being spent
        value: Value of the output being spent (base units), used by BIP143
        private_key: coincurve PrivateKey owning the spent output
    """
    pubkey_bytes = private_key.public_key.format(compressed=True)
    inp = tx.inputs[input_index]

    if address_type == AddressType.P2PKH:
        digest = compute_sighash_legacy(
            tx, input_index, p2pkh_script(hash160(pubkey_bytes)), sighash_type
        )
        signature = _sign_digest(digest, private_key, sighash_type)
        inp.script_sig = push_data(signature) + push_data(pubkey_bytes)
        inp.witness = []
        return

    if address_type in (AddressType.P2WPKH, AddressType.P2SH_P2WPKH):
        script_code = create_p2wpkh_script_code(pubkey_bytes)
        digest = compute_sighash_segwit(tx, input_index, script_code, value, sighash_type)
        signature = _sign_digest(digest, private_key, sighash_type)
        if address_type == AddressType.P2SH_P2WPKH:
            inp.script_sig = push_data(p2sh_p2wpkh_redeem_script(pubkey_bytes))
        else:
            inp.script_sig = b""
        inp.witness = create_witness_stack(signature, pubkey_bytes)
        return

    raise TransactionSigningError(f"Cannot sign input of type {address_type.value}")


def create_witness_stack(signature: bytes, pubkey_bytes: bytes) -> list[bytes]:
    return [signature, pubkey_bytes]
