"""
Tests for transaction parsing and per-input signing.
"""

from __future__ import annotations

import pytest
from coincurve import PrivateKey

from paycore.models import AddressType
from paywallet.wallet.address import hash160, p2pkh_script, p2wpkh_script
from paywallet.wallet.signing import (
    ParsedInput,
    ParsedOutput,
    ParsedTransaction,
    TransactionSigningError,
    compute_sighash_legacy,
    compute_sighash_segwit,
    compute_txid,
    create_p2wpkh_script_code,
    deserialize_transaction,
    encode_varint,
    hash256,
    read_varint,
    serialize_transaction,
    sign_input,
)

PRIVATE_KEY = PrivateKey(bytes.fromhex("11" * 32))


def make_tx(n_inputs: int = 2) -> ParsedTransaction:
    inputs = [
        ParsedInput(
            txid_le=bytes([i + 1]) * 32,
            vout=i,
            script_sig=b"",
            sequence=(0xFFFFFFFD).to_bytes(4, "little"),
        )
        for i in range(n_inputs)
    ]
    outputs = [
        ParsedOutput(value=50_000, script=p2wpkh_script(b"\x22" * 20)),
        ParsedOutput(value=20_000, script=p2pkh_script(b"\x33" * 20)),
    ]
    return ParsedTransaction(
        version=(2).to_bytes(4, "little"),
        marker_flag=False,
        inputs=inputs,
        outputs=outputs,
        locktime=b"\x00\x00\x00\x00",
    )


class TestVarint:
    @pytest.mark.parametrize("value", [0, 252, 253, 65535, 65536, 2**32])
    def test_round_trip(self, value: int) -> None:
        encoded = encode_varint(value)
        assert read_varint(encoded, 0) == (value, len(encoded))


class TestSerialization:
    def test_unsigned_has_no_marker(self) -> None:
        raw = serialize_transaction(make_tx())
        assert raw[4] == 2  # input count directly after version
        parsed = deserialize_transaction(raw)
        assert not parsed.marker_flag
        assert serialize_transaction(parsed) == raw

    def test_truncated_raises(self) -> None:
        raw = serialize_transaction(make_tx())
        with pytest.raises(TransactionSigningError):
            deserialize_transaction(raw[:-5])

    def test_txid_ignores_witness(self) -> None:
        tx = make_tx()
        unsigned_txid = compute_txid(tx)
        tx.inputs[0].witness = [b"\x01", b"\x02"]
        assert compute_txid(tx) == unsigned_txid
        assert unsigned_txid == hash256(serialize_transaction(tx, include_witness=False))[::-1].hex()

    def test_parsed_txid_is_big_endian(self) -> None:
        tx = make_tx()
        tx.inputs[0].txid_le = bytes(range(32))
        assert tx.inputs[0].txid == bytes(range(32))[::-1].hex()


class TestSignInput:
    """Signatures must verify against the sighash of their input type."""

    def test_p2wpkh(self) -> None:
        tx = make_tx()
        sign_input(tx, 0, AddressType.P2WPKH, 100_000, PRIVATE_KEY)

        pubkey = PRIVATE_KEY.public_key.format()
        signature, witness_pubkey = tx.inputs[0].witness
        assert tx.inputs[0].script_sig == b""
        assert witness_pubkey == pubkey
        assert signature[-1] == 1

        digest = compute_sighash_segwit(tx, 0, create_p2wpkh_script_code(pubkey), 100_000)
        assert PRIVATE_KEY.public_key.verify(signature[:-1], digest, hasher=None)

    def test_p2sh_p2wpkh(self) -> None:
        tx = make_tx()
        sign_input(tx, 1, AddressType.P2SH_P2WPKH, 100_000, PRIVATE_KEY)

        pubkey = PRIVATE_KEY.public_key.format()
        redeem_script = p2wpkh_script(hash160(pubkey))
        assert tx.inputs[1].script_sig == bytes([len(redeem_script)]) + redeem_script
        assert len(tx.inputs[1].witness) == 2

    def test_p2pkh(self) -> None:
        tx = make_tx()
        sign_input(tx, 0, AddressType.P2PKH, 100_000, PRIVATE_KEY)

        pubkey = PRIVATE_KEY.public_key.format()
        script_sig = tx.inputs[0].script_sig
        sig_len = script_sig[0]
        signature = script_sig[1 : 1 + sig_len]
        assert script_sig[1 + sig_len :] == bytes([len(pubkey)]) + pubkey
        assert tx.inputs[0].witness == []

        digest = compute_sighash_legacy(tx, 0, p2pkh_script(hash160(pubkey)))
        assert PRIVATE_KEY.public_key.verify(signature[:-1], digest, hasher=None)

    def test_mixed_inputs_serialize_with_witness(self) -> None:
        tx = make_tx()
        sign_input(tx, 0, AddressType.P2PKH, 100_000, PRIVATE_KEY)
        sign_input(tx, 1, AddressType.P2WPKH, 100_000, PRIVATE_KEY)

        raw = serialize_transaction(tx)
        assert raw[4:6] == b"\x00\x01"
        parsed = deserialize_transaction(raw)
        assert parsed.inputs[0].witness == []
        assert parsed.inputs[1].witness == tx.inputs[1].witness
        assert parsed.inputs[0].script_sig == tx.inputs[0].script_sig

    def test_unsupported_type(self) -> None:
        with pytest.raises(TransactionSigningError):
            sign_input(make_tx(), 0, AddressType.P2WSH, 100_000, PRIVATE_KEY)

    def test_index_out_of_range(self) -> None:
        with pytest.raises(TransactionSigningError):
            compute_sighash_legacy(make_tx(1), 3, b"")
