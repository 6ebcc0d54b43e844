"""
Address generation and validation for Bitcoin-family networks, Ethereum and Ripple.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

import base58
import bech32
from coincurve import PublicKey
from eth_utils import is_address, keccak, to_checksum_address

from paycore.models import AddressType, NetworkType


@dataclass(frozen=True)
class NetworkParams:
    """Encoding parameters of one coin on one network."""

    coin: str
    network: NetworkType
    p2pkh_version: int
    p2sh_version: int
    bech32_hrp: str | None
    bip44_coin_type: int

    @property
    def supports_segwit(self) -> bool:
        return self.bech32_hrp is not None


_NETWORKS: dict[tuple[str, NetworkType], NetworkParams] = {
    ("bitcoin", NetworkType.MAINNET): NetworkParams(
        "bitcoin", NetworkType.MAINNET, 0x00, 0x05, "bc", 0
    ),
    ("bitcoin", NetworkType.TESTNET): NetworkParams(
        "bitcoin", NetworkType.TESTNET, 0x6F, 0xC4, "tb", 1
    ),
    ("bitcoin", NetworkType.REGTEST): NetworkParams(
        "bitcoin", NetworkType.REGTEST, 0x6F, 0xC4, "bcrt", 1
    ),
    ("litecoin", NetworkType.MAINNET): NetworkParams(
        "litecoin", NetworkType.MAINNET, 0x30, 0x32, "ltc", 2
    ),
    ("litecoin", NetworkType.TESTNET): NetworkParams(
        "litecoin", NetworkType.TESTNET, 0x6F, 0x3A, "tltc", 1
    ),
    ("litecoin", NetworkType.REGTEST): NetworkParams(
        "litecoin", NetworkType.REGTEST, 0x6F, 0x3A, "rltc", 1
    ),
    # Dash has no segwit
    ("dash", NetworkType.MAINNET): NetworkParams("dash", NetworkType.MAINNET, 0x4C, 0x10, None, 5),
    ("dash", NetworkType.TESTNET): NetworkParams("dash", NetworkType.TESTNET, 0x8C, 0x13, None, 1),
    ("dash", NetworkType.REGTEST): NetworkParams("dash", NetworkType.REGTEST, 0x8C, 0x13, None, 1),
}

SUPPORTED_COINS = frozenset(coin for coin, _ in _NETWORKS)

# Ripple account ids: base58check with the Ripple alphabet and version byte 0
RIPPLE_ACCOUNT_ID_VERSION = 0x00


def get_network_params(coin: str, network: NetworkType | str) -> NetworkParams:
    try:
        return _NETWORKS[(coin, NetworkType(network))]
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unsupported coin/network: {coin}/{network}") from e


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def _check_compressed(pubkey_bytes: bytes) -> None:
    if len(pubkey_bytes) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey_bytes)}")


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    """OP_DUP OP_HASH160 <20-byte-hash> OP_EQUALVERIFY OP_CHECKSIG"""
    return b"\x76\xa9\x14" + pubkey_hash + b"\x88\xac"


def p2sh_script(script_hash: bytes) -> bytes:
    """OP_HASH160 <20-byte-hash> OP_EQUAL"""
    return b"\xa9\x14" + script_hash + b"\x87"


def p2wpkh_script(pubkey_hash: bytes) -> bytes:
    """OP_0 <20-byte-hash>"""
    return b"\x00\x14" + pubkey_hash


def p2sh_p2wpkh_redeem_script(pubkey_bytes: bytes) -> bytes:
    return p2wpkh_script(hash160(pubkey_bytes))


def pubkey_to_p2pkh_address(pubkey_bytes: bytes, params: NetworkParams) -> str:
    _check_compressed(pubkey_bytes)
    payload = bytes([params.p2pkh_version]) + hash160(pubkey_bytes)
    return base58.b58encode_check(payload).decode("ascii")


def pubkey_to_p2sh_p2wpkh_address(pubkey_bytes: bytes, params: NetworkParams) -> str:
    """
    Nested segwit address (BIP49): P2SH wrapping a P2WPKH redeem script.
    """
    _check_compressed(pubkey_bytes)
    if not params.supports_segwit:
        raise ValueError(f"{params.coin} does not support segwit addresses")
    redeem_script = p2sh_p2wpkh_redeem_script(pubkey_bytes)
    payload = bytes([params.p2sh_version]) + hash160(redeem_script)
    return base58.b58encode_check(payload).decode("ascii")


def pubkey_to_p2wpkh_address(pubkey_bytes: bytes, params: NetworkParams) -> str:
    """
    Convert compressed public key to P2WPKH (native segwit) address.
    BIP173 bech32 encoding.
    """
    _check_compressed(pubkey_bytes)
    if not params.supports_segwit:
        raise ValueError(f"{params.coin} does not support segwit addresses")
    address = bech32.encode(params.bech32_hrp, 0, hash160(pubkey_bytes))
    if address is None:
        raise ValueError("Failed to encode P2WPKH address")
    return address


def pubkey_to_address(
    pubkey_bytes: bytes, address_type: AddressType, params: NetworkParams
) -> str:
    if address_type == AddressType.P2PKH:
        return pubkey_to_p2pkh_address(pubkey_bytes, params)
    if address_type == AddressType.P2SH_P2WPKH:
        return pubkey_to_p2sh_p2wpkh_address(pubkey_bytes, params)
    if address_type == AddressType.P2WPKH:
        return pubkey_to_p2wpkh_address(pubkey_bytes, params)
    raise ValueError(f"Cannot derive {address_type.value} address from a single pubkey")


def decode_address(address: str, params: NetworkParams) -> tuple[AddressType, bytes]:
    """
    Decode an address into its type and scriptPubKey.

    P2SH addresses are reported as P2SH_P2WPKH since both share the same
    output script and weight.

    Raises:
        ValueError: if the address is malformed or belongs to another network
    """
    if not address:
        raise ValueError("Empty address")

    if params.bech32_hrp and address.lower().startswith(params.bech32_hrp + "1"):
        witver, witprog = bech32.decode(params.bech32_hrp, address)
        if witver is None or witprog is None:
            raise ValueError(f"Invalid bech32 address: {address}")
        program = bytes(witprog)
        if witver == 0 and len(program) == 20:
            return AddressType.P2WPKH, p2wpkh_script(program)
        if witver == 0 and len(program) == 32:
            return AddressType.P2WSH, b"\x00\x20" + program
        raise ValueError(f"Unsupported witness program (version {witver}): {address}")

    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise ValueError(f"Invalid base58 address: {address}") from e

    if len(decoded) != 21:
        raise ValueError(f"Invalid address payload length: {address}")

    version, payload = decoded[0], decoded[1:]
    if version == params.p2pkh_version:
        return AddressType.P2PKH, p2pkh_script(payload)
    if version == params.p2sh_version:
        return AddressType.P2SH_P2WPKH, p2sh_script(payload)

    raise ValueError(f"Address {address} is not a {params.coin} {params.network.value} address")


def address_to_scriptpubkey(address: str, params: NetworkParams) -> bytes:
    return decode_address(address, params)[1]


def address_type_of(address: str, params: NetworkParams) -> AddressType:
    return decode_address(address, params)[0]


def is_valid_address(address: str, params: NetworkParams) -> bool:
    try:
        decode_address(address, params)
    except ValueError:
        return False
    return True


def pubkey_to_ripple_address(pubkey_bytes: bytes) -> str:
    _check_compressed(pubkey_bytes)
    payload = bytes([RIPPLE_ACCOUNT_ID_VERSION]) + hash160(pubkey_bytes)
    return base58.b58encode_check(payload, alphabet=base58.XRP_ALPHABET).decode("ascii")


def is_valid_ripple_address(address: str) -> bool:
    if not address or not address.startswith("r"):
        return False
    try:
        decoded = base58.b58decode_check(address, alphabet=base58.XRP_ALPHABET)
    except ValueError:
        return False
    return len(decoded) == 21 and decoded[0] == RIPPLE_ACCOUNT_ID_VERSION


def pubkey_to_ethereum_address(public_key: PublicKey) -> str:
    """Checksummed address: last 20 bytes of keccak256 of the uncompressed point."""
    uncompressed = public_key.format(compressed=False)
    return to_checksum_address(keccak(uncompressed[1:])[-20:])


def is_valid_ethereum_address(address: str) -> bool:
    return is_address(address)
