"""
BIP32 HD key derivation.

Keys may be private (xprv) or public-only (xpub). Public-only keys can
derive non-hardened children and addresses but never sign.
"""

from __future__ import annotations

import hashlib
import hmac

import base58
from coincurve import PrivateKey, PublicKey

from paywallet.wallet.address import hash160

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

HARDENED_OFFSET = 0x80000000

# Extended key version bytes: (private, public)
MAINNET_VERSIONS = (0x0488ADE4, 0x0488B21E)  # xprv, xpub
TESTNET_VERSIONS = (0x04358394, 0x043587CF)  # tprv, tpub

EXTENDED_KEY_LENGTH = 78


class HDKeyError(ValueError):
    pass


def parse_path(path: str) -> list[int]:
    """Parse "m/84'/0'/0'" into child indices. ' or h marks hardened."""
    if not path.startswith("m"):
        raise HDKeyError("Path must start with 'm'")

    indices = []
    for part in path.split("/")[1:]:
        if not part:
            continue
        hardened = part.endswith("'") or part.endswith("h")
        index_str = part.rstrip("'h")
        if not index_str.isdigit():
            raise HDKeyError(f"Invalid path component: {part!r}")
        index = int(index_str)
        if index >= HARDENED_OFFSET:
            raise HDKeyError(f"Path component out of range: {part!r}")
        indices.append(index + HARDENED_OFFSET if hardened else index)
    return indices


class HDKey:
    """
    Hierarchical Deterministic Key for Bitcoin-family chains.
    Implements BIP32 derivation and extended key serialization.
    """

    def __init__(
        self,
        chain_code: bytes,
        private_key: PrivateKey | None = None,
        public_key: PublicKey | None = None,
        depth: int = 0,
        parent_fingerprint: bytes = b"\x00\x00\x00\x00",
        child_number: int = 0,
    ):
        if private_key is None and public_key is None:
            raise HDKeyError("HDKey requires a private or public key")
        self._private_key = private_key
        self._public_key = public_key if public_key is not None else private_key.public_key  # type: ignore[union-attr]
        self.chain_code = chain_code
        self.depth = depth
        self.parent_fingerprint = parent_fingerprint
        self.child_number = child_number

    @property
    def private_key(self) -> PrivateKey | None:
        """Return the coincurve PrivateKey instance, None for public-only keys."""
        return self._private_key

    @property
    def public_key(self) -> PublicKey:
        """Return the coincurve PublicKey instance."""
        return self._public_key

    @property
    def is_private(self) -> bool:
        return self._private_key is not None

    @property
    def fingerprint(self) -> bytes:
        return hash160(self.get_public_key_bytes())[:4]

    @classmethod
    def from_seed(cls, seed: bytes) -> HDKey:
        """Create master HD key from seed"""
        hmac_result = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        key_bytes = hmac_result[:32]
        chain_code = hmac_result[32:]

        return cls(chain_code, private_key=PrivateKey(key_bytes), depth=0)

    @classmethod
    def from_extended_key(cls, extended_key: str) -> HDKey:
        """Parse an xprv/xpub (or tprv/tpub) string."""
        try:
            data = base58.b58decode_check(extended_key)
        except ValueError as e:
            raise HDKeyError(f"Invalid extended key checksum: {e}") from e

        if len(data) != EXTENDED_KEY_LENGTH:
            raise HDKeyError(f"Invalid extended key length: {len(data)}")

        version = int.from_bytes(data[0:4], "big")
        depth = data[4]
        parent_fingerprint = data[5:9]
        child_number = int.from_bytes(data[9:13], "big")
        chain_code = data[13:45]
        key_data = data[45:78]

        private_versions = (MAINNET_VERSIONS[0], TESTNET_VERSIONS[0])
        public_versions = (MAINNET_VERSIONS[1], TESTNET_VERSIONS[1])

        try:
            if version in private_versions:
                if key_data[0] != 0:
                    raise HDKeyError("Invalid private key prefix")
                return cls(
                    chain_code,
                    private_key=PrivateKey(key_data[1:]),
                    depth=depth,
                    parent_fingerprint=parent_fingerprint,
                    child_number=child_number,
                )
            if version in public_versions:
                return cls(
                    chain_code,
                    public_key=PublicKey(key_data),
                    depth=depth,
                    parent_fingerprint=parent_fingerprint,
                    child_number=child_number,
                )
        except (ValueError, TypeError) as e:
            raise HDKeyError(f"Invalid extended key material: {e}") from e

        raise HDKeyError(f"Unknown extended key version: {version:#010x}")

    def to_extended_key(self, network: str = "mainnet", private: bool = True) -> str:
        """Serialize as xprv/xpub (mainnet) or tprv/tpub (other networks)."""
        versions = MAINNET_VERSIONS if network == "mainnet" else TESTNET_VERSIONS
        if private:
            if self._private_key is None:
                raise HDKeyError("Cannot serialize private key of a public-only HDKey")
            version = versions[0]
            key_data = b"\x00" + self._private_key.secret
        else:
            version = versions[1]
            key_data = self.get_public_key_bytes()

        data = (
            version.to_bytes(4, "big")
            + bytes([self.depth])
            + self.parent_fingerprint
            + self.child_number.to_bytes(4, "big")
            + self.chain_code
            + key_data
        )
        return base58.b58encode_check(data).decode("ascii")

    def neuter(self) -> HDKey:
        """Return the public-only version of this key."""
        return HDKey(
            self.chain_code,
            public_key=self._public_key,
            depth=self.depth,
            parent_fingerprint=self.parent_fingerprint,
            child_number=self.child_number,
        )

    def derive(self, path: str) -> HDKey:
        """
        Derive child key from path notation (e.g., "m/84'/0'/0'/0/0")
        ' indicates hardened derivation
        """
        key = self
        for index in parse_path(path):
            key = key.derive_child(index)
        return key

    def derive_child(self, index: int) -> HDKey:
        """Derive a child key at the given index"""
        hardened = index >= HARDENED_OFFSET

        if hardened:
            if self._private_key is None:
                raise HDKeyError("Cannot derive hardened child from a public-only key")
            data = b"\x00" + self._private_key.secret + index.to_bytes(4, "big")
        else:
            data = self.get_public_key_bytes() + index.to_bytes(4, "big")

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        key_offset = hmac_result[:32]
        child_chain = hmac_result[32:]

        offset_int = int.from_bytes(key_offset, "big")
        if offset_int >= SECP256K1_N:
            raise HDKeyError("Invalid child key")

        if self._private_key is not None:
            parent_key_int = int.from_bytes(self._private_key.secret, "big")
            child_key_int = (parent_key_int + offset_int) % SECP256K1_N

            if child_key_int == 0:
                raise HDKeyError("Invalid child key")

            return HDKey(
                child_chain,
                private_key=PrivateKey(child_key_int.to_bytes(32, "big")),
                depth=self.depth + 1,
                parent_fingerprint=self.fingerprint,
                child_number=index,
            )

        # Public parent -> public child: point(parent) + offset*G
        child_public = self._public_key.add(key_offset)
        return HDKey(
            child_chain,
            public_key=child_public,
            depth=self.depth + 1,
            parent_fingerprint=self.fingerprint,
            child_number=index,
        )

    def get_private_key_bytes(self) -> bytes:
        """Get private key as 32 bytes"""
        if self._private_key is None:
            raise HDKeyError("Public-only HDKey has no private key")
        return self._private_key.secret

    def get_public_key_bytes(self, compressed: bool = True) -> bytes:
        """Get public key bytes"""
        return self._public_key.format(compressed=compressed)


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """
    Convert BIP39 mnemonic to seed.
    Does not validate the mnemonic checksum.
    """
    from hashlib import pbkdf2_hmac

    mnemonic_bytes = mnemonic.encode("utf-8")
    salt = ("mnemonic" + passphrase).encode("utf-8")

    seed = pbkdf2_hmac("sha512", mnemonic_bytes, salt, 2048, dklen=64)
    return seed
