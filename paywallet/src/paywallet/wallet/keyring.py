"""
HD keyring: maps account indices to addresses and signing keys.

The configured key is either a master key (depth 0), from which the
account path is derived, or an account-level key already at the depth of
the derivation path. Addresses live at ``<account>/0/<index>``.
"""

from __future__ import annotations

from collections.abc import Callable

from coincurve import PrivateKey, PublicKey
from loguru import logger

from paycore.errors import InvalidConfig, SigningKeyUnavailable
from paycore.models import AddressType
from paywallet.wallet.bip32 import HDKey, HDKeyError, mnemonic_to_seed, parse_path

# BIP44/49/84 purpose per address type
ADDRESS_TYPE_PURPOSES: dict[AddressType, int] = {
    AddressType.P2PKH: 44,
    AddressType.P2SH_P2WPKH: 49,
    AddressType.P2WPKH: 84,
}

ETHEREUM_COIN_TYPE = 60
RIPPLE_COIN_TYPE = 144

# Index of the receive chain below the account key
RECEIVE_CHAIN = 0

AddressEncoder = Callable[[PublicKey], str]


def default_derivation_path(address_type: AddressType, coin_type: int, account: int = 0) -> str:
    try:
        purpose = ADDRESS_TYPE_PURPOSES[address_type]
    except KeyError as e:
        raise InvalidConfig(
            f"No default derivation path for {address_type.value}", address_type=address_type
        ) from e
    return f"m/{purpose}'/{coin_type}'/{account}'"


def parse_hd_key(hd_key: str) -> HDKey:
    """Parse an extended key, hiding the key material from the error."""
    try:
        return HDKey.from_extended_key(hd_key.strip())
    except HDKeyError as e:
        raise InvalidConfig(f"Invalid hd key with prefix {hd_key.strip()[:4]!r}: {e}") from e


class HdKeyring:
    """
    Derives addresses and keys for account indices.

    Derivation is a pure function of (key, path, index) so a keyring can be
    shared by concurrent operations on different indices.
    """

    def __init__(
        self,
        hd_key: str | HDKey,
        derivation_path: str,
        address_encoder: AddressEncoder,
        network: str = "mainnet",
    ):
        root = parse_hd_key(hd_key) if isinstance(hd_key, str) else hd_key
        try:
            path_depth = len(parse_path(derivation_path))
        except HDKeyError as e:
            raise InvalidConfig(f"Invalid derivation path {derivation_path!r}: {e}") from e

        if root.depth == 0 and path_depth > 0:
            try:
                account_key = root.derive(derivation_path)
            except HDKeyError as e:
                raise InvalidConfig(
                    f"Cannot derive {derivation_path} from the provided key: {e}"
                ) from e
        elif root.depth == path_depth:
            account_key = root
        else:
            raise InvalidConfig(
                f"hd key depth {root.depth} does not match derivation path {derivation_path}"
            )

        self.derivation_path = derivation_path
        self.network = network
        self._account_key = account_key
        self._receive_chain = account_key.derive_child(RECEIVE_CHAIN)
        self._encode_address = address_encoder
        self._address_cache: dict[int, str] = {}

        logger.debug(
            f"Keyring ready at {derivation_path} "
            f"({'private' if self.can_sign else 'public-only'})"
        )

    @classmethod
    def from_mnemonic(
        cls,
        mnemonic: str,
        derivation_path: str,
        address_encoder: AddressEncoder,
        network: str = "mainnet",
        passphrase: str = "",
    ) -> HdKeyring:
        root = HDKey.from_seed(mnemonic_to_seed(mnemonic, passphrase))
        return cls(root, derivation_path, address_encoder, network)

    @property
    def can_sign(self) -> bool:
        return self._account_key.is_private

    @property
    def xpub(self) -> str:
        return self._account_key.to_extended_key(self.network, private=False)

    def _child(self, index: int) -> HDKey:
        if index < 0:
            raise ValueError(f"Invalid account index: {index}")
        return self._receive_chain.derive_child(index)

    def get_public_key(self, index: int) -> PublicKey:
        return self._child(index).public_key

    def get_address(self, index: int) -> str:
        address = self._address_cache.get(index)
        if address is None:
            address = self._encode_address(self.get_public_key(index))
            self._address_cache[index] = address
        return address

    def get_private_key(self, index: int) -> PrivateKey:
        if not self.can_sign:
            raise SigningKeyUnavailable(
                f"Cannot sign for index {index} with a public-only keyring", index=index
            )
        key = self._child(index).private_key
        if key is None:
            raise SigningKeyUnavailable(f"No private key for index {index}", index=index)
        return key
