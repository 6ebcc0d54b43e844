"""
Tests for the HD keyring.
"""

from __future__ import annotations

import pytest

from paycore.errors import InvalidConfig, SigningKeyUnavailable
from paycore.models import AddressType, NetworkType
from paywallet.wallet.address import (
    get_network_params,
    pubkey_to_address,
    pubkey_to_ethereum_address,
)
from paywallet.wallet.bip32 import HDKey
from paywallet.wallet.keyring import HdKeyring, default_derivation_path

BITCOIN = get_network_params("bitcoin", NetworkType.MAINNET)
BITCOIN_TESTNET = get_network_params("bitcoin", NetworkType.TESTNET)


def p2wpkh(public_key) -> str:
    return pubkey_to_address(public_key.format(), AddressType.P2WPKH, BITCOIN)


class TestDefaultDerivationPath:
    def test_purposes(self) -> None:
        assert default_derivation_path(AddressType.P2PKH, 0) == "m/44'/0'/0'"
        assert default_derivation_path(AddressType.P2SH_P2WPKH, 1) == "m/49'/1'/0'"
        assert default_derivation_path(AddressType.P2WPKH, 2) == "m/84'/2'/0'"

    def test_no_default_for_p2wsh(self) -> None:
        with pytest.raises(InvalidConfig):
            default_derivation_path(AddressType.P2WSH, 0)


class TestHdKeyring:
    """Tests for index to address/key resolution."""

    def test_bip84_vectors(self, sample_mnemonic: str) -> None:
        keyring = HdKeyring.from_mnemonic(sample_mnemonic, "m/84'/0'/0'", p2wpkh)
        assert keyring.get_address(0) == "bc1qcr8te4kr609gcawutmrza0j4xv80jy8z306fyu"
        assert keyring.get_address(1) == "bc1qnjg0jd8228aq7egyzacy8cys3knf9xvrerkf9g"

    def test_bip44_vector(self, sample_mnemonic: str) -> None:
        keyring = HdKeyring.from_mnemonic(
            sample_mnemonic,
            "m/44'/0'/0'",
            lambda pk: pubkey_to_address(pk.format(), AddressType.P2PKH, BITCOIN),
        )
        assert keyring.get_address(0) == "1LqBGSKuX5yYUonjxT5qGfpUsXKYYWeabA"

    def test_bip49_testnet_vector(self, sample_mnemonic: str) -> None:
        keyring = HdKeyring.from_mnemonic(
            sample_mnemonic,
            "m/49'/1'/0'",
            lambda pk: pubkey_to_address(pk.format(), AddressType.P2SH_P2WPKH, BITCOIN_TESTNET),
            network="testnet",
        )
        assert keyring.get_address(0) == "2Mww8dCYPUpKHofjgcXcBCEGmniw9CoaiD2"

    def test_ethereum_encoder(self, sample_mnemonic: str) -> None:
        keyring = HdKeyring.from_mnemonic(sample_mnemonic, "m/44'/60'/0'", pubkey_to_ethereum_address)
        assert keyring.get_address(0) == "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"

    def test_account_xprv_used_as_is(self, master_key: HDKey) -> None:
        account_xprv = master_key.derive("m/84'/0'/0'").to_extended_key()
        from_master = HdKeyring(master_key, "m/84'/0'/0'", p2wpkh)
        from_account = HdKeyring(account_xprv, "m/84'/0'/0'", p2wpkh)

        assert from_account.get_address(3) == from_master.get_address(3)
        assert from_account.xpub == from_master.xpub

    def test_xpub_keyring_derives_but_cannot_sign(self, master_key: HDKey) -> None:
        account_xpub = master_key.derive("m/84'/0'/0'").to_extended_key(private=False)
        keyring = HdKeyring(account_xpub, "m/84'/0'/0'", p2wpkh)

        assert not keyring.can_sign
        assert keyring.get_address(0) == "bc1qcr8te4kr609gcawutmrza0j4xv80jy8z306fyu"
        with pytest.raises(SigningKeyUnavailable) as exc_info:
            keyring.get_private_key(0)
        assert exc_info.value.context == {"index": 0}

    def test_private_key_matches_address(self, master_key: HDKey) -> None:
        keyring = HdKeyring(master_key, "m/84'/0'/0'", p2wpkh)
        key = keyring.get_private_key(7)
        assert p2wpkh(key.public_key) == keyring.get_address(7)

    def test_invalid_key_string(self) -> None:
        with pytest.raises(InvalidConfig, match="xpub"):
            HdKeyring("xpubgarbage", "m/84'/0'/0'", p2wpkh)

    def test_depth_mismatch(self, master_key: HDKey) -> None:
        depth_two = master_key.derive("m/84'/0'").to_extended_key()
        with pytest.raises(InvalidConfig, match="depth"):
            HdKeyring(depth_two, "m/84'/0'/0'", p2wpkh)

    def test_master_xpub_cannot_derive_hardened_path(self, master_key: HDKey) -> None:
        master_xpub = master_key.to_extended_key(private=False)
        with pytest.raises(InvalidConfig):
            HdKeyring(master_xpub, "m/84'/0'/0'", p2wpkh)

    def test_negative_index(self, master_key: HDKey) -> None:
        keyring = HdKeyring(master_key, "m/84'/0'/0'", p2wpkh)
        with pytest.raises(ValueError):
            keyring.get_address(-1)
