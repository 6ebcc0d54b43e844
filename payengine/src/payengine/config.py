"""
Configuration for the payments engine.

Per-chain options are pydantic models validated once at construction.
Process settings for the CLI come from the environment or a .env file.
"""

from __future__ import annotations

from typing import Literal

from eth_utils import to_checksum_address
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from paycore.constants import (
    DEFAULT_MIN_TX_FEE_RATE,
    DEFAULT_SAT_PER_BYTE_LEVELS,
    ETHEREUM_FEE_LEVEL_MULTIPLIERS,
    ETHEREUM_MIN_CONFIRMATIONS,
    ETHEREUM_TRANSFER_COST,
    FEE_LEVEL_BLOCK_TARGETS,
    RIPPLE_FEE_LEVEL_CUSHIONS,
    RIPPLE_MAX_LEDGER_VERSION_OFFSET,
    RIPPLE_MIN_BALANCE,
    STANDARD_DUST_LIMIT,
    TOKEN_TRANSFER_COST,
)
from paycore.models import AddressType, FeeLevel, NetworkType, validate_decimal_string
from paywallet.wallet.address import get_network_params, is_valid_ethereum_address
from paywallet.wallet.keyring import (
    ETHEREUM_COIN_TYPE,
    RIPPLE_COIN_TYPE,
    default_derivation_path,
)

UtxoCoin = Literal["bitcoin", "litecoin", "dash"]

LeveledFeeLevel = Literal[FeeLevel.LOW, FeeLevel.MEDIUM, FeeLevel.HIGH]

# EIP-155 chain ids per network
ETHEREUM_CHAIN_IDS: dict[NetworkType, int] = {
    NetworkType.MAINNET: 1,
    NetworkType.TESTNET: 11155111,  # sepolia
    NetworkType.REGTEST: 1337,
}


class UtxoPaymentsConfig(BaseModel):
    """Configuration for Bitcoin-family payments."""

    network: NetworkType = NetworkType.MAINNET
    coin: UtxoCoin = "bitcoin"
    # xprv/xpub, either master (depth 0) or already at the derivation path
    hd_key: str
    # Defaults to p2wpkh, or p2pkh where the coin has no segwit
    address_type: AddressType | None = None
    derivation_path: str | None = None

    # Fee settings
    default_fee_level: LeveledFeeLevel = FeeLevel.LOW
    min_tx_fee_rate: int = Field(
        default=DEFAULT_MIN_TX_FEE_RATE, ge=0, description="Floor for leveled sat/vbyte rates"
    )
    fee_level_block_targets: dict[FeeLevel, int] = Field(
        default_factory=lambda: dict(FEE_LEVEL_BLOCK_TARGETS)
    )
    fallback_fee_rates: dict[FeeLevel, int] = Field(
        default_factory=lambda: dict(DEFAULT_SAT_PER_BYTE_LEVELS),
        description="sat/vbyte used when the node cannot estimate",
    )

    # Selection settings
    dust_threshold: int = Field(default=STANDARD_DUST_LIMIT, ge=0)
    min_change: str = Field(default="0", description="Main units, 0 means dust threshold")
    target_utxo_pool_size: int = Field(default=1, ge=1)
    spend_min_confirmations: int = Field(default=1, ge=0)
    use_unconfirmed_utxos: bool = False

    # Status settings
    min_confirmations: int = Field(default=0, ge=0)

    @field_validator("min_change")
    @classmethod
    def validate_min_change(cls, v: str) -> str:
        return validate_decimal_string(v)

    @model_validator(mode="after")
    def set_address_defaults(self) -> UtxoPaymentsConfig:
        params = get_network_params(self.coin, self.network)
        if self.address_type is None:
            default_type = AddressType.P2WPKH if params.supports_segwit else AddressType.P2PKH
            object.__setattr__(self, "address_type", default_type)
        if self.address_type == AddressType.P2WSH:
            raise ValueError("p2wsh is not supported for single key payments")
        if self.address_type != AddressType.P2PKH and not params.supports_segwit:
            raise ValueError(f"{self.coin} does not support {self.address_type.value}")
        if self.derivation_path is None:
            object.__setattr__(
                self,
                "derivation_path",
                default_derivation_path(self.address_type, params.bip44_coin_type),
            )
        return self


class GasCosts(BaseModel):
    """Gas limits per operation."""

    transfer: int = Field(default=ETHEREUM_TRANSFER_COST, gt=0)
    token_transfer: int = Field(default=TOKEN_TRANSFER_COST, gt=0)


class EthereumPaymentsConfig(BaseModel):
    """Configuration for Ethereum payments."""

    network: NetworkType = NetworkType.MAINNET
    chain_id: int | None = None
    hd_key: str
    derivation_path: str = f"m/44'/{ETHEREUM_COIN_TYPE}'/0'"

    default_fee_level: LeveledFeeLevel = FeeLevel.MEDIUM
    fee_level_multipliers: dict[FeeLevel, str] = Field(
        default_factory=lambda: dict(ETHEREUM_FEE_LEVEL_MULTIPLIERS)
    )
    gas_costs: GasCosts = Field(default_factory=GasCosts)
    min_confirmations: int = Field(default=ETHEREUM_MIN_CONFIRMATIONS, ge=0)

    @model_validator(mode="after")
    def set_chain_id_default(self) -> EthereumPaymentsConfig:
        if self.chain_id is None:
            object.__setattr__(self, "chain_id", ETHEREUM_CHAIN_IDS[self.network])
        return self


class Erc20PaymentsConfig(EthereumPaymentsConfig):
    """Configuration for payments of one ERC-20 token."""

    token_address: str
    token_symbol: str = "TOKEN"
    token_decimals: int = Field(default=18, ge=0, le=77)

    @field_validator("token_address")
    @classmethod
    def validate_token_address(cls, v: str) -> str:
        if not is_valid_ethereum_address(v):
            raise ValueError(f"Invalid token contract address: {v}")
        return to_checksum_address(v)


class RipplePaymentsConfig(BaseModel):
    """Configuration for Ripple payments."""

    network: NetworkType = NetworkType.MAINNET
    hd_key: str
    derivation_path: str = f"m/44'/{RIPPLE_COIN_TYPE}'/0'"

    default_fee_level: LeveledFeeLevel = FeeLevel.MEDIUM
    fee_level_cushions: dict[FeeLevel, str] = Field(
        default_factory=lambda: dict(RIPPLE_FEE_LEVEL_CUSHIONS)
    )
    # Account reserve in XRP
    min_balance: str = RIPPLE_MIN_BALANCE
    max_ledger_version_offset: int = Field(default=RIPPLE_MAX_LEDGER_VERSION_OFFSET, ge=1)
    min_confirmations: int = Field(default=0, ge=0)

    @field_validator("min_balance")
    @classmethod
    def validate_min_balance(cls, v: str) -> str:
        return validate_decimal_string(v)


class PaymentsSettings(BaseSettings):
    """Process settings for the payments CLI."""

    model_config = SettingsConfigDict(
        env_prefix="payments_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    network: NetworkType = NetworkType.MAINNET
    coin: UtxoCoin = "bitcoin"

    rpc_url: str = "http://127.0.0.1:8332"
    rpc_user: str = "rpcuser"
    rpc_password: str = "rpcpassword"

    hd_key: str = ""
    address_type: AddressType | None = None

    log_level: str = "INFO"
    poll_interval: float = Field(default=10.0, gt=0)

    def utxo_config(self, **overrides: object) -> UtxoPaymentsConfig:
        values: dict[str, object] = {
            "network": self.network,
            "coin": self.coin,
            "hd_key": self.hd_key,
            "address_type": self.address_type,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return UtxoPaymentsConfig.model_validate(values)


def get_settings() -> PaymentsSettings:
    return PaymentsSettings()
