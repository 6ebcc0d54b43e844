"""
Core data models using Pydantic for validation and serialization.

Amounts crossing the public API are main-denomination decimal strings
(eg "0.125"); base-unit amounts are plain ints.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    REGTEST = "regtest"


class AddressType(str, Enum):
    P2PKH = "p2pkh"
    P2SH_P2WPKH = "p2sh-p2wpkh"
    P2WPKH = "p2wpkh"
    P2WSH = "p2wsh"


class FeeLevel(str, Enum):
    CUSTOM = "custom"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FeeRateType(str, Enum):
    MAIN = "main"  # ie bitcoins, ethers
    BASE = "base"  # ie satoshis, wei
    BASE_PER_WEIGHT = "base/weight"  # ie satoshis per vbyte, gas price (wei per gas)


class TransactionStatus(str, Enum):
    UNSIGNED = "unsigned"
    SIGNED = "signed"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


END_TRANSACTION_STATES = frozenset({TransactionStatus.CONFIRMED, TransactionStatus.FAILED})


def validate_decimal_string(v: str) -> str:
    try:
        parsed = Decimal(v)
    except InvalidOperation as e:
        raise ValueError(f"Invalid decimal string: {v!r}") from e
    if not parsed.is_finite():
        raise ValueError(f"Invalid decimal string: {v!r}")
    return v


class Payport(BaseModel):
    """A payment destination: address plus optional chain specific tag."""

    model_config = ConfigDict(frozen=True)

    address: str = Field(..., min_length=1)
    extra_id: str | None = None


class FromTo(BaseModel):
    """Resolved sender and recipient of a transaction."""

    model_config = ConfigDict(frozen=True)

    from_address: str
    from_index: int
    from_extra_id: str | None = None
    from_payport: Payport
    to_address: str
    to_index: int | None = None
    to_extra_id: str | None = None
    to_payport: Payport


class FeeOptionCustom(BaseModel):
    model_config = ConfigDict(frozen=True)

    fee_rate: str
    fee_rate_type: FeeRateType
    fee_level: Literal[FeeLevel.CUSTOM] = FeeLevel.CUSTOM

    @field_validator("fee_rate")
    @classmethod
    def validate_fee_rate(cls, v: str) -> str:
        validate_decimal_string(v)
        if Decimal(v) < 0:
            raise ValueError("fee_rate must not be negative")
        return v


class FeeOptionLevel(BaseModel):
    model_config = ConfigDict(frozen=True)

    # None means the chain's configured default level
    fee_level: Literal[FeeLevel.LOW, FeeLevel.MEDIUM, FeeLevel.HIGH] | None = None


FeeOption = FeeOptionCustom | FeeOptionLevel


class ResolvedFeeOption(BaseModel):
    """Concrete, chain denominated fee. fee_main == to_main(fee_base) always."""

    model_config = ConfigDict(frozen=True)

    target_fee_level: FeeLevel
    target_fee_rate: str
    target_fee_rate_type: FeeRateType
    fee_base: int = Field(..., ge=0)
    fee_main: str
    gas_price: int | None = None


class UtxoInfo(BaseModel):
    """A claim on a prior output. value is in main denomination."""

    model_config = ConfigDict(frozen=True)

    txid: str
    vout: int = Field(..., ge=0)
    value: str
    satoshis: int | None = None
    confirmations: int | None = None
    height: int | None = None
    lock_time: int | None = None
    coinbase: bool | None = None

    @field_validator("value")
    @classmethod
    def validate_value(cls, v: str) -> str:
        return validate_decimal_string(v)

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"

    @property
    def is_confirmed(self) -> bool:
        return bool(self.confirmations)


class WeightedChangeOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    weight: int = Field(..., gt=0)


class TransactionOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    value: str
    extra_id: str | None = None


class CreateTransactionOptions(BaseModel):
    """
    Options accepted by create_transaction / create_sweep_transaction.

    Either a fee level or a custom fee_rate + fee_rate_type may be given.
    """

    fee_level: FeeLevel | None = None
    fee_rate: str | None = None
    fee_rate_type: FeeRateType | None = None

    # Ripple/Ethereum sequence number or nonce, passed through unmodified
    sequence_number: int | None = Field(default=None, ge=0)
    # Spendable balance at the from payport (eg from a balance monitor)
    payport_balance: str | None = None
    # Available utxos, used as-is instead of querying the backend
    utxos: list[UtxoInfo] | None = None
    use_all_utxos: bool = False
    use_unconfirmed_utxos: bool | None = None
    # Split change across these addresses by weight instead of the sender address
    change_outputs: list[WeightedChangeOutput] | None = None

    @field_validator("payport_balance")
    @classmethod
    def validate_payport_balance(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return validate_decimal_string(v)

    @model_validator(mode="after")
    def validate_fee_fields(self) -> CreateTransactionOptions:
        if (self.fee_rate is None) != (self.fee_rate_type is None):
            raise ValueError("fee_rate and fee_rate_type must be provided together")
        if self.fee_rate is not None and self.fee_level not in (None, FeeLevel.CUSTOM):
            raise ValueError(f"fee_rate cannot be combined with fee_level {self.fee_level.value}")
        if self.fee_rate is None and self.fee_level == FeeLevel.CUSTOM:
            raise ValueError("custom fee_level requires fee_rate and fee_rate_type")
        return self

    def fee_option(self) -> FeeOption:
        if self.fee_rate is not None and self.fee_rate_type is not None:
            return FeeOptionCustom(fee_rate=self.fee_rate, fee_rate_type=self.fee_rate_type)
        return FeeOptionLevel(fee_level=self.fee_level)


class BalanceResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    confirmed_balance: str  # balance with at least 1 confirmation
    unconfirmed_balance: str  # balance pending confirmation
    spendable_balance: str
    sweepable: bool  # balance is high enough to be swept
    requires_activation: bool = False


class BaseTransaction(BaseModel):
    """Fields common to every lifecycle variant of a transaction."""

    model_config = ConfigDict(frozen=True)

    status: TransactionStatus
    id: str | None = None
    from_address: str | None
    to_address: str | None
    from_index: int | None
    to_index: int | None = None
    from_extra_id: str | None = None
    to_extra_id: str | None = None
    amount: str | None
    fee: str | None
    sequence_number: int | None = None
    input_utxos: list[UtxoInfo] | None = None
    external_outputs: list[TransactionOutput] | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class UnsignedTransaction(BaseTransaction):
    status: Literal[TransactionStatus.UNSIGNED] = TransactionStatus.UNSIGNED
    from_address: str
    to_address: str
    from_index: int
    amount: str
    fee: str
    target_fee_level: FeeLevel
    target_fee_rate: str | None = None
    target_fee_rate_type: FeeRateType | None = None


class SignedTransaction(UnsignedTransaction):
    status: Literal[TransactionStatus.SIGNED] = TransactionStatus.SIGNED  # type: ignore[assignment]
    id: str


class TransactionInfo(BaseTransaction):
    status: Literal[
        TransactionStatus.PENDING, TransactionStatus.CONFIRMED, TransactionStatus.FAILED
    ]
    id: str
    amount: str
    fee: str
    is_executed: bool  # false if the chain reports execution failure
    is_confirmed: bool
    confirmations: int = Field(..., ge=0)
    confirmation_id: str | None = None  # block or ledger hash
    confirmation_number: int | None = None  # block or ledger height
    confirmation_timestamp: datetime | None = None


class BroadcastResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    rebroadcast: bool = False
