"""
paycore - Core library for the payments components

Provides shared models, constants, errors and denomination conversion.
"""

__version__ = "0.4.0"

from paycore.errors import (
    BroadcastFailure,
    InsufficientFunds,
    InvalidAddress,
    InvalidConfig,
    InvalidPayport,
    InvalidState,
    PaymentsError,
    SigningKeyUnavailable,
    TransactionNotFound,
    UnsupportedFeeRateType,
)
from paycore.models import (
    END_TRANSACTION_STATES,
    AddressType,
    BalanceResult,
    BroadcastResult,
    CreateTransactionOptions,
    FeeLevel,
    FeeOption,
    FeeOptionCustom,
    FeeOptionLevel,
    FeeRateType,
    FromTo,
    NetworkType,
    Payport,
    ResolvedFeeOption,
    SignedTransaction,
    TransactionInfo,
    TransactionOutput,
    TransactionStatus,
    UnsignedTransaction,
    UtxoInfo,
    WeightedChangeOutput,
)
from paycore.units import BTC, DASH, ETH, LTC, XRP, Denomination

__all__ = [
    "AddressType",
    "BTC",
    "BalanceResult",
    "BroadcastFailure",
    "BroadcastResult",
    "CreateTransactionOptions",
    "DASH",
    "Denomination",
    "END_TRANSACTION_STATES",
    "ETH",
    "FeeLevel",
    "FeeOption",
    "FeeOptionCustom",
    "FeeOptionLevel",
    "FeeRateType",
    "FromTo",
    "InsufficientFunds",
    "InvalidAddress",
    "InvalidConfig",
    "InvalidPayport",
    "InvalidState",
    "LTC",
    "NetworkType",
    "PaymentsError",
    "Payport",
    "ResolvedFeeOption",
    "SignedTransaction",
    "SigningKeyUnavailable",
    "TransactionInfo",
    "TransactionNotFound",
    "TransactionOutput",
    "TransactionStatus",
    "UnsignedTransaction",
    "UnsupportedFeeRateType",
    "UtxoInfo",
    "WeightedChangeOutput",
    "XRP",
]
