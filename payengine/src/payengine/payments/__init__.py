"""
Per-chain payments implementations sharing one contract.
"""

from payengine.payments.base import AccountSigner, BasePayments, SignedPayload
from payengine.payments.erc20 import Erc20Payments
from payengine.payments.ethereum import EthereumPayments, EthereumSigner
from payengine.payments.ripple import RipplePayments
from payengine.payments.utxo import UtxoPayments

__all__ = [
    "AccountSigner",
    "BasePayments",
    "Erc20Payments",
    "EthereumPayments",
    "EthereumSigner",
    "RipplePayments",
    "SignedPayload",
    "UtxoPayments",
]
