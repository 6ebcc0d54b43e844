"""
Error taxonomy surfaced by every payments operation.

Each error carries the context needed to diagnose it without a retry
(address, amount, fee, txid, ...) in ``context``.
"""

from __future__ import annotations

from typing import Any


class PaymentsError(Exception):
    """Base class for all payments errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class InvalidConfig(PaymentsError):
    """Malformed keyring or configuration at construction."""


class InvalidAddress(PaymentsError):
    pass


class InvalidPayport(PaymentsError):
    pass


class InsufficientFunds(PaymentsError):
    """Amount plus fee exceeds the available balance, or a sweep yields nothing."""


class UnsupportedFeeRateType(PaymentsError):
    pass


class SigningKeyUnavailable(PaymentsError):
    """The from index cannot be resolved to a private key (eg xpub-only keyring)."""


class InvalidState(PaymentsError):
    """Operation attempted on a transaction in the wrong lifecycle state."""


class TransactionNotFound(PaymentsError):
    pass


class BroadcastFailure(PaymentsError):
    pass
