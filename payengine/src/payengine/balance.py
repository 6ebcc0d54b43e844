"""
Balance aggregation for UTXO and account addresses.
"""

from __future__ import annotations

from collections.abc import Iterable

from paycore.constants import COINBASE_MATURITY
from paycore.models import BalanceResult, UtxoInfo
from paycore.units import Denomination
from payengine.selection import utxo_value


def is_spendable(utxo: UtxoInfo, min_confirmations: int) -> bool:
    confirmations = utxo.confirmations or 0
    if utxo.coinbase and confirmations < COINBASE_MATURITY:
        return False
    return confirmations >= min_confirmations


def utxo_balance(
    utxos: Iterable[UtxoInfo],
    denomination: Denomination,
    spend_min_confirmations: int = 1,
    sweep_fee: int = 0,
) -> BalanceResult:
    """
    Balance of an address from its unspent outputs.

    Args:
        utxos: Every unspent output of the address
        spend_min_confirmations: Confirmations required to count as spendable
        sweep_fee: Estimated fee of sweeping the spendable outputs, base units
    """
    confirmed = unconfirmed = spendable = 0
    for utxo in utxos:
        value = utxo_value(utxo)
        if utxo.is_confirmed:
            confirmed += value
        else:
            unconfirmed += value
        if is_spendable(utxo, spend_min_confirmations):
            spendable += value

    return BalanceResult(
        confirmed_balance=denomination.to_main(confirmed),
        unconfirmed_balance=denomination.to_main(unconfirmed),
        spendable_balance=denomination.to_main(spendable),
        sweepable=spendable > 0 and spendable - sweep_fee > 0,
    )


def account_balance(
    balance: int,
    denomination: Denomination,
    reserve: int = 0,
    sweep_fee: int = 0,
    unconfirmed: int = 0,
) -> BalanceResult:
    """
    Balance of an account-model address.

    The reserve (eg Ripple's account reserve) is locked in the account and
    never spendable. An account below its reserve does not exist on ledger
    yet and requires activation.
    """
    spendable = max(0, balance - reserve)
    return BalanceResult(
        confirmed_balance=denomination.to_main(balance),
        unconfirmed_balance=denomination.to_main(unconfirmed),
        spendable_balance=denomination.to_main(spendable),
        sweepable=spendable > 0 and spendable - sweep_fee > 0,
        requires_activation=reserve > 0 and balance < reserve,
    )
