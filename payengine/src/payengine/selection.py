"""
UTXO selection for Bitcoin-family chains.

The fee depends on the number of inputs and outputs, and the inputs needed
depend on the fee. Selection therefore adds candidates one at a time,
re-pricing the transaction after each addition, until the inputs cover
amount plus the fee of the transaction without change. The loop is bounded
by the number of candidates.

Candidates are ordered largest value first, then most confirmations, then
(txid, vout), so the same inputs always give the same selection.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from loguru import logger

from paycore.constants import (
    ADDRESS_INPUT_WEIGHTS,
    ADDRESS_OUTPUT_WEIGHTS,
    BASE_TX_WEIGHT,
    COINBASE_MATURITY,
    SEGWIT_ADDRESS_TYPES,
    SEGWIT_OVERHEAD_WEIGHT,
)
from paycore.errors import InsufficientFunds
from paycore.models import AddressType, FeeRateType, ResolvedFeeOption, UtxoInfo
from paycore.units import BTC, ceil_decimal


class Sweep(Enum):
    SWEEP = "sweep"


# Spend everything selected, amount = inputs - fee
SWEEP = Sweep.SWEEP


def vbytes(weight: int) -> int:
    return -(-weight // 4)


class SelectionModel:
    """Weight table for spending outputs of one address type."""

    def __init__(self, input_type: AddressType):
        if input_type not in ADDRESS_INPUT_WEIGHTS:
            raise ValueError(f"Cannot spend {input_type.value} inputs")
        self.input_type = input_type

    @property
    def input_weight(self) -> int:
        return ADDRESS_INPUT_WEIGHTS[self.input_type]

    def tx_weight(self, n_inputs: int, output_types: Iterable[AddressType]) -> int:
        weight = BASE_TX_WEIGHT + n_inputs * self.input_weight
        weight += sum(ADDRESS_OUTPUT_WEIGHTS[t] for t in output_types)
        if self.input_type in SEGWIT_ADDRESS_TYPES:
            weight += SEGWIT_OVERHEAD_WEIGHT
        return weight


@dataclass(frozen=True)
class SelectionFee:
    """Either a rate in base units per vbyte, or a fixed absolute fee."""

    rate: Decimal | None = None
    fixed: int | None = None

    def __post_init__(self) -> None:
        if (self.rate is None) == (self.fixed is None):
            raise ValueError("SelectionFee needs exactly one of rate or fixed")

    @classmethod
    def from_resolved(cls, resolved: ResolvedFeeOption) -> SelectionFee:
        if resolved.target_fee_rate_type == FeeRateType.BASE_PER_WEIGHT:
            return cls(rate=Decimal(resolved.target_fee_rate))
        return cls(fixed=resolved.fee_base)

    def fee_for(self, weight: int) -> int:
        if self.fixed is not None:
            return self.fixed
        return ceil_decimal(vbytes(weight) * self.rate)


@dataclass(frozen=True)
class ChangeTarget:
    """A destination for change. Change is split between targets by weight."""

    address: str
    address_type: AddressType
    weight: int = 1


@dataclass(frozen=True)
class ChangeOutput:
    address: str
    value: int


@dataclass
class UtxoSelection:
    inputs: list[UtxoInfo]
    amount: int
    fee: int
    weight: int
    change_outputs: list[ChangeOutput] = field(default_factory=list)

    @property
    def input_total(self) -> int:
        return sum(utxo_value(u) for u in self.inputs)

    @property
    def change_total(self) -> int:
        return sum(c.value for c in self.change_outputs)


def utxo_value(utxo: UtxoInfo) -> int:
    """Value in base units, from ``value`` when ``satoshis`` is missing."""
    if utxo.satoshis is not None:
        return utxo.satoshis
    # every Bitcoin-family coin has 8 decimal places
    return BTC.to_base(utxo.value)


def filter_utxos(
    utxos: Iterable[UtxoInfo],
    dust_threshold: int = 0,
    min_confirmations: int = 0,
) -> list[UtxoInfo]:
    """Drop dust, under-confirmed and immature coinbase outputs."""
    result = []
    for utxo in utxos:
        confirmations = utxo.confirmations or 0
        if utxo_value(utxo) < dust_threshold:
            logger.debug(f"Skipping dust utxo {utxo.outpoint}")
        elif confirmations < min_confirmations:
            logger.debug(f"Skipping utxo {utxo.outpoint} with {confirmations} confirmations")
        elif utxo.coinbase and confirmations < COINBASE_MATURITY:
            logger.debug(f"Skipping immature coinbase utxo {utxo.outpoint}")
        else:
            result.append(utxo)
    return result


def order_utxos(utxos: Iterable[UtxoInfo]) -> list[UtxoInfo]:
    return sorted(
        utxos, key=lambda u: (-utxo_value(u), -(u.confirmations or 0), u.txid, u.vout)
    )


def utxo_pool_shortfall(utxos: Sequence[UtxoInfo], target_pool_size: int) -> int:
    """Number of additional outputs needed to hold target_pool_size utxos."""
    return max(0, target_pool_size - len(utxos))


def _split_change(leftover: int, targets: Sequence[ChangeTarget]) -> list[ChangeOutput]:
    total_weight = sum(t.weight for t in targets)
    values = [leftover * t.weight // total_weight for t in targets]
    # remainder of the floor division goes to the heaviest target
    heaviest = max(range(len(targets)), key=lambda i: (targets[i].weight, -i))
    values[heaviest] += leftover - sum(values)
    return [ChangeOutput(t.address, v) for t, v in zip(targets, values)]


def _allocate_change(
    inputs: list[UtxoInfo],
    amount: int,
    fee: SelectionFee,
    model: SelectionModel,
    external_types: list[AddressType],
    change_targets: Sequence[ChangeTarget],
    min_change: int,
) -> UtxoSelection:
    total = sum(utxo_value(u) for u in inputs)
    targets = list(change_targets)

    while targets:
        weight = model.tx_weight(
            len(inputs), external_types + [t.address_type for t in targets]
        )
        tx_fee = fee.fee_for(weight)
        leftover = total - amount - tx_fee
        if leftover > 0:
            outputs = _split_change(leftover, targets)
            if all(o.value >= min_change for o in outputs):
                return UtxoSelection(inputs, amount, tx_fee, weight, outputs)
        # drop the lightest target, the last one among equals
        lightest = min(
            range(len(targets)), key=lambda i: (targets[i].weight, -i)
        )
        targets.pop(lightest)

    weight = model.tx_weight(len(inputs), external_types)
    # leftover too small for change is folded into the fee
    return UtxoSelection(inputs, amount, total - amount, weight)


def select_utxos(
    utxos: Sequence[UtxoInfo],
    target: int | Sweep,
    fee: SelectionFee,
    model: SelectionModel,
    external_type: AddressType,
    change_targets: Sequence[ChangeTarget] = (),
    min_change: int = 0,
    dust_threshold: int = 0,
    use_all: bool = False,
) -> UtxoSelection:
    """
    Choose inputs and change for a payment of ``target`` base units.

    Args:
        utxos: Spendable candidates, already filtered
        target: Amount to pay, or SWEEP to pay everything minus the fee
        fee: Rate or fixed fee
        model: Weight table of the inputs being spent
        external_type: Address type of the recipient
        change_targets: Where change goes, split by weight
        min_change: Smallest change output worth creating
        dust_threshold: Outputs below this are never created
        use_all: Spend every candidate instead of the fewest needed

    Raises:
        InsufficientFunds: if the candidates cannot cover amount plus fee
    """
    candidates = order_utxos(utxos)
    available = sum(utxo_value(u) for u in candidates)
    external_types = [external_type]

    if target is SWEEP:
        if not candidates:
            raise InsufficientFunds("No utxos to sweep", balance=0)
        weight = model.tx_weight(len(candidates), external_types)
        tx_fee = fee.fee_for(weight)
        amount = available - tx_fee
        if amount <= 0 or amount < dust_threshold:
            raise InsufficientFunds(
                f"Sweep of {available} would leave {amount} after a {tx_fee} fee",
                balance=available,
                fee=tx_fee,
            )
        logger.debug(f"Sweeping {len(candidates)} utxos: amount={amount}, fee={tx_fee}")
        return UtxoSelection(candidates, amount, tx_fee, weight)

    if target <= 0:
        raise ValueError(f"Amount must be positive, got {target}")
    if target < dust_threshold:
        raise ValueError(f"Amount {target} is below the dust threshold {dust_threshold}")

    selected: list[UtxoInfo] = []
    selected_total = 0
    fee_no_change = fee.fee_for(model.tx_weight(0, external_types))
    for utxo in candidates:
        if not use_all and selected and selected_total >= target + fee_no_change:
            break
        selected.append(utxo)
        selected_total += utxo_value(utxo)
        fee_no_change = fee.fee_for(model.tx_weight(len(selected), external_types))

    if not selected or selected_total < target + fee_no_change:
        raise InsufficientFunds(
            f"Insufficient funds: need {target} + {fee_no_change} fee, have {available}",
            amount=target,
            fee=fee_no_change,
            balance=available,
        )

    selection = _allocate_change(
        selected,
        target,
        fee,
        model,
        external_types,
        change_targets,
        max(min_change, dust_threshold, 1),
    )
    logger.debug(
        f"Selected {len(selection.inputs)}/{len(candidates)} utxos: amount={target}, "
        f"fee={selection.fee}, change={[c.value for c in selection.change_outputs]}"
    )
    return selection
