"""
Tests for UTXO selection.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from paycore.errors import InsufficientFunds
from paycore.models import AddressType, UtxoInfo
from paycore.units import BTC
from payengine.selection import (
    SWEEP,
    ChangeTarget,
    SelectionFee,
    SelectionModel,
    UtxoSelection,
    filter_utxos,
    order_utxos,
    select_utxos,
    utxo_pool_shortfall,
    vbytes,
)

LEGACY = SelectionModel(AddressType.P2PKH)
SEGWIT = SelectionModel(AddressType.P2WPKH)
RATE_21 = SelectionFee(rate=Decimal(21))


def make_utxo(value: int, index: int = 0, confirmations: int = 6, **kwargs) -> UtxoInfo:
    return UtxoInfo(
        txid=f"{index:064x}",
        vout=kwargs.pop("vout", 0),
        value=BTC.to_main(value),
        satoshis=value,
        confirmations=confirmations,
        **kwargs,
    )


def assert_balanced(selection: UtxoSelection) -> None:
    assert selection.input_total == selection.amount + selection.fee + selection.change_total


class TestWeights:
    def test_vbytes_round_up(self) -> None:
        assert vbytes(904) == 226
        assert vbytes(686) == 172

    def test_legacy_one_in_two_out(self) -> None:
        assert LEGACY.tx_weight(1, [AddressType.P2PKH, AddressType.P2PKH]) == 904

    def test_segwit_adds_marker_weight(self) -> None:
        assert SEGWIT.tx_weight(1, [AddressType.P2WPKH]) == 40 + 272 + 124 + 2

    def test_cannot_spend_p2wsh(self) -> None:
        with pytest.raises(ValueError):
            SelectionModel(AddressType.P2WSH)

    def test_fixed_fee_ignores_weight(self) -> None:
        assert SelectionFee(fixed=10_000).fee_for(10**6) == 10_000

    def test_exactly_one_fee_kind(self) -> None:
        with pytest.raises(ValueError):
            SelectionFee()
        with pytest.raises(ValueError):
            SelectionFee(rate=Decimal(1), fixed=1)


class TestFilterAndOrder:
    def test_filter_dust_and_confirmations(self) -> None:
        utxos = [
            make_utxo(500, 1),
            make_utxo(10_000, 2, confirmations=0),
            make_utxo(10_000, 3, confirmations=1),
        ]
        result = filter_utxos(utxos, dust_threshold=546, min_confirmations=1)
        assert [u.txid for u in result] == [f"{3:064x}"]

    def test_filter_immature_coinbase(self) -> None:
        utxos = [
            make_utxo(10_000, 1, confirmations=99, coinbase=True),
            make_utxo(10_000, 2, confirmations=100, coinbase=True),
        ]
        assert [u.txid for u in filter_utxos(utxos)] == [f"{2:064x}"]

    def test_order_is_deterministic(self) -> None:
        utxos = [
            make_utxo(100, 3),
            make_utxo(200, 1, confirmations=1),
            make_utxo(200, 2, confirmations=5),
            make_utxo(100, 1, vout=1),
        ]
        ordered = order_utxos(utxos)
        assert ordered == order_utxos(reversed(utxos))
        assert [(u.satoshis, u.confirmations) for u in ordered[:2]] == [(200, 5), (200, 1)]
        assert ordered[2].txid == f"{1:064x}"

    def test_pool_shortfall(self) -> None:
        utxos = [make_utxo(1, i) for i in range(2)]
        assert utxo_pool_shortfall(utxos, 5) == 3
        assert utxo_pool_shortfall(utxos, 1) == 0


class TestSelectUtxos:
    def test_single_utxo_with_change(self) -> None:
        selection = select_utxos(
            [make_utxo(3_000_000)],
            1_000_000,
            RATE_21,
            LEGACY,
            AddressType.P2PKH,
            change_targets=[ChangeTarget("change", AddressType.P2PKH)],
            dust_threshold=546,
        )

        assert selection.fee == 4746
        assert BTC.to_main(selection.fee) == "0.00004746"
        assert selection.weight == 904
        assert [c.value for c in selection.change_outputs] == [3_000_000 - 1_000_000 - 4746]
        assert_balanced(selection)

    def test_largest_first(self) -> None:
        utxos = [make_utxo(100_000, 1), make_utxo(2_000_000, 2), make_utxo(500_000, 3)]

        selection = select_utxos(utxos, 1_000_000, RATE_21, LEGACY, AddressType.P2PKH)

        assert [u.satoshis for u in selection.inputs] == [2_000_000]

    def test_adds_inputs_until_covered(self) -> None:
        utxos = [make_utxo(600_000, 1), make_utxo(500_000, 2), make_utxo(400_000, 3)]

        selection = select_utxos(
            utxos,
            1_000_000,
            RATE_21,
            LEGACY,
            AddressType.P2PKH,
            change_targets=[ChangeTarget("change", AddressType.P2PKH)],
        )

        assert [u.satoshis for u in selection.inputs] == [600_000, 500_000]
        assert selection.fee == vbytes(LEGACY.tx_weight(2, [AddressType.P2PKH] * 2)) * 21
        assert_balanced(selection)

    def test_use_all(self) -> None:
        utxos = [make_utxo(2_000_000, 1), make_utxo(500_000, 2)]

        selection = select_utxos(
            utxos,
            1_000_000,
            RATE_21,
            LEGACY,
            AddressType.P2PKH,
            change_targets=[ChangeTarget("change", AddressType.P2PKH)],
            use_all=True,
        )

        assert len(selection.inputs) == 2
        assert_balanced(selection)

    def test_small_leftover_folded_into_fee(self) -> None:
        selection = select_utxos(
            [make_utxo(3_000_000)],
            2_995_000,
            RATE_21,
            LEGACY,
            AddressType.P2PKH,
            change_targets=[ChangeTarget("change", AddressType.P2PKH)],
            dust_threshold=546,
        )

        assert selection.change_outputs == []
        assert selection.fee == 5000
        assert selection.weight == 768
        assert_balanced(selection)

    def test_min_change_respected(self) -> None:
        selection = select_utxos(
            [make_utxo(3_000_000)],
            2_900_000,
            RATE_21,
            LEGACY,
            AddressType.P2PKH,
            change_targets=[ChangeTarget("change", AddressType.P2PKH)],
            min_change=100_000,
        )

        assert selection.change_outputs == []
        assert selection.fee == 100_000

    def test_insufficient_funds(self) -> None:
        with pytest.raises(InsufficientFunds) as exc_info:
            select_utxos([make_utxo(3_000_000)], 2_999_000, RATE_21, LEGACY, AddressType.P2PKH)

        assert exc_info.value.context["balance"] == 3_000_000
        assert exc_info.value.context["fee"] == 4032

    def test_no_utxos(self) -> None:
        with pytest.raises(InsufficientFunds):
            select_utxos([], 1, RATE_21, LEGACY, AddressType.P2PKH)

    def test_target_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            select_utxos([make_utxo(1000)], 0, RATE_21, LEGACY, AddressType.P2PKH)

    def test_target_below_dust_rejected(self) -> None:
        with pytest.raises(ValueError):
            select_utxos(
                [make_utxo(3_000_000)], 545, RATE_21, LEGACY, AddressType.P2PKH, dust_threshold=546
            )

    def test_utxo_without_satoshis(self) -> None:
        """Base units are derived from the main denomination value."""
        utxo = UtxoInfo(txid="aa" * 32, vout=0, value="0.03", confirmations=6)

        assert filter_utxos([utxo], dust_threshold=546) == [utxo]
        assert order_utxos([utxo]) == [utxo]
        selection = select_utxos(
            [utxo],
            1_000_000,
            RATE_21,
            LEGACY,
            AddressType.P2PKH,
            change_targets=[ChangeTarget("change", AddressType.P2PKH)],
        )

        assert selection.input_total == 3_000_000
        assert selection.fee == 4746
        assert selection.change_total == 1_995_254

    def test_fixed_fee_used_exactly(self) -> None:
        selection = select_utxos(
            [make_utxo(3_000_000)],
            1_000_000,
            SelectionFee(fixed=10_000),
            LEGACY,
            AddressType.P2PKH,
            change_targets=[ChangeTarget("change", AddressType.P2PKH)],
        )

        assert selection.fee == 10_000
        assert selection.change_total == 1_990_000

    def test_weighted_change(self) -> None:
        selection = select_utxos(
            [make_utxo(3_000_000)],
            1_000_000,
            SelectionFee(rate=Decimal(10)),
            SEGWIT,
            AddressType.P2WPKH,
            change_targets=[
                ChangeTarget("a", AddressType.P2WPKH, weight=1),
                ChangeTarget("b", AddressType.P2WPKH, weight=2),
            ],
        )

        assert selection.fee == 1720
        # 1,998,280 split 1:2, remainder to the heavier target
        assert [(c.address, c.value) for c in selection.change_outputs] == [
            ("a", 666_093),
            ("b", 1_332_187),
        ]
        assert_balanced(selection)

    def test_lightest_change_target_dropped(self) -> None:
        selection = select_utxos(
            [make_utxo(3_000_000)],
            2_990_000,
            SelectionFee(rate=Decimal(1)),
            SEGWIT,
            AddressType.P2WPKH,
            change_targets=[
                ChangeTarget("a", AddressType.P2WPKH, weight=1),
                ChangeTarget("b", AddressType.P2WPKH, weight=9),
            ],
            min_change=5000,
        )

        assert [c.address for c in selection.change_outputs] == ["b"]
        assert_balanced(selection)

    def test_pool_split(self) -> None:
        targets = [ChangeTarget("change", AddressType.P2WPKH) for _ in range(3)]

        selection = select_utxos(
            [make_utxo(3_000_000)],
            1_000_000,
            SelectionFee(rate=Decimal(1)),
            SEGWIT,
            AddressType.P2WPKH,
            change_targets=targets,
        )

        values = [c.value for c in selection.change_outputs]
        assert len(values) == 3
        assert max(values) - min(values) <= 2
        assert_balanced(selection)


class TestSweep:
    def test_sweep_spends_everything(self) -> None:
        utxos = [make_utxo(1_000_000, 1), make_utxo(500_000, 2)]

        selection = select_utxos(utxos, SWEEP, RATE_21, LEGACY, AddressType.P2PKH)

        assert selection.fee == 7140
        assert selection.amount == 1_492_860
        assert selection.amount + selection.fee == 1_500_000
        assert selection.change_outputs == []

    def test_sweep_below_fee(self) -> None:
        with pytest.raises(InsufficientFunds):
            select_utxos([make_utxo(4000)], SWEEP, RATE_21, LEGACY, AddressType.P2PKH)

    def test_sweep_leaving_dust(self) -> None:
        with pytest.raises(InsufficientFunds):
            select_utxos(
                [make_utxo(4500)], SWEEP, RATE_21, LEGACY, AddressType.P2PKH, dust_threshold=546
            )

    def test_sweep_nothing(self) -> None:
        with pytest.raises(InsufficientFunds):
            select_utxos([], SWEEP, RATE_21, LEGACY, AddressType.P2PKH)
