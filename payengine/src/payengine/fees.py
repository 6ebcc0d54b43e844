"""
Fee resolution: turns a fee intent into a concrete, chain denominated fee.

Two models cover every supported chain:
- WeightFeeModel: fee scales with a per-operation unit cost (vbytes, gas)
- FlatFeeModel: one network fee per transaction (Ripple)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from decimal import ROUND_CEILING, Decimal

from loguru import logger

from paycore.errors import UnsupportedFeeRateType
from paycore.models import (
    FeeLevel,
    FeeOption,
    FeeOptionCustom,
    FeeRateType,
    ResolvedFeeOption,
)
from paycore.units import Denomination, ceil_decimal, format_decimal, to_decimal

# Async source of the network rate for a level, in base units per weight
RateEstimator = Callable[[FeeLevel], Awaitable[int]]

# Async source of the flat network fee, in base units
NetworkFeeSource = Callable[[], Awaitable[int]]


class FeeModel(ABC):
    """Capability of a chain to price a transaction."""

    def __init__(self, denomination: Denomination, default_level: FeeLevel):
        if default_level == FeeLevel.CUSTOM:
            raise ValueError("Default fee level cannot be custom")
        self.denomination = denomination
        self.default_level = default_level

    @abstractmethod
    async def resolve(self, fee_option: FeeOption, unit_cost: int = 1) -> ResolvedFeeOption:
        """
        Resolve a fee intent.

        Args:
            fee_option: Custom rate or fee level (None level = default level)
            unit_cost: Weight of the operation being priced, supplied by the caller

        Raises:
            UnsupportedFeeRateType: if the chain cannot honor the rate type
        """

    def _custom_fee_base(self, fee_option: FeeOptionCustom) -> int:
        """Absolute fee for Main and Base intents. Fractional base units round up."""
        rate = to_decimal(fee_option.fee_rate)
        if fee_option.fee_rate_type == FeeRateType.MAIN:
            return self.denomination.to_base(rate, rounding=ROUND_CEILING)
        return ceil_decimal(rate)

    def _resolved(
        self,
        level: FeeLevel,
        rate: str,
        rate_type: FeeRateType,
        fee_base: int,
        gas_price: int | None = None,
    ) -> ResolvedFeeOption:
        return ResolvedFeeOption(
            target_fee_level=level,
            target_fee_rate=rate,
            target_fee_rate_type=rate_type,
            fee_base=fee_base,
            fee_main=self.denomination.to_main(fee_base),
            gas_price=gas_price,
        )


class WeightFeeModel(FeeModel):
    """
    Fee proportional to the weight of the operation.

    Used for UTXO chains (unit cost in vbytes) and Ethereum (unit cost in gas,
    with ``reports_gas_price`` set so the resolved option carries a gas price).
    """

    def __init__(
        self,
        denomination: Denomination,
        estimator: RateEstimator,
        default_level: FeeLevel = FeeLevel.LOW,
        min_rate: int = 0,
        reports_gas_price: bool = False,
    ):
        super().__init__(denomination, default_level)
        self.estimator = estimator
        self.min_rate = min_rate
        self.reports_gas_price = reports_gas_price

    async def resolve(self, fee_option: FeeOption, unit_cost: int = 1) -> ResolvedFeeOption:
        if unit_cost <= 0:
            raise ValueError(f"unit_cost must be positive, got {unit_cost}")

        if isinstance(fee_option, FeeOptionCustom):
            if fee_option.fee_rate_type == FeeRateType.BASE_PER_WEIGHT:
                rate = to_decimal(fee_option.fee_rate)
                fee_base = ceil_decimal(rate * unit_cost)
                gas_price = ceil_decimal(rate) if self.reports_gas_price else None
            else:
                fee_base = self._custom_fee_base(fee_option)
                # floor so the network never charges more than requested
                gas_price = fee_base // unit_cost if self.reports_gas_price else None
                if gas_price == 0:
                    raise UnsupportedFeeRateType(
                        f"Fee of {fee_option.fee_rate} {fee_option.fee_rate_type.value} "
                        f"is below one base unit per gas for {unit_cost} gas",
                        fee_rate=fee_option.fee_rate,
                        fee_rate_type=fee_option.fee_rate_type.value,
                        unit_cost=unit_cost,
                    )
            resolved = self._resolved(
                FeeLevel.CUSTOM,
                fee_option.fee_rate,
                fee_option.fee_rate_type,
                fee_base,
                gas_price,
            )
        else:
            level = fee_option.fee_level or self.default_level
            network_rate = await self.estimator(level)
            rate_int = max(network_rate, self.min_rate)
            if rate_int != network_rate:
                logger.debug(
                    f"Network rate {network_rate} for {level.value} below minimum, "
                    f"using {rate_int}"
                )
            resolved = self._resolved(
                level,
                str(rate_int),
                FeeRateType.BASE_PER_WEIGHT,
                rate_int * unit_cost,
                rate_int if self.reports_gas_price else None,
            )

        logger.debug(
            f"Resolved fee {resolved.fee_main} {self.denomination.symbol} "
            f"({resolved.target_fee_level.value}, {resolved.target_fee_rate} "
            f"{resolved.target_fee_rate_type.value}, unit cost {unit_cost})"
        )
        return resolved


class FlatFeeModel(FeeModel):
    """
    One fee per transaction regardless of size.

    Levels scale the current network fee by a cushion; per-weight rates have
    no meaning and are rejected.
    """

    def __init__(
        self,
        denomination: Denomination,
        network_fee: NetworkFeeSource,
        cushions: Mapping[FeeLevel, str],
        default_level: FeeLevel = FeeLevel.MEDIUM,
    ):
        super().__init__(denomination, default_level)
        self.network_fee = network_fee
        self.cushions = {level: Decimal(value) for level, value in cushions.items()}

    async def resolve(self, fee_option: FeeOption, unit_cost: int = 1) -> ResolvedFeeOption:
        if isinstance(fee_option, FeeOptionCustom):
            if fee_option.fee_rate_type == FeeRateType.BASE_PER_WEIGHT:
                raise UnsupportedFeeRateType(
                    f"{self.denomination.symbol} does not support fee rate type "
                    f"{fee_option.fee_rate_type.value}",
                    fee_rate=fee_option.fee_rate,
                    fee_rate_type=fee_option.fee_rate_type.value,
                )
            fee_base = self._custom_fee_base(fee_option)
            return self._resolved(
                FeeLevel.CUSTOM, fee_option.fee_rate, fee_option.fee_rate_type, fee_base
            )

        level = fee_option.fee_level or self.default_level
        try:
            cushion = self.cushions[level]
        except KeyError as e:
            raise UnsupportedFeeRateType(f"No fee cushion for level {level.value}") from e

        network_fee = await self.network_fee()
        fee_base = ceil_decimal(Decimal(network_fee) * cushion)
        logger.debug(
            f"Network fee {network_fee} x {format_decimal(cushion)} ({level.value}) "
            f"= {fee_base} base units"
        )
        return self._resolved(
            level, self.denomination.to_main(fee_base), FeeRateType.MAIN, fee_base
        )
