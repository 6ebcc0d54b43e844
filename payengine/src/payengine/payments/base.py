"""
Common contract of every payments implementation.

A payments object owns a keyring, a fee model and a backend, and exposes
the same operations for every chain:
get_payport, get_balance, create_transaction, create_sweep_transaction,
sign_transaction, broadcast_transaction, get_transaction_info.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from coincurve import PrivateKey
from loguru import logger
from pydantic import BaseModel

from paycore.errors import InvalidAddress, InvalidPayport
from paycore.models import (
    BalanceResult,
    BroadcastResult,
    CreateTransactionOptions,
    FeeOption,
    FromTo,
    Payport,
    ResolvedFeeOption,
    SignedTransaction,
    TransactionInfo,
    UnsignedTransaction,
)
from paycore.units import Denomination
from payengine.fees import FeeModel
from paywallet.wallet.keyring import HdKeyring

# A destination may be given as an account index, a bare address or a payport
Destination = int | str | Payport


@dataclass(frozen=True)
class SignedPayload:
    id: str
    serialized: str


class AccountSigner(Protocol):
    """Signs an account-chain payload with the key of its sender."""

    def sign(self, payload: dict[str, Any], private_key: PrivateKey) -> SignedPayload: ...


def to_timestamp(unix_time: int | None) -> datetime | None:
    if unix_time is None:
        return None
    return datetime.fromtimestamp(unix_time, tz=timezone.utc)


class BasePayments(ABC):
    denomination: Denomination

    def __init__(self, config: BaseModel, keyring: HdKeyring, fee_model: FeeModel):
        self.config = config
        self.keyring = keyring
        self.fee_model = fee_model

    # Addresses and payports

    @abstractmethod
    def is_valid_address(self, address: str) -> bool:
        pass

    def is_valid_extra_id(self, extra_id: str) -> bool:
        return False

    def is_valid_payport(self, payport: Payport) -> bool:
        if not self.is_valid_address(payport.address):
            return False
        return payport.extra_id is None or self.is_valid_extra_id(payport.extra_id)

    def get_account_id(self) -> str:
        """Public identifier of the account: the account xpub."""
        return self.keyring.xpub

    def get_public_config(self) -> dict[str, Any]:
        """Configuration with the key replaced by its public counterpart."""
        return self.config.model_dump(mode="json") | {"hd_key": self.keyring.xpub}

    async def get_payport(self, index: int) -> Payport:
        return Payport(address=self.keyring.get_address(index))

    async def resolve_payport(self, destination: Destination) -> Payport:
        if isinstance(destination, int):
            if destination < 0:
                raise InvalidPayport(f"Invalid index: {destination}", index=destination)
            return await self.get_payport(destination)
        if isinstance(destination, str):
            if not self.is_valid_address(destination):
                raise InvalidAddress(f"Invalid address: {destination}", address=destination)
            return Payport(address=destination)
        if not self.is_valid_address(destination.address):
            raise InvalidPayport(
                f"Invalid payport address: {destination.address}",
                address=destination.address,
            )
        if destination.extra_id is not None and not self.is_valid_extra_id(destination.extra_id):
            raise InvalidPayport(
                f"Invalid payport extra id: {destination.extra_id}",
                address=destination.address,
                extra_id=destination.extra_id,
            )
        return destination

    async def resolve_from_to(self, from_index: int, to: Destination) -> FromTo:
        if from_index < 0:
            raise InvalidPayport(f"Invalid from index: {from_index}", index=from_index)
        from_payport = await self.get_payport(from_index)
        to_payport = await self.resolve_payport(to)
        return FromTo(
            from_address=from_payport.address,
            from_index=from_index,
            from_extra_id=from_payport.extra_id,
            from_payport=from_payport,
            to_address=to_payport.address,
            to_index=to if isinstance(to, int) else None,
            to_extra_id=to_payport.extra_id,
            to_payport=to_payport,
        )

    # Amounts and fees

    def to_base_amount(self, amount: str) -> int:
        value = self.denomination.to_base(amount)
        if value <= 0:
            raise ValueError(f"Amount must be positive, got {amount}")
        return value

    async def resolve_fee_option(
        self, fee_option: FeeOption, unit_cost: int = 1
    ) -> ResolvedFeeOption:
        return await self.fee_model.resolve(fee_option, unit_cost)

    def get_private_key(self, index: int) -> PrivateKey:
        return self.keyring.get_private_key(index)

    # Operations

    @abstractmethod
    async def get_balance(self, payport: Destination) -> BalanceResult:
        pass

    @abstractmethod
    async def create_transaction(
        self,
        from_index: int,
        to: Destination,
        amount: str,
        options: CreateTransactionOptions | None = None,
    ) -> UnsignedTransaction:
        pass

    @abstractmethod
    async def create_sweep_transaction(
        self,
        from_index: int,
        to: Destination,
        options: CreateTransactionOptions | None = None,
    ) -> UnsignedTransaction:
        pass

    @abstractmethod
    async def sign_transaction(self, unsigned_tx: UnsignedTransaction) -> SignedTransaction:
        pass

    @abstractmethod
    async def broadcast_transaction(self, signed_tx: SignedTransaction) -> BroadcastResult:
        pass

    @abstractmethod
    async def get_transaction_info(self, txid: str) -> TransactionInfo:
        pass

    async def close(self) -> None:
        pass

    def _signed(
        self, unsigned_tx: UnsignedTransaction, txid: str, data: dict[str, Any]
    ) -> SignedTransaction:
        fields = unsigned_tx.model_dump(exclude={"status", "id", "data"})
        signed = SignedTransaction(**fields, id=txid, data=data)
        logger.info(f"Signed transaction {txid} from index {unsigned_tx.from_index}")
        return signed
