"""
Payments for ERC-20 tokens on Ethereum.

Amounts are in token units. Gas is paid in ether by the sending address, so
fees are reported in ETH.
"""

from __future__ import annotations

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import (
    decode_hex,
    encode_hex,
    function_signature_to_4byte_selector,
    to_checksum_address,
)

from paycore.errors import InsufficientFunds, TransactionNotFound
from paycore.models import BalanceResult, CreateTransactionOptions, UnsignedTransaction
from paycore.units import Denomination
from payengine.config import Erc20PaymentsConfig
from payengine.payments.base import AccountSigner, Destination
from payengine.payments.ethereum import EthereumPayments
from payengine.tx_builder import ensure_spendable
from paywallet.backends.base import AccountTransaction, ContractCallBackend

TRANSFER_SELECTOR = function_signature_to_4byte_selector("transfer(address,uint256)")
BALANCE_OF_SELECTOR = function_signature_to_4byte_selector("balanceOf(address)")


def encode_transfer(to_address: str, amount: int) -> str:
    """Input data of ``transfer(to_address, amount)``."""
    return encode_hex(TRANSFER_SELECTOR + encode(["address", "uint256"], [to_address, amount]))


def decode_transfer(data: str | None) -> tuple[str, int] | None:
    """Recipient and amount of a transfer call, None for any other input."""
    if not data:
        return None
    raw = decode_hex(data)
    if raw[:4] != TRANSFER_SELECTOR:
        return None
    try:
        to_address, amount = decode(["address", "uint256"], raw[4:])
    except DecodingError:
        return None
    return to_checksum_address(to_address), amount


class Erc20Payments(EthereumPayments):
    """
    HD wallet payments for one ERC-20 token.

    Every account index is its own address, as for ether. Transfers call the
    token contract from the sending address, and a sweep transfers the whole
    token balance.
    """

    def __init__(
        self,
        config: Erc20PaymentsConfig,
        backend: ContractCallBackend,
        signer: AccountSigner | None = None,
    ):
        super().__init__(config, backend, signer)
        self.config: Erc20PaymentsConfig = config
        self.backend: ContractCallBackend = backend
        self.denomination = Denomination(config.token_symbol, config.token_decimals)
        self.token_address = config.token_address

    async def get_token_balance(self, address: str) -> int:
        data = encode_hex(BALANCE_OF_SELECTOR + encode(["address"], [address]))
        result = await self.backend.call(self.token_address, data)
        (balance,) = decode(["uint256"], decode_hex(result))
        return balance

    async def get_balance(self, payport: Destination) -> BalanceResult:
        resolved = await self.resolve_payport(payport)
        balance = await self.get_token_balance(resolved.address)
        ether = await self.backend.get_balance(resolved.address)
        sweep_fee = await self._default_fee(self.config.gas_costs.token_transfer)
        amount = self.denomination.to_main(balance)
        return BalanceResult(
            confirmed_balance=amount,
            unconfirmed_balance="0",
            spendable_balance=amount,
            sweepable=balance > 0 and ether >= sweep_fee,
        )

    async def _create(
        self,
        from_index: int,
        to: Destination,
        amount: int | None,
        options: CreateTransactionOptions | None,
    ) -> UnsignedTransaction:
        options = options or CreateTransactionOptions()
        from_to = await self.resolve_from_to(from_index, to)
        gas = self.config.gas_costs.token_transfer
        resolved, gas_price = await self._resolve_gas_fee(options, gas)
        token_balance = await self.get_token_balance(from_to.from_address)
        ether_balance = await self.backend.get_balance(from_to.from_address)

        if amount is None:
            amount = token_balance
            if amount <= 0:
                raise InsufficientFunds(
                    f"No {self.denomination.symbol} to sweep from {from_to.from_address}",
                    address=from_to.from_address,
                    balance="0",
                )
        ensure_spendable(
            amount, 0, token_balance, address=from_to.from_address, token=self.token_address
        )
        # gas comes out of the ether balance
        ensure_spendable(0, resolved.fee_base, ether_balance, address=from_to.from_address)

        return await self._build(
            from_to,
            resolved,
            gas,
            gas_price,
            options,
            self.denomination.to_main(amount),
            self.token_address,
            data=encode_transfer(from_to.to_address, amount),
        )

    def _transfer_details(self, tx: AccountTransaction) -> tuple[str | None, str]:
        transfer = None
        if tx.to_address is not None and tx.to_address.lower() == self.token_address.lower():
            transfer = decode_transfer(tx.data)
        if transfer is None:
            raise TransactionNotFound(
                f"Transaction {tx.txid} is not a {self.denomination.symbol} transfer",
                id=tx.txid,
                token=self.token_address,
            )
        to_address, amount = transfer
        return to_address, self.denomination.to_main(amount)
