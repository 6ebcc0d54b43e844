"""
Command-line interface for Bitcoin-family payments over Bitcoin Core RPC.

Settings are read from PAYMENTS_* environment variables or a .env file;
command line flags override them.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Annotated

import typer
from loguru import logger

from paycore.errors import PaymentsError, TransactionNotFound
from paycore.models import (
    END_TRANSACTION_STATES,
    AddressType,
    CreateTransactionOptions,
    FeeLevel,
    FeeRateType,
    NetworkType,
    TransactionInfo,
)
from payengine.config import PaymentsSettings, UtxoPaymentsConfig, get_settings
from payengine.payments.base import Destination
from payengine.payments.utxo import DENOMINATIONS, UtxoPayments
from paywallet.backends.bitcoin_core import BitcoinCoreBackend

app = typer.Typer(
    name="payments",
    help="HD wallet payments - addresses, balances, sends, sweeps and status",
    add_completion=False,
)


def setup_logging(level: str) -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


NetworkOption = Annotated[
    NetworkType | None, typer.Option("--network", "-n", help="Network (default from settings)")
]
CoinOption = Annotated[
    str | None, typer.Option("--coin", "-c", help="bitcoin | litecoin | dash")
]
HdKeyOption = Annotated[
    str | None, typer.Option("--hd-key", envvar="PAYMENTS_HD_KEY", help="xprv or xpub")
]
AddressTypeOption = Annotated[
    AddressType | None, typer.Option("--address-type", help="p2pkh | p2sh-p2wpkh | p2wpkh")
]
RpcUrlOption = Annotated[
    str | None, typer.Option("--rpc-url", envvar="BITCOIN_RPC_URL", help="Node RPC URL")
]
RpcUserOption = Annotated[
    str | None, typer.Option("--rpc-user", envvar="BITCOIN_RPC_USER", help="Node RPC user")
]
RpcPasswordOption = Annotated[
    str | None,
    typer.Option("--rpc-password", envvar="BITCOIN_RPC_PASSWORD", help="Node RPC password"),
]
LogLevelOption = Annotated[str | None, typer.Option("--log-level", "-l", help="Log level")]


def build_payments(
    settings: PaymentsSettings,
    network: NetworkType | None = None,
    coin: str | None = None,
    hd_key: str | None = None,
    address_type: AddressType | None = None,
    rpc_url: str | None = None,
    rpc_user: str | None = None,
    rpc_password: str | None = None,
) -> UtxoPayments:
    config: UtxoPaymentsConfig = settings.utxo_config(
        network=network, coin=coin, hd_key=hd_key, address_type=address_type
    )
    if not config.hd_key:
        raise typer.BadParameter("An hd key is required (--hd-key or PAYMENTS_HD_KEY)")
    backend = BitcoinCoreBackend(
        rpc_url=rpc_url or settings.rpc_url,
        rpc_user=rpc_user or settings.rpc_user,
        rpc_password=rpc_password or settings.rpc_password,
        denomination=DENOMINATIONS[config.coin],
    )
    return UtxoPayments(config, backend)


def parse_destination(value: str) -> Destination:
    """An account index, or an address."""
    return int(value) if value.isdigit() else value


def fee_options(
    fee_level: FeeLevel | None, fee_rate: str | None, fee_rate_type: FeeRateType | None
) -> CreateTransactionOptions:
    if fee_rate is not None:
        return CreateTransactionOptions(
            fee_rate=fee_rate, fee_rate_type=fee_rate_type or FeeRateType.BASE_PER_WEIGHT
        )
    return CreateTransactionOptions(fee_level=fee_level)


def print_transaction_info(info: TransactionInfo) -> None:
    typer.echo(f"Transaction: {info.id}")
    typer.echo(f"  Status:        {info.status.value}")
    typer.echo(f"  Confirmations: {info.confirmations}")
    typer.echo(f"  Amount:        {info.amount}")
    typer.echo(f"  Fee:           {info.fee}")
    if info.confirmation_number is not None:
        typer.echo(f"  Block:         {info.confirmation_number} ({info.confirmation_id})")


def _run(coro_factory, settings: PaymentsSettings, log_level: str | None) -> None:  # type: ignore[no-untyped-def]
    setup_logging(log_level or settings.log_level)
    try:
        asyncio.run(coro_factory())
    except PaymentsError as e:
        logger.error(e.message)
        raise typer.Exit(1)
    except ValueError as e:
        logger.error(f"Invalid request: {e}")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        raise typer.Exit(130)


@app.command()
def address(
    index: Annotated[int, typer.Option("--index", "-i", help="Account index")] = 0,
    network: NetworkOption = None,
    coin: CoinOption = None,
    hd_key: HdKeyOption = None,
    address_type: AddressTypeOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show the address of an account index."""
    settings = get_settings()

    async def run() -> None:
        payments = build_payments(settings, network, coin, hd_key, address_type)
        try:
            payport = await payments.get_payport(index)
            typer.echo(payport.address)
        finally:
            await payments.close()

    _run(run, settings, log_level)


@app.command()
def balance(
    index: Annotated[int, typer.Option("--index", "-i", help="Account index")] = 0,
    network: NetworkOption = None,
    coin: CoinOption = None,
    hd_key: HdKeyOption = None,
    address_type: AddressTypeOption = None,
    rpc_url: RpcUrlOption = None,
    rpc_user: RpcUserOption = None,
    rpc_password: RpcPasswordOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show the balance of an account index."""
    settings = get_settings()

    async def run() -> None:
        payments = build_payments(
            settings, network, coin, hd_key, address_type, rpc_url, rpc_user, rpc_password
        )
        try:
            result = await payments.get_balance(index)
            symbol = payments.denomination.symbol
            typer.echo(f"Confirmed:   {result.confirmed_balance} {symbol}")
            typer.echo(f"Unconfirmed: {result.unconfirmed_balance} {symbol}")
            typer.echo(f"Spendable:   {result.spendable_balance} {symbol}")
            typer.echo(f"Sweepable:   {'yes' if result.sweepable else 'no'}")
        finally:
            await payments.close()

    _run(run, settings, log_level)


async def _sign_and_broadcast(payments: UtxoPayments, unsigned, dry_run: bool) -> None:  # type: ignore[no-untyped-def]
    typer.echo(f"Amount: {unsigned.amount}  Fee: {unsigned.fee}")
    signed = await payments.sign_transaction(unsigned)
    if dry_run:
        typer.echo(signed.data["hex"])
        return
    result = await payments.broadcast_transaction(signed)
    typer.echo(f"Broadcast: {result.id}{' (already known)' if result.rebroadcast else ''}")


@app.command()
def send(
    to: Annotated[str, typer.Argument(help="Destination address or account index")],
    amount: Annotated[str, typer.Argument(help="Amount in main units, eg 0.001")],
    from_index: Annotated[int, typer.Option("--from-index", "-i", help="Source index")] = 0,
    fee_level: Annotated[FeeLevel | None, typer.Option("--fee-level", help="low | medium | high")] = None,
    fee_rate: Annotated[str | None, typer.Option("--fee-rate", help="Custom fee rate")] = None,
    fee_rate_type: Annotated[
        FeeRateType | None, typer.Option("--fee-rate-type", help="main | base | base/weight")
    ] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Sign but do not broadcast")] = False,
    network: NetworkOption = None,
    coin: CoinOption = None,
    hd_key: HdKeyOption = None,
    address_type: AddressTypeOption = None,
    rpc_url: RpcUrlOption = None,
    rpc_user: RpcUserOption = None,
    rpc_password: RpcPasswordOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Send an amount from an account index."""
    settings = get_settings()

    async def run() -> None:
        payments = build_payments(
            settings, network, coin, hd_key, address_type, rpc_url, rpc_user, rpc_password
        )
        try:
            unsigned = await payments.create_transaction(
                from_index,
                parse_destination(to),
                amount,
                fee_options(fee_level, fee_rate, fee_rate_type),
            )
            await _sign_and_broadcast(payments, unsigned, dry_run)
        finally:
            await payments.close()

    _run(run, settings, log_level)


@app.command()
def sweep(
    to: Annotated[str, typer.Argument(help="Destination address or account index")],
    from_index: Annotated[int, typer.Option("--from-index", "-i", help="Source index")] = 0,
    fee_level: Annotated[FeeLevel | None, typer.Option("--fee-level", help="low | medium | high")] = None,
    fee_rate: Annotated[str | None, typer.Option("--fee-rate", help="Custom fee rate")] = None,
    fee_rate_type: Annotated[
        FeeRateType | None, typer.Option("--fee-rate-type", help="main | base | base/weight")
    ] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Sign but do not broadcast")] = False,
    network: NetworkOption = None,
    coin: CoinOption = None,
    hd_key: HdKeyOption = None,
    address_type: AddressTypeOption = None,
    rpc_url: RpcUrlOption = None,
    rpc_user: RpcUserOption = None,
    rpc_password: RpcPasswordOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Send the whole balance of an account index, minus the fee."""
    settings = get_settings()

    async def run() -> None:
        payments = build_payments(
            settings, network, coin, hd_key, address_type, rpc_url, rpc_user, rpc_password
        )
        try:
            unsigned = await payments.create_sweep_transaction(
                from_index,
                parse_destination(to),
                fee_options(fee_level, fee_rate, fee_rate_type),
            )
            await _sign_and_broadcast(payments, unsigned, dry_run)
        finally:
            await payments.close()

    _run(run, settings, log_level)


async def wait_for_status(
    payments: UtxoPayments,
    txid: str,
    poll_interval: float,
    stop: asyncio.Event | None = None,
) -> TransactionInfo | None:
    """
    Poll until the transaction reaches Confirmed or Failed.

    A transaction the node does not know yet is waited for. Returns None if
    ``stop`` is set first.
    """
    stop = stop or asyncio.Event()
    while not stop.is_set():
        try:
            info = await payments.get_transaction_info(txid)
        except TransactionNotFound:
            logger.info(f"Transaction {txid} not visible yet")
        else:
            logger.info(f"Transaction {txid}: {info.status.value} ({info.confirmations} conf)")
            if info.status in END_TRANSACTION_STATES:
                return info
        try:
            await asyncio.wait_for(stop.wait(), timeout=poll_interval)
        except asyncio.TimeoutError:
            pass
    return None


@app.command()
def status(
    txid: Annotated[str, typer.Argument(help="Transaction id")],
    wait: Annotated[bool, typer.Option("--wait", "-w", help="Poll until confirmed or failed")] = False,
    poll_interval: Annotated[
        float | None, typer.Option("--poll-interval", help="Seconds between polls")
    ] = None,
    network: NetworkOption = None,
    coin: CoinOption = None,
    hd_key: HdKeyOption = None,
    address_type: AddressTypeOption = None,
    rpc_url: RpcUrlOption = None,
    rpc_user: RpcUserOption = None,
    rpc_password: RpcPasswordOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show the status of a transaction."""
    settings = get_settings()

    async def run() -> None:
        payments = build_payments(
            settings, network, coin, hd_key, address_type, rpc_url, rpc_user, rpc_password
        )
        try:
            if wait:
                info = await wait_for_status(
                    payments, txid, poll_interval or settings.poll_interval
                )
            else:
                info = await payments.get_transaction_info(txid)
            if info is not None:
                print_transaction_info(info)
        finally:
            await payments.close()

    _run(run, settings, log_level)


def main() -> None:
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
