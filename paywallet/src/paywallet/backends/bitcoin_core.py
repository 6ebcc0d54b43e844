"""
Bitcoin Core RPC blockchain backend.
Uses RPC calls but NOT wallet functionality. Works for any Bitcoin Core
derived node (Litecoin Core, Dash Core) given the matching denomination.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

import httpx
from loguru import logger

from paycore.units import BTC, Denomination, ceil_decimal
from paywallet.backends.base import (
    UTXO,
    BlockchainBackend,
    Transaction,
    TxInputRef,
    TxOutputRef,
)

# Timeout for regular RPC calls (seconds)
DEFAULT_RPC_TIMEOUT = 30.0

# Timeout for scantxoutset calls - mainnet scans can take 90+ seconds
SCAN_RPC_TIMEOUT = 300.0

# Maximum attempts for scantxoutset when another scan is in progress
SCAN_MAX_RETRIES = 30

# Polling interval while waiting for another scan to finish
SCAN_STATUS_POLL_INTERVAL = 10.0  # seconds

# RPC_INVALID_ADDRESS_OR_KEY, returned for unknown transactions
RPC_NOT_FOUND_CODE = -5

# Environment variable to enable sensitive logging (addresses, descriptors)
SENSITIVE_LOGGING = os.environ.get("SENSITIVE_LOGGING", "").lower() in ("1", "true", "yes")


class RpcError(ValueError):
    """JSON-RPC level error returned by the node."""

    def __init__(self, code: int | str, message: str):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.rpc_message = message


class BitcoinCoreBackend(BlockchainBackend):
    """
    Blockchain backend using Bitcoin Core RPC.
    Uses scantxoutset and other non-wallet RPC methods.
    """

    def __init__(
        self,
        rpc_url: str = "http://127.0.0.1:18443",
        rpc_user: str = "rpcuser",
        rpc_password: str = "rpcpassword",
        denomination: Denomination = BTC,
        scan_timeout: float = SCAN_RPC_TIMEOUT,
    ):
        self.rpc_url = rpc_url.rstrip("/")
        self.denomination = denomination
        self.scan_timeout = scan_timeout
        self.client = httpx.AsyncClient(timeout=DEFAULT_RPC_TIMEOUT, auth=(rpc_user, rpc_password))
        # Separate client for long-running scans
        self._scan_client = httpx.AsyncClient(timeout=scan_timeout, auth=(rpc_user, rpc_password))
        self._request_id = 0

    async def _rpc_call(
        self,
        method: str,
        params: list | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> Any:
        """
        Make an RPC call to the node.

        Amounts in the response are parsed as Decimal, never float.

        Raises:
            RpcError: On RPC errors
            httpx.HTTPError: On connection/timeout errors
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        use_client = client or self.client

        try:
            response = await use_client.post(self.rpc_url, json=payload)
            # Bitcoin Core answers RPC errors with HTTP 404/500 and a JSON body
            if response.status_code >= 400 and not response.content:
                response.raise_for_status()
            data = response.json(parse_float=Decimal)
        except httpx.TimeoutException as e:
            logger.error(f"RPC call timed out: {method} - {e}")
            raise
        except httpx.HTTPError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise

        if data.get("error"):
            error_info = data["error"]
            raise RpcError(
                error_info.get("code", "unknown"), error_info.get("message", str(error_info))
            )

        return data.get("result")

    def _to_base(self, amount: Decimal | int) -> int:
        return self.denomination.to_base(amount)

    async def _scantxoutset(self, descriptors: Sequence[str]) -> dict[str, Any] | None:
        """
        Run scantxoutset, waiting for any scan already in progress.

        The node only allows one scan at a time.
        """
        for attempt in range(SCAN_MAX_RETRIES):
            status = await self._rpc_call("scantxoutset", ["status"])
            if status is not None:
                progress = Decimal(status.get("progress", 0)) / 100
                logger.debug(
                    f"Another scan in progress ({progress:.1%}), waiting... "
                    f"(attempt {attempt + 1}/{SCAN_MAX_RETRIES})"
                )
                await asyncio.sleep(SCAN_STATUS_POLL_INTERVAL)
                continue

            logger.debug(f"Starting UTXO scan for {len(descriptors)} descriptor(s)...")
            if SENSITIVE_LOGGING:
                logger.debug(f"Descriptors for scan: {descriptors}")
            return await self._rpc_call(
                "scantxoutset", ["start", list(descriptors)], client=self._scan_client
            )

        logger.warning(f"scantxoutset still busy after {SCAN_MAX_RETRIES} attempts")
        return None

    async def get_utxos(self, addresses: list[str]) -> list[UTXO]:
        """
        Confirmed UTXOs of the given addresses. scantxoutset only sees the
        chainstate, so mempool outputs are never returned.
        """
        utxos: list[UTXO] = []
        if not addresses:
            return utxos

        tip_height = await self.get_block_height()

        batch_size = 100
        for i in range(0, len(addresses), batch_size):
            chunk = addresses[i : i + batch_size]
            result = await self._scantxoutset([f"addr({addr})" for addr in chunk])
            if not result or "unspents" not in result:
                raise ValueError(f"UTXO scan failed for {len(chunk)} addresses")

            for utxo_data in result["unspents"]:
                height = utxo_data.get("height", 0)
                confirmations = tip_height - height + 1 if height > 0 else 0

                # "addr(ADDRESS)#checksum"
                desc = utxo_data.get("desc", "").split("#")[0]
                address = desc[5:-1] if desc.startswith("addr(") and desc.endswith(")") else ""
                if not address and desc:
                    logger.warning(f"Failed to parse address from descriptor: '{desc}'")

                utxos.append(
                    UTXO(
                        txid=utxo_data["txid"],
                        vout=utxo_data["vout"],
                        value=self._to_base(utxo_data["amount"]),
                        address=address,
                        confirmations=confirmations,
                        scriptpubkey=utxo_data.get("scriptPubKey", ""),
                        height=height or None,
                        coinbase=bool(utxo_data.get("coinbase", False)),
                    )
                )

            logger.debug(f"Scanned {len(chunk)} addresses, found {len(result['unspents'])} UTXOs")

        return utxos

    async def get_address_balance(self, address: str) -> int:
        utxos = await self.get_utxos([address])
        balance = sum(utxo.value for utxo in utxos)
        logger.debug(f"Balance for {address}: {balance} base units")
        return balance

    async def broadcast_transaction(self, tx_hex: str) -> str:
        try:
            txid = await self._rpc_call("sendrawtransaction", [tx_hex])
        except (RpcError, httpx.HTTPError) as e:
            logger.error(f"Failed to broadcast transaction: {e}")
            raise ValueError(f"Broadcast failed: {e}") from e
        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def get_transaction(self, txid: str) -> Transaction | None:
        try:
            tx_data = await self._rpc_call("getrawtransaction", [txid, 2])
        except RpcError as e:
            if e.code == RPC_NOT_FOUND_CODE:
                logger.debug(f"Transaction {txid} not found")
                return None
            raise

        if not tx_data:
            return None

        inputs = []
        for vin in tx_data.get("vin", []):
            if "coinbase" in vin:
                continue
            prevout = vin.get("prevout") or {}
            inputs.append(
                TxInputRef(
                    txid=vin["txid"],
                    vout=vin["vout"],
                    address=prevout.get("scriptPubKey", {}).get("address"),
                    value=self._to_base(prevout["value"]) if "value" in prevout else None,
                )
            )

        outputs = [
            TxOutputRef(
                n=vout["n"],
                value=self._to_base(vout["value"]),
                address=vout.get("scriptPubKey", {}).get("address"),
            )
            for vout in tx_data.get("vout", [])
        ]

        block_height = None
        if "blockhash" in tx_data:
            block_info = await self._rpc_call("getblockheader", [tx_data["blockhash"]])
            block_height = block_info.get("height")

        fee = tx_data.get("fee")
        return Transaction(
            txid=txid,
            raw=tx_data.get("hex", ""),
            confirmations=tx_data.get("confirmations", 0),
            block_height=block_height,
            block_hash=tx_data.get("blockhash"),
            block_time=tx_data.get("blocktime"),
            inputs=inputs,
            outputs=outputs,
            fee=self._to_base(fee) if fee is not None else None,
        )

    async def estimate_fee(self, target_blocks: int) -> int | None:
        result = await self._rpc_call("estimatesmartfee", [target_blocks])

        if "feerate" not in result:
            logger.warning(
                f"Fee estimation unavailable for {target_blocks} blocks: {result.get('errors')}"
            )
            return None

        # feerate is in main units per kvB
        per_kvbyte = self._to_base(result["feerate"])
        rate = ceil_decimal(Decimal(per_kvbyte) / 1000)
        logger.debug(f"Estimated fee for {target_blocks} blocks: {rate} sat/vB")
        return rate

    async def get_block_height(self) -> int:
        info = await self._rpc_call("getblockchaininfo", [])
        height = info.get("blocks", 0)
        logger.debug(f"Current block height: {height}")
        return height

    async def get_block_hash(self, block_height: int) -> str:
        return await self._rpc_call("getblockhash", [block_height])

    async def get_block_time(self, block_height: int) -> int:
        block_hash = await self.get_block_hash(block_height)
        block_header = await self._rpc_call("getblockheader", [block_hash])
        return block_header.get("time", 0)

    async def close(self) -> None:
        await self.client.aclose()
        await self._scan_client.aclose()
