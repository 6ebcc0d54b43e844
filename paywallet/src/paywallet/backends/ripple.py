"""
rippled JSON-RPC backend.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from paywallet.backends.base import AccountBackend, AccountTransaction, BlockInfo

DEFAULT_RPC_TIMEOUT = 30.0

# Seconds between the unix epoch and the Ripple epoch (2000-01-01)
RIPPLE_EPOCH_OFFSET = 946_684_800

ACCOUNT_NOT_FOUND = "actNotFound"
TRANSACTION_NOT_FOUND = "txnNotFound"


class RippledError(ValueError):
    def __init__(self, error: str, message: str):
        super().__init__(f"rippled error {error}: {message}")
        self.error = error


class RippleBackend(AccountBackend):
    def __init__(self, rpc_url: str = "http://127.0.0.1:5005", timeout: float = DEFAULT_RPC_TIMEOUT):
        self.rpc_url = rpc_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout)

    async def _rpc_call(self, method: str, params: dict | None = None) -> Any:
        """
        Raises:
            RippledError: When rippled answers with status "error"
            httpx.HTTPError: On connection/timeout errors
        """
        payload = {"method": method, "params": [params or {}]}

        try:
            response = await self.client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"rippled call failed: {method} - {e}")
            raise

        result = data.get("result", {})
        if result.get("status") == "error":
            raise RippledError(
                result.get("error", "unknown"), result.get("error_message", str(result))
            )
        return result

    async def _account_data(self, address: str) -> dict | None:
        try:
            result = await self._rpc_call(
                "account_info", {"account": address, "ledger_index": "validated"}
            )
        except RippledError as e:
            if e.error == ACCOUNT_NOT_FOUND:
                return None
            raise
        return result["account_data"]

    async def get_balance(self, address: str) -> int:
        account_data = await self._account_data(address)
        if account_data is None:
            logger.debug(f"Ripple account {address} is not activated")
            return 0
        return int(account_data["Balance"])

    async def get_nonce(self, address: str) -> int:
        account_data = await self._account_data(address)
        if account_data is None:
            raise ValueError(f"Ripple account {address} is not activated")
        return int(account_data["Sequence"])

    async def get_network_fee_rate(self) -> int:
        result = await self._rpc_call("fee")
        drops = result["drops"]
        fee = max(int(drops["base_fee"]), int(drops.get("open_ledger_fee", 0)))
        logger.debug(f"Network fee: {fee} drops")
        return fee

    async def broadcast_transaction(self, signed_tx: str) -> str:
        result = await self._rpc_call("submit", {"tx_blob": signed_tx})
        engine_result = result.get("engine_result", "")
        txid = result.get("tx_json", {}).get("hash", "")
        if not engine_result.startswith("tes"):
            raise ValueError(
                f"rippled rejected transaction {txid} with result code {engine_result}: "
                f"{result.get('engine_result_message', '')}"
            )
        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def get_transaction(self, txid: str) -> AccountTransaction | None:
        try:
            tx = await self._rpc_call("tx", {"transaction": txid})
        except RippledError as e:
            if e.error == TRANSACTION_NOT_FOUND:
                return None
            raise

        if tx.get("TransactionType") != "Payment":
            raise ValueError(f"Unsupported ripple transaction type {tx.get('TransactionType')}")

        meta = tx.get("meta") or {}
        amount = meta.get("delivered_amount", tx.get("Amount"))
        if not isinstance(amount, str):
            raise ValueError(f"Unsupported ripple transaction currency in {txid}")

        validated = bool(tx.get("validated"))
        result_code = meta.get("TransactionResult")
        return AccountTransaction(
            txid=tx["hash"],
            from_address=tx["Account"],
            to_address=tx.get("Destination"),
            value=int(amount),
            fee=int(tx["Fee"]),
            sequence=int(tx["Sequence"]),
            height=tx.get("ledger_index") if validated else None,
            executed=result_code.startswith("tes") if validated and result_code else None,
            result_code=result_code,
            source_tag=tx.get("SourceTag"),
            destination_tag=tx.get("DestinationTag"),
            raw=tx,
        )

    async def get_current_height(self) -> int:
        result = await self._rpc_call("ledger", {"ledger_index": "validated"})
        return int(result["ledger_index"])

    async def get_block(self, height: int) -> BlockInfo:
        result = await self._rpc_call("ledger", {"ledger_index": height})
        ledger = result["ledger"]
        return BlockInfo(
            height=height,
            hash=ledger["ledger_hash"],
            timestamp=int(ledger["close_time"]) + RIPPLE_EPOCH_OFFSET,
        )

    async def close(self) -> None:
        await self.client.aclose()
