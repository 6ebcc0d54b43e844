"""
Ethereum JSON-RPC backend (eth_* methods of any full node).
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from paywallet.backends.base import AccountTransaction, BlockInfo, ContractCallBackend

DEFAULT_RPC_TIMEOUT = 30.0


def _hex_to_int(value: str | None) -> int | None:
    return int(value, 16) if value is not None else None


class EthereumBackend(ContractCallBackend):
    def __init__(self, rpc_url: str = "http://127.0.0.1:8545", timeout: float = DEFAULT_RPC_TIMEOUT):
        self.rpc_url = rpc_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    async def _rpc_call(self, method: str, params: list | None = None) -> Any:
        """
        Raises:
            ValueError: On RPC errors
            httpx.HTTPError: On connection/timeout errors
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        try:
            response = await self.client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise

        if data.get("error"):
            error_info = data["error"]
            raise ValueError(
                f"RPC error {error_info.get('code', 'unknown')}: "
                f"{error_info.get('message', str(error_info))}"
            )

        return data.get("result")

    async def get_balance(self, address: str) -> int:
        return int(await self._rpc_call("eth_getBalance", [address, "latest"]), 16)

    async def get_nonce(self, address: str) -> int:
        # pending so that transactions still in the mempool are counted
        return int(await self._rpc_call("eth_getTransactionCount", [address, "pending"]), 16)

    async def get_network_fee_rate(self) -> int:
        gas_price = int(await self._rpc_call("eth_gasPrice", []), 16)
        logger.debug(f"Network gas price: {gas_price} wei")
        return gas_price

    async def broadcast_transaction(self, signed_tx: str) -> str:
        txid = await self._rpc_call("eth_sendRawTransaction", [signed_tx])
        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def get_transaction(self, txid: str) -> AccountTransaction | None:
        tx = await self._rpc_call("eth_getTransactionByHash", [txid])
        if tx is None:
            return None

        receipt = await self._rpc_call("eth_getTransactionReceipt", [txid])
        gas_price = int(tx["gasPrice"], 16)
        if receipt is not None:
            # effectiveGasPrice is what was actually charged post EIP-1559
            price = _hex_to_int(receipt.get("effectiveGasPrice")) or gas_price
            fee = int(receipt["gasUsed"], 16) * price
            executed: bool | None = int(receipt.get("status", "0x1"), 16) == 1
        else:
            fee = int(tx["gas"], 16) * gas_price
            executed = None

        return AccountTransaction(
            txid=tx["hash"],
            from_address=tx["from"],
            to_address=tx.get("to"),
            value=int(tx["value"], 16),
            fee=fee,
            sequence=int(tx["nonce"], 16),
            height=_hex_to_int(tx.get("blockNumber")),
            block_hash=tx.get("blockHash"),
            executed=executed,
            data=tx.get("input"),
            raw={"transaction": tx, "receipt": receipt},
        )

    async def call(self, to: str, data: str) -> str:
        return await self._rpc_call("eth_call", [{"to": to, "data": data}, "latest"])

    async def get_current_height(self) -> int:
        return int(await self._rpc_call("eth_blockNumber", []), 16)

    async def get_block(self, height: int) -> BlockInfo:
        block = await self._rpc_call("eth_getBlockByNumber", [hex(height), False])
        if block is None:
            raise ValueError(f"Block {height} not found")
        return BlockInfo(height=height, hash=block["hash"], timestamp=int(block["timestamp"], 16))

    async def close(self) -> None:
        await self.client.aclose()
