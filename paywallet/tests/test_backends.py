"""
Tests for the node backends with a mocked HTTP transport.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from paycore.units import ETH
from paywallet.backends.bitcoin_core import BitcoinCoreBackend, RpcError
from paywallet.backends.ethereum import EthereumBackend
from paywallet.backends.ripple import RIPPLE_EPOCH_OFFSET, RippleBackend, RippledError

TXID = "ab" * 32


def raw_json_response(text: str) -> httpx.Response:
    """Response with a literal JSON body, so float formatting is under test control."""
    return httpx.Response(
        200,
        content=text.encode(),
        headers={"content-type": "application/json"},
        request=httpx.Request("POST", "http://node.invalid"),
    )


class TestBitcoinCoreBackend:
    """Unit tests for BitcoinCoreBackend (mocked)."""

    @pytest.mark.asyncio
    async def test_amounts_parsed_without_float(self) -> None:
        backend = BitcoinCoreBackend()
        backend.get_block_height = AsyncMock(return_value=110)  # type: ignore[method-assign]
        scan_result = (
            '{"result": {"success": true, "unspents": ['
            '{"txid": "%s", "vout": 1, "amount": 0.29, "height": 101, '
            '"desc": "addr(bcrt1qaddress)#abcd", "scriptPubKey": "0014aa"}'
            '], "total_amount": 0.29}, "error": null, "id": 2}' % TXID
        )
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=raw_json_response('{"result": null, "error": null, "id": 1}')
        )
        backend._scan_client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=raw_json_response(scan_result)
        )

        utxos = await backend.get_utxos(["bcrt1qaddress"])

        assert len(utxos) == 1
        # 0.29 * 1e8 as a float would be 28999999.999999996
        assert utxos[0].value == 29_000_000
        assert utxos[0].confirmations == 10
        assert utxos[0].address == "bcrt1qaddress"
        await backend.close()

    @pytest.mark.asyncio
    async def test_rpc_error_raises(self, rpc_response) -> None:
        backend = BitcoinCoreBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response(
                {"result": None, "error": {"code": -8, "message": "bad param"}, "id": 1},
                status_code=500,
            )
        )
        with pytest.raises(RpcError) as exc_info:
            await backend.get_block_height()
        assert exc_info.value.code == -8
        await backend.close()

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_none(self, rpc_response) -> None:
        backend = BitcoinCoreBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response(
                {
                    "result": None,
                    "error": {"code": -5, "message": "No such mempool or blockchain transaction"},
                    "id": 1,
                },
                status_code=404,
            )
        )
        assert await backend.get_transaction(TXID) is None
        await backend.close()

    @pytest.mark.asyncio
    async def test_get_transaction(self) -> None:
        backend = BitcoinCoreBackend()
        tx_body = {
            "result": {
                "txid": TXID,
                "hex": "0200",
                "confirmations": 3,
                "blockhash": "00" * 32,
                "blocktime": 1_700_000_000,
                "fee": 0.00004746,
                "vin": [
                    {
                        "txid": "cd" * 32,
                        "vout": 0,
                        "prevout": {
                            "value": 0.03,
                            "scriptPubKey": {"address": "bcrt1qsender"},
                        },
                    }
                ],
                "vout": [
                    {"n": 0, "value": 0.01, "scriptPubKey": {"address": "bcrt1qdest"}},
                    {"n": 1, "value": 0.01995254, "scriptPubKey": {"address": "bcrt1qsender"}},
                ],
            },
            "error": None,
            "id": 1,
        }
        header_body = {"result": {"height": 200, "time": 1_700_000_000}, "error": None, "id": 2}
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            side_effect=[
                raw_json_response(json.dumps(tx_body)),
                raw_json_response(json.dumps(header_body)),
            ]
        )

        tx = await backend.get_transaction(TXID)

        assert tx is not None
        assert tx.block_height == 200
        assert tx.fee == 4746
        assert tx.inputs[0].value == 3_000_000
        assert tx.inputs[0].address == "bcrt1qsender"
        assert [o.value for o in tx.outputs] == [1_000_000, 1_995_254]
        await backend.close()

    @pytest.mark.asyncio
    async def test_estimate_fee(self) -> None:
        backend = BitcoinCoreBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=raw_json_response(
                '{"result": {"feerate": 0.00021001, "blocks": 6}, "error": null, "id": 1}'
            )
        )
        # 21001 sat/kvB rounds up to 22 sat/vB
        assert await backend.estimate_fee(6) == 22
        await backend.close()

    @pytest.mark.asyncio
    async def test_estimate_fee_unavailable(self, rpc_response) -> None:
        backend = BitcoinCoreBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response(
                {"result": {"errors": ["Insufficient data"], "blocks": 0}, "error": None, "id": 1}
            )
        )
        assert await backend.estimate_fee(6) is None
        await backend.close()

    @pytest.mark.asyncio
    async def test_broadcast_failure(self, rpc_response) -> None:
        backend = BitcoinCoreBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response(
                {"result": None, "error": {"code": -26, "message": "dust"}, "id": 1},
                status_code=500,
            )
        )
        with pytest.raises(ValueError, match="Broadcast failed"):
            await backend.broadcast_transaction("0200")
        await backend.close()


class TestEthereumBackend:
    """Unit tests for EthereumBackend (mocked)."""

    @pytest.mark.asyncio
    async def test_balance_and_nonce(self, rpc_response) -> None:
        backend = EthereumBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            side_effect=[
                rpc_response({"jsonrpc": "2.0", "id": 1, "result": hex(ETH.to_base("1.5"))}),
                rpc_response({"jsonrpc": "2.0", "id": 2, "result": "0x7"}),
            ]
        )
        assert await backend.get_balance("0xabc") == 1_500_000_000_000_000_000
        assert await backend.get_nonce("0xabc") == 7
        await backend.close()

    @pytest.mark.asyncio
    async def test_transaction_with_receipt(self, rpc_response) -> None:
        backend = EthereumBackend()
        tx = {
            "hash": "0x" + TXID,
            "from": "0xfrom",
            "to": "0xto",
            "value": hex(10**18),
            "gas": hex(21000),
            "gasPrice": hex(20 * 10**9),
            "nonce": "0x3",
            "blockNumber": hex(100),
            "blockHash": "0x" + "11" * 32,
        }
        receipt = {"gasUsed": hex(21000), "status": "0x0"}
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            side_effect=[
                rpc_response({"jsonrpc": "2.0", "id": 1, "result": tx}),
                rpc_response({"jsonrpc": "2.0", "id": 2, "result": receipt}),
            ]
        )

        result = await backend.get_transaction("0x" + TXID)

        assert result is not None
        assert result.fee == 21000 * 20 * 10**9
        assert result.height == 100
        assert result.sequence == 3
        assert result.executed is False
        await backend.close()

    @pytest.mark.asyncio
    async def test_call(self, rpc_response) -> None:
        backend = EthereumBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response(
                {"jsonrpc": "2.0", "id": 1, "result": "0x" + "00" * 31 + "2a"}
            )
        )

        result = await backend.call("0xtoken", "0x70a08231")

        assert int(result, 16) == 42
        request = backend.client.post.call_args.kwargs["json"]
        assert request["method"] == "eth_call"
        assert request["params"] == [{"to": "0xtoken", "data": "0x70a08231"}, "latest"]
        await backend.close()

    @pytest.mark.asyncio
    async def test_pending_transaction_keeps_input(self, rpc_response) -> None:
        backend = EthereumBackend()
        tx = {
            "hash": "0x" + TXID,
            "from": "0xfrom",
            "to": "0xtoken",
            "value": "0x0",
            "gas": hex(65000),
            "gasPrice": hex(20 * 10**9),
            "nonce": "0x1",
            "blockNumber": None,
            "input": "0xa9059cbb",
        }
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            side_effect=[
                rpc_response({"jsonrpc": "2.0", "id": 1, "result": tx}),
                rpc_response({"jsonrpc": "2.0", "id": 2, "result": None}),
            ]
        )

        result = await backend.get_transaction("0x" + TXID)

        assert result is not None
        assert result.data == "0xa9059cbb"
        assert result.height is None
        assert result.executed is None
        assert result.fee == 65000 * 20 * 10**9
        await backend.close()

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, rpc_response) -> None:
        backend = EthereumBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response({"jsonrpc": "2.0", "id": 1, "result": None})
        )
        assert await backend.get_transaction("0x" + TXID) is None
        await backend.close()

    @pytest.mark.asyncio
    async def test_rpc_error(self, rpc_response) -> None:
        backend = EthereumBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response(
                {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "nonce too low"}}
            )
        )
        with pytest.raises(ValueError, match="nonce too low"):
            await backend.broadcast_transaction("0xf86b")
        await backend.close()


class TestRippleBackend:
    """Unit tests for RippleBackend (mocked)."""

    @pytest.mark.asyncio
    async def test_unactivated_account_has_zero_balance(self, rpc_response) -> None:
        backend = RippleBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response(
                {"result": {"status": "error", "error": "actNotFound", "error_message": "x"}}
            )
        )
        assert await backend.get_balance("rAddress") == 0
        await backend.close()

    @pytest.mark.asyncio
    async def test_balance(self, rpc_response) -> None:
        backend = RippleBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response(
                {
                    "result": {
                        "status": "success",
                        "account_data": {"Balance": "25000000", "Sequence": 12},
                    }
                }
            )
        )
        assert await backend.get_balance("rAddress") == 25_000_000
        assert await backend.get_nonce("rAddress") == 12
        await backend.close()

    @pytest.mark.asyncio
    async def test_fee_uses_open_ledger_fee(self, rpc_response) -> None:
        backend = RippleBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response(
                {
                    "result": {
                        "status": "success",
                        "drops": {"base_fee": "10", "open_ledger_fee": "15"},
                    }
                }
            )
        )
        assert await backend.get_network_fee_rate() == 15
        await backend.close()

    @pytest.mark.asyncio
    async def test_transaction(self, rpc_response) -> None:
        backend = RippleBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response(
                {
                    "result": {
                        "status": "success",
                        "TransactionType": "Payment",
                        "hash": TXID.upper(),
                        "Account": "rFrom",
                        "Destination": "rTo",
                        "DestinationTag": 5,
                        "Amount": "1000000",
                        "Fee": "12",
                        "Sequence": 4,
                        "ledger_index": 500,
                        "validated": True,
                        "meta": {
                            "TransactionResult": "tecNO_DST_INSUF_XRP",
                            "delivered_amount": "1000000",
                        },
                    }
                }
            )
        )

        tx = await backend.get_transaction(TXID)

        assert tx is not None
        assert tx.value == 1_000_000
        assert tx.fee == 12
        assert tx.height == 500
        assert tx.destination_tag == 5
        assert tx.executed is False
        await backend.close()

    @pytest.mark.asyncio
    async def test_transaction_not_found(self, rpc_response) -> None:
        backend = RippleBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response(
                {"result": {"status": "error", "error": "txnNotFound", "error_message": "x"}}
            )
        )
        assert await backend.get_transaction(TXID) is None
        await backend.close()

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, rpc_response) -> None:
        backend = RippleBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response(
                {"result": {"status": "error", "error": "noNetwork", "error_message": "x"}}
            )
        )
        with pytest.raises(RippledError):
            await backend.get_current_height()
        await backend.close()

    @pytest.mark.asyncio
    async def test_ledger_timestamp(self, rpc_response) -> None:
        backend = RippleBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response(
                {
                    "result": {
                        "status": "success",
                        "ledger": {"ledger_hash": "AA" * 32, "close_time": 700_000_000},
                    }
                }
            )
        )
        block = await backend.get_block(500)
        assert block.timestamp == 700_000_000 + RIPPLE_EPOCH_OFFSET
        assert block.hash == "AA" * 32
        await backend.close()

    @pytest.mark.asyncio
    async def test_broadcast_rejected(self, rpc_response) -> None:
        backend = RippleBackend()
        backend.client.post = AsyncMock(  # type: ignore[method-assign]
            return_value=rpc_response(
                {
                    "result": {
                        "status": "success",
                        "engine_result": "tefPAST_SEQ",
                        "tx_json": {"hash": TXID},
                    }
                }
            )
        )
        with pytest.raises(ValueError, match="tefPAST_SEQ"):
            await backend.broadcast_transaction("1200")
        await backend.close()
