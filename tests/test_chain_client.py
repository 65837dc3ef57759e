"""Tests for the chain client: RPC fallback, error conversion and local signing."""

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from eth_account import Account as EthAccount

from tradeloop.errors import ChainError, FundsInsufficientError, TransactionRevertedError
from tradeloop.services.chain_client import ChainClient

from tests.fakes import MAIN_ADDRESS, SUB_ADDRESS


def make_w3():
    w3 = MagicMock()
    w3.eth.get_balance = AsyncMock(return_value=0)
    w3.eth.get_transaction_count = AsyncMock(return_value=0)
    w3.eth.send_raw_transaction = AsyncMock(return_value=b"\x12" * 32)
    w3.eth.estimate_gas = AsyncMock(return_value=21000)
    w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 1})
    return w3


class TestFallback:
    @pytest.mark.asyncio
    async def test_connection_error_falls_over_to_second_rpc(self):
        primary, fallback = make_w3(), make_w3()
        primary.eth.get_balance = AsyncMock(side_effect=aiohttp.ClientConnectionError("down"))
        fallback.eth.get_balance = AsyncMock(return_value=5)
        client = ChainClient([], chain_id=43114, web3s=[primary, fallback])

        assert await client.get_balance(SUB_ADDRESS.lower()) == 5
        primary.eth.get_balance.assert_awaited_once_with(SUB_ADDRESS)

    @pytest.mark.asyncio
    async def test_all_rpcs_unreachable(self):
        primary, fallback = make_w3(), make_w3()
        primary.eth.get_balance = AsyncMock(side_effect=ConnectionError("refused"))
        fallback.eth.get_balance = AsyncMock(side_effect=aiohttp.ClientConnectionError("refused"))
        client = ChainClient([], chain_id=43114, web3s=[primary, fallback])

        with pytest.raises(ChainError):
            await client.get_balance(SUB_ADDRESS)

    @pytest.mark.asyncio
    async def test_rpc_error_is_not_retried_on_fallback(self):
        primary, fallback = make_w3(), make_w3()
        primary.eth.estimate_gas = AsyncMock(
            side_effect=ValueError({"code": -32000, "message": "insufficient funds for gas * price + value"})
        )
        client = ChainClient([], chain_id=43114, web3s=[primary, fallback])

        with pytest.raises(FundsInsufficientError) as exc:
            await client.estimate_gas({"from": MAIN_ADDRESS, "to": SUB_ADDRESS, "value": 1})
        assert exc.value.code == -32000
        fallback.eth.estimate_gas.assert_not_awaited()

    def test_requires_an_endpoint(self):
        with pytest.raises(ValueError):
            ChainClient([], chain_id=1)


class TestTransactions:
    @pytest.mark.asyncio
    async def test_send_transaction_signs_locally(self, main_account):
        w3 = make_w3()
        w3.eth.get_transaction_count = AsyncMock(return_value=3)
        client = ChainClient([], chain_id=43114, web3s=[w3])

        tx_hash = await client.send_transaction(
            main_account, {"to": SUB_ADDRESS.lower(), "value": "100", "gas": 21000, "gasPrice": 10**9}
        )

        assert tx_hash == "0x" + "12" * 32
        w3.eth.get_transaction_count.assert_awaited_once_with(MAIN_ADDRESS, "pending")
        raw = w3.eth.send_raw_transaction.await_args.args[0]
        assert EthAccount.recover_transaction(raw) == MAIN_ADDRESS

    @pytest.mark.asyncio
    async def test_send_transaction_estimates_missing_gas(self, main_account):
        w3 = make_w3()
        client = ChainClient([], chain_id=43114, web3s=[w3])

        await client.send_transaction(main_account, {"to": SUB_ADDRESS, "value": 1, "gasPrice": 10**9, "data": "0x"})

        estimate = w3.eth.estimate_gas.await_args.args[0]
        assert estimate == {"from": MAIN_ADDRESS, "to": SUB_ADDRESS, "value": 1, "data": "0x"}

    @pytest.mark.asyncio
    async def test_gas_price(self):
        async def _gas_price():
            return 7

        w3 = make_w3()
        w3.eth.gas_price = _gas_price()
        client = ChainClient([], chain_id=1, web3s=[w3])
        assert await client.get_gas_price() == 7

    @pytest.mark.asyncio
    async def test_reverted_receipt_raises(self):
        w3 = make_w3()
        w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 0})
        client = ChainClient([], chain_id=1, web3s=[w3])

        with pytest.raises(TransactionRevertedError) as exc:
            await client.wait_for_receipt("0xabc")
        assert exc.value.code == "REVERTED"

    @pytest.mark.asyncio
    async def test_successful_receipt(self):
        client = ChainClient([], chain_id=1, web3s=[make_w3()])
        assert (await client.wait_for_receipt("0xabc"))["status"] == 1
