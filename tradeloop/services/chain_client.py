"""EVM chain client wrapper for balances, gas and locally signed transactions.

Wraps web3's async API. Every failure leaves this module as a ``ChainError``
(or ``FundsInsufficientError``); connection-level failures on the primary RPC
fall through to the fallback RPC when one is configured.
"""

import asyncio
import logging

import aiohttp
from eth_account import Account as EthAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from tradeloop.errors import ChainError, TransactionRevertedError, chain_error_from
from tradeloop.services.accounts import Account
from tradeloop.utils.constants import ERC20_ABI

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (aiohttp.ClientConnectionError, asyncio.TimeoutError, ConnectionError)


class ChainClient:
    """Async RPC access for one chain, with an ordered list of endpoints."""

    def __init__(
        self,
        rpc_urls: list[str],
        chain_id: int,
        receipt_timeout: float = 180.0,
        web3s: list | None = None,
    ):
        if not rpc_urls and not web3s:
            raise ValueError("at least one RPC endpoint is required")
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self._web3s = web3s or [AsyncWeb3(AsyncHTTPProvider(url)) for url in rpc_urls]

    async def _call(self, label: str, fn):
        last_error: BaseException | None = None
        for index, w3 in enumerate(self._web3s):
            try:
                return await fn(w3)
            except ChainError:
                raise
            except CONNECTION_ERRORS as e:
                last_error = e
                logger.warning(f"RPC #{index + 1} unreachable during {label}: {e!r}")
            except Exception as e:
                raise chain_error_from(e) from e
        raise chain_error_from(last_error) from last_error

    def _token(self, w3, token_address: str):
        return w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)

    async def get_balance(self, address: str) -> int:
        return await self._call(
            "get_balance", lambda w3: w3.eth.get_balance(Web3.to_checksum_address(address))
        )

    async def get_token_balance(self, token_address: str, address: str) -> int:
        return await self._call(
            "get_token_balance",
            lambda w3: self._token(w3, token_address)
            .functions.balanceOf(Web3.to_checksum_address(address))
            .call(),
        )

    async def get_token_decimals(self, token_address: str) -> int:
        return await self._call(
            "get_token_decimals",
            lambda w3: self._token(w3, token_address).functions.decimals().call(),
        )

    async def get_gas_price(self) -> int:
        async def _gas_price(w3):
            return await w3.eth.gas_price

        return await self._call("get_gas_price", _gas_price)

    async def estimate_gas(self, tx: dict) -> int:
        return await self._call("estimate_gas", lambda w3: w3.eth.estimate_gas(_normalize(tx)))

    async def send_transaction(self, account: Account, tx: dict) -> str:
        """Fill nonce/gas/chainId, sign with the account key and broadcast."""

        async def _send(w3):
            full = _normalize(tx)
            full["from"] = account.address
            full["chainId"] = self.chain_id
            full["nonce"] = await w3.eth.get_transaction_count(account.address, "pending")
            if not full.get("gasPrice"):
                full["gasPrice"] = await w3.eth.gas_price
            if not full.get("gas"):
                full["gas"] = await w3.eth.estimate_gas(
                    {k: full[k] for k in ("from", "to", "value", "data") if k in full}
                )
            return await self._sign_and_send(w3, account, full)

        return await self._call("send_transaction", _send)

    async def transfer_token(self, account: Account, token_address: str, to: str, amount: int) -> str:
        async def _transfer(w3):
            contract = self._token(w3, token_address)
            tx = await contract.functions.transfer(Web3.to_checksum_address(to), amount).build_transaction(
                {
                    "from": account.address,
                    "chainId": self.chain_id,
                    "nonce": await w3.eth.get_transaction_count(account.address, "pending"),
                    "gasPrice": await w3.eth.gas_price,
                }
            )
            return await self._sign_and_send(w3, account, tx)

        return await self._call("transfer_token", _transfer)

    async def _sign_and_send(self, w3, account: Account, tx: dict) -> str:
        unsigned = dict(tx)
        unsigned.pop("from", None)
        signed = EthAccount.sign_transaction(unsigned, account.private_key)
        tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str) -> dict:
        async def _wait(w3):
            receipt = await w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
            if receipt["status"] != 1:
                raise TransactionRevertedError(f"transaction {tx_hash} reverted", code="REVERTED")
            return dict(receipt)

        return await self._call("wait_for_receipt", _wait)

    async def close(self):
        for w3 in self._web3s:
            disconnect = getattr(w3.provider, "disconnect", None)
            if disconnect is None:
                continue
            try:
                await disconnect()
            except Exception as e:
                logger.debug(f"RPC provider disconnect failed: {e}")


def _normalize(tx: dict) -> dict:
    """Checksum addresses and coerce numeric fields to int."""
    out = dict(tx)
    for key in ("from", "to"):
        if out.get(key):
            out[key] = Web3.to_checksum_address(out[key])
    for key in ("value", "gas", "gasPrice"):
        if key in out and out[key] is not None:
            out[key] = int(out[key])
    return out
