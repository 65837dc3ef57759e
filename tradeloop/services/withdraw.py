"""Withdrawal: drain sub-accounts back to the main account."""

import json
import logging
from pathlib import Path

from tradeloop.errors import ChainError, DecodeError, FundsInsufficientError
from tradeloop.services.accounts import Account, account_from_key
from tradeloop.services.sizing import from_base_units
from tradeloop.utils.constants import NATIVE_DECIMALS

logger = logging.getLogger(__name__)

# Extra headroom on top of the estimated fee, as a percent of the fee.
GAS_BUFFER_PCT = 95


def load_snapshot(path: str | Path) -> list[Account]:
    """Accounts from an execution snapshot file (plaintext JSON array)."""
    try:
        entries = json.loads(Path(path).read_text(encoding="utf-8"))
        return [account_from_key(entry["privateKey"]) for entry in entries]
    except (OSError, ValueError, KeyError, TypeError) as e:
        raise DecodeError(f"cannot read snapshot {path}: {e}") from e


async def withdraw_accounts(
    chain,
    token_address: str,
    accounts: list[Account],
    main_address: str,
) -> dict:
    """Send every account's token balance, then its native balance, to ``main_address``.

    The token and native steps fail independently: a failed token transfer is
    recorded and the native balance is still drained.

    Returns dict with withdrawn, skipped counts and the per-step errors.
    """
    result = {"withdrawn": 0, "skipped": 0, "errors": []}

    for account in accounts:
        if account.address.lower() == main_address.lower():
            result["skipped"] += 1
            continue

        moved = False
        failed = False
        for asset, step in (("tokens", _withdraw_token), ("native", _withdraw_native)):
            try:
                moved = await step(chain, token_address, account, main_address) or moved
            except ChainError as e:
                failed = True
                kind = "insufficient funds" if isinstance(e, FundsInsufficientError) else e.name
                error_msg = f"Failed to withdraw {asset} from {account.address} ({kind}): {e.message}"
                logger.error(f"[withdraw] {error_msg}")
                result["errors"].append(error_msg)

        if moved:
            result["withdrawn"] += 1
        elif not failed:
            result["skipped"] += 1

    logger.info(
        f"[withdraw] Done: {result['withdrawn']} withdrawn, {result['skipped']} skipped, "
        f"{len(result['errors'])} errors"
    )
    return result


async def _withdraw_token(chain, token_address: str, account: Account, main_address: str) -> bool:
    token_balance = await chain.get_token_balance(token_address, account.address)
    if token_balance <= 0:
        return False
    tx_hash = await chain.transfer_token(account, token_address, main_address, token_balance)
    await chain.wait_for_receipt(tx_hash)
    logger.info(f"[withdraw] {account.address} sent {token_balance} token units ({tx_hash})")
    return True


async def _withdraw_native(chain, token_address: str, account: Account, main_address: str) -> bool:
    balance = await chain.get_balance(account.address)
    if balance <= 0:
        return False

    gas_price = await chain.get_gas_price()
    gas = await chain.estimate_gas({"from": account.address, "to": main_address, "value": 0})
    fee = gas * gas_price
    amount = balance - fee - fee * GAS_BUFFER_PCT // 100
    if amount <= 0:
        logger.info(
            f"[withdraw] {account.address} native balance {from_base_units(balance, NATIVE_DECIMALS)} "
            f"below transfer fee, skipping"
        )
        return False

    tx_hash = await chain.send_transaction(
        account, {"to": main_address, "value": amount, "gas": gas, "gasPrice": gas_price}
    )
    await chain.wait_for_receipt(tx_hash)
    logger.info(f"[withdraw] {account.address} sent {from_base_units(amount, NATIVE_DECIMALS)} native ({tx_hash})")
    return True
