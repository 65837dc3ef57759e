"""CLI tool for operator tasks.

Usage:
    python -m tradeloop.cli run
    python -m tradeloop.cli decode-wallets [out]
    python -m tradeloop.cli withdraw [--snapshot]
"""

import asyncio
import json
import sys

from tradeloop.config import settings
from tradeloop.errors import ConfigError, DecodeError, PersistenceError
from tradeloop.utils.logging import setup_logging

DECODED_WALLETS_PATH = "evm-decoded-wallets.txt"


def run():
    """Run the trading loop headless until stopped or every slot is abandoned."""
    from tradeloop.database import create_db_and_tables
    from tradeloop.engine.scheduler import build_orchestrator, run_trading

    create_db_and_tables()
    try:
        orchestrator = build_orchestrator()
    except ConfigError as e:
        print(f"Configuration error: {e.message}")
        sys.exit(1)

    try:
        asyncio.run(run_trading(orchestrator))
    except KeyboardInterrupt:
        print("Interrupted.")


def decode_wallets(out_path: str = DECODED_WALLETS_PATH):
    """Decrypt the wallet log into a plaintext JSON file."""
    from tradeloop.services.encryption import get_vault

    try:
        accounts = get_vault().load_all()
    except (ConfigError, DecodeError, PersistenceError) as e:
        print(f"{e.name}: {e.message}")
        sys.exit(1)

    wallets = [
        {
            "address": account.address,
            "privateKey": account.private_key,
            "createdAt": account.created_at.isoformat(),
        }
        for account in accounts
    ]
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(wallets, f, indent=1)
    print(f"Decoded {len(wallets)} wallets to {out_path}")


def withdraw(from_snapshot: bool = False):
    """Drain the vault's (or the snapshot's) accounts back to the main account."""
    from tradeloop.services.accounts import account_from_key
    from tradeloop.services.chain_client import ChainClient
    from tradeloop.services.encryption import get_vault
    from tradeloop.services.withdraw import load_snapshot, withdraw_accounts

    if not settings.rpc_1 or not settings.private_key or not settings.token_address:
        print("Configuration error: TL_RPC_1, TL_PRIVATE_KEY and TL_TOKEN_ADDRESS are required")
        sys.exit(1)

    try:
        accounts = load_snapshot(settings.snapshot_path) if from_snapshot else get_vault().load_all()
    except (ConfigError, DecodeError, PersistenceError) as e:
        print(f"{e.name}: {e.message}")
        sys.exit(1)

    main_address = account_from_key(settings.private_key).address

    async def _main():
        chain = ChainClient(settings.rpc_urls, settings.chain_id)
        try:
            return await withdraw_accounts(chain, settings.token_address, accounts, main_address)
        finally:
            await chain.close()

    result = asyncio.run(_main())
    print(
        f"Withdrawn {result['withdrawn']}, skipped {result['skipped']}, "
        f"errors {len(result['errors'])}"
    )
    for error in result["errors"]:
        print(f"  {error}")
    if result["errors"]:
        sys.exit(1)


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m tradeloop.cli <command>")
        print("Commands: run, decode-wallets [out], withdraw [--snapshot]")
        sys.exit(1)

    setup_logging()
    command = sys.argv[1]
    if command == "run":
        run()
    elif command == "decode-wallets":
        decode_wallets(*sys.argv[2:3])
    elif command == "withdraw":
        withdraw(from_snapshot="--snapshot" in sys.argv[2:])
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
