"""Sub-account identities: an address plus its private key."""

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone

from eth_account import Account as EthAccount


@dataclass(frozen=True)
class Account:
    address: str
    private_key: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def short(self) -> str:
        return f"{self.address[:6]}..{self.address[-4:]}"


def generate_account() -> Account:
    """Create a fresh account from 32 cryptographically random bytes."""
    private_key = "0x" + secrets.token_bytes(32).hex()
    return account_from_key(private_key)


def account_from_key(private_key: str, created_at: datetime | None = None) -> Account:
    key = private_key.strip()
    if not key.startswith("0x"):
        key = "0x" + key
    eth_account = EthAccount.from_key(key)
    if created_at is None:
        return Account(address=eth_account.address, private_key=key)
    return Account(address=eth_account.address, private_key=key, created_at=created_at)
