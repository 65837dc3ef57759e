"""Application configuration via environment variables."""

import re
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from tradeloop.errors import ConfigError

_HEX_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

CHAIN_IDS: dict[str, int] = {
    "ether": 1,
    "avax": 43114,
}


class Settings(BaseSettings):
    database_url: str = "sqlite:///tradeloop.db"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]

    # Chain
    chain: Literal["ether", "avax"] = "avax"
    rpc_1: str = ""
    rpc_2: str = ""  # optional fallback RPC
    private_key: str = ""  # main account, funds the sub-accounts
    token_address: str = ""

    # Swap service (1inch-compatible)
    swap_api_url: str = "https://api.1inch.dev"
    swap_api_key: str = ""
    swap_cooldown_ms: int = Field(default=3000, ge=0)
    swap_retry_delay_ms: int = Field(default=1500, ge=0)
    swap_max_attempts: int = Field(default=6, ge=1)
    slippage: float = Field(default=1.0, gt=0, le=50)  # percent

    # Trading
    sizing_policy: Literal["equalize", "random"] = "equalize"
    overshoot_pct: float = Field(default=10.0, ge=0, le=100)
    consecutive_buys: int = Field(default=2, ge=1)
    consecutive_sells: int = Field(default=2, ge=1)
    min_trade_amount: float = Field(default=0.01, gt=0)  # native units
    max_trade_amount: float = Field(default=0.05, gt=0)
    native_reserve: float = Field(default=0.0, ge=0)  # native kept back for gas
    min_wait_seconds: float = Field(default=5.0, ge=0)
    max_wait_seconds: float = Field(default=30.0, ge=0)
    init_fee: float = Field(default=0.0, ge=0)
    init_token: float = Field(default=0.0, ge=0)
    sub_account_concurrency: int = Field(default=1, ge=1)
    sub_account_trading_max: int = Field(default=10, ge=1)
    retry_delay_seconds: float = Field(default=3.0, ge=0)
    rotation_token_pct: int = Field(default=99, ge=1, le=100)
    max_balance_waits: int = Field(default=5, ge=1)

    # Credential vault
    encryption_key: str = ""  # Fernet key or passphrase; legacy-cbc uses it as the hash secret
    vault_format: Literal["fernet", "legacy-cbc"] = "fernet"
    wallet_log_path: str = "evm-wallets.txt"
    snapshot_path: str = "evm-executing-wallets.txt"

    # Operator API
    api_token: str = ""

    # Telegram
    telegram_bot_token: str = ""
    telegram_chat_ids: list[int] = []

    model_config = {"env_prefix": "TL_", "env_file": ".env"}

    @field_validator("private_key")
    @classmethod
    def _validate_private_key(cls, value: str) -> str:
        key = value.strip()
        if key and not _HEX_KEY_RE.fullmatch(key):
            raise ValueError("must be a 64-char hex string, with optional 0x prefix")
        if key and not key.startswith("0x"):
            key = "0x" + key
        return key

    @field_validator("token_address")
    @classmethod
    def _validate_token_address(cls, value: str) -> str:
        address = value.strip().lower()
        if address and not _ADDRESS_RE.fullmatch(address):
            raise ValueError("invalid token address")
        return address

    @field_validator("rpc_1", "rpc_2", "swap_api_url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        url = value.strip()
        if url and not url.startswith(("http://", "https://", "ws://", "wss://")):
            raise ValueError("must be an http(s) or ws(s) URL")
        return url.rstrip("/")

    @model_validator(mode="after")
    def _check_bounds(self) -> "Settings":
        if self.min_trade_amount > self.max_trade_amount:
            raise ValueError("min_trade_amount must not exceed max_trade_amount")
        if self.min_wait_seconds > self.max_wait_seconds:
            raise ValueError("min_wait_seconds must not exceed max_wait_seconds")
        return self

    @property
    def chain_id(self) -> int:
        return CHAIN_IDS[self.chain]

    @property
    def rpc_urls(self) -> list[str]:
        return [url for url in (self.rpc_1, self.rpc_2) if url]

    def require_trading(self) -> None:
        """Raise ConfigError naming every setting the trading loop cannot start without."""
        missing = []
        if not self.rpc_1:
            missing.append("TL_RPC_1")
        if not self.private_key:
            missing.append("TL_PRIVATE_KEY")
        if not self.swap_api_key:
            missing.append("TL_SWAP_API_KEY")
        if not self.token_address:
            missing.append("TL_TOKEN_ADDRESS")
        if not self.encryption_key:
            missing.append("TL_ENCRYPTION_KEY")
        if missing:
            raise ConfigError(f"missing required settings: {', '.join(missing)}")


settings = Settings()
