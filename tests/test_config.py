"""Tests for settings validation."""

import pytest
from pydantic import ValidationError

from tradeloop.config import Settings
from tradeloop.errors import ConfigError

from tests.fakes import MAIN_KEY, TOKEN


def make_settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


class TestSettings:
    def test_defaults(self):
        settings = make_settings()
        assert settings.chain == "avax"
        assert settings.chain_id == 43114
        assert settings.swap_cooldown_ms == 3000
        assert settings.rotation_token_pct == 99
        assert settings.vault_format == "fernet"
        assert settings.rpc_urls == []

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("TL_CHAIN", "ether")
        monkeypatch.setenv("TL_TELEGRAM_CHAT_IDS", "[11, 22]")
        settings = make_settings()
        assert settings.chain_id == 1
        assert settings.telegram_chat_ids == [11, 22]

    def test_unknown_chain_rejected(self):
        with pytest.raises(ValidationError):
            make_settings(chain="solana")

    def test_private_key_gets_prefix(self):
        settings = make_settings(private_key=MAIN_KEY[2:])
        assert settings.private_key == MAIN_KEY

    @pytest.mark.parametrize("key", ["0x1234", "not-a-key", "0x" + "g" * 64])
    def test_invalid_private_key(self, key):
        with pytest.raises(ValidationError):
            make_settings(private_key=key)

    def test_token_address_lower_cased(self):
        settings = make_settings(token_address="0xABCDEFabcdef0000000000000000000000000001")
        assert settings.token_address == "0xabcdefabcdef0000000000000000000000000001"

    def test_invalid_token_address(self):
        with pytest.raises(ValidationError):
            make_settings(token_address="0x1234")

    def test_rpc_urls_keep_order_and_skip_blank(self):
        settings = make_settings(rpc_1="https://rpc-a.test/", rpc_2="https://rpc-b.test")
        assert settings.rpc_urls == ["https://rpc-a.test", "https://rpc-b.test"]
        assert make_settings(rpc_1="https://rpc-a.test").rpc_urls == ["https://rpc-a.test"]

    def test_invalid_rpc_url(self):
        with pytest.raises(ValidationError):
            make_settings(rpc_1="localhost:8545")

    def test_trade_bounds(self):
        with pytest.raises(ValidationError):
            make_settings(min_trade_amount=0.5, max_trade_amount=0.1)

    def test_wait_bounds(self):
        with pytest.raises(ValidationError):
            make_settings(min_wait_seconds=10, max_wait_seconds=1)

    @pytest.mark.parametrize("field", ["consecutive_buys", "sub_account_concurrency", "swap_max_attempts"])
    def test_counts_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            make_settings(**{field: 0})


class TestRequireTrading:
    def test_lists_every_missing_value(self):
        with pytest.raises(ConfigError) as exc:
            make_settings().require_trading()
        for name in ("TL_RPC_1", "TL_PRIVATE_KEY", "TL_SWAP_API_KEY", "TL_TOKEN_ADDRESS", "TL_ENCRYPTION_KEY"):
            assert name in exc.value.message

    def test_complete_settings_pass(self):
        make_settings(
            rpc_1="https://rpc.test",
            private_key=MAIN_KEY,
            swap_api_key="key",
            token_address=TOKEN,
            encryption_key="secret",
        ).require_trading()
